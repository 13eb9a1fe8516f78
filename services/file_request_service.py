"""
File requests: time-limited public upload links into a single folder.

Requests live in one Redis hash (token -> JSON). Expired requests are
removed lazily when someone opens them.
"""

import json
import logging
import secrets
import time
from typing import Any, Dict, List, Optional

from kv import kv_store, FILE_REQUESTS_KEY

logger = logging.getLogger("zee_index.file_requests")

PUBLIC_UPLOADER = "Public Uploader"


class FileRequestNotFound(Exception):
    pass


class FileRequestExpired(Exception):
    pass


def _now_ms() -> int:
    return int(time.time() * 1000)


def create_file_request(folder_id: str, folder_name: str, title: str,
                        expires_in_hours: int, created_by: str) -> Dict[str, Any]:
    token = secrets.token_hex(16)
    now = _now_ms()
    request_data = {
        "token": token,
        "folderId": folder_id,
        "folderName": folder_name,
        "title": title,
        "createdAt": now,
        "expiresAt": now + expires_in_hours * 60 * 60 * 1000,
        "createdBy": created_by,
        "type": "file-request",
    }
    kv_store.client.hset(FILE_REQUESTS_KEY, token, json.dumps(request_data))
    logger.info("File request created", extra={"folder_id": folder_id})
    return request_data


def list_active_requests() -> List[Dict[str, Any]]:
    now = _now_ms()
    active = []
    for raw in kv_store.client.hgetall(FILE_REQUESTS_KEY).values():
        try:
            item = json.loads(raw)
        except (TypeError, ValueError):
            continue
        if not item.get("expiresAt") or item["expiresAt"] > now:
            active.append(item)
    active.sort(key=lambda r: r.get("createdAt", 0), reverse=True)
    return active


def delete_file_request(token: str) -> bool:
    return kv_store.client.hdel(FILE_REQUESTS_KEY, token) > 0


def _load(token: str) -> Optional[Dict[str, Any]]:
    raw = kv_store.client.hget(FILE_REQUESTS_KEY, token)
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Discarding malformed file request entry")
        return None


def get_file_request(token: str) -> Dict[str, Any]:
    """
    Raises:
        FileRequestNotFound: unknown token
        FileRequestExpired: past its expiry (the entry is deleted)
    """
    item = _load(token)
    if item is None:
        raise FileRequestNotFound(token)
    if _now_ms() > item.get("expiresAt", 0):
        delete_file_request(token)
        raise FileRequestExpired(token)
    return item


def active_request_or_none(token: str) -> Optional[Dict[str, Any]]:
    try:
        return get_file_request(token)
    except (FileRequestNotFound, FileRequestExpired):
        return None

"""
Folder access requests.

Signed-in users ask for access to a folder they cannot open; admins are
e-mailed and later approve (granting per-user access) or reject. Pending
requests are JSON strings in a Redis set, so a request is identified by its
folder, e-mail and timestamp.
"""

import html
import json
import logging
import time
from typing import Any, Dict, List, Optional

from kv import kv_store, ACCESS_REQUESTS_KEY
from services.access_service import grant_user_access
from services.activity_service import ActivityType, log_activity
from services.notification_service import notify_admins

logger = logging.getLogger("zee_index.access_requests")


def create_access_request(email: str, name: Optional[str], folder_id: str, folder_name: str) -> Dict[str, Any]:
    request_data = {
        "folderId": folder_id,
        "folderName": folder_name,
        "email": email,
        "name": name,
        "timestamp": int(time.time() * 1000),
    }
    kv_store.client.sadd(ACCESS_REQUESTS_KEY, json.dumps(request_data))

    notify_admins(
        f"[Request Access] {folder_name}",
        "<h2>New access request</h2>"
        f"<ul><li><b>User:</b> {html.escape(email)}</li>"
        f"<li><b>Folder:</b> {html.escape(folder_name)}</li></ul>"
        "<p>Open the admin dashboard to approve or reject it.</p>",
    )
    log_activity(ActivityType.ACCESS_REQUESTED, itemName=folder_name, userEmail=email,
                 destinationFolder=folder_id)
    return request_data


def _pending() -> Dict[str, Dict[str, Any]]:
    """Raw set member -> parsed request. Unparseable members are skipped."""
    parsed = {}
    for raw in kv_store.client.smembers(ACCESS_REQUESTS_KEY):
        try:
            parsed[raw] = json.loads(raw)
        except ValueError:
            logger.warning("Skipping malformed access request", extra={"raw": raw[:200]})
    return parsed


def list_access_requests() -> List[Dict[str, Any]]:
    """Pending requests, newest first."""
    requests = [r for r in _pending().values() if isinstance(r, dict)]
    requests.sort(key=lambda r: r.get("timestamp") or 0, reverse=True)
    return requests


def resolve_access_request(action: str, request_data: Dict[str, Any], admin_email: str) -> bool:
    """
    Approve or reject a pending request and drop it from the queue.

    Approval grants the requester access to the folder even when the
    request is no longer pending.

    Returns:
        True if a matching pending request was removed
    """
    folder_id = request_data["folderId"]
    email = request_data["email"].lower()

    if action == "approve":
        grant_user_access(folder_id, email)
        log_activity(ActivityType.ACCESS_GRANTED, itemName=request_data.get("folderName"),
                     userEmail=admin_email, targetUser=email, destinationFolder=folder_id)

    for raw, pending in _pending().items():
        if not isinstance(pending, dict):
            continue
        if (pending.get("folderId") == folder_id
                and (pending.get("email") or "").lower() == email
                and pending.get("timestamp") == request_data.get("timestamp")):
            kv_store.client.srem(ACCESS_REQUESTS_KEY, raw)
            return True
    return False

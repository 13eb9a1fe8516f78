"""
Per-user favorites, per-file tags and admin-pinned folders.

All three are plain Redis sets of ids; details are resolved against Drive
when read so renamed files show their current name.
"""

import logging
from typing import Any, Dict, List, Optional

from kv import kv_store, favorites_key, tags_key, PINNED_FOLDERS_KEY
from services.access_service import restricted_ids
from services.drive import DriveFileNotFound

logger = logging.getLogger("zee_index.bookmarks")


def _resolve(drive_service, file_ids: List[str]) -> Dict[str, Optional[Dict[str, Any]]]:
    """Map ids to Drive metadata; None only when Drive reports the id as missing."""
    resolved = {}
    for file_id in file_ids:
        try:
            resolved[file_id] = drive_service.get_file(file_id)
        except DriveFileNotFound:
            resolved[file_id] = None
    return resolved


# --- Favorites ---

def add_favorite(email: str, file_id: str) -> None:
    kv_store.client.sadd(favorites_key(email), file_id)


def remove_favorite(email: str, file_id: str) -> None:
    kv_store.client.srem(favorites_key(email), file_id)


def list_favorites(drive_service, email: str, is_admin: bool = False) -> List[Dict[str, Any]]:
    """Favorite files that still exist and are not trashed, sorted by name."""
    ids = sorted(kv_store.client.smembers(favorites_key(email)))
    if not ids:
        return []

    restricted = restricted_ids()
    favorites = []
    for file_id, file in _resolve(drive_service, ids).items():
        if not file or file.get("trashed"):
            continue
        item = dict(file)
        if not is_admin:
            item["isProtected"] = file_id in restricted
        favorites.append(item)
    favorites.sort(key=lambda f: (f.get("name") or "").lower())
    return favorites


# --- Tags ---

def get_tags(file_id: str) -> List[str]:
    return sorted(kv_store.client.smembers(tags_key(file_id)))


def update_tag(file_id: str, tag: str, action: str) -> List[str]:
    if action == "add":
        kv_store.client.sadd(tags_key(file_id), tag)
    elif action == "remove":
        kv_store.client.srem(tags_key(file_id), tag)
    return get_tags(file_id)


# --- Pins ---

def pin_folder(folder_id: str) -> None:
    kv_store.client.sadd(PINNED_FOLDERS_KEY, folder_id)


def unpin_folder(folder_id: str) -> None:
    kv_store.client.srem(PINNED_FOLDERS_KEY, folder_id)


def list_pinned_folders(drive_service) -> List[Dict[str, Any]]:
    """Pinned folders still present in Drive. Ids Drive no longer knows are unpinned."""
    ids = sorted(kv_store.client.smembers(PINNED_FOLDERS_KEY))
    pinned = []
    for folder_id, file in _resolve(drive_service, ids).items():
        if file is None:
            logger.info(f"Unpinning {folder_id}: no longer in Drive")
            unpin_folder(folder_id)
            continue
        if file.get("trashed") or not file.get("isFolder"):
            continue
        pinned.append(file)
    return pinned

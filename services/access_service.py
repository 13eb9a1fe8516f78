"""
Folder access rules.

Two kinds of restricted folders exist:

* private folders (PRIVATE_FOLDER_IDS): hidden from listings unless the user
  was granted access, and never browsable anonymously;
* protected folders (ProtectedFolder rows): need a folder token obtained with
  the folder's id/password, or a per-user grant made by an admin.

Restrictions are inherited: a file is restricted when the file itself or any
ancestor below the index root is restricted.
"""

import hmac
import logging
import time
from typing import Any, Dict, Iterable, Optional, Set

import bcrypt
from sqlalchemy.orm import Session

import models
from auth.tokens import decode_folder_token
from config import config
from database import SessionLocal
from kv import kv_store, folder_access_key, USER_ACCESS_FOLDERS_KEY
from utils.prometheus import ACCESS_DENIED

logger = logging.getLogger("zee_index.access")

MAX_DEPTH = 20
RESTRICTED_CACHE_SECONDS = 10
BCRYPT_ROUNDS = 10

_restricted_cache: Dict[str, Any] = {"ids": None, "loaded_at": 0.0}


def clear_restricted_cache() -> None:
    _restricted_cache["ids"] = None
    _restricted_cache["loaded_at"] = 0.0


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def is_private_folder(folder_id: str) -> bool:
    return folder_id in config.PRIVATE_FOLDER_IDS


def protected_ids(db: Session) -> Set[str]:
    return {row.folder_id for row in db.query(models.ProtectedFolder.folder_id).all()}


def restricted_ids() -> Set[str]:
    """Protected folder ids plus private folder ids, memoised for a few seconds."""
    now = time.monotonic()
    cached = _restricted_cache["ids"]
    if cached is not None and now - _restricted_cache["loaded_at"] < RESTRICTED_CACHE_SECONDS:
        return cached

    db = SessionLocal()
    try:
        ids = protected_ids(db) | set(config.PRIVATE_FOLDER_IDS)
    except Exception as e:
        logger.error(f"Could not load protected folders: {e}")
        if cached is not None:
            return cached
        ids = set(config.PRIVATE_FOLDER_IDS)
    finally:
        db.close()

    _restricted_cache["ids"] = ids
    _restricted_cache["loaded_at"] = now
    return ids


def get_protected_folder(db: Session, folder_id: str) -> Optional[models.ProtectedFolder]:
    return db.query(models.ProtectedFolder).filter(models.ProtectedFolder.folder_id == folder_id).first()


def is_protected(db: Session, folder_id: str) -> bool:
    return get_protected_folder(db, folder_id) is not None


def verify_folder_credentials(folder: models.ProtectedFolder, access_id: str, password: str) -> bool:
    """Constant-time id comparison plus bcrypt password check."""
    id_matches = hmac.compare_digest(
        (folder.access_id or "").encode("utf-8"), (access_id or "").encode("utf-8")
    )
    try:
        password_matches = bcrypt.checkpw(password.encode("utf-8"), folder.password_hash.encode("utf-8"))
    except ValueError:
        logger.error("Stored folder password hash is malformed", extra={"folder_id": folder.folder_id})
        password_matches = False
    return id_matches and password_matches


def grant_user_access(folder_id: str, email: str) -> None:
    kv_store.client.sadd(USER_ACCESS_FOLDERS_KEY, folder_id)
    kv_store.client.sadd(folder_access_key(folder_id), email.lower())


def has_user_access(email: Optional[str], folder_id: str) -> bool:
    if not email:
        return False
    try:
        return bool(kv_store.client.sismember(folder_access_key(folder_id), email.lower()))
    except Exception as e:
        logger.warning(f"User access lookup failed: {e}")
        return False


def verify_folder_token(token: Optional[str], folder_id: str) -> bool:
    payload = decode_folder_token(token)
    return payload is not None and payload.get("folderId") == folder_id


def folder_ids_from_token(token: Optional[str]) -> Set[str]:
    """The folder a bearer token unlocks, as an allowed-token set."""
    payload = decode_folder_token(token)
    return {payload["folderId"]} if payload else set()


def _blocks(folder_id: str, restricted: Set[str], allowed_tokens: Set[str], user_email: Optional[str]) -> bool:
    if folder_id not in restricted or folder_id in allowed_tokens:
        return False
    if user_email and has_user_access(user_email, folder_id):
        return False
    return True


def is_access_restricted(
    drive_service,
    file_id: str,
    allowed_tokens: Iterable[str] = (),
    user_email: Optional[str] = None,
    depth: int = 0,
    max_depth: int = MAX_DEPTH,
    prefetched: Optional[Set[str]] = None,
) -> bool:
    """
    True when ``file_id`` sits in (or is) a restricted folder the caller
    cannot open. A restricted folder opens with a matching allowed token
    (folder id unlocked by a folder token) or a per-user grant. Fails closed.

    ``prefetched`` is the restricted id set, passed down the recursion so it
    is loaded once per check.
    """
    if depth >= max_depth:
        logger.warning("Access check hit maximum depth", extra={"file_id": file_id})
        return True

    restricted = prefetched if prefetched is not None else restricted_ids()
    if not restricted:
        return False

    allowed = set(allowed_tokens)
    try:
        if _blocks(file_id, restricted, allowed, user_email):
            ACCESS_DENIED.labels(reason="restricted_folder").inc()
            return True

        file = drive_service.get_file(file_id)
        if not file or not file.get("parents"):
            return False

        for parent_id in file["parents"]:
            if _blocks(parent_id, restricted, allowed, user_email):
                ACCESS_DENIED.labels(reason="restricted_parent").inc()
                return True
            if parent_id == config.ROOT_FOLDER_ID:
                continue
            if is_access_restricted(drive_service, parent_id, allowed, user_email,
                                    depth + 1, max_depth, restricted):
                return True
        return False
    except Exception as e:
        logger.error(f"Access check failed for {file_id}, denying: {e}")
        return True

"""
Admin endpoints: roles, folder protection, per-user folder grants and the
access requests that feed them, user passwords, app configuration, manual
drives, caches and the dashboards fed by the activity log.
"""

import json
import logging
import math
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from sqlalchemy.orm import Session

import models
from auth.dependencies import get_current_user, require_admin
from auth.session import UserContext
from config import config
from database import get_db
from kv import (
    kv_store,
    invalidate_folder_cache,
    folder_access_key,
    user_password_key,
    ADMINS_KEY,
    EDITORS_KEY,
    MANUAL_DRIVES_KEY,
    USER_ACCESS_FOLDERS_KEY,
)
from routers.files import drive_http_error
from schemas.admin import (
    AccessRequestAction,
    AccessRequestCreate,
    CacheClearRequest,
    EmailRequest,
    FolderIdRequest,
    ManualDriveDeleteRequest,
    ManualDriveRequest,
    ProtectedFolderRequest,
    UserAccessRequest,
    UserPasswordRequest,
)
from services import access_request_service
from services.access_service import clear_restricted_cache, get_protected_folder, grant_user_access, hash_password
from services.activity_service import (
    ActivityType,
    clear_activity_logs,
    count_activity_logs,
    get_activity_logs,
    get_download_stats,
    log_activity,
)
from services.drive import get_drive_service
from services.rate_limit_service import enforce_rate_limit, get_rate_limit_stats
from utils.formatting import sanitize_string

router = APIRouter(tags=["admin"])

logger = logging.getLogger("zee_index.routers.admin")

APP_CONFIG_KEY = "app-config"
CACHE_FAMILIES = {
    "folderContent": "zee-index:folder-content-v3:*",
    "folderPath": "zee-index:folder-path-v7:*",
    "folderTree": "zee-index:folder-tree*",
    "fileDetails": "gdrive:*",
    "search": "search:*",
}


def admin_rate_limit(request: Request, response: Response):
    enforce_rate_limit(request, "admin", response)


admin_router = APIRouter(prefix="/admin", dependencies=[Depends(admin_rate_limit)])


# --- Activity log and dashboards ---

@admin_router.get("/activity-log")
def activity_log(
    page: int = Query(1),
    limit: int = Query(20),
    activity_type: Optional[str] = Query(None, alias="type"),
    user: UserContext = Depends(require_admin),
):
    if page < 1 or limit < 1 or limit > 100:
        raise HTTPException(status_code=400, detail="page must be >= 1 and limit between 1 and 100")

    total = count_activity_logs()
    logs = get_activity_logs(limit=limit, offset=(page - 1) * limit, activity_type=activity_type)
    return {
        "logs": logs,
        "totalPages": math.ceil(total / limit) if total else 0,
        "currentPage": page,
        "totalLogs": total,
    }


@admin_router.get("/stats")
def stats(user: UserContext = Depends(require_admin)):
    return get_download_stats()


@admin_router.get("/audit")
def audit_log(user: UserContext = Depends(require_admin)):
    return get_activity_logs(limit=100)


@admin_router.delete("/audit")
def clear_audit_log(user: UserContext = Depends(require_admin)):
    clear_activity_logs()
    logger.info("Activity log cleared", extra={"actor": user.email})
    return {"message": "Logs cleared"}


# --- Admins and editors ---

def _role_members(key: str) -> List[str]:
    return sorted(kv_store.client.smembers(key))


@admin_router.get("/users")
def list_admins(user: UserContext = Depends(require_admin)):
    return _role_members(ADMINS_KEY)


@admin_router.post("/users")
def add_admin(body: EmailRequest, user: UserContext = Depends(require_admin)):
    email = body.email.lower()
    kv_store.client.sadd(ADMINS_KEY, email)
    log_activity(ActivityType.ADMIN_ADDED, targetUser=email, userEmail=user.email)
    return {"message": "Admin added", "email": email}


@admin_router.delete("/users")
def remove_admin(body: EmailRequest, user: UserContext = Depends(require_admin)):
    email = body.email.lower()
    if email == user.email.lower():
        raise HTTPException(status_code=400, detail="You cannot remove yourself as admin")
    kv_store.client.srem(ADMINS_KEY, email)
    log_activity(ActivityType.ADMIN_REMOVED, targetUser=email, userEmail=user.email)
    return {"message": "Admin removed", "email": email}


@admin_router.get("/editors")
def list_editors(user: UserContext = Depends(require_admin)):
    return _role_members(EDITORS_KEY)


@admin_router.post("/editors")
def add_editor(body: EmailRequest, user: UserContext = Depends(require_admin)):
    email = body.email.lower()
    kv_store.client.sadd(EDITORS_KEY, email)
    return {"message": "Editor added", "email": email}


@admin_router.delete("/editors")
def remove_editor(body: EmailRequest, user: UserContext = Depends(require_admin)):
    email = body.email.lower()
    kv_store.client.srem(EDITORS_KEY, email)
    return {"message": "Editor removed", "email": email}


# --- App configuration ---

def load_app_config(db: Session) -> Dict[str, Any]:
    row = db.query(models.AdminConfig).filter(models.AdminConfig.key == APP_CONFIG_KEY).first()
    if not row or not row.value:
        return {}
    try:
        return json.loads(row.value)
    except ValueError:
        logger.error("Stored app config is not valid JSON")
        return {}


@router.get("/config/public")
def public_config(db: Session = Depends(get_db)):
    return load_app_config(db)


@admin_router.get("/config")
def get_app_config(user: UserContext = Depends(require_admin), db: Session = Depends(get_db)):
    return load_app_config(db)


@admin_router.post("/config")
def save_app_config(
    body: Dict[str, Any],
    user: UserContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    row = db.query(models.AdminConfig).filter(models.AdminConfig.key == APP_CONFIG_KEY).first()
    if row is None:
        row = models.AdminConfig(key=APP_CONFIG_KEY)
        db.add(row)
    row.value = json.dumps(body)
    db.commit()
    return {"success": True, "config": body}


# --- Protected folders ---

@admin_router.get("/protected-folders")
def list_protected_folders(user: UserContext = Depends(require_admin), db: Session = Depends(get_db)):
    folders = db.query(models.ProtectedFolder).order_by(models.ProtectedFolder.folder_id).all()
    return {
        folder.folder_id: {"id": folder.access_id, "password": "***"}
        for folder in folders
    }


@admin_router.post("/protected-folders")
def protect_folder(
    body: ProtectedFolderRequest,
    user: UserContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    folder_id = sanitize_string(body.folderId)
    if len(folder_id) < 5:
        raise HTTPException(status_code=400, detail="Invalid folder ID")
    access_id = sanitize_string(body.id) or "admin"

    folder = get_protected_folder(db, folder_id)
    if folder is None:
        folder = models.ProtectedFolder(folder_id=folder_id)
        db.add(folder)
    folder.access_id = access_id
    folder.password_hash = hash_password(body.password)
    db.commit()
    clear_restricted_cache()
    invalidate_folder_cache(folder_id)

    logger.info("Folder protection updated", extra={"folder_id": folder_id})
    return {"success": True, "message": f"Folder {folder_id} is now protected"}


@admin_router.delete("/protected-folders")
def unprotect_folder(
    body: FolderIdRequest,
    user: UserContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    folder = get_protected_folder(db, body.folderId)
    if folder is not None:
        db.delete(folder)
        db.commit()
    clear_restricted_cache()
    invalidate_folder_cache(body.folderId)
    return {"success": True, "message": f"Protection removed from {body.folderId}"}


# --- Per-user folder grants ---

@admin_router.get("/user-access")
def list_user_access(user: UserContext = Depends(require_admin)):
    permissions: Dict[str, List[str]] = {}
    for folder_id in sorted(kv_store.client.smembers(USER_ACCESS_FOLDERS_KEY)):
        emails = sorted(kv_store.client.smembers(folder_access_key(folder_id)))
        if emails:
            permissions[folder_id] = emails
    return permissions


@admin_router.post("/user-access")
def add_user_access(body: UserAccessRequest, user: UserContext = Depends(require_admin)):
    email = body.email.lower()
    grant_user_access(body.folderId, email)
    return {"success": True, "message": f"Access for {email} to folder {body.folderId} added"}


@admin_router.delete("/user-access")
def revoke_user_access(body: UserAccessRequest, user: UserContext = Depends(require_admin)):
    email = body.email.lower()
    kv_store.client.srem(folder_access_key(body.folderId), email)
    if kv_store.client.scard(folder_access_key(body.folderId)) == 0:
        kv_store.client.srem(USER_ACCESS_FOLDERS_KEY, body.folderId)
    return {"success": True, "message": f"Access for {email} to folder {body.folderId} removed"}


# --- Access requests ---

@router.post("/request-access")
def request_access(body: AccessRequestCreate, user: UserContext = Depends(get_current_user)):
    if user.role == "GUEST":
        raise HTTPException(status_code=403, detail="Access requests are for registered users only")
    access_request_service.create_access_request(
        user.email, user.name, body.folderId, sanitize_string(body.folderName) or body.folderId,
    )
    return {"success": True, "message": "Access request sent to the admins"}


@admin_router.get("/access-requests")
def list_access_requests(user: UserContext = Depends(require_admin)):
    return access_request_service.list_access_requests()


@admin_router.post("/access-requests")
def resolve_access_request(body: AccessRequestAction, user: UserContext = Depends(require_admin)):
    access_request_service.resolve_access_request(body.action, body.requestData.model_dump(), user.email)
    return {"success": True}


# --- Per-user passwords ---

def _require_email(email: Optional[str]) -> str:
    if not email:
        raise HTTPException(status_code=400, detail="Email parameter is required")
    return email.lower()


@admin_router.get("/user-password")
def user_password_status(email: Optional[str] = Query(None), user: UserContext = Depends(require_admin)):
    email = _require_email(email)
    return {"email": email, "hasPassword": kv_store.client.exists(user_password_key(email)) == 1}


@admin_router.post("/user-password")
def set_user_password(body: UserPasswordRequest, user: UserContext = Depends(require_admin)):
    email = body.email.lower()
    kv_store.client.set(user_password_key(email), hash_password(body.password))
    logger.info("User password set", extra={"target": email, "actor": user.email})
    return {"success": True, "message": f"Password for {email} has been set"}


@admin_router.delete("/user-password")
def delete_user_password(email: Optional[str] = Query(None), user: UserContext = Depends(require_admin)):
    email = _require_email(email)
    kv_store.client.delete(user_password_key(email))
    return {"success": True, "message": f"Password for {email} has been removed"}


# --- Manual drives ---

def _stored_manual_drives() -> List[Dict[str, str]]:
    return kv_store.get_json(MANUAL_DRIVES_KEY) or []


@admin_router.get("/manual-drives")
def list_manual_drives(user: UserContext = Depends(require_admin)):
    drives = {d["id"]: d for d in config.MANUAL_DRIVES}
    for drive in _stored_manual_drives():
        drives[drive["id"]] = drive
    return list(drives.values())


@admin_router.post("/manual-drives")
def add_manual_drive(body: ManualDriveRequest, user: UserContext = Depends(require_admin)):
    drives = [d for d in _stored_manual_drives() if d.get("id") != body.id]
    drives.append({"id": body.id, "name": sanitize_string(body.name) or body.id})
    kv_store.set_json(MANUAL_DRIVES_KEY, drives, ttl=0)
    kv_store.delete_pattern("zee-index:folder-path-v7:*")
    return {"success": True, "drives": drives}


@admin_router.delete("/manual-drives")
def remove_manual_drive(body: ManualDriveDeleteRequest, user: UserContext = Depends(require_admin)):
    drives = [d for d in _stored_manual_drives() if d.get("id") != body.id]
    kv_store.set_json(MANUAL_DRIVES_KEY, drives, ttl=0)
    kv_store.delete_pattern("zee-index:folder-path-v7:*")
    return {"success": True, "drives": drives}


@admin_router.get("/drives/scan")
def scan_drives(user: UserContext = Depends(require_admin), drive_service=Depends(get_drive_service)):
    """Shared drives and shared-with-me folders that could be added as manual drives."""
    try:
        shared_drives = drive_service.list_shared_drives()
        shared_folders = drive_service.list_shared_with_me_folders()
    except Exception as e:
        raise drive_http_error(e, "Scan drives")
    return {
        "drives": [{"id": d["id"], "name": d.get("name"), "kind": "drive"} for d in shared_drives]
        + [{"id": f["id"], "name": f.get("name"), "kind": "folder"} for f in shared_folders],
    }


# --- Caches ---

@admin_router.post("/cache/clear")
def clear_cache(body: CacheClearRequest, user: UserContext = Depends(require_admin)):
    if body.folderId:
        deleted = invalidate_folder_cache(body.folderId)
        return {"success": True, "message": f"Cache cleared for folder {body.folderId}", "deleted": deleted}

    deleted = 0
    for pattern in ("zee-index:folder-*", "gdrive:*", "search:*"):
        deleted += kv_store.delete_pattern(pattern)
    clear_restricted_cache()
    return {"success": True, "message": "All caches cleared", "deleted": deleted}


@admin_router.get("/cache-stats")
def cache_stats(user: UserContext = Depends(require_admin)):
    keys = {
        name: sum(1 for _ in kv_store.client.scan_iter(match=pattern, count=500))
        for name, pattern in CACHE_FAMILIES.items()
    }
    return {"rateLimits": get_rate_limit_stats(), "cacheKeys": keys}


router.include_router(admin_router)

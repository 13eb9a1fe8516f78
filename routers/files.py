import concurrent.futures
import logging
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from auth.dependencies import (
    get_current_user,
    get_current_user_optional,
    get_folder_token,
    get_share_access,
    require_admin,
    require_editor,
)
from auth.session import UserContext
from database import get_db
from kv import kv_store, invalidate_folder_cache, DATA_USAGE_KEY
from schemas.files import (
    BulkDeleteRequest,
    BulkMoveRequest,
    CopyFileRequest,
    CreateFolderRequest,
    DeleteFileRequest,
    MoveFileRequest,
    RenameFileRequest,
    UpdateContentRequest,
)
from services.access_service import (
    folder_ids_from_token,
    has_user_access,
    is_access_restricted,
    is_private_folder,
    is_protected,
    protected_ids,
    restricted_ids,
    verify_folder_token,
)
from services.activity_service import ActivityType, log_activity
from services.drive import DriveFileNotFound, DriveServiceError, get_drive_service
from services.google_auth import DriveNotConfiguredError, root_folder_id
from services.notification_service import send_webhook_notification
from utils.formatting import clean_folder_id, sanitize_string

router = APIRouter(tags=["files"])

logger = logging.getLogger("zee_index.routers.files")

BULK_WORKERS = 5
DATA_USAGE_TTL = 4 * 3600


def drive_http_error(e: Exception, action: str) -> HTTPException:
    """Map a Drive failure to the HTTP error the client sees."""
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, DriveFileNotFound):
        return HTTPException(status_code=404, detail="File not found")
    if isinstance(e, DriveNotConfiguredError):
        return HTTPException(status_code=503, detail=str(e))
    if isinstance(e, DriveServiceError):
        logger.error(f"{action} failed: {e}", exc_info=True)
        return HTTPException(status_code=e.status_code, detail=str(e))
    logger.error(f"{action} failed: {e}", exc_info=True)
    return HTTPException(status_code=500, detail={"message": f"{action} failed", "details": str(e)})


def run_bulk(ids: List[str], operation: Callable[[str], Any]) -> Dict[str, List[str]]:
    succeeded: List[str] = []
    failed: List[str] = []
    with concurrent.futures.ThreadPoolExecutor(max_workers=BULK_WORKERS) as pool:
        futs = {pool.submit(operation, file_id): file_id for file_id in ids}
        for fut in concurrent.futures.as_completed(futs):
            file_id = futs[fut]
            try:
                fut.result()
                succeeded.append(file_id)
            except Exception as e:
                logger.warning(f"Bulk operation failed for {file_id}: {e}")
                failed.append(file_id)
    return {"succeeded": succeeded, "failed": failed}


def bulk_response(result: Dict[str, List[str]], verb: str):
    total = len(result["succeeded"]) + len(result["failed"])
    if result["failed"]:
        return JSONResponse(status_code=207, content={
            "success": False,
            "message": f"{len(result['succeeded'])} of {total} files {verb}, {len(result['failed'])} failed.",
            **result,
        })
    return {"success": True, "message": f"{total} files {verb}.", **result}


# --- Browsing ---

@router.get("/files")
def list_files(
    folderId: Optional[str] = Query(None),
    pageToken: Optional[str] = Query(None),
    refresh: bool = Query(False),
    share: Optional[dict] = Depends(get_share_access),
    user: Optional[UserContext] = Depends(get_current_user_optional),
    folder_token: Optional[str] = Depends(get_folder_token),
    db: Session = Depends(get_db),
    drive_service=Depends(get_drive_service),
):
    folder_id = clean_folder_id(folderId or root_folder_id())
    if not folder_id or folder_id == "undefined":
        raise HTTPException(status_code=400, detail="Folder ID is required")

    is_admin = user is not None and user.is_admin
    email = user.email if user else None
    folder_protected = is_protected(db, folder_id)

    if user is None and share is None and is_private_folder(folder_id) and not folder_protected:
        raise HTTPException(status_code=401, detail={
            "message": "Authentication required", "protected": True, "folderId": folder_id,
        })

    if not is_admin and folder_protected and not has_user_access(email, folder_id):
        if not verify_folder_token(folder_token, folder_id):
            raise HTTPException(status_code=401, detail={
                "message": "Authentication required for this folder", "protected": True, "folderId": folder_id,
            })

    try:
        listing = drive_service.list_files(folder_id, page_token=pageToken, use_cache=not refresh)
    except Exception as e:
        raise drive_http_error(e, "List files")

    files = listing.get("files", [])
    if not is_admin:
        protected = protected_ids(db)
        visible = []
        for file in files:
            if is_private_folder(file["id"]) and not has_user_access(email, file["id"]):
                continue
            item = dict(file)
            item["isProtected"] = file["id"] in protected
            visible.append(item)
        files = visible

    return {"files": files, "nextPageToken": listing.get("nextPageToken")}


@router.get("/filedetails")
def file_details(
    fileId: str = Query(..., min_length=1),
    share: Optional[dict] = Depends(get_share_access),
    user: Optional[UserContext] = Depends(get_current_user_optional),
    folder_token: Optional[str] = Depends(get_folder_token),
    drive_service=Depends(get_drive_service),
):
    try:
        file = drive_service.get_file(fileId)
    except Exception as e:
        raise drive_http_error(e, "Get file details")
    if file is None:
        raise HTTPException(status_code=404, detail="File not found")

    if not (user and user.is_admin):
        allowed = folder_ids_from_token(folder_token)
        if is_access_restricted(drive_service, fileId, allowed, user.email if user else None):
            raise HTTPException(status_code=403, detail="Access denied")
    return file


@router.get("/folderpath")
def folder_path(
    folderId: Optional[str] = Query(None),
    locale: str = Query("en"),
    share: Optional[dict] = Depends(get_share_access),
    user: Optional[UserContext] = Depends(get_current_user_optional),
    drive_service=Depends(get_drive_service),
):
    folder_id = clean_folder_id(folderId)
    if not folder_id:
        raise HTTPException(status_code=400, detail="Folder ID is required")
    if user is None and share is None and is_private_folder(folder_id):
        raise HTTPException(status_code=401, detail={
            "message": "Authentication required", "protected": True, "folderId": folder_id,
        })
    try:
        return drive_service.get_folder_path(folder_id, locale)
    except Exception as e:
        raise drive_http_error(e, "Get folder path")


@router.get("/storage-details")
def storage_details(
    user: UserContext = Depends(get_current_user),
    drive_service=Depends(get_drive_service),
):
    try:
        details = drive_service.get_storage_details()
    except Exception as e:
        raise drive_http_error(e, "Get storage details")

    if not user.is_admin and restricted_ids():
        details = dict(details)
        details["largestFiles"] = [
            f for f in details.get("largestFiles", [])
            if not is_access_restricted(drive_service, f["id"], user_email=user.email)
        ]
    return details


@router.get("/datausage")
def data_usage(drive_service=Depends(get_drive_service)):
    """Total bytes used by the Drive owner, cached for a few hours."""
    cached = kv_store.get_json(DATA_USAGE_KEY)
    if cached is not None:
        return cached
    try:
        details = drive_service.get_storage_details()
    except Exception as e:
        raise drive_http_error(e, "Calculate data usage")
    payload = {"totalUsage": int(details.get("usage") or 0)}
    kv_store.set_json(DATA_USAGE_KEY, payload, ttl=DATA_USAGE_TTL)
    return payload


# --- Mutations ---

@router.post("/files/delete")
def delete_file(
    body: DeleteFileRequest,
    user: UserContext = Depends(require_admin),
    drive_service=Depends(get_drive_service),
):
    try:
        file = drive_service.get_file(body.fileId, use_cache=False)
        if file is None:
            raise HTTPException(status_code=404, detail="File not found")
        parents = file.get("parents") or []
        if not parents:
            raise HTTPException(status_code=500, detail="File has no parent folder")
        drive_service.delete_file(body.fileId)
    except Exception as e:
        log_activity(ActivityType.DELETE, itemName=body.fileId, userEmail=user.email,
                     status="failure", error=str(e))
        raise drive_http_error(e, "Delete file")

    invalidate_folder_cache(parents[0])
    invalidate_folder_cache(body.fileId)
    log_activity(ActivityType.DELETE, itemName=file.get("name"), userEmail=user.email)
    return {"success": True}


@router.post("/files/bulk-delete")
def bulk_delete(
    body: BulkDeleteRequest,
    user: UserContext = Depends(require_admin),
    drive_service=Depends(get_drive_service),
):
    result = run_bulk(body.fileIds, drive_service.delete_file)
    if result["succeeded"]:
        invalidate_folder_cache(body.parentId)
        for file_id in result["succeeded"]:
            invalidate_folder_cache(file_id)
    log_activity(ActivityType.DELETE, itemName=f"{len(result['succeeded'])} files", userEmail=user.email,
                 status="failure" if result["failed"] else "success")
    return bulk_response(result, "deleted")


@router.post("/files/move")
def move_file(
    body: MoveFileRequest,
    user: UserContext = Depends(require_editor),
    drive_service=Depends(get_drive_service),
):
    if body.currentParentId == body.newParentId:
        return {"success": True, "message": "File is already in that folder"}
    try:
        moved = drive_service.move_file(body.fileId, body.currentParentId, body.newParentId)
    except Exception as e:
        raise drive_http_error(e, "Move file")

    invalidate_folder_cache(body.currentParentId)
    invalidate_folder_cache(body.newParentId)
    invalidate_folder_cache(body.fileId)
    log_activity(ActivityType.MOVE, itemName=moved.get("name"), userEmail=user.email,
                 destinationFolder=body.newParentId)
    return {"success": True, "file": moved}


@router.post("/files/bulk-move")
def bulk_move(
    body: BulkMoveRequest,
    user: UserContext = Depends(require_editor),
    drive_service=Depends(get_drive_service),
):
    result = run_bulk(
        body.fileIds,
        lambda file_id: drive_service.move_file(file_id, body.currentParentId, body.newParentId),
    )
    invalidate_folder_cache(body.currentParentId)
    invalidate_folder_cache(body.newParentId)
    for file_id in result["succeeded"]:
        invalidate_folder_cache(file_id)
    log_activity(ActivityType.MOVE, itemName=f"{len(result['succeeded'])} files", userEmail=user.email,
                 destinationFolder=body.newParentId,
                 status="failure" if result["failed"] else "success")
    return bulk_response(result, "moved")


@router.post("/files/rename")
def rename_file(
    body: RenameFileRequest,
    user: UserContext = Depends(require_admin),
    drive_service=Depends(get_drive_service),
):
    new_name = sanitize_string(body.newName)
    if not new_name:
        raise HTTPException(status_code=400, detail="New name cannot be empty")
    try:
        old = drive_service.get_file(body.fileId, use_cache=False)
        if old is None:
            raise HTTPException(status_code=404, detail="File not found")
        renamed = drive_service.rename_file(body.fileId, new_name)
    except Exception as e:
        raise drive_http_error(e, "Rename file")

    for parent_id in old.get("parents") or []:
        invalidate_folder_cache(parent_id)
    invalidate_folder_cache(body.fileId)
    log_activity(ActivityType.RENAME, itemName=f"{old.get('name')} -> {new_name}", userEmail=user.email)
    return {"success": True, "file": renamed}


@router.post("/files/copy")
def copy_file(
    body: CopyFileRequest,
    user: UserContext = Depends(require_editor),
    drive_service=Depends(get_drive_service),
):
    new_name = sanitize_string(body.newName) if body.newName else None
    try:
        copied = drive_service.copy_file(body.fileId, body.destinationId, new_name or None)
    except Exception as e:
        raise drive_http_error(e, "Copy file")

    invalidate_folder_cache(body.destinationId)
    log_activity(ActivityType.COPY, itemName=copied.get("name"), userEmail=user.email,
                 destinationFolder=body.destinationId)
    send_webhook_notification("File Copied", {
        "file": copied.get("name"), "destination": body.destinationId, "by": user.email,
    })
    return {"success": True, "file": copied}


@router.post("/files/update")
def update_file_content(
    body: UpdateContentRequest,
    user: UserContext = Depends(require_admin),
    drive_service=Depends(get_drive_service),
):
    try:
        file = drive_service.get_file(body.fileId, use_cache=False)
        if file is None:
            raise HTTPException(status_code=404, detail="File not found")
        updated = drive_service.update_content(
            body.fileId, body.newContent.encode("utf-8"), file.get("mimeType") or "text/plain"
        )
    except Exception as e:
        raise drive_http_error(e, "Update file")

    invalidate_folder_cache(body.fileId)
    for parent_id in file.get("parents") or []:
        invalidate_folder_cache(parent_id)
    return {"success": True, "file": updated}


@router.post("/files/upload", status_code=201)
async def upload_file(
    file: UploadFile = File(...),
    parentId: Optional[str] = Form(None),
    user: UserContext = Depends(require_admin),
    drive_service=Depends(get_drive_service),
):
    parent_id = parentId or root_folder_id()
    if not parent_id:
        raise HTTPException(status_code=400, detail="parentId is required")

    content = await file.read()
    try:
        uploaded = drive_service.upload_file(
            content, file.filename, file.content_type or "application/octet-stream", parent_id
        )
    except Exception as e:
        log_activity(ActivityType.UPLOAD, itemName=file.filename, userEmail=user.email,
                     status="failure", error=str(e))
        raise drive_http_error(e, "Upload file")

    invalidate_folder_cache(parent_id)
    log_activity(ActivityType.UPLOAD, itemName=file.filename, itemSize=len(content), userEmail=user.email)
    return uploaded


@router.post("/folder/create", status_code=201)
def create_folder(
    body: CreateFolderRequest,
    user: UserContext = Depends(require_editor),
    drive_service=Depends(get_drive_service),
):
    name = sanitize_string(body.name)
    if not name:
        raise HTTPException(status_code=400, detail="Folder name cannot be empty")
    try:
        folder = drive_service.create_folder(name, body.parentId)
    except Exception as e:
        raise drive_http_error(e, "Create folder")
    invalidate_folder_cache(body.parentId)
    return folder


@router.get("/files/{fileId}/revisions")
def list_revisions(
    fileId: str,
    user: UserContext = Depends(require_admin),
    drive_service=Depends(get_drive_service),
):
    try:
        return {"revisions": drive_service.list_revisions(fileId)}
    except Exception as e:
        raise drive_http_error(e, "List revisions")

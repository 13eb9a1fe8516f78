import logging

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile

from auth.dependencies import require_admin
from auth.session import UserContext
from config import config
from kv import invalidate_folder_cache
from routers.files import drive_http_error
from schemas.admin import FileRequestCreate, FileRequestDelete
from services import file_request_service
from services.activity_service import ActivityType, log_activity
from services.drive import get_drive_service
from services.rate_limit_service import rate_limit

router = APIRouter(prefix="/file-request", tags=["file-requests"])

logger = logging.getLogger("zee_index.routers.file_requests")


@router.post("", status_code=201)
def create_file_request(
    body: FileRequestCreate,
    request: Request,
    user: UserContext = Depends(require_admin),
):
    created = file_request_service.create_file_request(
        folder_id=body.folderId,
        folder_name=body.folderName,
        title=body.title,
        expires_in_hours=body.expiresIn,
        created_by=user.email,
    )
    origin = request.headers.get("origin") or config.APP_BASE_URL
    return {
        "success": True,
        "token": created["token"],
        "publicUrl": f"{origin.rstrip('/')}/request/{created['token']}",
    }


@router.get("")
def list_file_requests(user: UserContext = Depends(require_admin)):
    return file_request_service.list_active_requests()


@router.delete("")
def delete_file_request(body: FileRequestDelete, user: UserContext = Depends(require_admin)):
    file_request_service.delete_file_request(body.token)
    return {"success": True}


@router.get("/{token}")
def get_file_request(token: str):
    try:
        item = file_request_service.get_file_request(token)
    except file_request_service.FileRequestNotFound:
        raise HTTPException(status_code=404, detail="Not found")
    except file_request_service.FileRequestExpired:
        raise HTTPException(status_code=410, detail="Expired")
    return {
        "title": item["title"],
        "folderName": item["folderName"],
        "expiresAt": item["expiresAt"],
        "folderId": item["folderId"],
    }


@router.post("/{token}/upload", status_code=201)
async def upload_to_request(
    token: str,
    file: UploadFile = File(...),
    _limit=Depends(rate_limit("general")),
    drive_service=Depends(get_drive_service),
):
    item = file_request_service.active_request_or_none(token)
    if item is None:
        raise HTTPException(status_code=403, detail="Invalid or expired upload link")

    content = await file.read()
    try:
        uploaded = drive_service.upload_file(
            content, file.filename, file.content_type or "application/octet-stream", item["folderId"]
        )
    except Exception as e:
        raise drive_http_error(e, "Upload to file request")

    invalidate_folder_cache(item["folderId"])
    log_activity(ActivityType.UPLOAD, itemName=file.filename, itemSize=len(content),
                 userEmail=file_request_service.PUBLIC_UPLOADER, destinationFolder=item["folderName"])
    return {"success": True, "file": uploaded}

from fastapi import APIRouter, Depends, HTTPException, Query

from auth.dependencies import get_current_user, require_admin
from auth.session import UserContext
from routers.files import drive_http_error
from schemas.admin import FileIdRequest, FolderIdRequest, TagRequest
from services import bookmarks_service
from services.drive import get_drive_service
from utils.formatting import sanitize_string

router = APIRouter(tags=["bookmarks"])


# --- Favorites ---

@router.get("/favorites")
def list_favorites(
    user: UserContext = Depends(get_current_user),
    drive_service=Depends(get_drive_service),
):
    try:
        return bookmarks_service.list_favorites(drive_service, user.email, is_admin=user.is_admin)
    except Exception as e:
        raise drive_http_error(e, "List favorites")


@router.post("/favorites/add")
def add_favorite(body: FileIdRequest, user: UserContext = Depends(get_current_user)):
    bookmarks_service.add_favorite(user.email, body.fileId)
    return {"success": True}


@router.post("/favorites/remove")
def remove_favorite(body: FileIdRequest, user: UserContext = Depends(get_current_user)):
    bookmarks_service.remove_favorite(user.email, body.fileId)
    return {"success": True}


# --- Tags ---

@router.get("/tags")
def get_tags(fileId: str = Query(None)):
    if not fileId:
        raise HTTPException(status_code=400, detail="fileId is required")
    return {"tags": bookmarks_service.get_tags(fileId)}


@router.post("/tags")
def update_tags(body: TagRequest, user: UserContext = Depends(get_current_user)):
    tag = sanitize_string(body.tag)
    if not body.fileId or not tag:
        raise HTTPException(status_code=400, detail="fileId and tag are required")
    return {"success": True, "tags": bookmarks_service.update_tag(body.fileId, tag, body.action)}


# --- Pinned folders ---

@router.get("/pinned")
def list_pinned(drive_service=Depends(get_drive_service)):
    try:
        return bookmarks_service.list_pinned_folders(drive_service)
    except Exception as e:
        raise drive_http_error(e, "List pinned folders")


@router.post("/pinned")
def pin_folder(body: FolderIdRequest, user: UserContext = Depends(require_admin)):
    bookmarks_service.pin_folder(body.folderId)
    return {"success": True, "message": "Folder pinned"}


@router.delete("/pinned")
def unpin_folder(body: FolderIdRequest, user: UserContext = Depends(require_admin)):
    bookmarks_service.unpin_folder(body.folderId)
    return {"success": True, "message": "Folder unpinned"}

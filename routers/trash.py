import logging

from fastapi import APIRouter, Depends, HTTPException

from auth.dependencies import require_admin
from auth.session import UserContext
from kv import invalidate_folder_cache
from routers.files import bulk_response, run_bulk, drive_http_error
from schemas.files import TrashRequest
from services.drive import get_drive_service

router = APIRouter(prefix="/trash", tags=["trash"])

logger = logging.getLogger("zee_index.routers.trash")


@router.get("")
def list_trash(
    user: UserContext = Depends(require_admin),
    drive_service=Depends(get_drive_service),
):
    try:
        return {"files": drive_service.list_trashed()}
    except Exception as e:
        raise drive_http_error(e, "List trash")


def _invalidate_parents(drive_service, file_ids):
    for file_id in file_ids:
        invalidate_folder_cache(file_id)
        try:
            file = drive_service.get_file(file_id, use_cache=False)
        except Exception as e:
            logger.warning(f"Could not look up parents of restored file {file_id}: {e}")
            continue
        for parent_id in (file or {}).get("parents") or []:
            invalidate_folder_cache(parent_id)


@router.post("")
def restore_from_trash(
    body: TrashRequest,
    user: UserContext = Depends(require_admin),
    drive_service=Depends(get_drive_service),
):
    ids = body.ids()
    if not ids:
        raise HTTPException(status_code=400, detail="fileId or fileIds is required")
    result = run_bulk(ids, drive_service.restore_file)
    _invalidate_parents(drive_service, result["succeeded"])
    return bulk_response(result, "restored")


@router.delete("")
def delete_forever(
    body: TrashRequest,
    user: UserContext = Depends(require_admin),
    drive_service=Depends(get_drive_service),
):
    ids = body.ids()
    if not ids:
        raise HTTPException(status_code=400, detail="fileId or fileIds is required")
    result = run_bulk(ids, drive_service.delete_forever)
    for file_id in result["succeeded"]:
        invalidate_folder_cache(file_id)
    return bulk_response(result, "permanently deleted")

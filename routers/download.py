import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from auth.dependencies import get_current_user_optional, get_folder_token, get_share_access
from auth.session import UserContext
from routers.files import drive_http_error
from services.access_service import folder_ids_from_token, is_access_restricted
from services.activity_service import ActivityType, log_activity
from services.analytics_service import track_bandwidth
from services.drive import export_format, get_drive_service, is_folder, is_workspace_file
from services.rate_limit_service import rate_limit
from utils.formatting import is_valid_file_id

router = APIRouter(tags=["download"])

logger = logging.getLogger("zee_index.routers.download")


def content_disposition(filename: str, inline: bool = False) -> str:
    encoded = quote(filename, safe="")
    disposition = "inline" if inline else "attachment"
    return f"{disposition}; filename=\"{encoded}\"; filename*=UTF-8''{encoded}"


@router.api_route("/download", methods=["GET", "HEAD"])
def download(
    request: Request,
    fileId: Optional[str] = Query(None),
    access_token: Optional[str] = Query(None),
    _limit=Depends(rate_limit("download")),
    share: Optional[dict] = Depends(get_share_access),
    user: Optional[UserContext] = Depends(get_current_user_optional),
    folder_token: Optional[str] = Depends(get_folder_token),
    drive_service=Depends(get_drive_service),
):
    """
    Stream a file from Drive. Workspace documents are exported to an Office
    format (or PDF); binary files honour the client's Range header.
    """
    if not fileId:
        raise HTTPException(status_code=400, detail="fileId is required")
    if not is_valid_file_id(fileId):
        raise HTTPException(status_code=400, detail="Invalid fileId format")

    if not (user and user.is_admin):
        email = user.email if user else None
        if is_access_restricted(drive_service, fileId, (), email):
            allowed = folder_ids_from_token(folder_token or access_token)
            if not allowed or is_access_restricted(drive_service, fileId, allowed, email):
                raise HTTPException(status_code=403, detail="Access denied: file is protected")

    try:
        file = drive_service.get_file(fileId)
    except Exception as e:
        raise drive_http_error(e, "Download")
    if file is None:
        raise HTTPException(status_code=404, detail="File not found")
    if is_folder(file):
        raise HTTPException(status_code=400, detail="Folders cannot be downloaded directly")

    filename = file.get("name") or fileId
    range_header = request.headers.get("range")
    export_mime = None
    if is_workspace_file(file.get("mimeType")):
        export_mime, extension = export_format(file["mimeType"])
        if not filename.endswith(extension):
            filename += extension
        range_header = None

    try:
        media = drive_service.open_media(fileId, range_header=range_header, export_mime=export_mime)
    except Exception as e:
        raise drive_http_error(e, "Download")

    direct_download = not range_header and not request.headers.get("sec-fetch-dest")
    headers = dict(media.headers)
    headers["Content-Disposition"] = content_disposition(filename, inline=not direct_download)
    headers["Cache-Control"] = "private, no-transform, max-age=3600"
    headers["X-Accel-Buffering"] = "no"
    headers.setdefault("Accept-Ranges", "bytes")
    media_type = export_mime or media.content_type

    if request.method == "HEAD":
        if media.close:
            media.close()
        return Response(status_code=media.status_code, headers=headers, media_type=media_type)

    if not range_header:
        log_activity(ActivityType.DOWNLOAD, itemName=file.get("name"), itemSize=file.get("size") or "0",
                     userEmail=user.email if user else None)
    size = headers.get("Content-Length")
    if size and size.isdigit():
        track_bandwidth(int(size))

    return StreamingResponse(
        media.chunks,
        status_code=media.status_code,
        headers=headers,
        media_type=media_type,
        background=BackgroundTask(media.close) if media.close else None,
    )

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from auth.dependencies import get_current_user_optional, get_folder_token, get_share_access
from auth.session import UserContext
from database import get_db
from kv import kv_store
from routers.files import drive_http_error
from services.access_service import folder_ids_from_token, is_access_restricted, protected_ids, restricted_ids
from services.drive import get_drive_service
from utils.formatting import is_valid_file_id, sanitize_string

router = APIRouter(tags=["search"])

logger = logging.getLogger("zee_index.routers.search")

SEARCH_CACHE_TTL = 3600
MODIFIED_WINDOWS = {"today": None, "week": timedelta(days=7), "month": timedelta(days=30)}


def modified_after(window: Optional[str], now: Optional[datetime] = None) -> Optional[str]:
    """RFC 3339 lower bound for the ``modifiedTime`` filter."""
    if window not in MODIFIED_WINDOWS:
        return None
    now = now or datetime.now(timezone.utc)
    if window == "today":
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    else:
        start = now - MODIFIED_WINDOWS[window]
    return start.strftime("%Y-%m-%dT%H:%M:%S")


@router.get("/search")
def search(
    q: Optional[str] = Query(None),
    folderId: Optional[str] = Query(None),
    searchType: Literal["name", "fullText"] = Query("name"),
    mimeType: Optional[Literal["image", "video", "audio", "pdf", "folder"]] = Query(None),
    modifiedTime: Optional[Literal["today", "week", "month"]] = Query(None),
    minSize: Optional[float] = Query(None, ge=0, description="Minimum size in MB"),
    share: Optional[dict] = Depends(get_share_access),
    user: Optional[UserContext] = Depends(get_current_user_optional),
    folder_token: Optional[str] = Depends(get_folder_token),
    db: Session = Depends(get_db),
    drive_service=Depends(get_drive_service),
):
    term = sanitize_string(q)
    if not term and not mimeType and not modifiedTime and minSize is None:
        raise HTTPException(status_code=400, detail="At least one search criterion is required")
    if folderId and not is_valid_file_id(folderId):
        raise HTTPException(status_code=400, detail="Invalid folder ID")

    is_admin = user is not None and user.is_admin
    cache_key = "search:" + json.dumps({
        "q": term, "folderId": folderId, "searchType": searchType, "mimeType": mimeType,
        "modifiedTime": modifiedTime, "minSize": minSize, "isAdmin": is_admin,
    }, sort_keys=True)

    files = kv_store.get_json(cache_key)
    if files is None:
        try:
            files = drive_service.search_files(
                term=term or None,
                folder_id=folderId,
                search_type=searchType,
                mime_type=mimeType,
                modified_after=modified_after(modifiedTime),
            )
        except Exception as e:
            raise drive_http_error(e, "Search")
        if minSize is not None:
            min_bytes = int(minSize * 1024 * 1024)
            files = [f for f in files if int(f.get("size") or 0) >= min_bytes]
        kv_store.set_json(cache_key, files, ttl=SEARCH_CACHE_TTL)

    if is_admin:
        return {"files": [dict(f, isProtected=False) for f in files]}

    protected = protected_ids(db)
    results = []
    if restricted_ids():
        allowed = folder_ids_from_token(folder_token)
        email = user.email if user else None
        files = [f for f in files if not is_access_restricted(drive_service, f["id"], allowed, email)]
    for f in files:
        results.append(dict(f, isProtected=f["id"] in protected))
    return {"files": results}

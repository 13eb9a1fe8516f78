from fastapi import APIRouter, Depends, Request

from auth.dependencies import require_admin
from auth.session import UserContext
from schemas.admin import TrackPageViewRequest
from services.analytics_service import get_analytics_data, track_page_view
from services.rate_limit_service import client_ip, rate_limit
from utils.formatting import sanitize_string

router = APIRouter(tags=["analytics"])


@router.post("/analytics/track")
def track(
    body: TrackPageViewRequest,
    request: Request,
    _limit=Depends(rate_limit("general")),
):
    track_page_view(
        path=sanitize_string(body.path)[:500] or "/",
        ip=client_ip(request),
        user_agent=request.headers.get("user-agent", ""),
        referrer=body.referrer,
    )
    return {"success": True}


@router.get("/admin/analytics")
def analytics(user: UserContext = Depends(require_admin)):
    return get_analytics_data()

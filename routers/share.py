from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from sqlalchemy.orm import Session

from auth.dependencies import get_current_user_optional, require_admin
from auth.session import UserContext
from auth.tokens import TokenConfigError
from config import config
from database import get_db
from schemas.share import CreateShareRequest, DeleteShareRequest, RevokeShareRequest, ShareTokenRequest
from services import share_service

router = APIRouter(prefix="/share", tags=["share"])


def _origin(request: Request) -> str:
    return request.headers.get("origin") or config.APP_BASE_URL


@router.post("", status_code=201)
def create_share(
    body: CreateShareRequest,
    request: Request,
    user: UserContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    if not body.itemName or not body.expiresIn or (not body.items and not body.path):
        raise HTTPException(status_code=400, detail="Missing required parameters")
    try:
        return share_service.create_share_link(
            db,
            actor=user,
            origin=_origin(request),
            item_name=body.itemName,
            expires_in=body.expiresIn,
            path=body.path,
            login_required=body.loginRequired,
            items=body.items,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except TokenConfigError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/list")
def list_shares(
    user: UserContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return share_service.list_share_links(db)


@router.post("/revoke")
def revoke_share(
    body: RevokeShareRequest,
    user: UserContext = Depends(require_admin),
):
    blocked = share_service.revoke_share_link(body.jti, body.expiresAt)
    message = "Share link revoked" if blocked else "Share link had already expired"
    return {"success": True, "message": message}


@router.post("/delete")
def delete_share(
    body: DeleteShareRequest,
    user: UserContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    share_service.delete_share_link(db, user, body.id, body.jti, body.expiresAt)
    return {"success": True}


@router.post("/status")
def share_status(body: ShareTokenRequest):
    if not body.shareToken:
        raise HTTPException(status_code=400, detail="shareToken is required")
    return {"valid": share_service.share_token_status(body.shareToken)}


@router.post("/track", status_code=204)
def track_share(body: ShareTokenRequest, db: Session = Depends(get_db)):
    if body.shareToken:
        share_service.track_share_view(db, body.shareToken)
    return Response(status_code=204)


@router.get("/items/{shareId}")
def collection_items(
    shareId: str,
    share_token: Optional[str] = Query(None),
    user: Optional[UserContext] = Depends(get_current_user_optional),
    db: Session = Depends(get_db),
):
    try:
        return share_service.get_collection_items(db, shareId, share_token, user)
    except share_service.ShareTokenError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

"""
Share links.

A share link is a signed JWT carried in the ``share_token`` query parameter.
Revocation blocklists the token's jti in KV until the token would have
expired anyway. Collection shares keep their item list in KV next to the
token.
"""

import html
import json
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import jwt
from sqlalchemy.orm import Session

import models
from auth.session import UserContext
from auth.tokens import TokenConfigError, create_share_token, decode_share_token, parse_expires_in
from kv import kv_store, blocked_jti_key, share_items_key
from services.activity_service import ActivityType, log_activity
from services.notification_service import notify_admins
from utils.prometheus import ACCESS_DENIED
from utils.structured_logging import security_logger

logger = logging.getLogger("zee_index.share")

COLLECTION_GRACE_SECONDS = 3600
DEFAULT_COLLECTION_NAME = "Shared Collection"


class ShareTokenError(Exception):
    """A share token failed validation; ``status_code`` is the HTTP status to answer with."""

    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message)
        self.status_code = status_code


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def is_blocked(jti: str) -> bool:
    return kv_store.client.exists(blocked_jti_key(jti)) > 0


def validate_share_token(token: str, user: Optional[UserContext] = None) -> Dict[str, Any]:
    """
    Decode and check a share token: signature, expiry, jti, blocklist and the
    login requirement.

    Returns:
        The token payload

    Raises:
        ShareTokenError: 401 for bad/expired tokens or a missing login, 403 for revoked links.
    """
    try:
        payload = decode_share_token(token)
    except jwt.ExpiredSignatureError:
        ACCESS_DENIED.labels(reason="share_token_expired").inc()
        raise ShareTokenError("Share link has expired", 401)
    except (jwt.InvalidTokenError, TokenConfigError) as e:
        ACCESS_DENIED.labels(reason="share_token_invalid").inc()
        security_logger.warning(action="share_token", message="Rejected share token", reason=str(e))
        raise ShareTokenError("Invalid share token", 401)

    jti = payload.get("jti")
    if not isinstance(jti, str) or not jti:
        raise ShareTokenError("Invalid share token", 401)
    if is_blocked(jti):
        ACCESS_DENIED.labels(reason="share_token_revoked").inc()
        raise ShareTokenError("Share link has been revoked", 403)
    if payload.get("loginRequired") and user is None:
        raise ShareTokenError("Login required to open this link", 401)
    return payload


def create_share_link(
    db: Session,
    actor: UserContext,
    origin: str,
    item_name: str,
    expires_in: str,
    path: Optional[str] = None,
    login_required: bool = False,
    items: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """
    Raises:
        ValueError: invalid ``expiresIn`` or a missing path for a single-item share.
    """
    is_collection = bool(items)
    if not is_collection and not path:
        raise ValueError("Missing required parameters")
    lifetime = parse_expires_in(expires_in)

    issued = create_share_token(lifetime, login_required)
    jti, token, expires_at = issued["jti"], issued["token"], issued["expires_at"]
    share_path = f"/share/{jti}" if is_collection else path

    if is_collection:
        remaining = (expires_at - datetime.now(timezone.utc)).total_seconds()
        kv_store.client.set(
            share_items_key(jti),
            json.dumps(items),
            ex=math.ceil(remaining) + COLLECTION_GRACE_SECONDS,
        )

    link = models.ShareLink(
        id=jti,
        path=share_path,
        token=token,
        jti=jti,
        expires_at=expires_at,
        login_required=bool(login_required),
        item_name=item_name,
        is_collection=is_collection,
        views=0,
    )
    db.add(link)
    db.commit()
    db.refresh(link)

    log_activity(ActivityType.SHARE_LINK_CREATED, itemName=item_name, userEmail=actor.email)

    kind = "collection" if is_collection else "share"
    notify_admins(
        f"[Zee Index] New {kind} link created",
        f"<p>Hello Admin,</p>"
        f"<p>A new {kind} link was created by <b>{html.escape(actor.email)}</b>.</p>"
        f"<ul><li><b>Item:</b> {html.escape(item_name)}</li>"
        f"<li><b>Path:</b> {html.escape(share_path)}</li>"
        f"<li><b>Expires at:</b> {expires_at.isoformat()}</li>"
        f"<li><b>Login required:</b> {'Yes' if login_required else 'No'}</li></ul>",
    )

    return {
        "shareableUrl": f"{origin.rstrip('/')}{share_path}?share_token={token}",
        "token": token,
        "jti": jti,
        "newShareLink": link.to_dict(),
    }


def list_share_links(db: Session) -> List[Dict[str, Any]]:
    links = db.query(models.ShareLink).order_by(
        models.ShareLink.created_at.desc(), models.ShareLink.id.desc()
    ).all()
    return [link.to_dict() for link in links]


def revoke_share_link(jti: str, expires_at: datetime) -> bool:
    """
    Blocklist ``jti`` for the rest of its validity.
    Returns False when the link had already expired (nothing to block).
    """
    remaining = math.ceil((_as_utc(expires_at) - datetime.now(timezone.utc)).total_seconds())
    if remaining <= 0:
        return False
    kv_store.client.set(blocked_jti_key(jti), "1", ex=remaining)
    return True


def delete_share_link(db: Session, actor: UserContext, link_id: str, jti: str, expires_at: datetime) -> None:
    revoke_share_link(jti, expires_at)
    link = db.query(models.ShareLink).filter(models.ShareLink.id == link_id).first()
    item_name = link.item_name if link else None
    if link:
        db.delete(link)
        db.commit()
    kv_store.delete_key(share_items_key(jti))
    log_activity(ActivityType.SHARE_LINK_DELETED, itemName=item_name, userEmail=actor.email)


def share_token_status(token: str) -> bool:
    try:
        payload = decode_share_token(token)
    except (jwt.InvalidTokenError, TokenConfigError):
        return False
    jti = payload.get("jti")
    if not jti or not isinstance(jti, str):
        return False
    return not is_blocked(jti)


def track_share_view(db: Session, token: str) -> None:
    """Best-effort view counter; unknown or broken tokens are ignored."""
    try:
        payload = decode_share_token(token)
    except (jwt.InvalidTokenError, TokenConfigError):
        return
    jti = payload.get("jti")
    if not jti:
        return
    try:
        link = db.query(models.ShareLink).filter(models.ShareLink.jti == jti).first()
        if link:
            link.views = (link.views or 0) + 1
            db.commit()
    except Exception as e:
        db.rollback()
        logger.warning(f"Could not record share view: {e}")


def get_collection_items(db: Session, share_id: str, token: Optional[str],
                         user: Optional[UserContext]) -> Dict[str, Any]:
    """
    Raises:
        ShareTokenError: 401 missing/invalid token or login needed, 403 mismatched
            or revoked token, 404 expired collection.
    """
    if not token:
        raise ShareTokenError("Share token not provided", 401)
    try:
        payload = decode_share_token(token)
    except (jwt.InvalidTokenError, TokenConfigError):
        raise ShareTokenError("Invalid or expired share token", 401)

    if payload.get("jti") != share_id:
        raise ShareTokenError("Token does not match this collection", 403)
    if is_blocked(share_id):
        raise ShareTokenError("Share link has been revoked", 403)
    if payload.get("loginRequired") and user is None:
        raise ShareTokenError("Login required to open this link", 401)

    items = kv_store.get_json(share_items_key(share_id))
    if not items:
        raise ShareTokenError("Collection not found or expired", 404)

    link = db.query(models.ShareLink).filter(models.ShareLink.jti == share_id).first()
    return {
        "items": items,
        "collectionName": (link.item_name if link else None) or DEFAULT_COLLECTION_NAME,
    }

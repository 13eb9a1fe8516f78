"""
Sign-in: Google OAuth login, session cookie, folder passwords and 2FA.
"""

import logging
import secrets
from typing import Optional
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from auth.dependencies import get_current_user, get_current_user_optional, get_session_user
from auth.session import UserContext, create_session_token
from auth.tokens import create_folder_token
from config import config
from database import get_db
from kv import kv_store, ADMINS_KEY, EDITORS_KEY
from schemas.auth import FolderAuthRequest, TwoFactorCodeRequest
from services import two_factor_service
from services.access_service import get_protected_folder, verify_folder_credentials
from services.activity_service import ActivityType, log_activity
from services.rate_limit_service import enforce_rate_limit
from utils.structured_logging import StructuredLogger

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger("zee_index.routers.auth")
auth_logger = StructuredLogger(service="auth", logger_name="zee_index.auth.events")

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
OAUTH_STATE_TTL = 600


def _state_key(state: str) -> str:
    return f"zee-index:oauth-state:{state}"


def resolve_role(email: str) -> str:
    email = email.lower()
    if email in config.ADMIN_EMAILS or kv_store.client.sismember(ADMINS_KEY, email):
        return "ADMIN"
    if kv_store.client.sismember(EDITORS_KEY, email):
        return "EDITOR"
    return "USER"


def _set_session_cookie(response: Response, user: UserContext) -> None:
    response.set_cookie(
        key=config.SESSION_COOKIE_NAME,
        value=create_session_token(user),
        max_age=config.SESSION_TTL_HOURS * 3600,
        httponly=True,
        samesite="lax",
        secure=config.APP_BASE_URL.startswith("https://"),
        path="/",
    )


def _safe_callback(callback_url: Optional[str]) -> str:
    # Only same-site relative paths
    if callback_url and callback_url.startswith("/") and not callback_url.startswith("//"):
        return callback_url
    return "/"


@router.get("/google/login")
def google_login(callbackUrl: Optional[str] = Query(None)):
    if not config.GOOGLE_CLIENT_ID:
        raise HTTPException(status_code=503, detail="Google sign-in is not configured")

    state = secrets.token_urlsafe(24)
    kv_store.client.set(_state_key(state), _safe_callback(callbackUrl), ex=OAUTH_STATE_TTL)

    params = {
        "client_id": config.GOOGLE_CLIENT_ID,
        "redirect_uri": config.GOOGLE_OAUTH_REDIRECT_URI,
        "response_type": "code",
        "scope": "openid email profile",
        "state": state,
        "prompt": "select_account",
    }
    return RedirectResponse(url=f"{GOOGLE_AUTH_URL}?{urlencode(params)}", status_code=307)


def _exchange_code(code: str) -> dict:
    with httpx.Client(timeout=10.0) as client:
        token_response = client.post(GOOGLE_TOKEN_URL, data={
            "code": code,
            "client_id": config.GOOGLE_CLIENT_ID,
            "client_secret": config.GOOGLE_CLIENT_SECRET,
            "redirect_uri": config.GOOGLE_OAUTH_REDIRECT_URI,
            "grant_type": "authorization_code",
        })
        token_response.raise_for_status()
        access_token = token_response.json().get("access_token")

        profile_response = client.get(GOOGLE_USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"})
        profile_response.raise_for_status()
        return profile_response.json()


@router.get("/google/callback")
def google_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
):
    login_url = f"{config.APP_BASE_URL}/login"
    if error or not code or not state:
        query = urlencode({"error": error or "OAuthCallback"})
        return RedirectResponse(url=f"{login_url}?{query}", status_code=307)

    callback_path = kv_store.client.get(_state_key(state))
    if not callback_path:
        return RedirectResponse(url=f"{login_url}?error=OAuthState", status_code=307)
    kv_store.client.delete(_state_key(state))

    try:
        profile = _exchange_code(code)
    except httpx.HTTPError as e:
        logger.error(f"Google OAuth exchange failed: {e}")
        log_activity(ActivityType.LOGIN_FAILURE, error="oauth_exchange_failed", status="failure")
        return RedirectResponse(url=f"{login_url}?error=OAuthCallback", status_code=307)

    email = (profile.get("email") or "").lower()
    if not email or not profile.get("email_verified", True):
        log_activity(ActivityType.LOGIN_FAILURE, userEmail=email or None, status="failure",
                     error="unverified_email")
        return RedirectResponse(url=f"{login_url}?error=AccessDenied", status_code=307)

    user = UserContext(
        email=email,
        role=resolve_role(email),
        name=profile.get("name"),
        two_factor_required=two_factor_service.is_enabled(email),
    )
    log_activity(ActivityType.LOGIN_SUCCESS, userEmail=email)
    auth_logger.info(action="login", status="success", message="User signed in",
                     actor=email, role=user.role)

    target = f"{config.APP_BASE_URL}{callback_path}"
    if user.two_factor_required:
        target = f"{login_url}?{urlencode({'step': '2fa', 'callbackUrl': callback_path})}"
    response = RedirectResponse(url=target, status_code=307)
    _set_session_cookie(response, user)
    return response


@router.post("/logout")
def logout(response: Response):
    response.delete_cookie(config.SESSION_COOKIE_NAME, path="/")
    return {"success": True}


@router.get("/me")
def me(user: Optional[UserContext] = Depends(get_current_user_optional)):
    return {"user": user.to_dict() if user else None}


# --- Folder passwords ---

@router.post("/folder")
def authenticate_folder(
    body: FolderAuthRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    """Exchange a protected folder's id/password for a one-hour folder token."""
    enforce_rate_limit(request, "auth", response)

    if not body.folderId or not body.id or not body.password:
        raise HTTPException(status_code=400, detail="Missing folderId, id or password")

    folder = get_protected_folder(db, body.folderId)
    if folder is None:
        raise HTTPException(status_code=404, detail="Folder is not protected")

    if not verify_folder_credentials(folder, body.id, body.password):
        auth_logger.warning(action="folder_unlock", message="Wrong folder credentials",
                            file_id=body.folderId)
        raise HTTPException(status_code=401, detail="Invalid ID or password")

    auth_logger.info(action="folder_unlock", status="success", message="Folder unlocked",
                     file_id=body.folderId)
    return {"success": True, "token": create_folder_token(body.folderId)}


# --- Two-factor authentication ---

@router.post("/2fa/generate")
def generate_two_factor(user: UserContext = Depends(get_current_user)):
    return two_factor_service.start_enrollment(user.email)


@router.post("/2fa/verify")
def verify_two_factor(
    body: TwoFactorCodeRequest,
    request: Request,
    response: Response,
    user: UserContext = Depends(get_current_user),
):
    enforce_rate_limit(request, "auth", response, identifier=user.email)
    try:
        verified = two_factor_service.confirm_enrollment(user.email, body.token)
    except two_factor_service.EnrollmentExpired:
        raise HTTPException(status_code=400, detail="2FA setup expired, generate a new code")
    if not verified:
        raise HTTPException(status_code=400, detail="Invalid 2FA code")

    auth_logger.info(action="2fa_enable", status="success", message="2FA enabled", actor=user.email)
    return {"success": True}


@router.post("/2fa/disable")
def disable_two_factor(user: UserContext = Depends(get_current_user)):
    two_factor_service.disable(user.email)
    auth_logger.info(action="2fa_disable", status="success", message="2FA disabled", actor=user.email)
    return {"success": True}


@router.get("/2fa/status")
def two_factor_status(user: UserContext = Depends(get_current_user)):
    return {"isEnabled": two_factor_service.is_enabled(user.email)}


@router.post("/2fa/authenticate")
def authenticate_two_factor(
    body: TwoFactorCodeRequest,
    request: Request,
    response: Response,
    session: Optional[UserContext] = Depends(get_session_user),
):
    """Second login step: a valid code upgrades the pending session to a full one."""
    if session is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    enforce_rate_limit(request, "auth", response, identifier=session.email)

    if not session.two_factor_required:
        return {"success": True}
    if not two_factor_service.verify_login_code(session.email, body.token):
        auth_logger.warning(action="2fa_login", message="Wrong 2FA code", actor=session.email)
        raise HTTPException(status_code=401, detail="Invalid 2FA code")

    full_session = UserContext(email=session.email, role=session.role, name=session.name)
    _set_session_cookie(response, full_session)
    return {"success": True, "user": full_session.to_dict()}

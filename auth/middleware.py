"""
Request gate applied before routing.

``check_auth`` only reads the session cookie; share tokens are not verified
here, the routes that accept them validate them.
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

from fastapi import Request
from fastapi.responses import JSONResponse, RedirectResponse

from auth.session import read_session
from config import config

logger = logging.getLogger("zee_index.auth.middleware")

PUBLIC_PATH_PREFIXES = (
    "/login",
    "/api/auth",
    "/api/health",
    "/health",
    "/api/config/public",
    "/api/share/status",
    "/api/share/track",
    "/api/analytics/track",
    "/api/file-request",
    "/api/setup",
    "/api/cron",
    "/metrics",
    "/docs",
    "/openapi.json",
)

ADMIN_PATH_PREFIXES = ("/admin", "/api/admin")


def is_public_path(path: str) -> bool:
    if path == "/":
        return True
    return any(path == prefix or path.startswith(prefix + "/") or path.startswith(prefix + "?")
               for prefix in PUBLIC_PATH_PREFIXES)


def check_auth(request: Request) -> Dict[str, Any]:
    token = request.cookies.get(config.SESSION_COOKIE_NAME)
    session = read_session(token)
    return {
        "is_authenticated": session is not None and not session.two_factor_required,
        "is_guest": session is not None and session.role == "GUEST",
        "is_2fa_required": session is not None and session.two_factor_required,
        "token": session,
    }


def handle_auth_redirect(request: Request, path: str, error: Optional[str] = None):
    """401 JSON for API calls, a login redirect for pages."""
    if path.startswith("/api/"):
        message = "2FA required" if error == "2FA_REQUIRED" else "Unauthorized"
        return JSONResponse(
            status_code=401,
            content={"error": message, "code": "unauthorized", "message": message},
        )

    target = f"/login?callbackUrl={quote(path, safe='')}"
    if error:
        target += f"&error={quote(error, safe='')}"
    return RedirectResponse(url=target, status_code=307)


async def auth_gate(request: Request, call_next):
    path = request.url.path

    if request.method == "OPTIONS" or is_public_path(path):
        return await call_next(request)

    state = check_auth(request)

    if state["is_2fa_required"]:
        return handle_auth_redirect(request, path, "2FA_REQUIRED")

    if request.query_params.get("share_token"):
        return await call_next(request)

    if path.startswith(ADMIN_PATH_PREFIXES) and not state["is_authenticated"]:
        logger.info("Blocked anonymous admin request", extra={"path": path})
        return handle_auth_redirect(request, path)

    if config.REQUIRE_LOGIN and not state["is_authenticated"]:
        return handle_auth_redirect(request, path)

    return await call_next(request)

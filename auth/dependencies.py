from fastapi import Cookie, HTTPException, Depends, Header, Query
from typing import Optional, List, Callable
from auth.session import read_session, UserContext
from auth.tokens import bearer_token
from services.share_service import ShareTokenError, validate_share_token
from config import config
import logging

logger = logging.getLogger("zee_index.auth")

# Role hierarchy: higher value = more privileges
ROLE_HIERARCHY = {
    "ADMIN": 100,
    "EDITOR": 50,
    "USER": 10,
    "GUEST": 0,
}


async def get_session_user(
    session_token: Optional[str] = Cookie(None, alias=config.SESSION_COOKIE_NAME),
) -> Optional[UserContext]:
    """Raw session from the cookie, including sessions still waiting for a 2FA code."""
    return read_session(session_token)


async def get_current_user_optional(
    session: Optional[UserContext] = Depends(get_session_user),
) -> Optional[UserContext]:
    """
    Best-effort variant of get_current_user.
    Returns None when there is no usable session. A session that has not
    passed its 2FA step does not count.
    """
    if session is None or session.two_factor_required:
        return None
    return session


async def get_current_user(
    user: Optional[UserContext] = Depends(get_current_user_optional),
) -> UserContext:
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


def _check_role_access(user_role: str, required_roles: List[str]) -> bool:
    """
    Check if the user's role satisfies the required roles.

    If required_roles is empty, any authenticated user is allowed.
    Otherwise, the user must have one of the required roles OR a role
    with higher privilege level in the hierarchy.
    """
    if not required_roles:
        return True

    user_role_upper = user_role.upper() if user_role else ""
    user_level = ROLE_HIERARCHY.get(user_role_upper, 0)

    for required_role in required_roles:
        required_role_upper = required_role.upper()
        if user_role_upper == required_role_upper:
            return True

        required_level = ROLE_HIERARCHY.get(required_role_upper, 0)
        if user_level >= required_level and user_level > 0:
            return True

    return False


def get_current_user_with_role(required_roles: List[str]) -> Callable:
    """
    Factory for a dependency that requires a session whose role is one of
    ``required_roles`` or ranks above them.

    Usage:
        @router.post("/files/rename")
        def rename(current_user: UserContext = Depends(get_current_user_with_role(["ADMIN"]))):
            ...

    Raises:
        HTTPException 401: If user is not authenticated
        HTTPException 403: If user doesn't have required role
    """
    async def _get_user_with_role_check(
        current_user: UserContext = Depends(get_current_user)
    ) -> UserContext:
        if not _check_role_access(current_user.role, required_roles):
            logger.warning(
                f"Access denied: {current_user.email} with role '{current_user.role}' "
                f"attempted to access endpoint requiring one of {required_roles}"
            )
            raise HTTPException(status_code=403, detail="Access denied")
        return current_user

    return _get_user_with_role_check


async def require_admin(
    current_user: UserContext = Depends(get_current_user_with_role(["ADMIN"]))
) -> UserContext:
    """Admin-only operations: deletes, renames, sharing, configuration."""
    return current_user


async def require_editor(
    current_user: UserContext = Depends(get_current_user_with_role(["EDITOR"]))
) -> UserContext:
    """Editors and admins: move, copy, create folder."""
    return current_user


async def get_folder_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    """Folder unlock token sent as ``Authorization: Bearer <token>``."""
    return bearer_token(authorization)


async def get_share_access(
    share_token: Optional[str] = Query(None),
    user: Optional[UserContext] = Depends(get_current_user_optional),
) -> Optional[dict]:
    """
    Payload of the ``share_token`` query parameter, or None when none was sent.

    Raises:
        HTTPException 401: the token is present but invalid, revoked or needs a login
    """
    if not share_token:
        return None
    try:
        return validate_share_token(share_token, user)
    except ShareTokenError as e:
        raise HTTPException(status_code=401, detail=str(e))

"""Share-link and folder-unlock tokens (HS256, signed with SHARE_SECRET_KEY)."""

import re
import uuid
import jwt
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from config import config

logger = logging.getLogger("zee_index.auth.tokens")

TOKEN_ALGORITHM = "HS256"
EXPIRES_IN_PATTERN = re.compile(r"^(\d+)([smhdw])$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}
FOLDER_TOKEN_TTL = timedelta(hours=1)


class TokenConfigError(RuntimeError):
    """Raised when SHARE_SECRET_KEY is missing."""


def _secret() -> str:
    if not config.SHARE_SECRET_KEY:
        raise TokenConfigError("SHARE_SECRET_KEY is not configured")
    return config.SHARE_SECRET_KEY


def parse_expires_in(value: str) -> timedelta:
    """
    Convert strings like '30m', '7d' or '2w' to a timedelta.

    Raises:
        ValueError: If the value is not <digits><s|m|h|d|w> or is zero.
    """
    match = EXPIRES_IN_PATTERN.match(value or "")
    if not match:
        raise ValueError(f"Invalid expiresIn format: {value!r}")
    amount = int(match.group(1))
    if amount <= 0:
        raise ValueError("expiresIn must be positive")
    return timedelta(seconds=amount * _UNIT_SECONDS[match.group(2)])


def create_share_token(expires_in: timedelta, login_required: bool = False) -> Dict[str, Any]:
    """The share id and the JWT id are the same uuid."""
    now = datetime.now(timezone.utc).replace(microsecond=0)
    expires_at = now + expires_in
    jti = str(uuid.uuid4())
    payload = {
        "shareId": jti,
        "loginRequired": bool(login_required),
        "jti": jti,
        "iat": now,
        "exp": expires_at,
    }
    token = jwt.encode(payload, _secret(), algorithm=TOKEN_ALGORITHM)
    return {"token": token, "jti": jti, "expires_at": expires_at}


def decode_share_token(token: str) -> Dict[str, Any]:
    """
    Raises:
        jwt.InvalidTokenError (or a subclass) when the token is bad or expired.
    """
    return jwt.decode(token, _secret(), algorithms=[TOKEN_ALGORITHM])


def create_folder_token(folder_id: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {"folderId": folder_id, "iat": now, "exp": now + FOLDER_TOKEN_TTL}
    return jwt.encode(payload, _secret(), algorithm=TOKEN_ALGORITHM)


def decode_folder_token(token: Optional[str]) -> Optional[Dict[str, Any]]:
    if not token:
        return None
    try:
        payload = jwt.decode(token, _secret(), algorithms=[TOKEN_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.info("Folder token expired")
        return None
    except (jwt.InvalidTokenError, TokenConfigError) as e:
        logger.warning(f"Folder token rejected: {e}")
        return None
    if not payload.get("folderId"):
        return None
    return payload


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token:
        return token.strip()
    return None

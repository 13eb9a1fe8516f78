import jwt
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from config import config

logger = logging.getLogger("zee_index.auth.session")

SESSION_ALGORITHM = "HS256"


class SessionConfigError(RuntimeError):
    """Raised when SESSION_SECRET is missing."""


@dataclass
class UserContext:
    email: str
    role: str
    name: Optional[str] = None
    two_factor_required: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"

    def to_dict(self) -> dict:
        return {
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "isAdmin": self.is_admin,
            "twoFactorRequired": self.two_factor_required,
        }


def _secret() -> str:
    secret = config.SESSION_SECRET
    if not secret:
        raise SessionConfigError("SESSION_SECRET is not configured")
    return secret


def create_session_token(user: UserContext, ttl_hours: Optional[int] = None) -> str:
    """Sign a session cookie value for ``user``."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user.email,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "twoFactorRequired": user.two_factor_required,
        "iat": now,
        "exp": now + timedelta(hours=ttl_hours or config.SESSION_TTL_HOURS),
    }
    return jwt.encode(payload, _secret(), algorithm=SESSION_ALGORITHM)


def verify_session_token(token: str) -> UserContext:
    """
    Decode a session token.

    Raises:
        jwt.ExpiredSignatureError: If the session has expired.
        jwt.InvalidTokenError: If the token is invalid (bad signature, missing email).
    """
    try:
        payload = jwt.decode(token, _secret(), algorithms=[SESSION_ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        logger.info(f"Session expired: {e}")
        raise
    except jwt.InvalidSignatureError as e:
        logger.warning(f"Session signature verification failed: {e}")
        raise
    except jwt.DecodeError as e:
        logger.warning(f"Session decode failed: {e}")
        raise
    except jwt.InvalidTokenError as e:
        logger.warning(f"Invalid session token: {e}")
        raise

    email = payload.get("email")
    if not email:
        raise jwt.InvalidTokenError("Session token missing 'email' claim")

    return UserContext(
        email=email,
        role=payload.get("role") or "USER",
        name=payload.get("name"),
        two_factor_required=bool(payload.get("twoFactorRequired")),
    )


def read_session(token: Optional[str]) -> Optional[UserContext]:
    """Best-effort variant: None for a missing, expired or tampered cookie."""
    if not token:
        return None
    try:
        return verify_session_token(token)
    except (jwt.InvalidTokenError, SessionConfigError):
        return None

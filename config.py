import os
from typing import List


def normalize_cors_origins(origins_str: str) -> List[str]:
    """
    Normalize a comma-separated string of CORS origins.

    Handles:
    - Trim whitespace from each origin
    - Remove surrounding quotes (" and ')
    - Remove trailing slashes (/)
    - Filter out empty entries

    Args:
        origins_str: Comma-separated string of origins

    Returns:
        List of normalized, non-empty origins
    """
    if not origins_str:
        return []

    normalized = []
    for origin in origins_str.split(","):
        origin = origin.strip()

        if (origin.startswith('"') and origin.endswith('"')) or \
           (origin.startswith("'") and origin.endswith("'")):
            origin = origin[1:-1]

        origin = origin.strip().rstrip("/")

        if origin:
            normalized.append(origin)

    return normalized


def parse_id_list(value: str) -> List[str]:
    """Split a comma-separated list of Drive ids, dropping blanks."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_manual_drives(value: str) -> List[dict]:
    """
    Parse MANUAL_DRIVES entries of the form ``id:name`` (name optional).
    """
    drives = []
    for entry in parse_id_list(value):
        drive_id, _, name = entry.partition(":")
        drive_id = drive_id.strip()
        if drive_id:
            drives.append({"id": drive_id, "name": name.strip() or drive_id})
    return drives


class Config:
    # --- DATABASE ---
    DATABASE_URL = os.getenv("DATABASE_URL")

    # --- GOOGLE DRIVE ---
    GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
    GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
    GOOGLE_REFRESH_TOKEN = os.getenv("GOOGLE_REFRESH_TOKEN")
    GOOGLE_SERVICE_ACCOUNT_JSON = os.getenv("GOOGLE_SERVICE_ACCOUNT_JSON")
    GOOGLE_OAUTH_REDIRECT_URI = os.getenv(
        "GOOGLE_OAUTH_REDIRECT_URI", "http://localhost:8000/api/auth/google/callback"
    )
    USE_MOCK_DRIVE = os.getenv("USE_MOCK_DRIVE", "false").lower() == "true"
    MOCK_DRIVE_DB = os.getenv("MOCK_DRIVE_DB", "mock_drive_db.json")

    ROOT_FOLDER_ID = os.getenv("ROOT_FOLDER_ID")
    ROOT_FOLDER_NAME = os.getenv("ROOT_FOLDER_NAME")
    PRIVATE_FOLDER_IDS = parse_id_list(os.getenv("PRIVATE_FOLDER_IDS", ""))
    MANUAL_DRIVES = parse_manual_drives(os.getenv("MANUAL_DRIVES", ""))

    # --- KV STORE ---
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    REDIS_DEFAULT_TTL = int(os.getenv("REDIS_DEFAULT_TTL", "3600"))
    # limits storage URI; "memory://" keeps counters in-process
    RATE_LIMIT_STORAGE_URL = os.getenv("RATE_LIMIT_STORAGE_URL") or REDIS_URL

    # --- AUTH ---
    ADMIN_EMAILS = [e.lower() for e in parse_id_list(os.getenv("ADMIN_EMAILS", ""))]
    SESSION_SECRET = os.getenv("SESSION_SECRET")
    SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "zee_session")
    SESSION_TTL_HOURS = int(os.getenv("SESSION_TTL_HOURS", "168"))
    SHARE_SECRET_KEY = os.getenv("SHARE_SECRET_KEY")
    REQUIRE_LOGIN = os.getenv("REQUIRE_LOGIN", "false").lower() == "true"

    # --- PUBLIC URL ---
    # Used to build share links and file request links.
    APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:3000").rstrip("/")

    # --- NOTIFICATIONS ---
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER = os.getenv("SMTP_USER")
    SMTP_PASS = os.getenv("SMTP_PASS")
    EMAIL_FROM = os.getenv("EMAIL_FROM")
    WEBHOOK_URL = os.getenv("WEBHOOK_URL")

    # --- CORS ---
    _DEFAULT_CORS_ORIGINS = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", ",".join(_DEFAULT_CORS_ORIGINS))
    CORS_ORIGIN_REGEX = os.getenv("CORS_ORIGIN_REGEX", None)

    # --- JOBS ---
    SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "false").lower() == "true"
    CRON_SECRET = os.getenv("CRON_SECRET")
    STORAGE_WARNING_PERCENT = float(os.getenv("STORAGE_WARNING_PERCENT", "90"))


config = Config()

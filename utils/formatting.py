import math
import re
from typing import Any, Optional
from urllib.parse import unquote

FILE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
_TAG_PATTERN = re.compile(r"<[^>]*>")

_BYTE_UNITS = ["Bytes", "KB", "MB", "GB", "TB", "PB", "EB", "ZB", "YB"]

_CODE_EXTENSIONS = {
    "js", "jsx", "ts", "tsx", "py", "java", "c", "cpp", "cs", "go", "rb", "php",
    "html", "css", "json", "xml", "yml", "yaml", "sh", "sql", "md", "rs", "kt",
}
_OFFICE_EXTENSIONS = {"doc", "docx", "xls", "xlsx", "ppt", "pptx", "odt", "ods", "odp"}


def format_bytes(num_bytes: Any, decimals: int = 2) -> str:
    """
    Human readable size using powers of 1024.

    >>> format_bytes(0)
    '0 Bytes'
    >>> format_bytes(1234)
    '1.21 KB'
    """
    try:
        value = float(num_bytes)
    except (TypeError, ValueError):
        return "0 Bytes"
    if value <= 0 or math.isnan(value):
        return "0 Bytes"

    decimals = max(0, int(decimals))
    index = 0
    while value >= 1024 ** (index + 1) and index < len(_BYTE_UNITS) - 1:
        index += 1
    scaled = round(value / (1024 ** index), decimals)
    # Drop trailing zeros: 1.00 KB -> 1 KB
    text = f"{scaled:.{decimals}f}".rstrip("0").rstrip(".") if decimals else f"{scaled:.0f}"
    return f"{text} {_BYTE_UNITS[index]}"


def format_duration(seconds: Any) -> str:
    """MM:SS, or HH:MM:SS once an hour is reached. Invalid input gives 00:00."""
    try:
        total = float(seconds)
    except (TypeError, ValueError):
        return "00:00"
    if math.isnan(total) or math.isinf(total) or total < 0:
        return "00:00"

    total = int(total)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def get_file_type(mime_type: Optional[str], name: Optional[str] = None) -> str:
    """Coarse category used by clients to pick a viewer."""
    mime_type = mime_type or ""
    extension = (name or "").rsplit(".", 1)[-1].lower() if name and "." in name else ""

    if mime_type == "application/vnd.google-apps.folder":
        return "folder"
    if mime_type.startswith("video/"):
        return "video"
    if mime_type.startswith("audio/"):
        return "audio"
    if mime_type.startswith("image/"):
        return "image"
    if mime_type == "application/pdf":
        return "pdf"
    if mime_type.startswith("application/vnd.google-apps.") or extension in _OFFICE_EXTENSIONS \
            or "officedocument" in mime_type or "msword" in mime_type:
        return "office"
    if extension in _CODE_EXTENSIONS or mime_type.startswith("text/"):
        return "code"
    return "other"


def sanitize_string(value: Optional[str]) -> str:
    """Strip HTML tags and surrounding whitespace."""
    if not value:
        return ""
    return _TAG_PATTERN.sub("", value).strip()


def is_valid_file_id(file_id: Optional[str], max_length: int = 100) -> bool:
    return bool(file_id) and len(file_id) <= max_length and bool(FILE_ID_PATTERN.match(file_id))


def clean_folder_id(folder_id: Optional[str]) -> Optional[str]:
    """
    Normalize a folder id taken from a query string: URL-decoded, cut at the
    first '&' or '?' (clients sometimes paste whole URLs).
    """
    if not folder_id:
        return folder_id
    decoded = unquote(folder_id)
    return re.split(r"[&?]", decoded, maxsplit=1)[0].strip()

"""
Drive gateway selection and helpers shared by the real and mock gateways.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

from config import config
from kv import kv_store, MANUAL_DRIVES_KEY

logger = logging.getLogger("zee_index.drive")

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
MAX_PATH_DEPTH = 20

# Google Workspace documents cannot be downloaded directly, only exported.
EXPORT_FORMATS = {
    "application/vnd.google-apps.document": (
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document", ".docx"),
    "application/vnd.google-apps.spreadsheet": (
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", ".xlsx"),
    "application/vnd.google-apps.presentation": (
        "application/vnd.openxmlformats-officedocument.presentationml.presentation", ".pptx"),
    "application/vnd.google-apps.drawing": ("image/png", ".png"),
}
DEFAULT_EXPORT = ("application/pdf", ".pdf")

MIME_TYPE_FILTERS = {
    "image": "mimeType contains 'image/'",
    "video": "mimeType contains 'video/'",
    "audio": "mimeType contains 'audio/'",
    "pdf": "mimeType = 'application/pdf'",
    "folder": f"mimeType = '{FOLDER_MIME_TYPE}'",
}


class DriveServiceError(Exception):
    """A Drive call failed after retries."""

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.status_code = status_code


class DriveFileNotFound(DriveServiceError):
    def __init__(self, file_id: Optional[str] = None):
        super().__init__(f"File not found: {file_id}" if file_id else "File not found", status_code=404)
        self.file_id = file_id


@dataclass
class DriveMedia:
    """Streamed file body plus the headers worth forwarding to the client."""
    status_code: int
    content_type: str
    chunks: Iterator[bytes]
    headers: Dict[str, str] = field(default_factory=dict)
    close: Optional[Callable[[], None]] = None


def is_folder(file: Dict[str, Any]) -> bool:
    return file.get("mimeType") == FOLDER_MIME_TYPE


def decorate_file(file: Dict[str, Any]) -> Dict[str, Any]:
    item = dict(file)
    item["isFolder"] = is_folder(file)
    return item


def is_workspace_file(mime_type: Optional[str]) -> bool:
    return bool(mime_type) and mime_type.startswith("application/vnd.google-apps.") \
        and mime_type != FOLDER_MIME_TYPE


def export_format(mime_type: str):
    return EXPORT_FORMATS.get(mime_type, DEFAULT_EXPORT)


def escape_query_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def shortcut_folders(locale: str = "en") -> Dict[str, str]:
    """Folders a breadcrumb trail may start from, mapped to their display name."""
    shortcuts: Dict[str, str] = {}
    for drive in config.MANUAL_DRIVES:
        shortcuts[drive["id"]] = drive["name"]
    for drive in kv_store.get_json(MANUAL_DRIVES_KEY) or []:
        if drive.get("id"):
            shortcuts[drive["id"]] = drive.get("name") or drive["id"]
    if config.ROOT_FOLDER_ID:
        home = "Beranda" if locale == "id" else "Home"
        shortcuts[config.ROOT_FOLDER_ID] = config.ROOT_FOLDER_NAME or home
    return shortcuts


def build_folder_path(get_file: Callable[[str], Optional[Dict[str, Any]]],
                      folder_id: str, locale: str = "en") -> List[Dict[str, str]]:
    """
    Breadcrumbs from the nearest shortcut (index root or a manual drive)
    down to ``folder_id``. Walks at most MAX_PATH_DEPTH parents.
    """
    shortcuts = shortcut_folders(locale)
    path: List[Dict[str, str]] = []
    current_id: Optional[str] = folder_id

    for _ in range(MAX_PATH_DEPTH):
        if not current_id:
            break
        if current_id in shortcuts:
            path.insert(0, {"id": current_id, "name": shortcuts[current_id]})
            break

        item = get_file(current_id)
        if not item:
            break
        parents = item.get("parents") or []
        if not parents:
            # Top of a shared drive or of someone else's tree
            name = item.get("name") or ("Drive Bersama" if locale == "id" else "Shared Drive")
            path.insert(0, {"id": item["id"], "name": name})
            break
        path.insert(0, {"id": item["id"], "name": item.get("name", "")})
        current_id = parents[0]

    return path


def get_drive_service():
    """Dependency Injection for the Drive gateway."""
    if config.USE_MOCK_DRIVE:
        from services.google_drive_mock import GoogleDriveService
        return GoogleDriveService()
    from services.google_drive_real import GoogleDriveRealService
    return GoogleDriveRealService()

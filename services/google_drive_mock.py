import base64
import functools
import json
import os
import re
import threading
import uuid
import datetime
from typing import List, Optional, Dict, Any

from config import config
from services.drive import (
    FOLDER_MIME_TYPE,
    DriveFileNotFound,
    DriveMedia,
    build_folder_path,
    decorate_file,
)

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(BASE_DIR)

_RANGE_PATTERN = re.compile(r"bytes=(\d*)-(\d*)")

# One JSON file backs every instance; reads and writes are serialised.
_DB_LOCK = threading.RLock()


def _synchronized(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with _DB_LOCK:
            return method(self, *args, **kwargs)
    return wrapper


def _db_file() -> str:
    path = config.MOCK_DRIVE_DB
    return path if os.path.isabs(path) else os.path.join(PROJECT_ROOT, path)


def _empty_db() -> Dict[str, Any]:
    return {
        "files": {},
        "folders": {
            "root": {"id": "root", "name": "My Drive", "mimeType": FOLDER_MIME_TYPE,
                     "parents": [], "trashed": False}
        },
        "contents": {},
        "revisions": {},
    }


def _now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat().replace("+00:00", "Z")


class GoogleDriveService:
    """
    Drive double backed by a JSON file. Same interface as
    GoogleDriveRealService; selected with USE_MOCK_DRIVE=true.
    """

    def __init__(self):
        self._load_db()

    def _load_db(self):
        path = _db_file()
        if os.path.exists(path):
            with open(path, "r") as f:
                try:
                    self.db = json.load(f)
                except json.JSONDecodeError:
                    self.db = _empty_db()
        else:
            self.db = _empty_db()
            self._save_db()

        for key in ("files", "folders", "contents", "revisions"):
            self.db.setdefault(key, {})

    def _save_db(self):
        with open(_db_file(), "w") as f:
            json.dump(self.db, f, indent=2)

    def _find(self, file_id: str) -> Optional[Dict[str, Any]]:
        return self.db["folders"].get(file_id) or self.db["files"].get(file_id)

    def _require(self, file_id: str) -> Dict[str, Any]:
        item = self._find(file_id)
        if not item:
            raise DriveFileNotFound(file_id)
        return item

    def _all_items(self) -> List[Dict[str, Any]]:
        return list(self.db["folders"].values()) + list(self.db["files"].values())

    @_synchronized
    def add_item(self, item: Dict[str, Any], content: Optional[bytes] = None) -> Dict[str, Any]:
        """Insert an item with a caller-chosen id (used to seed fixtures)."""
        self._load_db()
        item = dict(item)
        item.setdefault("parents", ["root"])
        item.setdefault("trashed", False)
        item.setdefault("mimeType", "application/octet-stream")
        item.setdefault("modifiedTime", _now())
        bucket = "folders" if item["mimeType"] == FOLDER_MIME_TYPE else "files"
        if content is not None:
            item.setdefault("size", str(len(content)))
            self.db["contents"][item["id"]] = base64.b64encode(content).decode("ascii")
        self.db[bucket][item["id"]] = item
        self._save_db()
        return decorate_file(item)

    # --- Reads ---

    @_synchronized
    def list_files(self, folder_id: str = "root", page_token: Optional[str] = None,
                   page_size: int = 50, use_cache: bool = True) -> Dict[str, Any]:
        self._load_db()
        items = [
            f for f in self._all_items()
            if folder_id in f.get("parents", []) and not f.get("trashed")
        ]
        items.sort(key=lambda f: (f.get("mimeType") != FOLDER_MIME_TYPE, f.get("name", "").lower()))

        start = int(page_token) if page_token and page_token.isdigit() else 0
        page = items[start:start + page_size]
        next_token = str(start + page_size) if start + page_size < len(items) else None
        return {"files": [decorate_file(f) for f in page], "nextPageToken": next_token}

    @_synchronized
    def get_file(self, file_id: str, use_cache: bool = True) -> Optional[Dict[str, Any]]:
        self._load_db()
        item = self._find(file_id)
        return decorate_file(item) if item else None

    @_synchronized
    def get_folder_path(self, folder_id: str, locale: str = "en") -> List[Dict[str, str]]:
        self._load_db()
        return build_folder_path(self.get_file, folder_id, locale)

    @_synchronized
    def search_files(self, term: Optional[str] = None, folder_id: Optional[str] = None,
                     search_type: str = "name", mime_type: Optional[str] = None,
                     modified_after: Optional[str] = None) -> List[Dict[str, Any]]:
        self._load_db()
        results = []
        needle = (term or "").lower()
        for item in self._all_items():
            if item.get("trashed"):
                continue
            if needle:
                haystack = item.get("name", "")
                if search_type == "fullText":
                    haystack += " " + self._text_content(item["id"])
                if needle not in haystack.lower():
                    continue
            if folder_id and folder_id not in item.get("parents", []):
                continue
            if mime_type and not _matches_mime_filter(item.get("mimeType", ""), mime_type):
                continue
            if modified_after and item.get("modifiedTime", "") <= modified_after:
                continue
            results.append(decorate_file(item))
        return results

    def _text_content(self, file_id: str) -> str:
        encoded = self.db["contents"].get(file_id)
        if not encoded:
            return ""
        return base64.b64decode(encoded).decode("utf-8", errors="ignore")

    @_synchronized
    def list_trashed(self) -> List[Dict[str, Any]]:
        self._load_db()
        return [decorate_file(f) for f in self._all_items() if f.get("trashed")]

    @_synchronized
    def list_revisions(self, file_id: str) -> List[Dict[str, Any]]:
        self._load_db()
        self._require(file_id)
        return list(self.db["revisions"].get(file_id, []))

    @_synchronized
    def get_storage_details(self) -> Dict[str, Any]:
        self._load_db()
        files = [f for f in self.db["files"].values() if not f.get("trashed")]
        usage = sum(int(f.get("size") or 0) for f in self.db["files"].values())
        largest = sorted(files, key=lambda f: int(f.get("size") or 0), reverse=True)[:10]
        return {
            "usage": usage,
            "limit": 15 * 1024 ** 3,
            "usageInDrive": usage,
            "usageInDriveTrash": sum(int(f.get("size") or 0) for f in self.db["files"].values() if f.get("trashed")),
            "largestFiles": [decorate_file(f) for f in largest],
        }

    @_synchronized
    def list_shared_drives(self) -> List[Dict[str, Any]]:
        return []

    @_synchronized
    def list_shared_with_me_folders(self) -> List[Dict[str, Any]]:
        return []

    @_synchronized
    def open_media(self, file_id: str, range_header: Optional[str] = None,
                   export_mime: Optional[str] = None) -> DriveMedia:
        self._load_db()
        item = self._require(file_id)
        data = base64.b64decode(self.db["contents"].get(file_id, ""))
        content_type = export_mime or item.get("mimeType", "application/octet-stream")

        if range_header and not export_mime:
            match = _RANGE_PATTERN.match(range_header)
            if match and data:
                start = int(match.group(1)) if match.group(1) else 0
                end = int(match.group(2)) if match.group(2) else len(data) - 1
                end = min(end, len(data) - 1)
                chunk = data[start:end + 1]
                return DriveMedia(
                    status_code=206,
                    content_type=content_type,
                    chunks=iter([chunk]),
                    headers={
                        "Content-Range": f"bytes {start}-{end}/{len(data)}",
                        "Content-Length": str(len(chunk)),
                        "Accept-Ranges": "bytes",
                    },
                )

        return DriveMedia(
            status_code=200,
            content_type=content_type,
            chunks=iter([data]),
            headers={"Content-Length": str(len(data)), "Accept-Ranges": "bytes"},
        )

    @_synchronized
    def get_root_metadata(self, folder_id: str) -> Dict[str, Any]:
        file = self.get_file(folder_id)
        if file is None:
            raise DriveFileNotFound(folder_id)
        return file

    # --- Writes ---

    @_synchronized
    def create_folder(self, name: str, parent_id: Optional[str] = None) -> Dict[str, Any]:
        self._load_db()
        folder_id = str(uuid.uuid4())
        folder = {
            "id": folder_id,
            "name": name,
            "mimeType": FOLDER_MIME_TYPE,
            "parents": [parent_id or "root"],
            "trashed": False,
            "createdTime": _now(),
            "modifiedTime": _now(),
            "webViewLink": f"https://mock-drive.google.com/folders/{folder_id}"
        }
        self.db["folders"][folder_id] = folder
        self._save_db()
        return decorate_file(folder)

    @_synchronized
    def upload_file(self, file_content: bytes, name: str, mime_type: str, parent_id: Optional[str] = None) -> Dict[str, Any]:
        self._load_db()
        file_id = str(uuid.uuid4())
        file_meta = {
            "id": file_id,
            "name": name,
            "mimeType": mime_type,
            "parents": [parent_id or "root"],
            "size": str(len(file_content)),
            "trashed": False,
            "createdTime": _now(),
            "modifiedTime": _now(),
            "webViewLink": f"https://mock-drive.google.com/file/d/{file_id}/view"
        }
        self.db["files"][file_id] = file_meta
        self.db["contents"][file_id] = base64.b64encode(file_content).decode("ascii")
        self._save_db()
        return decorate_file(file_meta)

    @_synchronized
    def update_content(self, file_id: str, content: bytes, mime_type: str) -> Dict[str, Any]:
        self._load_db()
        item = self._require(file_id)
        self.db["revisions"].setdefault(file_id, []).append(
            {"id": str(len(self.db["revisions"][file_id]) + 1), "modifiedTime": item.get("modifiedTime"),
             "size": item.get("size")}
        )
        self.db["contents"][file_id] = base64.b64encode(content).decode("ascii")
        item["size"] = str(len(content))
        item["modifiedTime"] = _now()
        self._save_db()
        return decorate_file(item)

    @_synchronized
    def rename_file(self, file_id: str, new_name: str) -> Dict[str, Any]:
        self._load_db()
        item = self._require(file_id)
        item["name"] = new_name
        item["modifiedTime"] = _now()
        self._save_db()
        return decorate_file(item)

    @_synchronized
    def move_file(self, file_id: str, current_parent_id: str, new_parent_id: str) -> Dict[str, Any]:
        self._load_db()
        item = self._require(file_id)
        parents = [p for p in item.get("parents", []) if p != current_parent_id]
        if new_parent_id not in parents:
            parents.append(new_parent_id)
        item["parents"] = parents
        self._save_db()
        return decorate_file(item)

    @_synchronized
    def copy_file(self, file_id: str, destination_id: str, new_name: Optional[str] = None) -> Dict[str, Any]:
        self._load_db()
        source = self._require(file_id)
        copy_id = str(uuid.uuid4())
        copy = dict(source, id=copy_id, parents=[destination_id], createdTime=_now(), modifiedTime=_now())
        copy["name"] = new_name or f"Copy of {source.get('name', '')}"
        bucket = "folders" if source.get("mimeType") == FOLDER_MIME_TYPE else "files"
        self.db[bucket][copy_id] = copy
        if file_id in self.db["contents"]:
            self.db["contents"][copy_id] = self.db["contents"][file_id]
        self._save_db()
        return decorate_file(copy)

    @_synchronized
    def delete_file(self, file_id: str) -> None:
        self._load_db()
        self._require(file_id)["trashed"] = True
        self._save_db()

    @_synchronized
    def restore_file(self, file_id: str) -> None:
        self._load_db()
        self._require(file_id)["trashed"] = False
        self._save_db()

    @_synchronized
    def delete_forever(self, file_id: str) -> None:
        self._load_db()
        self._require(file_id)
        self.db["folders"].pop(file_id, None)
        self.db["files"].pop(file_id, None)
        self.db["contents"].pop(file_id, None)
        self.db["revisions"].pop(file_id, None)
        self._save_db()


def _matches_mime_filter(mime_type: str, category: str) -> bool:
    if category in ("image", "video", "audio"):
        return mime_type.startswith(f"{category}/")
    if category == "pdf":
        return mime_type == "application/pdf"
    if category == "folder":
        return mime_type == FOLDER_MIME_TYPE
    return True

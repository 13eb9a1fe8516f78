import io
import json
import time
import random
import logging
from typing import List, Dict, Any, Optional

from google.auth.transport.requests import AuthorizedSession
from googleapiclient.http import MediaIoBaseUpload
from googleapiclient.errors import HttpError

from kv import kv_store, folder_content_key, file_details_key, folder_path_key
from services.google_auth import GoogleAuthService, DriveNotConfiguredError
from services.drive import (
    FOLDER_MIME_TYPE,
    MIME_TYPE_FILTERS,
    DriveFileNotFound,
    DriveMedia,
    DriveServiceError,
    build_folder_path,
    decorate_file,
    escape_query_value,
)
from utils.prometheus import DRIVE_API_CALLS, DRIVE_API_LATENCY

SCOPES = ['https://www.googleapis.com/auth/drive']
FILE_FIELDS = (
    "id, name, mimeType, parents, trashed, size, modifiedTime, createdTime, "
    "thumbnailLink, webViewLink, iconLink, hasThumbnail, md5Checksum, owners(displayName, emailAddress)"
)
API_BASE = "https://www.googleapis.com/drive/v3"
DOWNLOAD_CHUNK_SIZE = 256 * 1024

FOLDER_CONTENT_TTL = 3600
EMPTY_FOLDER_TTL = 5
FILE_DETAILS_TTL = 600
FOLDER_PATH_TTL = 3600

logger = logging.getLogger("zee_index.drive.real")


class GoogleDriveRealService:
    def __init__(self):
        self.auth_service = GoogleAuthService(scopes=SCOPES)
        self.service = self.auth_service.get_service('drive', 'v3')

    def _check_auth(self):
        if not self.service:
            raise DriveNotConfiguredError("Google Drive credentials are not configured")

    def _retry_operation(self, operation: str, func, *args, **kwargs):
        """
        Executes a function with exponential backoff retry logic for transient errors.
        Handles expired credentials (401), rate limits (403, 429) and server errors (5xx).
        """
        max_retries = 5
        base_delay = 1.0  # seconds

        started = time.monotonic()
        for attempt in range(max_retries):
            try:
                result = func(*args, **kwargs)
                DRIVE_API_CALLS.labels(operation=operation, outcome="success").inc()
                DRIVE_API_LATENCY.labels(operation=operation).observe(time.monotonic() - started)
                return result
            except HttpError as e:
                status = e.resp.status
                if status == 404:
                    DRIVE_API_CALLS.labels(operation=operation, outcome="not_found").inc()
                    raise DriveFileNotFound() from e
                if status == 401 and attempt == 0:
                    logger.info("Drive credentials rejected, refreshing", extra={"operation": operation})
                    self.auth_service.refresh()
                    self.service = self.auth_service.get_service('drive', 'v3')
                    continue
                if status in (403, 429, 500, 502, 503, 504) and attempt < max_retries - 1:
                    reason = _error_reason(e)
                    sleep_time = (base_delay * (2 ** attempt)) + (random.randint(0, 1000) / 1000)
                    logger.warning(
                        f"Drive API Error {status} ({reason}). Retrying in {sleep_time:.2f}s "
                        f"(attempt {attempt + 1}/{max_retries})",
                        extra={"operation": operation},
                    )
                    time.sleep(sleep_time)
                    continue
                DRIVE_API_CALLS.labels(operation=operation, outcome="error").inc()
                logger.error(f"Drive API Error {status}: {_error_reason(e)}", extra={"operation": operation})
                raise DriveServiceError(_error_reason(e), status_code=502) from e

        DRIVE_API_CALLS.labels(operation=operation, outcome="error").inc()
        raise DriveServiceError(f"Drive operation '{operation}' failed after {max_retries} attempts")

    # --- Reads ---

    def list_files(self, folder_id: str, page_token: Optional[str] = None,
                   page_size: int = 50, use_cache: bool = True) -> Dict[str, Any]:
        self._check_auth()

        cache_key = folder_content_key(folder_id, page_token)
        if use_cache:
            cached = kv_store.get_json(cache_key)
            if cached is not None:
                return cached

        query = f"'{escape_query_value(folder_id)}' in parents and trashed = false"

        def _api_call():
            return self.service.files().list(
                q=query,
                pageSize=page_size,
                pageToken=page_token,
                orderBy="folder, name",
                fields=f"nextPageToken, files({FILE_FIELDS})",
                supportsAllDrives=True,
                includeItemsFromAllDrives=True,
            ).execute()

        results = self._retry_operation("list_files", _api_call)
        payload = {
            "files": [decorate_file(f) for f in results.get("files", [])],
            "nextPageToken": results.get("nextPageToken"),
        }
        kv_store.set_json(cache_key, payload, ttl=FOLDER_CONTENT_TTL if payload["files"] else EMPTY_FOLDER_TTL)
        return payload

    def get_file(self, file_id: str, use_cache: bool = True) -> Optional[Dict[str, Any]]:
        """File metadata, or None when Drive does not know the id."""
        self._check_auth()

        cache_key = file_details_key(file_id)
        if use_cache:
            cached = kv_store.get_json(cache_key)
            if cached is not None:
                return cached

        def _api_call():
            return self.service.files().get(
                fileId=file_id,
                fields=FILE_FIELDS,
                supportsAllDrives=True,
            ).execute()

        try:
            file = self._retry_operation("get_file", _api_call)
        except DriveFileNotFound:
            return None
        file = decorate_file(file)
        kv_store.set_json(cache_key, file, ttl=FILE_DETAILS_TTL)
        return file

    def get_folder_path(self, folder_id: str, locale: str = "en") -> List[Dict[str, str]]:
        cache_key = folder_path_key(folder_id, locale)
        cached = kv_store.get_json(cache_key)
        if cached is not None:
            return cached

        path = build_folder_path(self.get_file, folder_id, locale)
        kv_store.set_json(cache_key, path, ttl=FOLDER_PATH_TTL)
        return path

    def _query(self, query: str, page_size: int = 100) -> List[Dict[str, Any]]:
        self._check_auth()

        def _api_call():
            return self.service.files().list(
                q=query,
                pageSize=page_size,
                fields=f"files({FILE_FIELDS})",
                supportsAllDrives=True,
                includeItemsFromAllDrives=True,
                corpora="allDrives",
            ).execute()

        results = self._retry_operation("search", _api_call)
        return [decorate_file(f) for f in results.get("files", [])]

    def search_files(self, term: Optional[str] = None, folder_id: Optional[str] = None,
                     search_type: str = "name", mime_type: Optional[str] = None,
                     modified_after: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Search non-trashed files. ``modified_after`` is an RFC 3339 timestamp.
        Drive has no size filter, callers apply minimum sizes themselves.
        """
        clauses = ["trashed = false"]
        if term:
            field = "fullText" if search_type == "fullText" else "name"
            clauses.append(f"{field} contains '{escape_query_value(term)}'")
        if folder_id:
            clauses.append(f"'{folder_id}' in parents")
        if mime_type in MIME_TYPE_FILTERS:
            clauses.append(MIME_TYPE_FILTERS[mime_type])
        if modified_after:
            clauses.append(f"modifiedTime > '{modified_after}'")
        return self._query(" and ".join(clauses))

    def list_trashed(self) -> List[Dict[str, Any]]:
        return self._query("trashed = true", page_size=200)

    def list_revisions(self, file_id: str) -> List[Dict[str, Any]]:
        self._check_auth()

        def _api_call():
            return self.service.revisions().list(
                fileId=file_id,
                fields="revisions(id, modifiedTime, size, keepForever, lastModifyingUser(displayName, emailAddress))",
            ).execute()

        return self._retry_operation("list_revisions", _api_call).get("revisions", [])

    def get_storage_details(self) -> Dict[str, Any]:
        self._check_auth()

        def _about():
            return self.service.about().get(fields="storageQuota, user(displayName, emailAddress)").execute()

        def _largest():
            return self.service.files().list(
                q="trashed = false and mimeType != 'application/vnd.google-apps.folder'",
                orderBy="quotaBytesUsed desc",
                pageSize=10,
                fields=f"files({FILE_FIELDS})",
            ).execute()

        about = self._retry_operation("storage_quota", _about)
        largest = self._retry_operation("largest_files", _largest)
        quota = about.get("storageQuota", {})
        return {
            "usage": int(quota.get("usage", 0)),
            "limit": int(quota["limit"]) if quota.get("limit") else None,
            "usageInDrive": int(quota.get("usageInDrive", 0)),
            "usageInDriveTrash": int(quota.get("usageInDriveTrash", 0)),
            "largestFiles": [decorate_file(f) for f in largest.get("files", [])],
        }

    def list_shared_drives(self) -> List[Dict[str, Any]]:
        self._check_auth()

        def _api_call():
            return self.service.drives().list(pageSize=100, fields="drives(id, name)").execute()

        return self._retry_operation("list_shared_drives", _api_call).get("drives", [])

    def list_shared_with_me_folders(self) -> List[Dict[str, Any]]:
        return self._query(f"sharedWithMe = true and mimeType = '{FOLDER_MIME_TYPE}' and trashed = false")

    def open_media(self, file_id: str, range_header: Optional[str] = None,
                   export_mime: Optional[str] = None) -> DriveMedia:
        """
        Stream file content. Workspace documents go through ``export_mime``;
        binary files forward the client's Range header to Drive.
        """
        self._check_auth()
        session = AuthorizedSession(self.auth_service.creds)
        headers = {}
        if export_mime:
            url = f"{API_BASE}/files/{file_id}/export"
            params = {"mimeType": export_mime}
        else:
            url = f"{API_BASE}/files/{file_id}"
            params = {"alt": "media", "supportsAllDrives": "true"}
            if range_header:
                headers["Range"] = range_header

        response = session.get(url, params=params, headers=headers, stream=True, timeout=60)
        if response.status_code == 404:
            response.close()
            raise DriveFileNotFound(file_id)
        if response.status_code >= 400:
            body = response.text[:500]
            response.close()
            DRIVE_API_CALLS.labels(operation="download", outcome="error").inc()
            raise DriveServiceError(f"Drive download failed ({response.status_code}): {body}",
                                    status_code=response.status_code if response.status_code == 416 else 502)

        DRIVE_API_CALLS.labels(operation="download", outcome="success").inc()
        forwarded = {
            name: response.headers[name]
            for name in ("Content-Length", "Content-Range", "Accept-Ranges", "ETag", "Last-Modified")
            if name in response.headers
        }
        return DriveMedia(
            status_code=response.status_code,
            content_type=response.headers.get("Content-Type", "application/octet-stream"),
            chunks=response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE),
            headers=forwarded,
            close=response.close,
        )

    # --- Writes ---

    def create_folder(self, name: str, parent_id: Optional[str] = None) -> Dict[str, Any]:
        self._check_auth()

        file_metadata = {'name': name, 'mimeType': FOLDER_MIME_TYPE}
        if parent_id:
            file_metadata['parents'] = [parent_id]

        def _api_call():
            return self.service.files().create(
                body=file_metadata,
                fields=FILE_FIELDS,
                supportsAllDrives=True
            ).execute()

        return decorate_file(self._retry_operation("create_folder", _api_call))

    def upload_file(self, file_content: bytes, name: str, mime_type: str, parent_id: Optional[str] = None) -> Dict[str, Any]:
        self._check_auth()

        file_metadata = {'name': name}
        if parent_id:
            file_metadata['parents'] = [parent_id]

        media = MediaIoBaseUpload(io.BytesIO(file_content), mimetype=mime_type, resumable=True)

        def _api_call():
            return self.service.files().create(
                body=file_metadata,
                media_body=media,
                fields=FILE_FIELDS,
                supportsAllDrives=True
            ).execute()

        return decorate_file(self._retry_operation("upload_file", _api_call))

    def update_content(self, file_id: str, content: bytes, mime_type: str) -> Dict[str, Any]:
        self._check_auth()
        media = MediaIoBaseUpload(io.BytesIO(content), mimetype=mime_type, resumable=False)

        def _api_call():
            return self.service.files().update(
                fileId=file_id,
                media_body=media,
                fields=FILE_FIELDS,
                supportsAllDrives=True,
            ).execute()

        file = self._retry_operation("update_content", _api_call)
        kv_store.delete_key(file_details_key(file_id))
        return decorate_file(file)

    def rename_file(self, file_id: str, new_name: str) -> Dict[str, Any]:
        self._check_auth()

        def _api_call():
            return self.service.files().update(
                fileId=file_id,
                body={'name': new_name},
                fields=FILE_FIELDS,
                supportsAllDrives=True
            ).execute()

        file = self._retry_operation("rename_file", _api_call)
        kv_store.delete_key(file_details_key(file_id))
        return decorate_file(file)

    def move_file(self, file_id: str, current_parent_id: str, new_parent_id: str) -> Dict[str, Any]:
        self._check_auth()

        def _api_call():
            return self.service.files().update(
                fileId=file_id,
                addParents=new_parent_id,
                removeParents=current_parent_id,
                fields=FILE_FIELDS,
                supportsAllDrives=True
            ).execute()

        file = self._retry_operation("move_file", _api_call)
        kv_store.delete_key(file_details_key(file_id))
        return decorate_file(file)

    def copy_file(self, file_id: str, destination_id: str, new_name: Optional[str] = None) -> Dict[str, Any]:
        self._check_auth()
        body: Dict[str, Any] = {"parents": [destination_id]}
        if new_name:
            body["name"] = new_name

        def _api_call():
            return self.service.files().copy(
                fileId=file_id,
                body=body,
                fields=FILE_FIELDS,
                supportsAllDrives=True,
            ).execute()

        return decorate_file(self._retry_operation("copy_file", _api_call))

    def delete_file(self, file_id: str) -> None:
        """Moves the file to the trash."""
        self._check_auth()

        def _api_call():
            return self.service.files().update(
                fileId=file_id,
                body={"trashed": True},
                supportsAllDrives=True,
            ).execute()

        self._retry_operation("delete_file", _api_call)
        kv_store.delete_key(file_details_key(file_id))

    def restore_file(self, file_id: str) -> None:
        self._check_auth()

        def _api_call():
            return self.service.files().update(
                fileId=file_id,
                body={"trashed": False},
                supportsAllDrives=True,
            ).execute()

        self._retry_operation("restore_file", _api_call)
        kv_store.delete_key(file_details_key(file_id))

    def delete_forever(self, file_id: str) -> None:
        self._check_auth()

        def _api_call():
            return self.service.files().delete(fileId=file_id, supportsAllDrives=True).execute()

        self._retry_operation("delete_forever", _api_call)
        kv_store.delete_key(file_details_key(file_id))

    def get_root_metadata(self, folder_id: str) -> Dict[str, Any]:
        """Uncached lookup used by the health check."""
        file = self.get_file(folder_id, use_cache=False)
        if file is None:
            raise DriveFileNotFound(folder_id)
        return file


def _error_reason(error: HttpError) -> str:
    try:
        error_content = json.loads(error.content.decode('utf-8'))
        return error_content.get('error', {}).get('message', 'Unknown')
    except (ValueError, AttributeError, UnicodeDecodeError):
        return "Unknown"

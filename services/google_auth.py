import json
import logging
from typing import List, Optional

import google_auth_httplib2
import httplib2
from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.http import HttpRequest

from config import config
from kv import kv_store, CREDENTIALS_KEY

logger = logging.getLogger("zee_index.google_auth")

TOKEN_URI = "https://oauth2.googleapis.com/token"


class DriveNotConfiguredError(RuntimeError):
    """No usable Drive credentials (missing or revoked)."""


def load_stored_credentials() -> Optional[dict]:
    """Credentials saved by the setup wizard, if any."""
    stored = kv_store.get_json(CREDENTIALS_KEY)
    if stored and stored.get("refreshToken"):
        return stored
    return None


def is_drive_configured() -> bool:
    if config.USE_MOCK_DRIVE:
        return True
    if config.GOOGLE_REFRESH_TOKEN and config.GOOGLE_CLIENT_ID and config.GOOGLE_CLIENT_SECRET:
        return True
    if config.GOOGLE_SERVICE_ACCOUNT_JSON:
        return True
    return load_stored_credentials() is not None


class GoogleAuthService:
    """
    Builds Google API clients for the Drive owner.

    Credential sources, first match wins:
    1. GOOGLE_REFRESH_TOKEN + client id/secret from the environment
    2. credentials saved in KV by the setup wizard
    3. GOOGLE_SERVICE_ACCOUNT_JSON (inline JSON or a file path)
    """

    def __init__(self, scopes: List[str]):
        self.scopes = scopes
        self.creds = None
        self.from_kv = False
        self._authenticate()

    def _authenticate(self):
        if config.GOOGLE_REFRESH_TOKEN and config.GOOGLE_CLIENT_ID and config.GOOGLE_CLIENT_SECRET:
            self.creds = Credentials(
                token=None,
                refresh_token=config.GOOGLE_REFRESH_TOKEN,
                client_id=config.GOOGLE_CLIENT_ID,
                client_secret=config.GOOGLE_CLIENT_SECRET,
                token_uri=TOKEN_URI,
                scopes=self.scopes,
            )
            return

        stored = load_stored_credentials()
        if stored:
            self.from_kv = True
            self.creds = Credentials(
                token=None,
                refresh_token=stored["refreshToken"],
                client_id=stored.get("clientId"),
                client_secret=stored.get("clientSecret"),
                token_uri=TOKEN_URI,
                scopes=self.scopes,
            )
            return

        if config.GOOGLE_SERVICE_ACCOUNT_JSON:
            try:
                if config.GOOGLE_SERVICE_ACCOUNT_JSON.strip().startswith("{"):
                    info = json.loads(config.GOOGLE_SERVICE_ACCOUNT_JSON)
                    self.creds = service_account.Credentials.from_service_account_info(info, scopes=self.scopes)
                else:
                    self.creds = service_account.Credentials.from_service_account_file(
                        config.GOOGLE_SERVICE_ACCOUNT_JSON, scopes=self.scopes
                    )
                logger.info("Authentication: using service account")
            except (ValueError, OSError) as e:
                logger.error(f"Service account credentials could not be loaded: {e}")
                self.creds = None
            return

        logger.warning("No Google Drive credentials configured")

    def refresh(self):
        """
        Force a token refresh.
        A revoked refresh token stored by the setup wizard is removed so the
        wizard can run again.
        """
        if not self.creds:
            raise DriveNotConfiguredError("Google Drive credentials are not configured")
        try:
            self.creds.refresh(GoogleAuthRequest())
        except RefreshError as e:
            if "invalid_grant" in str(e):
                logger.error("Refresh token rejected by Google (invalid_grant)")
                if self.from_kv:
                    kv_store.delete_key(CREDENTIALS_KEY)
                raise DriveNotConfiguredError("Google Drive authorization expired, run setup again") from e
            raise

    def _build_request(self, http, *args, **kwargs):
        # httplib2.Http is not thread-safe; each request gets its own connection
        authorized = google_auth_httplib2.AuthorizedHttp(self.creds, http=httplib2.Http())
        return HttpRequest(authorized, *args, **kwargs)

    def get_service(self, service_name: str, version: str):
        if not self.creds:
            return None
        authorized = google_auth_httplib2.AuthorizedHttp(self.creds, http=httplib2.Http())
        return build(service_name, version, http=authorized, requestBuilder=self._build_request,
                     cache_discovery=False)


def root_folder_id() -> Optional[str]:
    """ROOT_FOLDER_ID, else the root picked in the setup wizard."""
    if config.ROOT_FOLDER_ID:
        return config.ROOT_FOLDER_ID
    stored = load_stored_credentials()
    return stored.get("rootFolderId") if stored else None

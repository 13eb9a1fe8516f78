"""
Tests for the Google credential layer and the real Drive gateway's retry
policy. Google's HTTP endpoints are replaced with canned responses.
"""

from unittest.mock import MagicMock, call, patch

import httplib2
import pytest
from google.auth.exceptions import RefreshError
from googleapiclient.errors import HttpError

from config import config
from kv import kv_store, CREDENTIALS_KEY
from services.drive import DriveFileNotFound, DriveServiceError
from services.google_auth import DriveNotConfiguredError, GoogleAuthService
from services.google_drive_real import SCOPES, GoogleDriveRealService

STORED_CREDENTIALS = {
    "clientId": "stored-client",
    "clientSecret": "stored-secret",
    "refreshToken": "stored-refresh",
    "rootFolderId": "root",
}


def _token_endpoint(status, body):
    """A google-auth transport answering every call with ``body``."""
    response = MagicMock(status=status, headers={}, data=body)
    return MagicMock(return_value=response)


def _http_error(status, message="Backend Error"):
    return HttpError(httplib2.Response({"status": status}),
                     f'{{"error": {{"message": "{message}"}}}}'.encode())


# --- Credentials ---

def test_invalid_grant_deletes_stored_credentials():
    kv_store.set_json(CREDENTIALS_KEY, STORED_CREDENTIALS, ttl=0)
    auth = GoogleAuthService(scopes=SCOPES)
    assert auth.from_kv

    transport = _token_endpoint(400, b'{"error": "invalid_grant", "error_description": "Token has been revoked."}')
    with patch("services.google_auth.GoogleAuthRequest", return_value=transport):
        with pytest.raises(DriveNotConfiguredError):
            auth.refresh()

    assert kv_store.get_json(CREDENTIALS_KEY) is None
    assert transport.call_args.kwargs["url"] == "https://oauth2.googleapis.com/token"


def test_invalid_grant_keeps_stored_credentials_when_env_token_is_used():
    kv_store.set_json(CREDENTIALS_KEY, STORED_CREDENTIALS, ttl=0)
    with patch.object(config, "GOOGLE_REFRESH_TOKEN", "env-refresh"):
        auth = GoogleAuthService(scopes=SCOPES)
    assert not auth.from_kv

    transport = _token_endpoint(400, b'{"error": "invalid_grant"}')
    with patch("services.google_auth.GoogleAuthRequest", return_value=transport):
        with pytest.raises(DriveNotConfiguredError):
            auth.refresh()

    assert kv_store.get_json(CREDENTIALS_KEY) == STORED_CREDENTIALS


def test_other_refresh_errors_propagate():
    kv_store.set_json(CREDENTIALS_KEY, STORED_CREDENTIALS, ttl=0)
    auth = GoogleAuthService(scopes=SCOPES)

    transport = _token_endpoint(400, b'{"error": "invalid_client"}')
    with patch("services.google_auth.GoogleAuthRequest", return_value=transport):
        with pytest.raises(RefreshError):
            auth.refresh()
    assert kv_store.get_json(CREDENTIALS_KEY) == STORED_CREDENTIALS


def test_refresh_without_credentials():
    auth = GoogleAuthService(scopes=SCOPES)
    assert auth.creds is None
    assert auth.get_service("drive", "v3") is None
    with pytest.raises(DriveNotConfiguredError):
        auth.refresh()


def test_each_request_gets_its_own_connection():
    kv_store.set_json(CREDENTIALS_KEY, STORED_CREDENTIALS, ttl=0)
    auth = GoogleAuthService(scopes=SCOPES)

    postproc = MagicMock()
    first = auth._build_request(None, postproc, "https://www.googleapis.com/drive/v3/files/a")
    second = auth._build_request(None, postproc, "https://www.googleapis.com/drive/v3/files/b")

    assert first.http is not second.http
    assert first.http.http is not second.http.http
    assert first.http.credentials is auth.creds
    assert second.uri == "https://www.googleapis.com/drive/v3/files/b"


def test_service_is_built_with_per_request_transport():
    kv_store.set_json(CREDENTIALS_KEY, STORED_CREDENTIALS, ttl=0)
    auth = GoogleAuthService(scopes=SCOPES)
    with patch("services.google_auth.build") as build:
        auth.get_service("drive", "v3")

    kwargs = build.call_args.kwargs
    assert build.call_args.args == ("drive", "v3")
    assert kwargs["requestBuilder"] == auth._build_request
    assert kwargs["http"].credentials is auth.creds


# --- Retry policy ---

@pytest.fixture
def gateway():
    service = GoogleDriveRealService.__new__(GoogleDriveRealService)
    service.auth_service = MagicMock()
    service.service = MagicMock()
    return service


@pytest.fixture
def sleep():
    with patch("services.google_drive_real.time.sleep") as sleep, \
            patch("services.google_drive_real.random.randint", return_value=0):
        yield sleep


def test_transient_errors_back_off_exponentially(gateway, sleep):
    operation = MagicMock(side_effect=[_http_error(503), _http_error(429), _http_error(500), "done"])
    assert gateway._retry_operation("list_files", operation) == "done"
    assert operation.call_count == 4
    assert sleep.call_args_list == [call(1.0), call(2.0), call(4.0)]


def test_retries_give_up_after_five_attempts(gateway, sleep):
    operation = MagicMock(side_effect=_http_error(503, "Backend Error"))
    with pytest.raises(DriveServiceError) as excinfo:
        gateway._retry_operation("list_files", operation)

    assert operation.call_count == 5
    assert sleep.call_args_list == [call(1.0), call(2.0), call(4.0), call(8.0)]
    assert excinfo.value.status_code == 502
    assert str(excinfo.value) == "Backend Error"


def test_not_found_is_not_retried(gateway, sleep):
    operation = MagicMock(side_effect=_http_error(404, "File not found"))
    with pytest.raises(DriveFileNotFound):
        gateway._retry_operation("get_file", operation)
    assert operation.call_count == 1
    sleep.assert_not_called()


def test_client_errors_are_not_retried(gateway, sleep):
    operation = MagicMock(side_effect=_http_error(400, "Invalid query"))
    with pytest.raises(DriveServiceError) as excinfo:
        gateway._retry_operation("search_files", operation)
    assert str(excinfo.value) == "Invalid query"
    assert operation.call_count == 1
    sleep.assert_not_called()


def test_rejected_credentials_are_refreshed_once(gateway, sleep):
    fresh_service = MagicMock()
    gateway.auth_service.get_service.return_value = fresh_service
    operation = MagicMock(side_effect=[_http_error(401, "Invalid Credentials"), "done"])

    assert gateway._retry_operation("get_file", operation) == "done"
    gateway.auth_service.refresh.assert_called_once()
    assert gateway.service is fresh_service
    sleep.assert_not_called()

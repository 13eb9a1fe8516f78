"""
Tests for GET/HEAD /api/download.
"""

from unittest.mock import patch

from auth.tokens import create_folder_token
from routers.download import content_disposition
from services.activity_service import get_activity_logs
from kv import kv_store
from services.analytics_service import BANDWIDTH_KEY
from services.rate_limit_service import RateLimitRule


def test_download_streams_file(anon_client, seeded_drive):
    response = anon_client.get("/api/download?fileId=notes-txt")
    assert response.status_code == 200
    assert response.content == b"hello zee index"
    assert response.headers["content-type"].startswith("text/plain")
    assert response.headers["content-disposition"].startswith('attachment; filename="notes.txt"')
    assert response.headers["accept-ranges"] == "bytes"


def test_download_logs_activity_and_bandwidth(user_client, seeded_drive):
    user_client.get("/api/download?fileId=notes-txt")
    entry = get_activity_logs(activity_type="DOWNLOAD")[0]
    assert entry["itemName"] == "notes.txt"
    assert entry["userEmail"] == "user@example.com"
    bandwidth_keys = list(kv_store.client.scan_iter(match=f"{BANDWIDTH_KEY}:*"))
    assert len(bandwidth_keys) == 1
    assert kv_store.client.get(bandwidth_keys[0]) == "15"


def test_range_request_is_passed_through(anon_client, seeded_drive):
    response = anon_client.get("/api/download?fileId=notes-txt", headers={"Range": "bytes=0-4"})
    assert response.status_code == 206
    assert response.content == b"hello"
    assert response.headers["content-range"] == "bytes 0-4/15"
    assert response.headers["content-disposition"].startswith("inline")
    # Partial requests are not counted as downloads
    assert get_activity_logs(activity_type="DOWNLOAD") == []


def test_head_returns_headers_only(anon_client, seeded_drive):
    response = anon_client.head("/api/download?fileId=notes-txt")
    assert response.status_code == 200
    assert response.headers["content-length"] == "15"
    assert response.content == b""
    assert get_activity_logs(activity_type="DOWNLOAD") == []


def test_workspace_document_is_exported(anon_client, seeded_drive):
    seeded_drive.add_item({"id": "gdoc", "name": "Plan", "mimeType": "application/vnd.google-apps.document"},
                          content=b"docx-bytes")
    with patch("services.google_drive_mock.GoogleDriveService.open_media",
               wraps=seeded_drive.open_media) as open_media:
        response = anon_client.get("/api/download?fileId=gdoc", headers={"Range": "bytes=0-1"})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith(
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document")
    assert 'filename="Plan.docx"' in response.headers["content-disposition"]
    assert open_media.call_args.kwargs["range_header"] is None


def test_unknown_workspace_type_exports_pdf(anon_client, seeded_drive):
    seeded_drive.add_item({"id": "gform", "name": "Survey", "mimeType": "application/vnd.google-apps.form"},
                          content=b"pdf-bytes")
    response = anon_client.get("/api/download?fileId=gform")
    assert response.headers["content-type"] == "application/pdf"
    assert 'filename="Survey.pdf"' in response.headers["content-disposition"]


def test_download_validation(anon_client, seeded_drive):
    assert anon_client.get("/api/download").status_code == 400
    assert anon_client.get("/api/download?fileId=bad/id").status_code == 400
    assert anon_client.get("/api/download?fileId=ghost").status_code == 404
    assert anon_client.get("/api/download?fileId=docs-folder").status_code == 400


def test_protected_file_needs_folder_token(anon_client, admin_client, seeded_drive):
    assert anon_client.get("/api/download?fileId=secret-txt").status_code == 403

    token = create_folder_token("vault-folder")
    by_header = anon_client.get("/api/download?fileId=secret-txt", headers={"Authorization": f"Bearer {token}"})
    assert by_header.status_code == 200
    assert by_header.content == b"top secret"

    by_query = anon_client.get(f"/api/download?fileId=secret-txt&access_token={token}")
    assert by_query.status_code == 200

    assert admin_client.get("/api/download?fileId=secret-txt").status_code == 200


def test_download_with_revoked_share_token(anon_client, admin_client, seeded_drive):
    created = admin_client.post("/api/share", json={
        "path": "/folder/docs-folder", "itemName": "Documents", "expiresIn": "1h",
    }).json()
    url = f"/api/download?fileId=report-pdf&share_token={created['token']}"
    assert anon_client.get(url).status_code == 200

    admin_client.post("/api/share/revoke", json={
        "jti": created["jti"], "expiresAt": created["newShareLink"]["expiresAt"],
    })
    assert anon_client.get(url).status_code == 401


def test_download_rate_limit(anon_client, seeded_drive):
    with patch("services.rate_limit_service.RULES", {"download": RateLimitRule(2, 60)}):
        assert anon_client.get("/api/download?fileId=notes-txt").status_code == 200
        assert anon_client.get("/api/download?fileId=notes-txt").status_code == 200
        response = anon_client.get("/api/download?fileId=notes-txt")
    assert response.status_code == 429
    assert response.headers["x-ratelimit-limit"] == "2"


def test_content_disposition_encodes_unicode():
    header = content_disposition("résumé 2024.pdf")
    assert header == "attachment; filename=\"r%C3%A9sum%C3%A9%202024.pdf\"; " \
                     "filename*=UTF-8''r%C3%A9sum%C3%A9%202024.pdf"
    assert content_disposition("a.txt", inline=True).startswith("inline;")

"""
Tests for the /api/admin endpoints.
"""

import json
from unittest.mock import patch

import bcrypt

import models
from config import config
from kv import kv_store, folder_access_key, folder_content_key, ACCESS_REQUESTS_KEY, ADMINS_KEY, EDITORS_KEY
from services.access_service import restricted_ids, verify_folder_credentials
from services.activity_service import ActivityType, get_activity_logs, log_activity
from services.rate_limit_service import RateLimitRule

from conftest import ADMIN_EMAIL, USER_EMAIL, make_client


def test_admin_endpoints_reject_non_admins(user_client, editor_client):
    assert user_client.get("/api/admin/users").status_code == 403
    assert editor_client.get("/api/admin/config").status_code == 403


# --- Admins and editors ---

def test_add_and_remove_admin(admin_client):
    response = admin_client.post("/api/admin/users", json={"email": "New.Admin@Example.com"})
    assert response.json() == {"message": "Admin added", "email": "new.admin@example.com"}
    assert admin_client.get("/api/admin/users").json() == ["new.admin@example.com"]

    entry = get_activity_logs(activity_type="ADMIN_ADDED")[0]
    assert entry["targetUser"] == "new.admin@example.com"
    assert entry["userEmail"] == ADMIN_EMAIL

    admin_client.request("DELETE", "/api/admin/users", json={"email": "new.admin@example.com"})
    assert not kv_store.client.smembers(ADMINS_KEY)
    assert get_activity_logs(activity_type="ADMIN_REMOVED")[0]["targetUser"] == "new.admin@example.com"


def test_admin_cannot_remove_themselves(admin_client):
    kv_store.client.sadd(ADMINS_KEY, ADMIN_EMAIL)
    response = admin_client.request("DELETE", "/api/admin/users", json={"email": ADMIN_EMAIL.upper()})
    assert response.status_code == 400
    assert kv_store.client.sismember(ADMINS_KEY, ADMIN_EMAIL)


def test_invalid_email_is_rejected(admin_client):
    assert admin_client.post("/api/admin/users", json={"email": "not-an-email"}).status_code == 422


def test_editors(admin_client):
    admin_client.post("/api/admin/editors", json={"email": "editor@example.com"})
    assert admin_client.get("/api/admin/editors").json() == ["editor@example.com"]
    admin_client.request("DELETE", "/api/admin/editors", json={"email": "editor@example.com"})
    assert kv_store.client.scard(EDITORS_KEY) == 0


# --- App configuration ---

def test_app_config_round_trip(admin_client, anon_client):
    assert admin_client.get("/api/admin/config").json() == {}
    settings = {"appName": "Team Files", "hideAuthor": True}
    assert admin_client.post("/api/admin/config", json=settings).json() == {"success": True, "config": settings}

    assert admin_client.get("/api/admin/config").json() == settings
    assert anon_client.get("/api/config/public").json() == settings


def test_corrupt_app_config_reads_as_empty(admin_client, db_session):
    db_session.add(models.AdminConfig(key="app-config", value="{not json"))
    db_session.commit()
    assert admin_client.get("/api/admin/config").json() == {}


# --- Protected folders ---

def test_protect_folder(admin_client, db_session, seeded_drive):
    kv_store.set_json(folder_content_key("docs-folder"), {"files": []})
    response = admin_client.post("/api/admin/protected-folders", json={
        "folderId": "docs-folder", "id": "team", "password": "hunter2",
    })
    assert response.json()["success"] is True

    folder = db_session.query(models.ProtectedFolder).filter_by(folder_id="docs-folder").one()
    assert folder.password_hash != "hunter2"
    assert verify_folder_credentials(folder, "team", "hunter2")
    assert "docs-folder" in restricted_ids()
    assert kv_store.get_json(folder_content_key("docs-folder")) is None

    listed = admin_client.get("/api/admin/protected-folders").json()
    assert listed["docs-folder"] == {"id": "team", "password": "***"}
    assert listed["vault-folder"] == {"id": "admin", "password": "***"}


def test_protect_folder_defaults_access_id_and_updates_password(admin_client, db_session):
    admin_client.post("/api/admin/protected-folders", json={"folderId": "folder-1", "password": "one"})
    admin_client.post("/api/admin/protected-folders", json={"folderId": "folder-1", "password": "two"})
    folders = db_session.query(models.ProtectedFolder).all()
    assert len(folders) == 1
    assert folders[0].access_id == "admin"
    assert verify_folder_credentials(folders[0], "admin", "two")


def test_protect_folder_validation(admin_client):
    response = admin_client.post("/api/admin/protected-folders", json={"folderId": "<b>ab</b>", "password": "x"})
    assert response.status_code == 400
    assert admin_client.post("/api/admin/protected-folders", json={"folderId": "folder-1"}).status_code == 422


def test_unprotect_folder(admin_client, seeded_drive):
    response = admin_client.request("DELETE", "/api/admin/protected-folders", json={"folderId": "vault-folder"})
    assert response.status_code == 200
    assert "vault-folder" not in restricted_ids()
    assert admin_client.get("/api/admin/protected-folders").json() == {}


# --- Per-user grants ---

def test_user_access_grants(admin_client, user_client, seeded_drive):
    assert user_client.get("/api/files?folderId=vault-folder").status_code == 401

    admin_client.post("/api/admin/user-access", json={"folderId": "vault-folder", "email": USER_EMAIL})
    assert admin_client.get("/api/admin/user-access").json() == {"vault-folder": [USER_EMAIL]}
    assert user_client.get("/api/files?folderId=vault-folder").status_code == 200

    admin_client.request("DELETE", "/api/admin/user-access", json={"folderId": "vault-folder", "email": USER_EMAIL})
    assert admin_client.get("/api/admin/user-access").json() == {}


# --- Manual drives ---

def test_manual_drives(admin_client):
    with patch.object(config, "MANUAL_DRIVES", [{"id": "env-drive", "name": "From env"}]):
        admin_client.post("/api/admin/manual-drives", json={"id": "team-drive", "name": "<i>Team</i>"})
        drives = admin_client.get("/api/admin/manual-drives").json()
    assert drives == [{"id": "env-drive", "name": "From env"}, {"id": "team-drive", "name": "Team"}]

    response = admin_client.request("DELETE", "/api/admin/manual-drives", json={"id": "team-drive"})
    assert response.json() == {"success": True, "drives": []}


def test_manual_drive_replaces_same_id(admin_client):
    admin_client.post("/api/admin/manual-drives", json={"id": "team-drive", "name": "Old"})
    response = admin_client.post("/api/admin/manual-drives", json={"id": "team-drive", "name": "New"})
    assert response.json()["drives"] == [{"id": "team-drive", "name": "New"}]


def test_scan_drives(admin_client):
    with patch("services.google_drive_mock.GoogleDriveService.list_shared_drives",
               return_value=[{"id": "sd1", "name": "Shared"}]), \
            patch("services.google_drive_mock.GoogleDriveService.list_shared_with_me_folders",
                  return_value=[{"id": "f1", "name": "From Bob"}]):
        response = admin_client.get("/api/admin/drives/scan")
    assert response.json() == {"drives": [
        {"id": "sd1", "name": "Shared", "kind": "drive"},
        {"id": "f1", "name": "From Bob", "kind": "folder"},
    ]}


# --- Caches ---

def test_clear_cache_for_folder(admin_client):
    kv_store.set_json(folder_content_key("docs-folder"), {"files": []})
    kv_store.set_json(folder_content_key("other-folder"), {"files": []})
    response = admin_client.post("/api/admin/cache/clear", json={"folderId": "docs-folder"})
    assert response.json()["deleted"] == 1
    assert kv_store.get_json(folder_content_key("other-folder")) is not None


def test_clear_all_caches(admin_client):
    kv_store.set_json(folder_content_key("docs-folder"), {"files": []})
    kv_store.set_json("search:abc", [])
    kv_store.client.sadd(ADMINS_KEY, "someone@example.com")
    response = admin_client.post("/api/admin/cache/clear", json={})
    assert response.json()["message"] == "All caches cleared"
    assert response.json()["deleted"] == 2
    assert kv_store.client.sismember(ADMINS_KEY, "someone@example.com")


def test_cache_stats(admin_client):
    kv_store.set_json("search:abc", [])
    stats = admin_client.get("/api/admin/cache-stats").json()
    assert stats["cacheKeys"]["search"] == 1
    assert stats["rateLimits"]["download"] == {"maxRequests": 50, "windowMs": 60000}


# --- Activity log and stats ---

def test_activity_log_pagination(admin_client):
    for i in range(25):
        log_activity(ActivityType.DOWNLOAD, itemName=f"file-{i}")
    log_activity(ActivityType.UPLOAD, itemName="upload")

    first = admin_client.get("/api/admin/activity-log?limit=10").json()
    assert first["totalLogs"] == 26
    assert first["totalPages"] == 3
    assert first["currentPage"] == 1
    assert len(first["logs"]) == 10

    last = admin_client.get("/api/admin/activity-log?limit=10&page=3").json()
    assert len(last["logs"]) == 6

    uploads = admin_client.get("/api/admin/activity-log?type=UPLOAD").json()
    assert [e["itemName"] for e in uploads["logs"]] == ["upload"]


def test_activity_log_validation(admin_client):
    assert admin_client.get("/api/admin/activity-log?page=0").status_code == 400
    assert admin_client.get("/api/admin/activity-log?limit=101").status_code == 400
    empty = admin_client.get("/api/admin/activity-log").json()
    assert empty == {"logs": [], "totalPages": 0, "currentPage": 1, "totalLogs": 0}


def test_download_stats(admin_client):
    log_activity(ActivityType.DOWNLOAD, itemName="a.pdf", userEmail=USER_EMAIL)
    log_activity(ActivityType.DOWNLOAD, itemName="a.pdf")
    log_activity(ActivityType.UPLOAD, itemName="b.pdf")

    stats = admin_client.get("/api/admin/stats").json()
    assert stats["downloadsToday"] == 2
    assert stats["topFiles"] == [{"name": "a.pdf", "count": 2}]
    assert {u["email"] for u in stats["topUsers"]} == {USER_EMAIL, "Guest"}
    assert len(stats["hourlyDownloads"]) == 24
    assert sum(d["count"] for d in stats["weekdayDownloads"]) == 2


def test_admin_rate_limit(admin_client):
    with patch("services.rate_limit_service.RULES", {"admin": RateLimitRule(1, 10)}):
        first = admin_client.get("/api/admin/users")
        response = admin_client.get("/api/admin/users")
    assert first.status_code == 200
    assert first.headers["X-RateLimit-Limit"] == "1"
    assert first.headers["X-RateLimit-Remaining"] == "0"
    assert "X-RateLimit-Reset" in first.headers
    assert response.status_code == 429
    assert response.json()["code"] == "too_many_requests"


# --- Access requests ---

def _request_access(client, folder_id="vault-folder", folder_name="Vault"):
    with patch("services.access_request_service.notify_admins", return_value=True) as notify:
        response = client.post("/api/request-access", json={"folderId": folder_id, "folderName": folder_name})
    return response, notify


def test_request_access_notifies_admins(user_client, admin_client):
    response, notify = _request_access(user_client)
    assert response.json() == {"success": True, "message": "Access request sent to the admins"}
    subject, body = notify.call_args.args
    assert subject == "[Request Access] Vault"
    assert USER_EMAIL in body

    requests = admin_client.get("/api/admin/access-requests").json()
    assert [(r["folderId"], r["email"], r["folderName"]) for r in requests] == [
        ("vault-folder", USER_EMAIL, "Vault"),
    ]
    assert get_activity_logs(activity_type="ACCESS_REQUESTED")[0]["userEmail"] == USER_EMAIL


def test_request_access_needs_a_registered_user(anon_client):
    assert _request_access(anon_client)[0].status_code == 401
    guest = make_client("guest@example.com", "GUEST")
    assert _request_access(guest)[0].status_code == 403
    assert kv_store.client.scard(ACCESS_REQUESTS_KEY) == 0


def test_access_requests_list_newest_first(admin_client):
    for timestamp, folder_id in ((1000, "older-folder"), (2000, "newer-folder")):
        kv_store.client.sadd(ACCESS_REQUESTS_KEY, json.dumps(
            {"folderId": folder_id, "folderName": folder_id, "email": USER_EMAIL, "timestamp": timestamp}))
    kv_store.client.sadd(ACCESS_REQUESTS_KEY, "not json")

    requests = admin_client.get("/api/admin/access-requests").json()
    assert [r["folderId"] for r in requests] == ["newer-folder", "older-folder"]


def test_approving_access_request_grants_folder(user_client, admin_client, seeded_drive):
    assert user_client.get("/api/files?folderId=vault-folder").status_code == 401
    _request_access(user_client)
    pending = admin_client.get("/api/admin/access-requests").json()[0]

    response = admin_client.post("/api/admin/access-requests", json={"action": "approve", "requestData": pending})
    assert response.json() == {"success": True}
    assert admin_client.get("/api/admin/access-requests").json() == []
    assert admin_client.get("/api/admin/user-access").json() == {"vault-folder": [USER_EMAIL]}
    assert user_client.get("/api/files?folderId=vault-folder").status_code == 200
    assert get_activity_logs(activity_type="ACCESS_GRANTED")[0]["targetUser"] == USER_EMAIL


def test_rejecting_access_request(user_client, admin_client):
    _request_access(user_client)
    pending = admin_client.get("/api/admin/access-requests").json()[0]

    admin_client.post("/api/admin/access-requests", json={"action": "reject", "requestData": pending})
    assert admin_client.get("/api/admin/access-requests").json() == []
    assert not kv_store.client.exists(folder_access_key("vault-folder"))


def test_access_request_action_is_validated(admin_client, user_client):
    body = {"action": "ignore", "requestData": {"folderId": "f", "email": USER_EMAIL, "timestamp": 1}}
    assert admin_client.post("/api/admin/access-requests", json=body).status_code == 422
    assert user_client.get("/api/admin/access-requests").status_code == 403


# --- User passwords ---

def test_user_password_lifecycle(admin_client):
    params = {"email": USER_EMAIL}
    assert admin_client.get("/api/admin/user-password", params=params).json() == {
        "email": USER_EMAIL, "hasPassword": False,
    }

    response = admin_client.post("/api/admin/user-password", json={"email": USER_EMAIL, "password": "hunter22"})
    assert response.json()["success"] is True
    stored = kv_store.client.get(f"password:{USER_EMAIL}")
    assert bcrypt.checkpw(b"hunter22", stored.encode())
    assert admin_client.get("/api/admin/user-password", params=params).json()["hasPassword"] is True

    admin_client.request("DELETE", "/api/admin/user-password", params=params)
    assert admin_client.get("/api/admin/user-password", params=params).json()["hasPassword"] is False


def test_user_password_validation(admin_client, user_client):
    assert admin_client.post("/api/admin/user-password",
                             json={"email": USER_EMAIL, "password": "short"}).status_code == 422
    assert admin_client.get("/api/admin/user-password").status_code == 400
    assert admin_client.request("DELETE", "/api/admin/user-password").status_code == 400
    assert user_client.post("/api/admin/user-password",
                            json={"email": USER_EMAIL, "password": "hunter22"}).status_code == 403


# --- Audit log ---

def test_audit_log_lists_and_clears(admin_client, user_client):
    log_activity(ActivityType.UPLOAD, itemName="a.txt")
    log_activity(ActivityType.DELETE, itemName="b.txt")
    assert [log["itemName"] for log in admin_client.get("/api/admin/audit").json()] == ["b.txt", "a.txt"]

    assert user_client.request("DELETE", "/api/admin/audit").status_code == 403
    assert admin_client.request("DELETE", "/api/admin/audit").json() == {"message": "Logs cleared"}
    assert admin_client.get("/api/admin/audit").json() == []
    assert admin_client.get("/api/admin/activity-log").json()["totalLogs"] == 0

"""
Tests for the scheduled jobs and the cron endpoints that trigger them.
"""

import json
from unittest.mock import patch

from config import config
from kv import kv_store, ACTIVITY_LOG_KEY
from services.activity_service import (
    ActivityType,
    count_activity_logs,
    get_activity_logs,
    log_activity,
    prune_activity_logs,
)
from services.scheduler_service import STORAGE_WARNING_SENT_KEY, scheduler_service

CRON_HEADERS = {"Authorization": "Bearer test-cron-secret"}


def test_cron_requires_secret(anon_client, admin_client):
    assert anon_client.get("/api/cron/storage-check").status_code == 401
    wrong = anon_client.get("/api/cron/storage-check", headers={"Authorization": "Bearer nope"})
    assert wrong.status_code == 401
    # An admin session is not a substitute for the cron secret
    assert admin_client.get("/api/cron/weekly-report").status_code == 401


def test_cron_disabled_without_secret(anon_client):
    with patch.object(config, "CRON_SECRET", None):
        response = anon_client.get("/api/cron/storage-check", headers={"Authorization": "Bearer None"})
    assert response.status_code == 401


def test_storage_check_within_limits(anon_client, seeded_drive):
    with patch("services.scheduler_service.notify_admins") as notify:
        response = anon_client.get("/api/cron/storage-check", headers=CRON_HEADERS)
    assert response.status_code == 200
    assert response.json()["message"] == "Storage usage is within limits"
    notify.assert_not_called()


def test_storage_warning_is_sent_once_per_week(seeded_drive):
    with patch.object(config, "STORAGE_WARNING_PERCENT", 0.0), \
            patch("services.scheduler_service.notify_admins", return_value=True) as notify:
        first = scheduler_service.check_storage()
        second = scheduler_service.check_storage()

    assert first["message"] == "Storage warning sent"
    assert second["message"] == "Warning already sent recently"
    notify.assert_called_once()
    subject, body = notify.call_args[0]
    assert subject == "[Zee Index] Drive storage almost full"
    assert "<b>Used:</b> 2 MB" in body
    assert kv_store.client.get(STORAGE_WARNING_SENT_KEY)


def test_failed_storage_warning_is_retried(seeded_drive):
    with patch.object(config, "STORAGE_WARNING_PERCENT", 0.0), \
            patch("services.scheduler_service.notify_admins", return_value=False):
        result = scheduler_service.check_storage()
    assert result["success"] is False
    assert kv_store.client.get(STORAGE_WARNING_SENT_KEY) is None


def test_storage_check_without_drive():
    with patch("services.scheduler_service.is_drive_configured", return_value=False):
        assert scheduler_service.check_storage() == {"success": False, "message": "Drive is not configured"}


def test_weekly_report(anon_client):
    log_activity(ActivityType.UPLOAD, itemName="a.txt", itemSize=1024)
    log_activity(ActivityType.UPLOAD, itemName="b.txt", itemSize=1024)
    log_activity(ActivityType.DOWNLOAD, itemName="a.txt")
    log_activity(ActivityType.RENAME, itemName="c.txt")

    with patch("services.scheduler_service.notify_admins", return_value=True) as notify:
        response = anon_client.get("/api/cron/weekly-report", headers=CRON_HEADERS)

    assert response.json() == {"success": True, "report": {"uploads": 2, "downloads": 1, "uploadSize": 2048}}
    subject, body = notify.call_args[0]
    assert subject == "[Zee Index] Weekly activity report"
    assert "2 KB" in body


def test_scheduled_jobs_swallow_errors():
    with patch.object(scheduler_service, "check_storage", side_effect=RuntimeError("boom")):
        scheduler_service.storage_check_job()
    with patch.object(scheduler_service, "send_weekly_report", side_effect=RuntimeError("boom")):
        scheduler_service.weekly_report_job()


# --- Activity log retention ---

DAY_MS = 24 * 60 * 60 * 1000


def _log_at(timestamp_ms, name):
    entry = {"type": "UPLOAD", "timestamp": timestamp_ms, "itemName": name, "status": "success"}
    kv_store.client.zadd(ACTIVITY_LOG_KEY, {json.dumps(entry): timestamp_ms})


def test_prune_drops_entries_older_than_thirty_days():
    now = 1_760_000_000_000
    _log_at(now - 31 * DAY_MS, "old.txt")
    _log_at(now - 30 * DAY_MS, "boundary.txt")
    _log_at(now - 29 * DAY_MS, "recent.txt")

    assert prune_activity_logs(now_ms=now) == 2
    assert [log["itemName"] for log in get_activity_logs()] == ["recent.txt"]


def test_logging_prunes_old_entries():
    _log_at(1000, "ancient.txt")
    log_activity(ActivityType.DOWNLOAD, itemName="new.txt")
    assert [log["itemName"] for log in get_activity_logs()] == ["new.txt"]


def test_prune_job():
    _log_at(1000, "ancient.txt")
    scheduler_service.prune_activity_job()
    assert count_activity_logs() == 0
    with patch("services.scheduler_service.prune_activity_logs", side_effect=ConnectionError("down")):
        scheduler_service.prune_activity_job()

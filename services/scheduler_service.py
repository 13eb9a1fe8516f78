from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from datetime import datetime, timedelta, timezone
from typing import Any, Dict
import html
import logging

from config import config
from kv import kv_store
from services.activity_service import ActivityType, get_logs_since, prune_activity_logs
from services.drive import get_drive_service
from services.google_auth import is_drive_configured
from services.notification_service import notify_admins
from utils.formatting import format_bytes

logger = logging.getLogger("zee_index.scheduler")

STORAGE_WARNING_SENT_KEY = "zee-index:storage-warning-sent"
STORAGE_WARNING_COOLDOWN = timedelta(days=7)


class SchedulerService:
    def __init__(self):
        self.scheduler = AsyncIOScheduler()

    def start(self):
        """
        Start the scheduler and add jobs.
        """
        if not self.scheduler.running:
            self.scheduler.add_job(
                self.storage_check_job,
                IntervalTrigger(hours=6),
                id="storage_check",
                replace_existing=True
            )

            self.scheduler.add_job(
                self.weekly_report_job,
                IntervalTrigger(days=7),
                id="weekly_report",
                replace_existing=True
            )

            # Writes already prune, this covers quiet periods
            self.scheduler.add_job(
                self.prune_activity_job,
                IntervalTrigger(hours=24),
                id="prune_activity_log",
                replace_existing=True
            )

            self.scheduler.start()
            logger.info("Scheduler started.")

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("Scheduler stopped.")

    def storage_check_job(self):
        logger.info("Running storage check job...")
        try:
            self.check_storage()
        except Exception as e:
            logger.error(f"Error in storage check job: {e}")

    def weekly_report_job(self):
        logger.info("Running weekly report job...")
        try:
            self.send_weekly_report()
        except Exception as e:
            logger.error(f"Error in weekly report job: {e}")

    def prune_activity_job(self):
        try:
            removed = prune_activity_logs()
            logger.info(f"Pruned {removed} activity log entries")
        except Exception as e:
            logger.error(f"Error in activity prune job: {e}")

    def check_storage(self) -> Dict[str, Any]:
        """
        E-mail the admins when Drive usage crosses STORAGE_WARNING_PERCENT.
        At most one warning per week.
        """
        if not is_drive_configured():
            return {"success": False, "message": "Drive is not configured"}

        details = get_drive_service().get_storage_details()
        usage = int(details.get("usage") or 0)
        limit = int(details.get("limit") or 0)
        if limit <= 0:
            return {"success": True, "message": "Storage has no quota limit"}

        percent = usage / limit * 100
        if percent < config.STORAGE_WARNING_PERCENT:
            return {"success": True, "message": "Storage usage is within limits", "usagePercent": round(percent, 2)}

        now = datetime.now(timezone.utc)
        last_sent = kv_store.client.get(STORAGE_WARNING_SENT_KEY)
        if last_sent and now.timestamp() - float(last_sent) < STORAGE_WARNING_COOLDOWN.total_seconds():
            return {"success": True, "message": "Warning already sent recently", "usagePercent": round(percent, 2)}

        sent = notify_admins(
            "[Zee Index] Drive storage almost full",
            "<h1>Zee Index storage warning</h1>"
            "<p>Your Google Drive storage is almost full.</p>"
            f"<ul><li><b>Used:</b> {format_bytes(usage)} ({percent:.2f}%)</li>"
            f"<li><b>Limit:</b> {format_bytes(limit)}</li></ul>",
        )
        if sent:
            kv_store.client.set(STORAGE_WARNING_SENT_KEY, str(now.timestamp()))
        return {"success": sent, "message": "Storage warning sent" if sent else "Storage warning not sent",
                "usagePercent": round(percent, 2)}

    def send_weekly_report(self) -> Dict[str, Any]:
        """Summarise the last 7 days of uploads and downloads for the admins."""
        now = datetime.now(timezone.utc)
        logs = get_logs_since(now - timedelta(days=7))

        uploads = [e for e in logs if e.get("type") == ActivityType.UPLOAD.value]
        downloads = [e for e in logs if e.get("type") == ActivityType.DOWNLOAD.value]
        upload_size = sum(int(e.get("itemSize") or 0) for e in uploads)

        report = {"uploads": len(uploads), "downloads": len(downloads), "uploadSize": upload_size}
        sent = notify_admins(
            "[Zee Index] Weekly activity report",
            "<h1>Zee Index weekly activity report</h1>"
            "<p>Activity over the last 7 days:</p>"
            f"<ul><li><b>Files uploaded:</b> {len(uploads)}</li>"
            f"<li><b>Total upload size:</b> {format_bytes(upload_size)}</li>"
            f"<li><b>Files downloaded:</b> {len(downloads)}</li></ul>"
            f"<p>Generated {html.escape(now.strftime('%Y-%m-%d %H:%M UTC'))}.</p>",
        )
        return {"success": sent, "report": report}


scheduler_service = SchedulerService()

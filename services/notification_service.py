"""
Outgoing notifications: chat webhook posts and admin e-mails.
"""

import json
import logging
from typing import Any, Dict, List

import httpx

from config import config
from kv import kv_store, ADMINS_KEY
from services.mailer import send_mail

logger = logging.getLogger("zee_index.notifications")

WEBHOOK_USERNAME = "Zee-Index Bot"


def send_webhook_notification(event: str, details: Dict[str, Any]) -> bool:
    """Post a Discord-style message to WEBHOOK_URL. No URL configured: no-op."""
    if not config.WEBHOOK_URL:
        return False

    payload = {
        "content": f"**Event:** {event}\n**Details:** {json.dumps(details, indent=2, default=str)}",
        "username": WEBHOOK_USERNAME,
    }
    try:
        with httpx.Client(timeout=10.0) as client:
            response = client.post(config.WEBHOOK_URL, json=payload)
            response.raise_for_status()
        return True
    except httpx.HTTPError as e:
        logger.error(f"Webhook notification failed: {e}", extra={"event": event})
        return False


def admin_emails() -> List[str]:
    try:
        return sorted(kv_store.client.smembers(ADMINS_KEY))
    except Exception as e:
        logger.error(f"Could not load admin list: {e}")
        return list(config.ADMIN_EMAILS)


def notify_admins(subject: str, html: str) -> bool:
    recipients = admin_emails()
    if not recipients:
        logger.info("No admins to notify", extra={"subject": subject})
        return False
    return send_mail(recipients, subject, html)

"""
Structured JSON logging for security-relevant events.

Every entry carries service, action and status; optional fields are
file_id, actor, error_type and error_message. E-mail addresses are partially
masked unless the caller opts out.
"""

import logging
import json
from datetime import datetime
from typing import Optional
import re

EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b')


def mask_email(email: Optional[str]) -> Optional[str]:
    """
    Partially mask an email address for privacy.
    Example: john.doe@example.com -> j***@example.com
    """
    if not email or '@' not in email:
        return email

    local, domain = email.split('@', 1)
    return f"{local[:1]}***@{domain}"


def mask_emails_in_text(text: str) -> str:
    return EMAIL_PATTERN.sub(lambda match: mask_email(match.group(0)), text)


class StructuredLogger:
    """Outputs JSON-formatted logs with consistent fields."""

    def __init__(self, service: str = "auth", logger_name: str = "zee_index.security"):
        self.service = service
        self.logger = logging.getLogger(logger_name)

    def _log(
        self,
        level: int,
        action: str,
        status: str,
        message: str,
        file_id: Optional[str] = None,
        actor: Optional[str] = None,
        error_type: Optional[str] = None,
        error_message: Optional[str] = None,
        mask_sensitive: bool = True,
        **extra_fields
    ):
        def _clean(value: str) -> str:
            return mask_emails_in_text(value) if mask_sensitive else value

        log_data = {
            "timestamp": datetime.now().astimezone().isoformat(),
            "service": self.service,
            "action": action,
            "status": status,
            "message": _clean(message),
        }

        if file_id:
            log_data["file_id"] = file_id
        if actor:
            log_data["actor"] = mask_email(actor) if mask_sensitive else actor
        if error_type:
            log_data["error_type"] = error_type
        if error_message:
            log_data["error_message"] = _clean(error_message)

        for key, value in extra_fields.items():
            log_data[key] = _clean(value) if isinstance(value, str) else value

        self.logger.log(level, json.dumps(log_data, default=str))

    def info(self, action: str, status: str = "success", message: str = "", **fields):
        """
        Log informational message.

        Args:
            action: The operation being performed (e.g., "folder_unlock", "2fa_verify")
            status: Status of the operation (default: "success")
            message: Human-readable message
            **fields: file_id, actor, or any additional field
        """
        self._log(logging.INFO, action=action, status=status, message=message, **fields)

    def warning(self, action: str, status: str = "denied", message: str = "", **fields):
        self._log(logging.WARNING, action=action, status=status, message=message, **fields)

    def error(self, action: str, message: str, error: Optional[Exception] = None, **fields):
        """Log an error, recording the exception class and text when given."""
        error_type = type(error).__name__ if error else None
        error_message = str(error) if error else None
        self._log(
            logging.ERROR,
            action=action,
            status="error",
            message=message,
            error_type=error_type,
            error_message=error_message,
            **fields
        )


security_logger = StructuredLogger(service="auth")

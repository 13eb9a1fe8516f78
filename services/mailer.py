import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Iterable, Union

from config import config

logger = logging.getLogger("zee_index.mailer")

DEFAULT_SENDER = '"Zee Index" <no-reply@example.com>'


def smtp_configured() -> bool:
    return bool(config.SMTP_HOST and config.SMTP_PORT and config.SMTP_USER and config.SMTP_PASS)


def build_message(to: Iterable[str], subject: str, html: str) -> MIMEMultipart:
    message = MIMEMultipart("alternative")
    message["From"] = config.EMAIL_FROM or DEFAULT_SENDER
    message["To"] = ", ".join(to)
    message["Subject"] = subject
    message.attach(MIMEText(html, "html", "utf-8"))
    return message


def send_mail(to: Union[str, Iterable[str]], subject: str, html: str) -> bool:
    """
    Send an HTML e-mail over SMTP. SSL on port 465, STARTTLS otherwise.
    Returns False (and logs) when SMTP is not configured or sending fails.
    """
    recipients = [to] if isinstance(to, str) else [r for r in to if r]
    if not recipients:
        return False
    if not smtp_configured():
        logger.error("SMTP configuration incomplete, e-mail not sent", extra={"subject": subject})
        return False

    message = build_message(recipients, subject, html)
    try:
        if config.SMTP_PORT == 465:
            with smtplib.SMTP_SSL(config.SMTP_HOST, config.SMTP_PORT,
                                  context=ssl.create_default_context(), timeout=30) as server:
                server.login(config.SMTP_USER, config.SMTP_PASS)
                server.sendmail(message["From"], recipients, message.as_string())
        else:
            with smtplib.SMTP(config.SMTP_HOST, config.SMTP_PORT, timeout=30) as server:
                server.starttls(context=ssl.create_default_context())
                server.login(config.SMTP_USER, config.SMTP_PASS)
                server.sendmail(message["From"], recipients, message.as_string())
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send e-mail: {e}", extra={"subject": subject})
        return False

    logger.info("E-mail sent", extra={"subject": subject, "recipients": len(recipients)})
    return True

"""Notification sinks for fired alerts.

The alert engine only knows the ``Notifier`` protocol: ``send(message,
severity) -> bool``.  ``EmailNotifier`` uses stdlib smtplib with STARTTLS
and, like ``LogNotifier``, never raises; delivery failures are logged and
reported as False.
"""

import logging
import smtplib
from email.mime.text import MIMEText
from typing import Protocol

from hr_metrics.config import Settings, get_settings

logger = logging.getLogger(__name__)

_LOG_LEVELS = {"info": logging.INFO, "warning": logging.WARNING, "critical": logging.CRITICAL}


class Notifier(Protocol):
    def send(self, message: str, severity: str) -> bool: ...


class LogNotifier:
    """Writes alerts to the application log at a level matching the severity."""

    def send(self, message: str, severity: str) -> bool:
        logger.log(_LOG_LEVELS.get(severity, logging.WARNING), "%s", message)
        return True


def is_email_configured(settings: Settings | None = None) -> bool:
    """Check whether all required SMTP settings are present."""
    settings = settings or get_settings()
    return bool(
        settings.smtp_host and settings.smtp_username and settings.smtp_password and settings.alert_recipient_email
    )


class EmailNotifier:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def send(self, message: str, severity: str) -> bool:
        """Send the alert as a plain-text email.

        Returns:
            True if the email was sent successfully, False otherwise.
        """
        settings = self._settings
        msg = MIMEText(message, "plain", "utf-8")
        msg["Subject"] = f"[{severity.upper()}] HR Metrics Alert"
        msg["From"] = settings.smtp_username
        msg["To"] = settings.alert_recipient_email

        try:
            with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as server:
                _ = server.starttls()
                server.login(settings.smtp_username, settings.smtp_password)
                server.send_message(msg)
            logger.info("Alert email sent to %s", settings.alert_recipient_email)
            return True
        except Exception:
            logger.exception("Failed to send alert email")
            return False


def build_notifier(settings: Settings | None = None) -> Notifier:
    """Email when SMTP is fully configured, otherwise log-only."""
    settings = settings or get_settings()
    if is_email_configured(settings):
        return EmailNotifier(settings)
    logger.info("Alert email not configured; alerts go to the log only")
    return LogNotifier()

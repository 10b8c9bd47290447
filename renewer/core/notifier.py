"""
Error notifications.

Best-effort delivery of failure reports by SMTP email. Callers log
delivery failures and carry on.
"""

import asyncio
import logging
import smtplib
from email.mime.text import MIMEText

from config import Settings

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """Notification could not be delivered."""

    def __init__(self, message: str, suggestion: str = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)


class NullNotifier:
    """Notifier used when email notifications are disabled."""

    enabled = False

    async def notify(self, subject: str, body: str) -> None:
        logger.debug(f"Notifications disabled, dropping: {subject}")


class EmailNotifier:
    """Send plain text notifications via SMTP email."""

    enabled = True

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int = 587,
        username: str = "",
        password: str = "",
        from_addr: str = "",
        to_addr: str = "",
        timeout: float = 30.0,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.username = username
        self.password = password
        self.from_addr = from_addr
        self.to_addr = to_addr
        self.timeout = timeout

    def _check_configured(self) -> None:
        if not self.smtp_host or not self.username or not self.password:
            raise NotificationError(
                "Incomplete SMTP configuration",
                suggestion="Set SMTP_HOST, SMTP_USERNAME and SMTP_PASSWORD or disable NOTIFY_EMAIL_ENABLED",
            )

    def _build_message(self, subject: str, body: str) -> MIMEText:
        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = self.from_addr
        msg["To"] = self.to_addr
        return msg

    def send(self, subject: str, body: str) -> None:
        """Send one email synchronously."""
        self._check_configured()
        msg = self._build_message(subject, body)

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                server.ehlo()
                if server.has_extn("starttls"):
                    server.starttls()
                    server.ehlo()
                server.login(self.username, self.password)
                server.sendmail(self.from_addr, [self.to_addr], msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"Sending notification email failed: {e}")

        logger.info(f"Notification email sent successfully to {self.to_addr}")

    async def notify(self, subject: str, body: str) -> None:
        await asyncio.to_thread(self.send, subject, body)


def build_notifier(settings: Settings) -> EmailNotifier | NullNotifier:
    """Create the notifier described by settings."""
    if not settings.notify_email_enabled:
        return NullNotifier()
    return EmailNotifier(
        smtp_host=settings.smtp_host,
        smtp_port=settings.smtp_port,
        username=settings.smtp_username,
        password=settings.smtp_password,
        from_addr=settings.notification_sender,
        to_addr=settings.notification_recipient,
    )

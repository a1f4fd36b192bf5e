"""Reminder email delivery over SMTP."""

import enum
import logging
import smtplib
from dataclasses import dataclass
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Callable, Optional

from config.settings import NotificationConfig
from src.models import utcnow
from src.utils.timezone import DEFAULT_DISPLAY_TZ, format_display_datetime


logger = logging.getLogger(__name__)


class DispatchReason(enum.Enum):
    SENT = "sent"
    RECIPIENT_INVALID = "recipient_invalid"
    TRANSPORT_ERROR = "transport_error"
    NOT_CONFIGURED = "not_configured"


@dataclass
class DispatchResult:
    """Outcome of one send. The scanner only looks at ``success``."""

    success: bool
    reason: DispatchReason
    error: Optional[str] = None


@dataclass
class NotificationContent:
    """Rendered reminder email."""

    subject: str
    text: str
    html: str


def build_reminder_email(
    recipient_name: Optional[str],
    title: str,
    start_time: datetime,
    end_time: datetime,
    now: datetime,
    tz_name: str = DEFAULT_DISPLAY_TZ,
) -> NotificationContent:
    """Render subject, plain-text and HTML bodies for a block reminder."""
    minutes_until_start = round((start_time - now).total_seconds() / 60)
    duration = round((end_time - start_time).total_seconds() / 60)
    greeting_name = recipient_name or "there"
    start_label = format_display_datetime(start_time, tz_name)
    end_label = format_display_datetime(end_time, tz_name)

    subject = f'Study Block Reminder - "{title}"'

    text = (
        f"Hi {greeting_name},\n\n"
        f'Your study block "{title}" is starting in {minutes_until_start} minutes!\n\n'
        f"Start: {start_label}\n"
        f"End: {end_label}\n"
        f"Duration: {duration} minutes\n\n"
        f"Good luck with your study session!\n\n"
        f"Your Study Block Reminder System\n"
    )

    html = f"""
    <html>
        <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h2 style="color: #2563eb;">Study Block Reminder</h2>
            <p>Hi {escape(greeting_name)},</p>
            <p>Your study block is starting soon.</p>
            <ul>
                <li><strong>Block:</strong> {escape(title)}</li>
                <li><strong>Starting in:</strong> {minutes_until_start} minutes</li>
                <li><strong>Start:</strong> {start_label}</li>
                <li><strong>End:</strong> {end_label}</li>
                <li><strong>Duration:</strong> {duration} minutes</li>
            </ul>
            <p>Good luck with your study session!</p>
        </body>
    </html>
    """

    return NotificationContent(subject=subject, text=text, html=html)


class ReminderNotifier:
    """Sends study block reminders by email."""

    def __init__(
        self,
        config: NotificationConfig,
        timeout_seconds: int = 10,
        display_timezone: str = DEFAULT_DISPLAY_TZ,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize with notification configuration."""
        self.config = config
        self.timeout_seconds = timeout_seconds
        self.display_timezone = display_timezone
        self.clock = clock or utcnow
        self.smtp_config = None

        if all([config.smtp_host, config.smtp_user, config.smtp_password]):
            self.smtp_config = {
                "host": config.smtp_host,
                "port": config.smtp_port,
                "user": config.smtp_user,
                "password": config.smtp_password,
                "use_tls": config.smtp_use_tls,
                "from_email": config.from_email or config.smtp_user,
                "from_name": config.from_name,
            }
            logger.info("Email notification channel configured")
        else:
            logger.warning("SMTP not configured; reminder emails will fail")

    @property
    def configured(self) -> bool:
        return self.smtp_config is not None

    def _connect(self) -> smtplib.SMTP:
        server = smtplib.SMTP(
            self.smtp_config["host"], self.smtp_config["port"], timeout=self.timeout_seconds
        )
        try:
            if self.smtp_config["use_tls"]:
                server.starttls()
            server.login(self.smtp_config["user"], self.smtp_config["password"])
        except Exception:
            server.close()
            raise
        return server

    def test_connection(self) -> bool:
        """Verify the SMTP server accepts our credentials."""
        if not self.configured:
            logger.warning("Email service is not properly configured")
            return False
        try:
            with self._connect() as server:
                server.noop()
            logger.info("SMTP connection verified successfully")
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP connection failed: {e}")
            return False

    def send(
        self,
        recipient_address: str,
        recipient_name: Optional[str],
        title: str,
        start_time: datetime,
        end_time: datetime,
    ) -> DispatchResult:
        """Send one reminder. Never raises for delivery problems."""
        if not self.configured:
            return DispatchResult(False, DispatchReason.NOT_CONFIGURED, "SMTP not configured")
        if not recipient_address or "@" not in recipient_address:
            logger.warning(f"Invalid recipient address for reminder: {recipient_address!r}")
            return DispatchResult(
                False, DispatchReason.RECIPIENT_INVALID, "Invalid recipient address"
            )

        content = build_reminder_email(
            recipient_name, title, start_time, end_time, self.clock(), self.display_timezone
        )

        msg = MIMEMultipart("alternative")
        msg["Subject"] = content.subject
        msg["From"] = f"{self.smtp_config['from_name']} <{self.smtp_config['from_email']}>"
        msg["To"] = recipient_address
        msg.attach(MIMEText(content.text, "plain"))
        msg.attach(MIMEText(content.html, "html"))

        try:
            with self._connect() as server:
                server.send_message(msg)
        except smtplib.SMTPRecipientsRefused as e:
            logger.warning(f"Recipient refused for reminder '{title}': {e}")
            return DispatchResult(False, DispatchReason.RECIPIENT_INVALID, str(e))
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Error sending reminder email '{title}': {e}")
            return DispatchResult(False, DispatchReason.TRANSPORT_ERROR, str(e))

        return DispatchResult(True, DispatchReason.SENT)

"""Configuration management for the study block reminder service."""

import os
from dataclasses import dataclass
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


@dataclass
class AgentConfig:
    """Process-wide configuration."""

    debug_mode: bool = False
    log_level: str = "INFO"
    database_url: str = "sqlite:///database/study_blocks.db"


@dataclass
class ReminderConfig:
    """Reminder window, lock and scheduling parameters."""

    # Blocks starting inside [now + low, now + high) are eligible
    window_low_minutes: int = 9
    window_high_minutes: int = 12
    interval_seconds: int = 60
    lock_ttl_minutes: int = 15
    reap_interval_minutes: int = 5

    # Minimum lead time enforced when a block is written
    create_lead_minutes: int = 15
    update_lead_minutes: int = 13

    dispatch_timeout_seconds: int = 10
    verbose_logging: bool = False
    display_timezone: str = "America/New_York"

    def validate(self) -> List[str]:
        """Check the parameter relationships.

        Raises:
            ValueError: If the window is empty or a duration is not positive

        Returns:
            Warnings for relationships that are legal but fragile
        """
        if self.window_low_minutes < 0:
            raise ValueError("window_low_minutes must not be negative")
        if self.window_low_minutes >= self.window_high_minutes:
            raise ValueError(
                f"Reminder window is empty: low={self.window_low_minutes}m "
                f"high={self.window_high_minutes}m"
            )
        if self.interval_seconds <= 0 or self.lock_ttl_minutes <= 0:
            raise ValueError("interval_seconds and lock_ttl_minutes must be positive")

        warnings = []
        if self.lock_ttl_minutes * 60 < self.interval_seconds * 3:
            warnings.append(
                f"Lock TTL ({self.lock_ttl_minutes}m) is shorter than three scanner "
                f"intervals ({self.interval_seconds}s each)"
            )
        window_span_seconds = (self.window_high_minutes - self.window_low_minutes) * 60
        if window_span_seconds < self.interval_seconds:
            warnings.append(
                "Reminder window is narrower than the scanner interval; "
                "blocks can fall between ticks"
            )
        for name, lead in (
            ("create_lead_minutes", self.create_lead_minutes),
            ("update_lead_minutes", self.update_lead_minutes),
        ):
            if lead <= self.window_high_minutes:
                warnings.append(
                    f"{name}={lead} does not exceed window_high_minutes="
                    f"{self.window_high_minutes}; new blocks may skip the window"
                )
        return warnings


@dataclass
class NotificationConfig:
    """SMTP settings for reminder emails."""

    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True
    from_email: Optional[str] = None
    from_name: str = "Study Block Reminders"


@dataclass
class SecondaryStoreConfig:
    """Supabase mirror configuration."""

    url: str = ""
    service_role_key: str = ""
    table: str = "study_blocks"
    timeout_seconds: int = 5
    max_retries: int = 1
    # Cap on one mirror call, retries and backoff included
    total_timeout_seconds: float = 8.0

    @property
    def enabled(self) -> bool:
        return bool(self.url and self.service_role_key)


@dataclass
class WebConfig:
    """Web interface configuration."""

    port: int = 3030
    host: str = "127.0.0.1"
    debug: bool = False
    cron_secret: Optional[str] = None


class Settings:
    """Main settings manager."""

    def __init__(self):
        self.agent = self._load_agent_config()
        self.reminders = self._load_reminder_config()
        self.notifications = self._load_notification_config()
        self.secondary_store = self._load_secondary_store_config()
        self.web = self._load_web_config()

    @staticmethod
    def _load_agent_config() -> AgentConfig:
        return AgentConfig(
            debug_mode=os.getenv("DEBUG_MODE", "false").lower() == "true",
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            database_url=os.getenv(
                "DATABASE_URL", "sqlite:///database/study_blocks.db"
            ),
        )

    @staticmethod
    def _load_reminder_config() -> ReminderConfig:
        return ReminderConfig(
            window_low_minutes=int(os.getenv("REMINDER_WINDOW_LOW_MINUTES", "9")),
            window_high_minutes=int(os.getenv("REMINDER_WINDOW_HIGH_MINUTES", "12")),
            interval_seconds=int(os.getenv("REMINDER_INTERVAL_SECONDS", "60")),
            lock_ttl_minutes=int(os.getenv("REMINDER_LOCK_TTL_MINUTES", "15")),
            reap_interval_minutes=int(os.getenv("REMINDER_REAP_INTERVAL_MINUTES", "5")),
            create_lead_minutes=int(os.getenv("BLOCK_CREATE_LEAD_MINUTES", "15")),
            update_lead_minutes=int(os.getenv("BLOCK_UPDATE_LEAD_MINUTES", "13")),
            dispatch_timeout_seconds=int(
                os.getenv("REMINDER_DISPATCH_TIMEOUT_SECONDS", "10")
            ),
            verbose_logging=os.getenv("REMINDER_VERBOSE_LOGGING", "false").lower()
            == "true",
            display_timezone=os.getenv("DISPLAY_TIMEZONE") or "America/New_York",
        )

    @staticmethod
    def _load_notification_config() -> NotificationConfig:
        # Handle empty string env vars by treating them as None/defaults
        smtp_port_str = os.getenv("SMTP_PORT", "587")
        smtp_port = int(smtp_port_str) if smtp_port_str else 587

        return NotificationConfig(
            smtp_host=os.getenv("SMTP_HOST") or None,
            smtp_port=smtp_port,
            smtp_user=os.getenv("SMTP_USER") or None,
            smtp_password=os.getenv("SMTP_PASSWORD") or None,
            smtp_use_tls=os.getenv("SMTP_USE_TLS", "true").lower() == "true",
            from_email=os.getenv("SMTP_FROM_EMAIL") or None,
            from_name=os.getenv("SMTP_FROM_NAME") or "Study Block Reminders",
        )

    @staticmethod
    def _load_secondary_store_config() -> SecondaryStoreConfig:
        return SecondaryStoreConfig(
            url=os.getenv("SUPABASE_URL", "").rstrip("/"),
            service_role_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY", ""),
            table=os.getenv("SUPABASE_BLOCKS_TABLE") or "study_blocks",
            timeout_seconds=int(os.getenv("SUPABASE_TIMEOUT_SECONDS", "5")),
            max_retries=int(os.getenv("SUPABASE_MAX_RETRIES", "1")),
            total_timeout_seconds=float(os.getenv("SUPABASE_TOTAL_TIMEOUT_SECONDS", "8")),
        )

    @staticmethod
    def _load_web_config() -> WebConfig:
        return WebConfig(
            port=int(os.getenv("WEB_PORT", "3030")),
            host=os.getenv("WEB_HOST", "127.0.0.1"),
            debug=os.getenv("WEB_DEBUG", "false").lower() == "true",
            cron_secret=os.getenv("CRON_SECRET") or None,
        )


settings = Settings()

"""Timezone utilities: UTC normalisation for storage, local formatting for emails."""

from datetime import datetime, timezone
from typing import Optional, Union
import pytz

from dateutil import parser as date_parser


DEFAULT_DISPLAY_TZ = "America/New_York"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Normalise a datetime to aware UTC.

    Args:
        dt: Datetime to convert (can be naive or timezone-aware)

    Returns:
        Datetime in UTC
    """
    if dt is None:
        return None

    # If naive, assume UTC
    if dt.tzinfo is None:
        dt = pytz.UTC.localize(dt)

    return dt.astimezone(pytz.UTC)


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string (or pass through a datetime) into aware UTC.

    Args:
        value: ISO string such as "2025-01-15T14:30:00Z", or a datetime

    Returns:
        Aware UTC datetime, or None for empty input

    Raises:
        ValueError: If the string is not a parseable date
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str):
        raise ValueError(f"Unsupported date value: {value!r}")
    try:
        return ensure_utc(date_parser.isoparse(value))
    except (ValueError, OverflowError) as e:
        raise ValueError(f"Invalid date format: {value}") from e


def to_display_tz(dt: datetime, tz_name: str = DEFAULT_DISPLAY_TZ) -> datetime:
    """Convert a datetime to the display timezone."""
    if dt is None:
        return None
    return ensure_utc(dt).astimezone(pytz.timezone(tz_name))


def format_display_datetime(
    dt: datetime, tz_name: str = DEFAULT_DISPLAY_TZ, include_timezone: bool = True
) -> str:
    """
    Format datetime in the display timezone.

    Returns:
        Formatted string like "January 15, 2025 at 2:30 PM EST"
    """
    if dt is None:
        return "N/A"

    local_dt = to_display_tz(dt, tz_name)
    formatted = local_dt.strftime("%B %d, %Y at %I:%M %p")

    if include_timezone:
        # EST or EDT depending on daylight saving
        formatted += f" {local_dt.strftime('%Z')}"

    return formatted


def format_display_time_only(dt: datetime, tz_name: str = DEFAULT_DISPLAY_TZ) -> str:
    """Format time only, e.g. "2:30 PM EST"."""
    if dt is None:
        return "N/A"

    local_dt = to_display_tz(dt, tz_name)
    tz_abbr = local_dt.strftime("%Z")
    return local_dt.strftime(f"%I:%M %p {tz_abbr}")

"""
Datetime utility functions.
Provides replacements for deprecated datetime functions.
"""

from datetime import date, datetime, time
import pytz


def utcnow() -> datetime:
    """
    Get current UTC datetime using pytz.UTC.

    Returns:
        Current UTC datetime with pytz timezone information
    """
    return datetime.now(pytz.UTC)


def ensure_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to UTC.

    Naive datetimes are interpreted as UTC (this is how they come back from
    databases that do not store offsets).

    Args:
        value: Naive or aware datetime

    Returns:
        Timezone-aware UTC datetime
    """
    if value.tzinfo is None:
        return pytz.UTC.localize(value)
    return value.astimezone(pytz.UTC)


def start_of_day_utc(day: date) -> datetime:
    """Midnight UTC at the beginning of ``day``."""
    return pytz.UTC.localize(datetime.combine(day, time(0, 0)))


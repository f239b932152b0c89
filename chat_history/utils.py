"""
Date helpers for the history dashboard.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

# Quick date ranges offered next to the date pickers, in days back from today
DATE_PRESETS = {
    "7d": 7,
    "30d": 30,
    "90d": 90,
}

# Last representable instant of a day at millisecond precision
END_OF_DAY = time(23, 59, 59, 999000)


def start_of_day(day: date) -> datetime:
    """Inclusive lower bound for a date filter (00:00:00.000)."""
    return datetime.combine(day, time.min)


def end_of_day(day: date) -> datetime:
    """Inclusive upper bound for a date filter (23:59:59.999)."""
    return datetime.combine(day, END_OF_DAY)


def utc_today() -> date:
    """Current calendar date in UTC."""
    return datetime.now(timezone.utc).date()


def preset_range(preset: str, today: Optional[date] = None) -> Tuple[str, str]:
    """
    Compute the from/to ISO dates for a quick date range.

    Args:
        preset: One of the DATE_PRESETS keys ("7d", "30d", "90d")
        today: Reference date, defaults to the current UTC date

    Returns:
        Tuple of (from, to) as YYYY-MM-DD strings

    Raises:
        KeyError: if the preset is unknown
    """
    days = DATE_PRESETS[preset]
    today = today or utc_today()
    date_from = today - timedelta(days=days)
    logger.debug(f"Preset {preset}: {date_from.isoformat()} .. {today.isoformat()}")
    return date_from.isoformat(), today.isoformat()


def format_timestamp(value: Optional[datetime]) -> str:
    # dd/mm/yyyy, hh:mm:ss
    if value is None:
        return ""
    return value.strftime("%d/%m/%Y, %H:%M:%S")

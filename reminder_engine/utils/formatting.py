"""
Formatting and time zone utilities for reminder text.
"""
from datetime import datetime, time
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from loguru import logger


def resolve_zone(*candidates: Optional[str], default: str = "UTC") -> ZoneInfo:
    """Return the first candidate that names a valid IANA zone, else the default.

    Typical order is recipient user, care recipient, configured default.
    """
    for name in candidates:
        if not name:
            continue
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown time zone '{name}', falling back")
    return ZoneInfo(default)


def format_time(value: datetime, zone: ZoneInfo) -> str:
    """Format a timestamp as local 12-hour time, e.g. "2:00 PM"."""
    local = value.astimezone(zone)
    hour = local.hour % 12 or 12
    suffix = "AM" if local.hour < 12 else "PM"
    return f"{hour}:{local.minute:02d} {suffix}"


def format_date(value: datetime, zone: ZoneInfo) -> str:
    """Format a timestamp as a local long date, e.g. "Saturday, June 1"."""
    local = value.astimezone(zone)
    return f"{local:%A}, {local:%B} {local.day}"


def parse_clock(value: str) -> time:
    """Parse an "HH:MM" wall-clock string.

    Raises:
        ValueError: If the string is not a valid 24-hour time
    """
    hours, _, minutes = value.strip().partition(":")
    return time(hour=int(hours), minute=int(minutes or 0))

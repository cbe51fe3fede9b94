"""
Civil-time helpers for scheduling.

Timestamps are stored naive, as wall-clock time in the owning company's
IANA timezone. Values arriving with a UTC offset are converted into that
zone before the offset is dropped, so the same instant never gets shifted
twice.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ...config import DEFAULT_PROCEDURE_DURATION, DEFAULT_TIMEZONE

logger = logging.getLogger(__name__)


def get_zone(name: Optional[str]) -> ZoneInfo:
    """Resolve a company timezone, falling back to the configured default"""
    if not name:
        return ZoneInfo(DEFAULT_TIMEZONE)
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"⚠️ Unknown timezone '{name}', using {DEFAULT_TIMEZONE}")
        return ZoneInfo(DEFAULT_TIMEZONE)


def to_civil(value: datetime, zone: ZoneInfo) -> datetime:
    """Normalize a datetime to naive civil time in `zone`"""
    if value.tzinfo is not None:
        value = value.astimezone(zone).replace(tzinfo=None)
    return value.replace(microsecond=0)


def civil_now(zone: ZoneInfo) -> datetime:
    return datetime.now(zone).replace(tzinfo=None, microsecond=0)


def effective_duration(duration: Optional[int]) -> int:
    """Procedure duration in minutes; missing or zero counts as the default"""
    if not duration or duration <= 0:
        return DEFAULT_PROCEDURE_DURATION
    return int(duration)


def interval_end(start: datetime, duration: Optional[int]) -> datetime:
    return start + timedelta(minutes=effective_duration(duration))


def intervals_overlap(
    new_start: datetime, new_end: datetime, existing_start: datetime, existing_end: datetime
) -> bool:
    """Half-open overlap: [a, b) and [c, d) touch-but-don't-overlap when b == c"""
    return new_start < existing_end and new_end > existing_start


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """First and last instant of a civil day"""
    return datetime.combine(day, time.min), datetime.combine(day, time.max)


def format_hhmm(value: datetime) -> str:
    return value.strftime("%H:%M")

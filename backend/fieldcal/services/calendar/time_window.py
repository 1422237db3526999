"""Date-key and minute-of-day arithmetic in an organization's IANA timezone.

A *date key* is a ``YYYY-MM-DD`` local calendar date. Every conversion goes
through ``zoneinfo`` so DST days come out as 23 or 25 hours long.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fieldcal.core.errors import InvalidInputError

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60
ALLOWED_SLOT_MINUTES = (15, 30, 60, 90)
_DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive values; everything we store is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@lru_cache(maxsize=512)
def is_valid_time_zone(value: str) -> bool:
    if not value:
        return False
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        # OSError covers names that resolve to a tzdata directory, e.g. "America".
        return False
    return True


def ensure_time_zone(value: str | None, fallback: str) -> str:
    trimmed = (value or "").strip()
    if trimmed and is_valid_time_zone(trimmed):
        return trimmed
    if trimmed:
        logger.warning("Unknown timezone %r, using %s", trimmed, fallback)
    return fallback


def parse_date_key(value: str) -> date:
    raw = (value or "").strip()
    if not _DATE_KEY_RE.match(raw):
        raise InvalidInputError("date must use YYYY-MM-DD format.")
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise InvalidInputError(f"Invalid date: {raw}") from exc


def add_calendar_days(date_key: str, days: int) -> str:
    return (parse_date_key(date_key) + timedelta(days=days)).isoformat()


def local_to_utc(date_key: str, minute: int, tz_name: str) -> datetime:
    """UTC instant of ``minute`` past local midnight; 1440 is the next midnight."""
    day = parse_date_key(date_key)
    day_offset, minute = divmod(minute, MINUTES_PER_DAY)
    day = day + timedelta(days=day_offset)
    local = datetime.combine(day, time(minute // 60, minute % 60), tzinfo=ZoneInfo(tz_name))
    return local.astimezone(timezone.utc)


def date_range_for_day(date_key: str, tz_name: str) -> tuple[datetime, datetime]:
    return local_to_utc(date_key, 0, tz_name), local_to_utc(date_key, MINUTES_PER_DAY, tz_name)


def minute_of_day(instant: datetime, tz_name: str) -> int:
    local = as_utc(instant).astimezone(ZoneInfo(tz_name))
    return local.hour * 60 + local.minute


def local_date_key(instant: datetime, tz_name: str) -> str:
    return as_utc(instant).astimezone(ZoneInfo(tz_name)).date().isoformat()


def is_inside_window(minute: int, start_minute: int, end_minute: int) -> bool:
    if start_minute == end_minute:
        return True
    if start_minute < end_minute:
        return start_minute <= minute < end_minute
    # Window crosses midnight.
    return minute >= start_minute or minute < end_minute


def clamp_slot_minutes(value: int | None) -> int:
    if value in ALLOWED_SLOT_MINUTES:
        return int(value)
    return 30


def clamp_minute(value: int | None, fallback: int) -> int:
    if value is None:
        return fallback
    return max(0, min(MINUTES_PER_DAY - 1, int(value)))

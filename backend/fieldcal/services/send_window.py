"""Deferral of automated actions to an org's allowed window.

Windows are minute-of-day ranges in the org timezone and may wrap midnight;
equal start and end means there is no restriction.
"""

from __future__ import annotations

from datetime import datetime

from fieldcal.services.calendar.time_window import (
    add_calendar_days,
    as_utc,
    is_inside_window,
    local_date_key,
    local_to_utc,
    minute_of_day,
)


def is_within_window(instant: datetime, tz_name: str, start_minute: int, end_minute: int) -> bool:
    return is_inside_window(minute_of_day(instant, tz_name), start_minute, end_minute)


def next_window_start(instant: datetime, tz_name: str, start_minute: int, end_minute: int) -> datetime:
    """``instant`` itself when the window is open, else the UTC instant it next opens."""
    instant = as_utc(instant)
    if start_minute == end_minute:
        return instant
    current = minute_of_day(instant, tz_name)
    if is_inside_window(current, start_minute, end_minute):
        return instant

    date_key = local_date_key(instant, tz_name)
    if start_minute < end_minute and current >= end_minute:
        # Already past today's window.
        date_key = add_calendar_days(date_key, 1)
    return local_to_utc(date_key, start_minute, tz_name)


def next_send_time(instant: datetime, tz_name: str, quiet_start_minute: int, quiet_end_minute: int) -> datetime:
    # Sending is allowed in the complement of quiet hours: [quiet_end, quiet_start).
    return next_window_start(instant, tz_name, quiet_end_minute, quiet_start_minute)

from __future__ import annotations

from datetime import datetime, timezone

from fieldcal.services.calendar.time_window import local_to_utc
from fieldcal.services.send_window import is_within_window, next_send_time, next_window_start

LA = "America/Los_Angeles"


def test_quiet_hours_at_night_defer_to_next_morning():
    at = local_to_utc("2024-06-03", 21 * 60, LA)
    assert next_send_time(at, LA, 20 * 60, 8 * 60) == local_to_utc("2024-06-04", 8 * 60, LA)


def test_quiet_hours_after_midnight_defer_to_same_morning():
    at = local_to_utc("2024-06-04", 3 * 60, LA)
    assert next_send_time(at, LA, 20 * 60, 8 * 60) == local_to_utc("2024-06-04", 8 * 60, LA)


def test_outside_quiet_hours_returns_instant_unchanged():
    at = local_to_utc("2024-06-03", 12 * 60, LA)
    assert next_send_time(at, LA, 20 * 60, 8 * 60) == at


def test_equal_bounds_never_defer():
    at = local_to_utc("2024-06-03", 23 * 60, LA)
    assert next_window_start(at, LA, 8 * 60, 8 * 60) == at
    assert next_send_time(at, LA, 0, 0) == at


def test_next_window_start_before_opening_same_day():
    at = local_to_utc("2024-06-03", 6 * 60, LA)
    assert next_window_start(at, LA, 9 * 60, 17 * 60) == local_to_utc("2024-06-03", 9 * 60, LA)


def test_next_window_start_for_overnight_window():
    # Window 22:00-06:00; at noon it next opens at 22:00 the same day.
    at = local_to_utc("2024-06-03", 12 * 60, LA)
    assert next_window_start(at, LA, 22 * 60, 6 * 60) == local_to_utc("2024-06-03", 22 * 60, LA)


def test_next_window_start_across_dst_change():
    # Evening before spring-forward; 08:00 the next morning is PDT (UTC-7).
    at = local_to_utc("2024-03-09", 21 * 60, LA)
    assert next_window_start(at, LA, 8 * 60, 20 * 60) == datetime(2024, 3, 10, 15, 0, tzinfo=timezone.utc)


def test_is_within_window_uses_org_timezone():
    at = datetime(2024, 6, 4, 2, 0, tzinfo=timezone.utc)  # 19:00 in Los Angeles
    assert is_within_window(at, LA, 8 * 60, 20 * 60) is True
    assert is_within_window(at, "UTC", 8 * 60, 20 * 60) is False

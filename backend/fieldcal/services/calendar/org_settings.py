from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from fieldcal.core.config import get_settings
from fieldcal.core.errors import NotFoundError
from fieldcal.models.calendar import Organization, OrgBusinessHours
from fieldcal.services.calendar.time_window import (
    MINUTES_PER_DAY,
    clamp_minute,
    clamp_slot_minutes,
    ensure_time_zone,
    parse_date_key,
)


@dataclass(frozen=True)
class BusinessHoursWindow:
    open_minute: int
    close_minute: int


@dataclass(frozen=True)
class OrgCalendarSettings:
    org_id: uuid.UUID
    timezone: str
    default_slot_minutes: int
    quiet_hours_start_minute: int
    quiet_hours_end_minute: int
    allow_overlaps: bool = False
    # weekday (0 = Monday) -> window; missing or None means closed
    business_hours: dict[int, BusinessHoursWindow | None] = field(default_factory=dict)

    def window_for(self, day: date | str) -> BusinessHoursWindow | None:
        if isinstance(day, str):
            day = parse_date_key(day)
        return self.window_for_weekday(day.weekday())

    def window_for_weekday(self, weekday: int) -> BusinessHoursWindow | None:
        window = self.business_hours.get(weekday)
        if window is None or window.close_minute <= window.open_minute:
            return None
        return window


def parse_org_id(value: str | uuid.UUID) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise NotFoundError("Organization not found.") from exc


def _default_business_hours() -> dict[int, BusinessHoursWindow | None]:
    settings = get_settings()
    window = BusinessHoursWindow(
        open_minute=settings.calendar_default_open_minute,
        close_minute=settings.calendar_default_close_minute,
    )
    return {weekday: window for weekday in range(7)}


def get_org_calendar_settings(db: Session, org_id: str | uuid.UUID) -> OrgCalendarSettings:
    """Resolve timezone, slot length, business hours and quiet hours for one org.

    Unset fields fall back to the configured defaults. An org without any
    business-hours rows gets the default table; once at least one row exists,
    weekdays without a row are closed.
    """
    config = get_settings()
    org = db.get(Organization, parse_org_id(org_id))
    if org is None:
        raise NotFoundError("Organization not found.")

    rows = (
        db.execute(select(OrgBusinessHours).where(OrgBusinessHours.org_id == org.id))
        .scalars()
        .all()
    )
    if rows:
        business_hours: dict[int, BusinessHoursWindow | None] = {weekday: None for weekday in range(7)}
        for row in rows:
            if not row.is_open:
                continue
            business_hours[int(row.day_of_week)] = BusinessHoursWindow(
                open_minute=max(0, min(MINUTES_PER_DAY, int(row.open_minute))),
                close_minute=max(0, min(MINUTES_PER_DAY, int(row.close_minute))),
            )
    else:
        business_hours = _default_business_hours()

    return OrgCalendarSettings(
        org_id=org.id,
        timezone=ensure_time_zone(org.calendar_timezone, config.calendar_default_timezone),
        default_slot_minutes=clamp_slot_minutes(
            org.default_slot_minutes or config.calendar_default_slot_minutes
        ),
        quiet_hours_start_minute=clamp_minute(
            org.quiet_hours_start_minute, config.calendar_default_quiet_hours_start_minute
        ),
        quiet_hours_end_minute=clamp_minute(
            org.quiet_hours_end_minute, config.calendar_default_quiet_hours_end_minute
        ),
        allow_overlaps=bool(org.allow_overlaps),
        business_hours=business_hours,
    )

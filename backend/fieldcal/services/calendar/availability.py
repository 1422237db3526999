"""Per-day slot generation for one worker."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from fieldcal.core.errors import InvalidInputError, NotFoundError
from fieldcal.models.calendar import User
from fieldcal.services.calendar.conflicts import load_blocking_intervals, overlaps, parse_worker_ids
from fieldcal.services.calendar.org_settings import OrgCalendarSettings, get_org_calendar_settings
from fieldcal.services.calendar.time_window import as_utc, local_to_utc, now_utc, parse_date_key


@dataclass
class Availability:
    time_zone: str
    slots: list[datetime] = field(default_factory=list)


def _positive_int(value: int, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidInputError(f"{field_name} must be a positive integer.")
    return value


def require_worker(db: Session, org_id: uuid.UUID, worker_user_id: str | uuid.UUID) -> User:
    (worker_uuid,) = parse_worker_ids([worker_user_id])
    worker = db.get(User, worker_uuid)
    if worker is None:
        raise NotFoundError("Worker not found.")
    if worker.org_id is not None and worker.org_id != org_id:
        raise NotFoundError("Worker is not part of this organization.")
    return worker


def compute_availability(
    db: Session,
    *,
    org_id: str | uuid.UUID,
    worker_user_id: str | uuid.UUID,
    date_key: str,
    duration_minutes: int,
    step_minutes: Optional[int] = None,
    settings: Optional[OrgCalendarSettings] = None,
    now: Optional[datetime] = None,
) -> Availability:
    """Ordered UTC starts at which ``worker_user_id`` can take a booking on ``date_key``.

    Candidates are ``open, open + step, ...`` while ``start + duration`` still
    fits before close, minus any that overlap an event, an active hold or a busy
    block. Duration and step are not clamped here; booking callers usually keep
    them between 15 and 720 minutes. Only ``now`` decides which holds have
    lapsed; past slots are not filtered out.
    """
    duration_minutes = _positive_int(duration_minutes, "duration_minutes")
    settings = settings or get_org_calendar_settings(db, org_id)
    if step_minutes is None:
        step_minutes = settings.default_slot_minutes
    step_minutes = _positive_int(step_minutes, "step_minutes")

    day = parse_date_key(date_key)
    worker = require_worker(db, settings.org_id, worker_user_id)
    window = settings.window_for(day)
    if window is None:
        return Availability(time_zone=settings.timezone)

    open_utc = local_to_utc(date_key, window.open_minute, settings.timezone)
    close_utc = local_to_utc(date_key, window.close_minute, settings.timezone)

    blocked = load_blocking_intervals(
        db,
        org_id=settings.org_id,
        worker_user_ids=[worker.id],
        start_utc=open_utc,
        end_utc=close_utc,
        include_events=not settings.allow_overlaps,
        default_event_minutes=settings.default_slot_minutes,
        now=as_utc(now) if now is not None else now_utc(),
    )

    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=step_minutes)
    slots: list[datetime] = []
    start = open_utc
    while start + duration <= close_utc:
        end = start + duration
        if not any(overlaps(start, end, item.start_at, item.end_at) for item in blocked):
            slots.append(start)
        start += step

    return Availability(time_zone=settings.timezone, slots=slots)

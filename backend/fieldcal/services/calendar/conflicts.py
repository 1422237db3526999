from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from fieldcal.core.errors import InvalidInputError
from fieldcal.models.calendar import BusyBlock, CalendarHold, EventWorkerAssignment, ScheduledEvent
from fieldcal.services.calendar.org_settings import OrgCalendarSettings, get_org_calendar_settings
from fieldcal.services.calendar.time_window import as_utc, now_utc

SOURCE_EVENT = "EVENT"
SOURCE_HOLD = "HOLD"
SOURCE_BUSY_BLOCK = "BUSY_BLOCK"


@dataclass(frozen=True)
class Conflict:
    worker_user_id: uuid.UUID
    source: str
    source_id: uuid.UUID
    start_at: datetime
    end_at: datetime


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    # Half-open: back-to-back intervals do not collide.
    return start_a < end_b and start_b < end_a


def is_hold_active(hold: CalendarHold, now: datetime) -> bool:
    """Stored status lags real expiry, so a lapsed ACTIVE hold counts as inactive."""
    return hold.status == "ACTIVE" and as_utc(hold.expires_at) > now


def parse_worker_ids(values: Iterable[str | uuid.UUID]) -> list[uuid.UUID]:
    ids: list[uuid.UUID] = []
    for value in values:
        try:
            worker_id = value if isinstance(value, uuid.UUID) else uuid.UUID(str(value).strip())
        except ValueError as exc:
            raise InvalidInputError(f"Invalid worker id: {value}") from exc
        if worker_id not in ids:
            ids.append(worker_id)
    return ids


def load_blocking_intervals(
    db: Session,
    *,
    org_id: uuid.UUID,
    worker_user_ids: list[uuid.UUID],
    start_utc: datetime,
    end_utc: datetime,
    include_events: bool,
    default_event_minutes: int,
    now: datetime,
    exclude_event_id: Optional[uuid.UUID] = None,
    exclude_hold_id: Optional[uuid.UUID] = None,
) -> list[Conflict]:
    """Every committed or reserved interval of the given workers touching [start_utc, end_utc)."""
    if not worker_user_ids:
        return []

    found: list[Conflict] = []

    if include_events:
        stmt = (
            select(ScheduledEvent, EventWorkerAssignment.worker_user_id)
            .join(EventWorkerAssignment, EventWorkerAssignment.event_id == ScheduledEvent.id)
            .where(
                ScheduledEvent.org_id == org_id,
                EventWorkerAssignment.worker_user_id.in_(worker_user_ids),
                ScheduledEvent.busy.is_(True),
                ScheduledEvent.status != "CANCELLED",
                ScheduledEvent.start_at < end_utc,
                or_(ScheduledEvent.end_at.is_(None), ScheduledEvent.end_at > start_utc),
            )
        )
        if exclude_event_id is not None:
            stmt = stmt.where(ScheduledEvent.id != exclude_event_id)
        for event, worker_id in db.execute(stmt).all():
            event_start = as_utc(event.start_at)
            if event.end_at is not None:
                event_end = as_utc(event.end_at)
            else:
                event_end = event_start + timedelta(minutes=default_event_minutes)
            found.append(Conflict(worker_id, SOURCE_EVENT, event.id, event_start, event_end))

    hold_stmt = select(CalendarHold).where(
        CalendarHold.org_id == org_id,
        CalendarHold.worker_user_id.in_(worker_user_ids),
        CalendarHold.status == "ACTIVE",
        CalendarHold.expires_at > now,
        CalendarHold.start_at < end_utc,
        CalendarHold.end_at > start_utc,
    )
    if exclude_hold_id is not None:
        hold_stmt = hold_stmt.where(CalendarHold.id != exclude_hold_id)
    for hold in db.execute(hold_stmt).scalars().all():
        if not is_hold_active(hold, now):
            continue
        found.append(
            Conflict(hold.worker_user_id, SOURCE_HOLD, hold.id, as_utc(hold.start_at), as_utc(hold.end_at))
        )

    block_stmt = select(BusyBlock).where(
        BusyBlock.org_id == org_id,
        BusyBlock.worker_user_id.in_(worker_user_ids),
        BusyBlock.start_at < end_utc,
        BusyBlock.end_at > start_utc,
    )
    for block in db.execute(block_stmt).scalars().all():
        found.append(
            Conflict(block.worker_user_id, SOURCE_BUSY_BLOCK, block.id, as_utc(block.start_at), as_utc(block.end_at))
        )

    seen: set[tuple[uuid.UUID, str, uuid.UUID]] = set()
    result: list[Conflict] = []
    for item in sorted(found, key=lambda c: (c.start_at, c.end_at, c.source, str(c.source_id), str(c.worker_user_id))):
        if not overlaps(item.start_at, item.end_at, start_utc, end_utc):
            continue
        key = (item.worker_user_id, item.source, item.source_id)
        if key in seen:
            continue
        seen.add(key)
        result.append(item)
    return result


def detect_conflicts(
    db: Session,
    *,
    org_id: str | uuid.UUID,
    worker_user_ids: Iterable[str | uuid.UUID],
    start_utc: datetime,
    end_utc: datetime,
    include_events: bool = True,
    settings: Optional[OrgCalendarSettings] = None,
    exclude_event_id: Optional[uuid.UUID] = None,
    exclude_hold_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> list[Conflict]:
    """Point-in-time snapshot of what blocks [start_utc, end_utc) for the workers.

    Takes no locks. Callers that write based on the answer must hold
    ``worker_schedule_lock`` across the check and the commit.
    """
    start_utc = as_utc(start_utc)
    end_utc = as_utc(end_utc)
    if end_utc <= start_utc:
        raise InvalidInputError("end_at must be after start_at.")

    settings = settings or get_org_calendar_settings(db, org_id)
    return load_blocking_intervals(
        db,
        org_id=settings.org_id,
        worker_user_ids=parse_worker_ids(worker_user_ids),
        start_utc=start_utc,
        end_utc=end_utc,
        include_events=include_events and not settings.allow_overlaps,
        default_event_minutes=settings.default_slot_minutes,
        now=as_utc(now) if now is not None else now_utc(),
        exclude_event_id=exclude_event_id,
        exclude_hold_id=exclude_hold_id,
    )

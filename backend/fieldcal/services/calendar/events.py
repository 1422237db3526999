"""Direct ScheduledEvent writes: booking without a hold and rescheduling."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from fieldcal.core.config import get_settings
from fieldcal.core.errors import ConflictError, InvalidInputError, NotFoundError
from fieldcal.models.calendar import EventWorkerAssignment, ScheduledEvent
from fieldcal.services.audit import create_audit_log
from fieldcal.services.calendar.availability import require_worker
from fieldcal.services.calendar.conflicts import detect_conflicts, parse_worker_ids
from fieldcal.services.calendar.holds import (
    EVENT_STATUSES,
    EVENT_TYPES,
    _normalize_choice,
    _user_fk_or_none,
)
from fieldcal.services.calendar.locks import refresh_for_update, worker_schedule_lock
from fieldcal.services.calendar.org_settings import OrgCalendarSettings, get_org_calendar_settings
from fieldcal.services.calendar.time_window import as_utc, now_utc

logger = logging.getLogger(__name__)


def get_event(db: Session, event_id: str | uuid.UUID) -> ScheduledEvent:
    try:
        event_uuid = event_id if isinstance(event_id, uuid.UUID) else uuid.UUID(str(event_id))
    except ValueError as exc:
        raise NotFoundError("Event not found.") from exc
    event = db.get(ScheduledEvent, event_uuid)
    if event is None:
        raise NotFoundError("Event not found.")
    return event


def event_worker_ids(db: Session, event_id: uuid.UUID) -> list[uuid.UUID]:
    stmt = select(EventWorkerAssignment.worker_user_id).where(EventWorkerAssignment.event_id == event_id)
    return list(db.execute(stmt).scalars().all())


def _clamp_duration(value: int) -> int:
    config = get_settings()
    return max(config.booking_min_duration_minutes, min(config.booking_max_duration_minutes, int(value)))


def _event_snapshot(event: ScheduledEvent, worker_ids: Iterable[uuid.UUID]) -> dict:
    return {
        "type": event.type,
        "status": event.status,
        "busy": bool(event.busy),
        "start_at": as_utc(event.start_at).isoformat(),
        "end_at": as_utc(event.end_at).isoformat() if event.end_at else None,
        "worker_user_ids": [str(worker_id) for worker_id in worker_ids],
        "customer_name": event.customer_name,
        "address_line": event.address_line,
    }


def _resolve_workers(db: Session, settings: OrgCalendarSettings, worker_user_ids) -> list[uuid.UUID]:
    worker_ids = parse_worker_ids(worker_user_ids)
    if not worker_ids:
        raise InvalidInputError("At least one worker is required.")
    for worker_id in worker_ids:
        require_worker(db, settings.org_id, worker_id)
    return worker_ids


def _raise_on_conflicts(
    db: Session,
    settings: OrgCalendarSettings,
    worker_ids: list[uuid.UUID],
    start_at: datetime,
    end_at: datetime,
    *,
    exclude_event_id: Optional[uuid.UUID] = None,
    now: datetime,
) -> None:
    conflicts = detect_conflicts(
        db,
        org_id=settings.org_id,
        worker_user_ids=worker_ids,
        start_utc=start_at,
        end_utc=end_at,
        include_events=True,
        settings=settings,
        exclude_event_id=exclude_event_id,
        now=now,
    )
    if conflicts:
        raise ConflictError("Scheduling conflict detected for one or more workers.", conflicts)


def create_event(
    db: Session,
    *,
    org_id: str | uuid.UUID,
    worker_user_ids: Iterable[str | uuid.UUID],
    title: str,
    start_at: datetime,
    end_at: Optional[datetime] = None,
    duration_minutes: Optional[int] = None,
    event_type: Optional[str] = None,
    event_status: Optional[str] = None,
    busy: bool = True,
    all_day: bool = False,
    description: Optional[str] = None,
    customer_name: Optional[str] = None,
    address_line: Optional[str] = None,
    lead_id: Optional[str] = None,
    actor_id: Optional[str] = None,
    actor_type: str = "SYSTEM",
    now: Optional[datetime] = None,
) -> ScheduledEvent:
    """Book an event straight onto the workers' calendars, or raise ConflictError.

    Without ``end_at`` the event lasts ``duration_minutes`` (default 30),
    clamped to the configured booking bounds. Busy events are checked against
    events, active holds and busy blocks; the check and the insert share one
    schedule lock.
    """
    title = (title or "").strip()
    if not title:
        raise InvalidInputError("Title is required.")
    start_at = as_utc(start_at)
    if end_at is not None:
        end_at = as_utc(end_at)
    else:
        end_at = start_at + timedelta(minutes=_clamp_duration(duration_minutes or 30))
    if end_at <= start_at:
        raise InvalidInputError("end_at must be after start_at.")

    settings = get_org_calendar_settings(db, org_id)
    worker_ids = _resolve_workers(db, settings, worker_user_ids)
    event_type = _normalize_choice(event_type, EVENT_TYPES, "type") or "JOB"
    event_status = _normalize_choice(event_status, EVENT_STATUSES, "status") or "SCHEDULED"
    current = as_utc(now) if now is not None else now_utc()

    with worker_schedule_lock(db, settings.org_id, worker_ids):
        if busy:
            _raise_on_conflicts(db, settings, worker_ids, start_at, end_at, now=current)

        event = ScheduledEvent(
            org_id=settings.org_id,
            type=event_type,
            status=event_status,
            busy=busy,
            all_day=all_day,
            title=title,
            description=(description or "").strip() or None,
            customer_name=(customer_name or "").strip() or None,
            address_line=(address_line or "").strip() or None,
            lead_id=lead_id or None,
            start_at=start_at,
            end_at=end_at,
            created_by_user_id=_user_fk_or_none(db, actor_id),
        )
        db.add(event)
        db.flush()
        for worker_id in worker_ids:
            db.add(EventWorkerAssignment(org_id=settings.org_id, event_id=event.id, worker_user_id=worker_id))

        create_audit_log(
            db,
            entity_type="scheduled_event",
            entity_id=str(event.id),
            action="EVENT_CREATED",
            old_value=None,
            new_value=_event_snapshot(event, worker_ids),
            actor_type=actor_type,
            actor_id=actor_id,
            org_id=str(settings.org_id),
        )
        db.commit()

    logger.info("Event %s booked for workers %s", event.id, [str(worker_id) for worker_id in worker_ids])
    return event


def reschedule_event(
    db: Session,
    event: ScheduledEvent,
    *,
    start_at: Optional[datetime] = None,
    end_at: Optional[datetime] = None,
    duration_minutes: Optional[int] = None,
    worker_user_ids: Optional[Iterable[str | uuid.UUID]] = None,
    busy: Optional[bool] = None,
    event_type: Optional[str] = None,
    event_status: Optional[str] = None,
    title: Optional[str] = None,
    actor_id: Optional[str] = None,
    actor_type: str = "SYSTEM",
    now: Optional[datetime] = None,
) -> ScheduledEvent:
    """Move and/or reassign an event; the event never conflicts with itself.

    Moving only ``start_at`` keeps the event's length. An event without an end
    is treated as one org slot long.
    """
    settings = get_org_calendar_settings(db, event.org_id)
    current = as_utc(now) if now is not None else now_utc()
    new_type = _normalize_choice(event_type, EVENT_TYPES, "type")
    new_status = _normalize_choice(event_status, EVENT_STATUSES, "status")
    requested_workers = parse_worker_ids(worker_user_ids or [])

    # Event first, then its target workers: nothing else takes them in the reverse order.
    with worker_schedule_lock(db, settings.org_id, [], record_keys=[f"event:{event.id}"]):
        refresh_for_update(db, event)
        previous_workers = event_worker_ids(db, event.id)
        worker_ids = _resolve_workers(db, settings, requested_workers) if requested_workers else previous_workers

        old_start = as_utc(event.start_at)
        if event.end_at is not None:
            old_end = as_utc(event.end_at)
        else:
            old_end = old_start + timedelta(minutes=settings.default_slot_minutes)
        next_start = as_utc(start_at) if start_at is not None else old_start
        if end_at is not None:
            next_end = as_utc(end_at)
        elif duration_minutes is not None:
            next_end = next_start + timedelta(minutes=_clamp_duration(duration_minutes))
        else:
            next_end = next_start + (old_end - old_start)
        if next_end <= next_start:
            raise InvalidInputError("end_at must be after start_at.")
        next_busy = bool(event.busy) if busy is None else busy

        with worker_schedule_lock(db, settings.org_id, worker_ids):
            if next_busy:
                _raise_on_conflicts(
                    db,
                    settings,
                    worker_ids,
                    next_start,
                    next_end,
                    exclude_event_id=event.id,
                    now=current,
                )

            old_value = _event_snapshot(event, previous_workers)
            event.start_at = next_start
            event.end_at = next_end
            event.busy = next_busy
            if new_type is not None:
                event.type = new_type
            if new_status is not None:
                event.status = new_status
            if title is not None and title.strip():
                event.title = title.strip()
            if set(worker_ids) != set(previous_workers):
                db.execute(delete(EventWorkerAssignment).where(EventWorkerAssignment.event_id == event.id))
                for worker_id in worker_ids:
                    db.add(
                        EventWorkerAssignment(org_id=settings.org_id, event_id=event.id, worker_user_id=worker_id)
                    )

            create_audit_log(
                db,
                entity_type="scheduled_event",
                entity_id=str(event.id),
                action="EVENT_RESCHEDULED",
                old_value=old_value,
                new_value=_event_snapshot(event, worker_ids),
                actor_type=actor_type,
                actor_id=actor_id,
                org_id=str(settings.org_id),
            )
            db.commit()

    logger.info("Event %s rescheduled to %s", event.id, next_start.isoformat())
    return event

"""Short-lived slot reservations (holds) and their promotion to events."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from fieldcal.core.config import get_settings
from fieldcal.core.errors import ConflictError, InvalidInputError, NotFoundError
from fieldcal.models.calendar import CalendarHold, EventWorkerAssignment, ScheduledEvent, User
from fieldcal.services.audit import create_audit_log
from fieldcal.services.calendar.availability import require_worker
from fieldcal.services.calendar.conflicts import detect_conflicts, is_hold_active, parse_worker_ids
from fieldcal.services.calendar.locks import refresh_for_update, worker_schedule_lock
from fieldcal.services.calendar.org_settings import get_org_calendar_settings
from fieldcal.services.calendar.time_window import as_utc, date_range_for_day, now_utc

logger = logging.getLogger(__name__)

HOLD_STATUSES = ("ACTIVE", "CONFIRMED", "EXPIRED", "CANCELLED")
HOLD_SOURCES = ("MANUAL", "SMS_AGENT", "GOOGLE_SYNC")
EVENT_TYPES = (
    "JOB",
    "ESTIMATE",
    "CALL",
    "BLOCK",
    "ADMIN",
    "TRAVEL",
    "FOLLOW_UP",
    "DEMO",
    "ONBOARDING",
    "TASK",
)
EVENT_STATUSES = (
    "SCHEDULED",
    "CONFIRMED",
    "EN_ROUTE",
    "ON_SITE",
    "IN_PROGRESS",
    "COMPLETED",
    "CANCELLED",
    "NO_SHOW",
)


def clamp_expiry_minutes(value: Optional[int]) -> int:
    settings = get_settings()
    if value is None:
        value = settings.hold_default_expiry_minutes
    return max(settings.hold_min_expiry_minutes, min(settings.hold_max_expiry_minutes, int(value)))


def _normalize_choice(value: Optional[str], allowed: tuple[str, ...], field_name: str) -> Optional[str]:
    if value is None:
        return None
    normalized = str(value).strip().upper()
    if normalized not in allowed:
        raise InvalidInputError(f"Invalid {field_name}: {value}")
    return normalized


def _hold_snapshot(hold: CalendarHold) -> dict:
    return {
        "worker_user_id": str(hold.worker_user_id),
        "status": hold.status,
        "start_at": as_utc(hold.start_at).isoformat(),
        "end_at": as_utc(hold.end_at).isoformat(),
        "expires_at": as_utc(hold.expires_at).isoformat(),
        "source": hold.source,
        "customer_name": hold.customer_name,
        "address_line": hold.address_line,
    }


def get_hold(db: Session, hold_id: str | uuid.UUID) -> CalendarHold:
    try:
        hold_uuid = hold_id if isinstance(hold_id, uuid.UUID) else uuid.UUID(str(hold_id))
    except ValueError as exc:
        raise NotFoundError("Hold not found.") from exc
    hold = db.get(CalendarHold, hold_uuid)
    if hold is None:
        raise NotFoundError("Hold not found.")
    return hold


def list_holds(
    db: Session,
    *,
    org_id: str | uuid.UUID,
    worker_user_id: Optional[str] = None,
    date_key: Optional[str] = None,
    status: Optional[str] = "ACTIVE",
) -> list[CalendarHold]:
    settings = get_org_calendar_settings(db, org_id)
    stmt = select(CalendarHold).where(CalendarHold.org_id == settings.org_id)
    if status:
        stmt = stmt.where(CalendarHold.status == _normalize_choice(status, HOLD_STATUSES, "status"))
    if worker_user_id:
        (worker_uuid,) = parse_worker_ids([worker_user_id])
        stmt = stmt.where(CalendarHold.worker_user_id == worker_uuid)
    if date_key:
        day_start, day_end = date_range_for_day(date_key, settings.timezone)
        stmt = stmt.where(CalendarHold.start_at < day_end, CalendarHold.end_at > day_start)
    stmt = stmt.order_by(CalendarHold.start_at.asc(), CalendarHold.created_at.asc())
    return list(db.execute(stmt).scalars().all())


def create_hold(
    db: Session,
    *,
    org_id: str | uuid.UUID,
    worker_user_id: str | uuid.UUID,
    start_at: datetime,
    end_at: datetime,
    expires_in_minutes: Optional[int] = None,
    source: Optional[str] = None,
    lead_id: Optional[str] = None,
    customer_name: Optional[str] = None,
    title: Optional[str] = None,
    address_line: Optional[str] = None,
    actor_id: Optional[str] = None,
    actor_type: str = "SYSTEM",
    now: Optional[datetime] = None,
) -> CalendarHold:
    """Reserve [start_at, end_at) for one worker, or raise ConflictError.

    The conflict check and the insert commit under the worker's schedule lock,
    so two overlapping requests for the same worker cannot both succeed.
    """
    start_at = as_utc(start_at)
    end_at = as_utc(end_at)
    if end_at <= start_at:
        raise InvalidInputError("Valid start_at and end_at are required.")

    settings = get_org_calendar_settings(db, org_id)
    worker = require_worker(db, settings.org_id, worker_user_id)
    source = _normalize_choice(source, HOLD_SOURCES, "source") or "MANUAL"

    with worker_schedule_lock(db, settings.org_id, [worker.id]):
        current = as_utc(now) if now is not None else now_utc()
        conflicts = detect_conflicts(
            db,
            org_id=settings.org_id,
            worker_user_ids=[worker.id],
            start_utc=start_at,
            end_utc=end_at,
            include_events=True,
            settings=settings,
            now=current,
        )
        if conflicts:
            raise ConflictError("Hold conflicts with existing schedule.", conflicts)

        hold = CalendarHold(
            org_id=settings.org_id,
            worker_user_id=worker.id,
            lead_id=lead_id or None,
            customer_name=(customer_name or "").strip() or None,
            title=(title or "").strip() or None,
            address_line=(address_line or "").strip() or None,
            source=source,
            start_at=start_at,
            end_at=end_at,
            status="ACTIVE",
            expires_at=current + timedelta(minutes=clamp_expiry_minutes(expires_in_minutes)),
            created_by_user_id=_user_fk_or_none(db, actor_id),
        )
        db.add(hold)
        db.flush()

        create_audit_log(
            db,
            entity_type="calendar_hold",
            entity_id=str(hold.id),
            action="HOLD_CREATED",
            old_value=None,
            new_value=_hold_snapshot(hold),
            actor_type=actor_type,
            actor_id=actor_id,
            org_id=str(settings.org_id),
        )
        db.commit()

    logger.info("Hold %s created for worker %s (%s)", hold.id, worker.id, source)
    return hold


def update_hold(
    db: Session,
    hold: CalendarHold,
    *,
    status: Optional[str] = None,
    expires_at: Optional[datetime] = None,
    actor_id: Optional[str] = None,
    actor_type: str = "SYSTEM",
) -> CalendarHold:
    """Apply a caller-directed status and/or expiry change; no transition rules."""
    new_status = _normalize_choice(status, HOLD_STATUSES, "status")
    old_value = _hold_snapshot(hold)

    if new_status is not None:
        hold.status = new_status
    if expires_at is not None:
        hold.expires_at = as_utc(expires_at)

    create_audit_log(
        db,
        entity_type="calendar_hold",
        entity_id=str(hold.id),
        action="HOLD_UPDATED",
        old_value=old_value,
        new_value=_hold_snapshot(hold),
        actor_type=actor_type,
        actor_id=actor_id,
        org_id=str(hold.org_id),
    )
    db.commit()
    return hold


def delete_hold(
    db: Session,
    hold: CalendarHold,
    *,
    actor_id: Optional[str] = None,
    actor_type: str = "SYSTEM",
) -> uuid.UUID:
    hold_id = hold.id
    create_audit_log(
        db,
        entity_type="calendar_hold",
        entity_id=str(hold_id),
        action="HOLD_DELETED",
        old_value=_hold_snapshot(hold),
        new_value=None,
        actor_type=actor_type,
        actor_id=actor_id,
        org_id=str(hold.org_id),
    )
    db.delete(hold)
    db.commit()
    return hold_id


def _assert_confirmable(db: Session, hold: CalendarHold, current: datetime) -> None:
    if hold.status != "ACTIVE":
        raise InvalidInputError("Only ACTIVE holds can be confirmed.")
    if not is_hold_active(hold, current):
        hold.status = "EXPIRED"
        db.commit()
        raise InvalidInputError("Hold has expired.")


def confirm_hold(
    db: Session,
    hold: CalendarHold,
    *,
    worker_user_ids: Optional[Iterable[str]] = None,
    end_at: Optional[datetime] = None,
    event_type: Optional[str] = None,
    event_status: Optional[str] = None,
    title: Optional[str] = None,
    description: Optional[str] = None,
    customer_name: Optional[str] = None,
    address_line: Optional[str] = None,
    lead_id: Optional[str] = None,
    busy: bool = True,
    actor_id: Optional[str] = None,
    actor_type: str = "SYSTEM",
    now: Optional[datetime] = None,
) -> ScheduledEvent:
    """Promote an active hold into a ScheduledEvent and mark the hold CONFIRMED.

    The hold is re-read under the schedule lock, so of two concurrent
    confirmations only the first creates an event.
    """
    current = as_utc(now) if now is not None else now_utc()
    _assert_confirmable(db, hold, current)

    settings = get_org_calendar_settings(db, hold.org_id)
    worker_ids = parse_worker_ids(worker_user_ids or []) or [hold.worker_user_id]
    for worker_id in worker_ids:
        require_worker(db, settings.org_id, worker_id)

    start_at = as_utc(hold.start_at)
    end_at = as_utc(end_at) if end_at is not None else as_utc(hold.end_at)
    if end_at <= start_at:
        raise InvalidInputError("end_at must be after start_at.")

    with worker_schedule_lock(db, settings.org_id, worker_ids, record_keys=[f"hold:{hold.id}"]):
        refresh_for_update(db, hold)
        _assert_confirmable(db, hold, current)
        if busy:
            conflicts = detect_conflicts(
                db,
                org_id=settings.org_id,
                worker_user_ids=worker_ids,
                start_utc=start_at,
                end_utc=end_at,
                include_events=True,
                settings=settings,
                exclude_hold_id=hold.id,
                now=current,
            )
            if conflicts:
                raise ConflictError("Hold confirmation conflicts with schedule.", conflicts)

        event = ScheduledEvent(
            org_id=settings.org_id,
            type=_normalize_choice(event_type, EVENT_TYPES, "type") or "JOB",
            status=_normalize_choice(event_status, EVENT_STATUSES, "status") or "CONFIRMED",
            busy=busy,
            title=(title or "").strip() or hold.title or "Scheduled Job",
            description=(description or "").strip() or None,
            customer_name=(customer_name or "").strip() or hold.customer_name,
            address_line=(address_line or "").strip() or hold.address_line,
            lead_id=lead_id or hold.lead_id,
            start_at=start_at,
            end_at=end_at,
            created_by_user_id=_user_fk_or_none(db, actor_id),
        )
        db.add(event)
        db.flush()
        for worker_id in worker_ids:
            db.add(EventWorkerAssignment(org_id=settings.org_id, event_id=event.id, worker_user_id=worker_id))

        old_value = _hold_snapshot(hold)
        hold.status = "CONFIRMED"
        hold.confirmed_event_id = event.id
        create_audit_log(
            db,
            entity_type="calendar_hold",
            entity_id=str(hold.id),
            action="HOLD_CONFIRMED",
            old_value=old_value,
            new_value={**_hold_snapshot(hold), "event_id": str(event.id)},
            actor_type=actor_type,
            actor_id=actor_id,
            org_id=str(settings.org_id),
        )
        db.commit()

    logger.info("Hold %s confirmed as event %s", hold.id, event.id)
    return event


def expire_lapsed_holds(db: Session, *, now: Optional[datetime] = None) -> int:
    """Mark ACTIVE holds past expires_at as EXPIRED. The caller commits.

    Housekeeping only: conflict detection already ignores lapsed holds.
    """
    current = as_utc(now) if now is not None else now_utc()
    lapsed = (
        db.execute(
            select(CalendarHold).where(
                CalendarHold.status == "ACTIVE",
                CalendarHold.expires_at <= current,
            )
        )
        .scalars()
        .all()
    )
    for hold in lapsed:
        hold.status = "EXPIRED"
    return len(lapsed)


def _user_fk_or_none(db: Session, user_id: Optional[str]) -> Optional[uuid.UUID]:
    if not user_id:
        return None
    try:
        user_uuid = uuid.UUID(str(user_id))
    except ValueError:
        return None
    return user_uuid if db.get(User, user_uuid) else None

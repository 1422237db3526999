from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import AwareDatetime
from sqlalchemy.orm import Session

from fieldcal.core.config import get_settings
from fieldcal.core.dependencies import get_db
from fieldcal.core.errors import InvalidInputError
from fieldcal.core.permissions import (
    CalendarActor,
    assert_event_edit_allowed,
    assert_internal_user,
    assert_org_read_access,
    assert_org_write_access,
    assert_worker_edit_allowed,
    get_calendar_actor,
)
from fieldcal.models.calendar import CalendarHold, ScheduledEvent
from fieldcal.schemas.calendar import (
    AvailabilityResponse,
    BusinessHoursDay,
    CalendarSettingsResponse,
    ConflictCheckRequest,
    ConflictCheckResponse,
    ConflictOut,
    EventCreateRequest,
    EventOut,
    EventRescheduleRequest,
    HoldConfirmRequest,
    HoldConfirmResponse,
    HoldCreateRequest,
    HoldDeleteResponse,
    HoldExpireResponse,
    HoldListResponse,
    HoldOut,
    HoldStatus,
    HoldUpdateRequest,
    NextOpenRequest,
    NextOpenResponse,
    SendWindowResponse,
)
from fieldcal.services.calendar import events as event_service
from fieldcal.services.calendar import holds as hold_service
from fieldcal.services.calendar.assignment import resolve_next_open_slot
from fieldcal.services.calendar.availability import compute_availability
from fieldcal.services.calendar.conflicts import Conflict, detect_conflicts, is_hold_active
from fieldcal.services.calendar.org_settings import get_org_calendar_settings
from fieldcal.services.calendar.time_window import as_utc, now_utc
from fieldcal.services.send_window import is_within_window, next_send_time

router = APIRouter()


def _ensure_enabled() -> None:
    if not get_settings().enable_calendar_engine:
        raise HTTPException(404, "Not found")


def _resolve_org_id(actor: CalendarActor, org_id: Optional[str]) -> str:
    resolved = (org_id or actor.org_id or "").strip()
    if not resolved:
        raise InvalidInputError("org_id is required for internal users.")
    return resolved


def _optional_uuid(value: Optional[str], field_name: str) -> Optional[uuid.UUID]:
    if not value:
        return None
    try:
        return uuid.UUID(value)
    except ValueError as exc:
        raise InvalidInputError(f"Invalid {field_name}.") from exc


def conflict_out(conflict: Conflict) -> ConflictOut:
    return ConflictOut(
        worker_user_id=str(conflict.worker_user_id),
        source=conflict.source,
        source_id=str(conflict.source_id),
        start_at=as_utc(conflict.start_at),
        end_at=as_utc(conflict.end_at),
    )


def _hold_out(hold: CalendarHold) -> HoldOut:
    return HoldOut(
        id=str(hold.id),
        org_id=str(hold.org_id),
        worker_user_id=str(hold.worker_user_id),
        status=hold.status,
        is_active=is_hold_active(hold, now_utc()),
        source=hold.source,
        start_at=as_utc(hold.start_at),
        end_at=as_utc(hold.end_at),
        expires_at=as_utc(hold.expires_at),
        lead_id=hold.lead_id,
        customer_name=hold.customer_name,
        title=hold.title,
        address_line=hold.address_line,
        confirmed_event_id=str(hold.confirmed_event_id) if hold.confirmed_event_id else None,
    )


def _event_out(db: Session, event: ScheduledEvent) -> EventOut:
    worker_ids = event_service.event_worker_ids(db, event.id)
    return EventOut(
        id=str(event.id),
        org_id=str(event.org_id),
        type=event.type,
        status=event.status,
        busy=bool(event.busy),
        title=event.title,
        start_at=as_utc(event.start_at),
        end_at=as_utc(event.end_at) if event.end_at else None,
        worker_user_ids=[str(worker_id) for worker_id in worker_ids],
    )


def _load_hold_for_write(db: Session, actor: CalendarActor, hold_id: str) -> CalendarHold:
    hold = hold_service.get_hold(db, hold_id)
    assert_org_write_access(actor, hold.org_id)
    assert_worker_edit_allowed(actor, [hold.worker_user_id])
    return hold


@router.get("/calendar/settings", response_model=CalendarSettingsResponse)
async def calendar_settings(
    org_id: Optional[str] = Query(None),
    actor: CalendarActor = Depends(get_calendar_actor),
    db: Session = Depends(get_db),
):
    _ensure_enabled()
    resolved_org_id = _resolve_org_id(actor, org_id)
    assert_org_read_access(actor, resolved_org_id)

    settings = get_org_calendar_settings(db, resolved_org_id)
    days = []
    for weekday in range(7):
        window = settings.window_for_weekday(weekday)
        days.append(
            BusinessHoursDay(
                day_of_week=weekday,
                is_open=window is not None,
                open_minute=window.open_minute if window else None,
                close_minute=window.close_minute if window else None,
            )
        )
    return CalendarSettingsResponse(
        org_id=str(settings.org_id),
        timezone=settings.timezone,
        default_slot_minutes=settings.default_slot_minutes,
        quiet_hours_start_minute=settings.quiet_hours_start_minute,
        quiet_hours_end_minute=settings.quiet_hours_end_minute,
        allow_overlaps=settings.allow_overlaps,
        business_hours=days,
    )


@router.get("/calendar/availability", response_model=AvailabilityResponse)
async def calendar_availability(
    worker_id: str = Query(..., min_length=1),
    date: str = Query(..., min_length=10, max_length=10),
    duration: Optional[int] = Query(None),
    step: Optional[int] = Query(None),
    org_id: Optional[str] = Query(None),
    actor: CalendarActor = Depends(get_calendar_actor),
    db: Session = Depends(get_db),
):
    _ensure_enabled()
    resolved_org_id = _resolve_org_id(actor, org_id)
    assert_org_read_access(actor, resolved_org_id)

    settings = get_org_calendar_settings(db, resolved_org_id)
    duration_minutes = duration if duration is not None else settings.default_slot_minutes
    step_minutes = step if step is not None else settings.default_slot_minutes
    availability = compute_availability(
        db,
        org_id=settings.org_id,
        worker_user_id=worker_id,
        date_key=date,
        duration_minutes=duration_minutes,
        step_minutes=step_minutes,
        settings=settings,
    )
    return AvailabilityResponse(
        org_id=str(settings.org_id),
        worker_id=worker_id,
        date=date,
        duration_minutes=duration_minutes,
        step_minutes=step_minutes,
        time_zone=availability.time_zone,
        slots=availability.slots,
    )


@router.post("/calendar/conflicts", response_model=ConflictCheckResponse)
async def calendar_conflicts(
    payload: ConflictCheckRequest,
    actor: CalendarActor = Depends(get_calendar_actor),
    db: Session = Depends(get_db),
):
    _ensure_enabled()
    resolved_org_id = _resolve_org_id(actor, payload.org_id)
    assert_org_read_access(actor, resolved_org_id)

    conflicts = detect_conflicts(
        db,
        org_id=resolved_org_id,
        worker_user_ids=payload.worker_user_ids,
        start_utc=payload.start_at,
        end_utc=payload.end_at,
        include_events=payload.include_events,
        exclude_event_id=_optional_uuid(payload.exclude_event_id, "exclude_event_id"),
        exclude_hold_id=_optional_uuid(payload.exclude_hold_id, "exclude_hold_id"),
    )
    return ConflictCheckResponse(
        has_conflicts=bool(conflicts),
        conflicts=[conflict_out(item) for item in conflicts],
    )


@router.post("/calendar/next-open", response_model=NextOpenResponse)
async def calendar_next_open(
    payload: NextOpenRequest,
    actor: CalendarActor = Depends(get_calendar_actor),
    db: Session = Depends(get_db),
):
    _ensure_enabled()
    resolved_org_id = _resolve_org_id(actor, payload.org_id)
    assert_org_write_access(actor, resolved_org_id)

    result = resolve_next_open_slot(
        db,
        org_id=resolved_org_id,
        date_key=payload.date,
        duration_minutes=payload.duration_minutes,
        lookahead_days=payload.lookahead_days,
        preferred_worker_id=payload.preferred_worker_id,
        fallback_strategy=payload.fallback_strategy.value,
        candidate_worker_ids=payload.candidate_worker_ids,
        actor=actor,
    )
    return NextOpenResponse(
        strategy_used=result.strategy_used,
        worker_id=str(result.worker_id),
        slot=result.slot,
        duration_minutes=result.duration_minutes,
    )


@router.get("/calendar/holds", response_model=HoldListResponse)
async def hold_list(
    org_id: Optional[str] = Query(None),
    worker_id: Optional[str] = Query(None),
    date: Optional[str] = Query(None),
    status: Optional[HoldStatus] = Query(HoldStatus.ACTIVE),
    actor: CalendarActor = Depends(get_calendar_actor),
    db: Session = Depends(get_db),
):
    _ensure_enabled()
    resolved_org_id = _resolve_org_id(actor, org_id)
    assert_org_read_access(actor, resolved_org_id)

    items = hold_service.list_holds(
        db,
        org_id=resolved_org_id,
        worker_user_id=worker_id,
        date_key=date,
        status=status.value if status else None,
    )
    return HoldListResponse(items=[_hold_out(hold) for hold in items])


@router.post("/calendar/holds", response_model=HoldOut, status_code=201)
async def hold_create(
    payload: HoldCreateRequest,
    actor: CalendarActor = Depends(get_calendar_actor),
    db: Session = Depends(get_db),
):
    _ensure_enabled()
    resolved_org_id = _resolve_org_id(actor, payload.org_id)
    assert_org_write_access(actor, resolved_org_id)
    assert_worker_edit_allowed(actor, [payload.worker_user_id])

    hold = hold_service.create_hold(
        db,
        org_id=resolved_org_id,
        worker_user_id=payload.worker_user_id,
        start_at=payload.start_at,
        end_at=payload.end_at,
        expires_in_minutes=payload.expires_in_minutes,
        source=payload.source.value,
        lead_id=payload.lead_id,
        customer_name=payload.customer_name,
        title=payload.title,
        address_line=payload.address_line,
        actor_id=actor.id,
        actor_type=actor.actor_type,
    )
    return _hold_out(hold)


@router.post("/calendar/holds/expire", response_model=HoldExpireResponse)
async def hold_expire(
    actor: CalendarActor = Depends(get_calendar_actor),
    db: Session = Depends(get_db),
):
    _ensure_enabled()
    assert_internal_user(actor)

    count = hold_service.expire_lapsed_holds(db)
    db.commit()
    return HoldExpireResponse(expired_count=count)


@router.get("/calendar/holds/{hold_id}", response_model=HoldOut)
async def hold_get(
    hold_id: str,
    actor: CalendarActor = Depends(get_calendar_actor),
    db: Session = Depends(get_db),
):
    _ensure_enabled()
    hold = hold_service.get_hold(db, hold_id)
    assert_org_read_access(actor, hold.org_id)
    return _hold_out(hold)


@router.patch("/calendar/holds/{hold_id}", response_model=HoldOut)
async def hold_update(
    hold_id: str,
    payload: HoldUpdateRequest,
    actor: CalendarActor = Depends(get_calendar_actor),
    db: Session = Depends(get_db),
):
    _ensure_enabled()
    hold = _load_hold_for_write(db, actor, hold_id)
    hold = hold_service.update_hold(
        db,
        hold,
        status=payload.status.value if payload.status else None,
        expires_at=payload.expires_at,
        actor_id=actor.id,
        actor_type=actor.actor_type,
    )
    return _hold_out(hold)


@router.delete("/calendar/holds/{hold_id}", response_model=HoldDeleteResponse)
async def hold_delete(
    hold_id: str,
    actor: CalendarActor = Depends(get_calendar_actor),
    db: Session = Depends(get_db),
):
    _ensure_enabled()
    hold = _load_hold_for_write(db, actor, hold_id)
    deleted_id = hold_service.delete_hold(db, hold, actor_id=actor.id, actor_type=actor.actor_type)
    return HoldDeleteResponse(id=str(deleted_id), deleted=True)


@router.post("/calendar/holds/{hold_id}/confirm", response_model=HoldConfirmResponse)
async def hold_confirm(
    hold_id: str,
    payload: HoldConfirmRequest,
    actor: CalendarActor = Depends(get_calendar_actor),
    db: Session = Depends(get_db),
):
    _ensure_enabled()
    hold = _load_hold_for_write(db, actor, hold_id)
    if payload.worker_user_ids:
        assert_worker_edit_allowed(actor, payload.worker_user_ids)

    event = hold_service.confirm_hold(
        db,
        hold,
        worker_user_ids=payload.worker_user_ids,
        end_at=payload.end_at,
        event_type=payload.type.value,
        event_status=payload.status.value,
        title=payload.title,
        description=payload.description,
        customer_name=payload.customer_name,
        address_line=payload.address_line,
        lead_id=payload.lead_id,
        busy=payload.busy,
        actor_id=actor.id,
        actor_type=actor.actor_type,
    )
    return HoldConfirmResponse(hold=_hold_out(hold), event=_event_out(db, event))


@router.post("/calendar/events", response_model=EventOut, status_code=201)
async def event_create(
    payload: EventCreateRequest,
    actor: CalendarActor = Depends(get_calendar_actor),
    db: Session = Depends(get_db),
):
    _ensure_enabled()
    resolved_org_id = _resolve_org_id(actor, payload.org_id)
    assert_org_write_access(actor, resolved_org_id)
    worker_ids = payload.worker_user_ids or [actor.id]
    assert_worker_edit_allowed(actor, worker_ids)

    event = event_service.create_event(
        db,
        org_id=resolved_org_id,
        worker_user_ids=worker_ids,
        title=payload.title,
        start_at=payload.start_at,
        end_at=payload.end_at,
        duration_minutes=payload.duration_minutes,
        event_type=payload.type.value,
        event_status=payload.status.value,
        busy=payload.busy,
        all_day=payload.all_day,
        description=payload.description,
        customer_name=payload.customer_name,
        address_line=payload.address_line,
        lead_id=payload.lead_id,
        actor_id=actor.id,
        actor_type=actor.actor_type,
    )
    return _event_out(db, event)


@router.get("/calendar/events/{event_id}", response_model=EventOut)
async def event_get(
    event_id: str,
    actor: CalendarActor = Depends(get_calendar_actor),
    db: Session = Depends(get_db),
):
    _ensure_enabled()
    event = event_service.get_event(db, event_id)
    assert_org_read_access(actor, event.org_id)
    return _event_out(db, event)


@router.patch("/calendar/events/{event_id}", response_model=EventOut)
async def event_reschedule(
    event_id: str,
    payload: EventRescheduleRequest,
    actor: CalendarActor = Depends(get_calendar_actor),
    db: Session = Depends(get_db),
):
    _ensure_enabled()
    event = event_service.get_event(db, event_id)
    assert_org_write_access(actor, event.org_id)
    assert_event_edit_allowed(actor, event_service.event_worker_ids(db, event.id))
    if payload.worker_user_ids:
        assert_worker_edit_allowed(actor, payload.worker_user_ids)

    event = event_service.reschedule_event(
        db,
        event,
        start_at=payload.start_at,
        end_at=payload.end_at,
        duration_minutes=payload.duration_minutes,
        worker_user_ids=payload.worker_user_ids,
        busy=payload.busy,
        event_type=payload.type.value if payload.type else None,
        event_status=payload.status.value if payload.status else None,
        title=payload.title,
        actor_id=actor.id,
        actor_type=actor.actor_type,
    )
    return _event_out(db, event)


@router.get("/calendar/send-window/next", response_model=SendWindowResponse)
async def send_window_next(
    org_id: Optional[str] = Query(None),
    at: Optional[AwareDatetime] = Query(None),
    actor: CalendarActor = Depends(get_calendar_actor),
    db: Session = Depends(get_db),
):
    _ensure_enabled()
    resolved_org_id = _resolve_org_id(actor, org_id)
    assert_org_read_access(actor, resolved_org_id)

    settings = get_org_calendar_settings(db, resolved_org_id)
    instant = as_utc(at) if at is not None else now_utc()
    quiet_start = settings.quiet_hours_start_minute
    quiet_end = settings.quiet_hours_end_minute
    in_quiet_hours = quiet_start != quiet_end and not is_within_window(
        instant, settings.timezone, quiet_end, quiet_start
    )
    return SendWindowResponse(
        org_id=str(settings.org_id),
        time_zone=settings.timezone,
        at=instant,
        quiet_hours_start_minute=quiet_start,
        quiet_hours_end_minute=quiet_end,
        in_quiet_hours=in_quiet_hours,
        next_send_at=next_send_time(instant, settings.timezone, quiet_start, quiet_end),
    )

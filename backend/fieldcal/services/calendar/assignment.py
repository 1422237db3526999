"""Next-open-slot resolution across a worker pool, and the round-robin self-test."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from fieldcal.core.config import get_settings
from fieldcal.core.errors import ForbiddenError, InvalidInputError, NotFoundError
from fieldcal.core.permissions import CalendarActor, can_edit_any_event_in_org
from fieldcal.models.calendar import RoundRobinCursor, User
from fieldcal.services.audit import create_audit_log
from fieldcal.services.calendar.availability import compute_availability
from fieldcal.services.calendar.conflicts import parse_worker_ids
from fieldcal.services.calendar.locks import round_robin_lock
from fieldcal.services.calendar.org_settings import OrgCalendarSettings, get_org_calendar_settings
from fieldcal.services.calendar.time_window import add_calendar_days, as_utc, local_date_key, now_utc, parse_date_key

logger = logging.getLogger(__name__)

STRATEGY_PREFERRED = "PREFERRED"
STRATEGY_OWNER = "OWNER"
STRATEGY_ROUND_ROBIN = "ROUND_ROBIN"
FALLBACK_STRATEGIES = (STRATEGY_OWNER, STRATEGY_ROUND_ROBIN)

ROLE_RANK = {"OWNER": 0, "ADMIN": 1, "WORKER": 2}


@dataclass(frozen=True)
class NextOpenSlot:
    strategy_used: str
    worker_id: uuid.UUID
    slot: datetime
    duration_minutes: int


@dataclass(frozen=True)
class RoundRobinPick:
    cursor: Optional[uuid.UUID]
    worker_id: Optional[uuid.UUID] = None
    slot: Optional[datetime] = None


@dataclass
class RoundRobinTurn:
    turn: int
    worker_id: uuid.UUID
    worker_name: str
    slot: Optional[datetime]


@dataclass
class RoundRobinSelfTest:
    passed: bool
    org_id: uuid.UUID
    start_date: str
    iterations: int
    duration_minutes: int
    lookahead_days: int
    last_assigned_worker_id: Optional[uuid.UUID]
    eligible_workers: list[User] = field(default_factory=list)
    skipped_workers: list[User] = field(default_factory=list)
    assignments: list[RoundRobinTurn] = field(default_factory=list)
    expected_sequence: list[uuid.UUID] = field(default_factory=list)
    actual_sequence: list[uuid.UUID] = field(default_factory=list)

    @property
    def summary(self) -> str:
        if not self.assignments:
            return "No available workers found in lookahead window."
        return " -> ".join(turn.worker_name for turn in self.assignments)


def rotate_after(candidates: Sequence[uuid.UUID], last_worker_id: Optional[uuid.UUID]) -> list[uuid.UUID]:
    """Candidates starting right after ``last_worker_id``; from the top if it is unknown."""
    if not candidates:
        return []
    start = candidates.index(last_worker_id) + 1 if last_worker_id in candidates else 0
    start %= len(candidates)
    return list(candidates[start:]) + list(candidates[:start])


def pick_round_robin(
    last_worker_id: Optional[uuid.UUID],
    candidates: Sequence[uuid.UUID],
    find_slot: Callable[[uuid.UUID], Optional[datetime]],
) -> RoundRobinPick:
    """First candidate after the cursor with an open slot.

    Pure apart from ``find_slot``. When nobody has a slot the cursor comes back
    unchanged.
    """
    for worker_id in rotate_after(candidates, last_worker_id):
        slot = find_slot(worker_id)
        if slot is not None:
            return RoundRobinPick(cursor=worker_id, worker_id=worker_id, slot=slot)
    return RoundRobinPick(cursor=last_worker_id)


def _worker_sort_key(worker: User) -> tuple:
    return (
        ROLE_RANK.get(worker.calendar_access_role, len(ROLE_RANK)),
        (worker.name or "").lower(),
        worker.email.lower(),
        str(worker.id),
    )


def list_eligible_workers(
    db: Session,
    org_id: uuid.UUID,
    candidate_worker_ids: Optional[Iterable[str | uuid.UUID]] = None,
) -> list[User]:
    """Active, schedulable workers of the org.

    An explicit candidate list keeps its own order; ids outside the org are
    dropped. Otherwise workers are ordered OWNER, ADMIN, WORKER then by name.
    """
    candidate_ids = parse_worker_ids(candidate_worker_ids or [])
    stmt = select(User).where(
        User.org_id == org_id,
        User.is_active.is_(True),
        User.calendar_access_role != "READ_ONLY",
    )
    if candidate_ids:
        stmt = stmt.where(User.id.in_(candidate_ids))
    workers = list(db.execute(stmt).scalars().all())

    if candidate_ids:
        position = {worker_id: index for index, worker_id in enumerate(candidate_ids)}
        return sorted(workers, key=lambda worker: position[worker.id])
    return sorted(workers, key=_worker_sort_key)


def lookahead_date_keys(date_key: str, lookahead_days: int) -> list[str]:
    parse_date_key(date_key)
    return [add_calendar_days(date_key, offset) for offset in range(lookahead_days)]


def find_first_open_slot(
    db: Session,
    *,
    settings: OrgCalendarSettings,
    worker_user_id: uuid.UUID,
    date_keys: Sequence[str],
    duration_minutes: int,
    now: datetime,
) -> Optional[datetime]:
    for date_key in date_keys:
        availability = compute_availability(
            db,
            org_id=settings.org_id,
            worker_user_id=worker_user_id,
            date_key=date_key,
            duration_minutes=duration_minutes,
            settings=settings,
            now=now,
        )
        for slot in availability.slots:
            if slot >= now:
                return slot
    return None


def _bounded(value: int, field_name: str, low: int, high: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
        raise InvalidInputError(f"{field_name} must be between {low} and {high}.")
    return value


def _no_slots_message(lookahead_days: int) -> str:
    return f"No open slots found in the next {lookahead_days} day{'' if lookahead_days == 1 else 's'}."


def resolve_next_open_slot(
    db: Session,
    *,
    org_id: str | uuid.UUID,
    date_key: str,
    duration_minutes: int,
    lookahead_days: Optional[int] = None,
    preferred_worker_id: Optional[str | uuid.UUID] = None,
    fallback_strategy: str = STRATEGY_ROUND_ROBIN,
    candidate_worker_ids: Optional[Iterable[str | uuid.UUID]] = None,
    actor: Optional[CalendarActor] = None,
    now: Optional[datetime] = None,
) -> NextOpenSlot:
    """Find the earliest slot for the preferred worker, then fail over.

    Fallback OWNER tries the org owners in list order. Fallback ROUND_ROBIN
    rotates the remaining workers after the persisted cursor and advances the
    cursor to whoever takes the slot.
    """
    config = get_settings()
    if lookahead_days is None:
        lookahead_days = config.next_open_default_lookahead_days
    lookahead_days = _bounded(lookahead_days, "lookahead_days", 1, config.next_open_max_lookahead_days)
    duration_minutes = _bounded(
        duration_minutes,
        "duration_minutes",
        config.booking_min_duration_minutes,
        config.booking_max_duration_minutes,
    )
    strategy = (fallback_strategy or STRATEGY_ROUND_ROBIN).strip().upper()
    if strategy not in FALLBACK_STRATEGIES:
        raise InvalidInputError(f"Invalid fallback_strategy: {fallback_strategy}")
    date_keys = lookahead_date_keys(date_key, lookahead_days)

    settings = get_org_calendar_settings(db, org_id)
    workers = list_eligible_workers(db, settings.org_id, candidate_worker_ids)
    if not workers:
        raise InvalidInputError("No eligible workers available for this organization.")
    if actor is not None and not can_edit_any_event_in_org(actor):
        workers = [worker for worker in workers if str(worker.id) == actor.id]
        if not workers:
            raise ForbiddenError("You can only schedule for your own worker calendar.")

    worker_ids = [worker.id for worker in workers]
    requested = parse_worker_ids([preferred_worker_id])[0] if preferred_worker_id else None
    preferred_id = requested if requested in worker_ids else worker_ids[0]
    current = as_utc(now) if now is not None else now_utc()

    def find_slot(worker_id: uuid.UUID) -> Optional[datetime]:
        return find_first_open_slot(
            db,
            settings=settings,
            worker_user_id=worker_id,
            date_keys=date_keys,
            duration_minutes=duration_minutes,
            now=current,
        )

    slot = find_slot(preferred_id)
    if slot is not None:
        return NextOpenSlot(STRATEGY_PREFERRED, preferred_id, slot, duration_minutes)

    if strategy == STRATEGY_OWNER:
        for worker in workers:
            if worker.id == preferred_id or worker.calendar_access_role != "OWNER":
                continue
            slot = find_slot(worker.id)
            if slot is not None:
                return NextOpenSlot(STRATEGY_OWNER, worker.id, slot, duration_minutes)
        raise NotFoundError(_no_slots_message(lookahead_days))

    candidates = [worker_id for worker_id in worker_ids if worker_id != preferred_id]
    if not candidates:
        raise NotFoundError("No round-robin fallback workers are available.")

    with round_robin_lock(db, settings.org_id):
        # Re-read inside the lock; a cached row may predate another resolver's commit.
        cursor = db.get(RoundRobinCursor, settings.org_id, populate_existing=True)
        last_worker_id = cursor.last_assigned_worker_id if cursor is not None else None
        pick = pick_round_robin(last_worker_id, candidates, find_slot)
        if pick.worker_id is None:
            raise NotFoundError(_no_slots_message(lookahead_days))

        if cursor is None:
            cursor = RoundRobinCursor(org_id=settings.org_id)
            db.add(cursor)
        cursor.last_assigned_worker_id = pick.worker_id
        create_audit_log(
            db,
            entity_type="round_robin_cursor",
            entity_id=str(settings.org_id),
            action="ROUND_ROBIN_ADVANCED",
            old_value={"last_assigned_worker_id": str(last_worker_id) if last_worker_id else None},
            new_value={"last_assigned_worker_id": str(pick.worker_id)},
            actor_type=actor.actor_type if actor else "SYSTEM",
            actor_id=actor.id if actor else None,
            org_id=str(settings.org_id),
        )
        db.commit()

    logger.info("Round-robin cursor for org %s advanced to %s", settings.org_id, pick.worker_id)
    return NextOpenSlot(STRATEGY_ROUND_ROBIN, pick.worker_id, pick.slot, duration_minutes)


def _clamp(value: Optional[int], fallback: int, low: int, high: int) -> int:
    if value is None:
        return fallback
    return max(low, min(high, int(value)))


def run_round_robin_self_test(
    db: Session,
    *,
    org_id: str | uuid.UUID,
    worker_ids: Optional[Iterable[str | uuid.UUID]] = None,
    iterations: Optional[int] = None,
    duration_minutes: Optional[int] = None,
    lookahead_days: Optional[int] = None,
    date_key: Optional[str] = None,
    now: Optional[datetime] = None,
) -> RoundRobinSelfTest:
    """Replay the rotation from the stored cursor without writing anything.

    Workers with no slot in the window are skipped. The replayed sequence goes
    through ``pick_round_robin``; the expected one is plain index arithmetic
    over the same pool, so a rotation regression shows up as a mismatch.
    """
    config = get_settings()
    settings = get_org_calendar_settings(db, org_id)
    current = as_utc(now) if now is not None else now_utc()

    iterations = _clamp(iterations, 6, 1, config.round_robin_test_max_iterations)
    duration_minutes = _clamp(duration_minutes, settings.default_slot_minutes, config.booking_min_duration_minutes, 180)
    lookahead_days = _clamp(
        lookahead_days,
        config.next_open_default_lookahead_days,
        1,
        config.next_open_max_lookahead_days,
    )
    start_date = date_key or local_date_key(current, settings.timezone)
    date_keys = lookahead_date_keys(start_date, lookahead_days)

    explicit_ids = parse_worker_ids(worker_ids or [])
    workers = list_eligible_workers(db, settings.org_id, explicit_ids)
    if not explicit_ids:
        workers.sort(key=lambda worker: ((worker.name or "").lower(), worker.email.lower(), str(worker.id)))
    if not workers:
        raise InvalidInputError("No eligible workers found for this org.")

    first_slots: dict[uuid.UUID, Optional[datetime]] = {}
    for worker in workers:
        first_slots[worker.id] = find_first_open_slot(
            db,
            settings=settings,
            worker_user_id=worker.id,
            date_keys=date_keys,
            duration_minutes=duration_minutes,
            now=current,
        )
    eligible = [worker for worker in workers if first_slots[worker.id] is not None]
    skipped = [worker for worker in workers if first_slots[worker.id] is None]
    eligible_ids = [worker.id for worker in eligible]
    names = {worker.id: worker.name or worker.email for worker in eligible}

    cursor = db.get(RoundRobinCursor, settings.org_id)
    stored_cursor = cursor.last_assigned_worker_id if cursor is not None else None

    assignments: list[RoundRobinTurn] = []
    last_worker_id = stored_cursor
    for turn in range(1, iterations + 1):
        pick = pick_round_robin(last_worker_id, eligible_ids, first_slots.get)
        if pick.worker_id is None:
            break
        assignments.append(RoundRobinTurn(turn, pick.worker_id, names[pick.worker_id], pick.slot))
        last_worker_id = pick.cursor

    expected: list[uuid.UUID] = []
    if eligible_ids:
        index = eligible_ids.index(stored_cursor) if stored_cursor in eligible_ids else -1
        for _ in range(iterations):
            index = (index + 1) % len(eligible_ids)
            expected.append(eligible_ids[index])

    actual = [turn.worker_id for turn in assignments]
    result = RoundRobinSelfTest(
        passed=expected == actual,
        org_id=settings.org_id,
        start_date=start_date,
        iterations=iterations,
        duration_minutes=duration_minutes,
        lookahead_days=lookahead_days,
        last_assigned_worker_id=stored_cursor,
        eligible_workers=eligible,
        skipped_workers=skipped,
        assignments=assignments,
        expected_sequence=expected,
        actual_sequence=actual,
    )
    if not result.passed:
        logger.warning("Round-robin self-test mismatch for org %s", settings.org_id)
    return result

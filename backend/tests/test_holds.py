"""
Tests for the hold manager.

Covers:
  - create_hold: second overlapping hold is a Conflict referencing the first
  - Expiry clamped to 1..120 minutes, 10 by default
  - Lapsed holds no longer block new holds
  - update/delete/list/get behavior and audit rows
  - confirm_hold: event + assignments written, hold CONFIRMED, lapsed holds refused
  - expire_lapsed_holds marks only lapsed ACTIVE holds
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from fieldcal.core.errors import ConflictError, InvalidInputError, NotFoundError
from fieldcal.models.calendar import AuditLog, CalendarHold, EventWorkerAssignment
from fieldcal.services.calendar import holds as hold_service
from fieldcal.services.calendar.conflicts import SOURCE_HOLD
from fieldcal.services.calendar.time_window import as_utc, local_to_utc

LA = "America/Los_Angeles"
DAY = "2024-06-03"
NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _local(minute: int):
    return local_to_utc(DAY, minute, LA)


def _create(db, org, worker, start_minute, end_minute, **kwargs):
    kwargs.setdefault("now", NOW)
    return hold_service.create_hold(
        db,
        org_id=org.id,
        worker_user_id=worker.id,
        start_at=_local(start_minute),
        end_at=_local(end_minute),
        **kwargs,
    )


def test_overlapping_second_hold_conflicts_with_first(make_org, make_worker, db):
    org = make_org(hours=(9 * 60, 17 * 60))
    w1 = make_worker(org, name="W1")

    first = _create(db, org, w1, 10 * 60, 10 * 60 + 30)
    with pytest.raises(ConflictError) as exc:
        _create(db, org, w1, 10 * 60 + 15, 10 * 60 + 45)

    conflicts = exc.value.conflicts
    assert len(conflicts) == 1
    assert conflicts[0].source == SOURCE_HOLD
    assert conflicts[0].source_id == first.id
    assert db.query(CalendarHold).count() == 1


def test_back_to_back_holds_are_allowed(make_org, make_worker, db):
    org = make_org()
    w1 = make_worker(org, name="W1")
    _create(db, org, w1, 10 * 60, 10 * 60 + 30)
    _create(db, org, w1, 10 * 60 + 30, 11 * 60)
    assert db.query(CalendarHold).count() == 2


def test_hold_conflicts_with_event(make_org, make_worker, make_event, db):
    org = make_org()
    w1 = make_worker(org, name="W1")
    event = make_event(org, [w1], _local(10 * 60), _local(11 * 60))

    with pytest.raises(ConflictError) as exc:
        _create(db, org, w1, 10 * 60 + 30, 11 * 60 + 30)
    assert exc.value.conflicts[0].source_id == event.id


def test_lapsed_hold_does_not_block(make_org, make_worker, db):
    org = make_org()
    w1 = make_worker(org, name="W1")
    _create(db, org, w1, 10 * 60, 10 * 60 + 30, expires_in_minutes=5)

    later = NOW + timedelta(minutes=6)
    second = _create(db, org, w1, 10 * 60, 10 * 60 + 30, now=later)
    assert second.status == "ACTIVE"


@pytest.mark.parametrize("requested,expected", [(None, 10), (0, 1), (-5, 1), (30, 30), (500, 120)])
def test_expiry_is_clamped(make_org, make_worker, db, requested, expected):
    org = make_org()
    w1 = make_worker(org, name="W1")
    hold = _create(db, org, w1, 10 * 60, 10 * 60 + 30, expires_in_minutes=requested)
    assert as_utc(hold.expires_at) == NOW + timedelta(minutes=expected)


def test_create_validates_input(make_org, make_worker, db):
    org = make_org()
    other_org = make_org()
    w1 = make_worker(org, name="W1")
    stranger = make_worker(other_org, name="Stranger")

    with pytest.raises(InvalidInputError):
        _create(db, org, w1, 11 * 60, 10 * 60)
    with pytest.raises(InvalidInputError):
        _create(db, org, w1, 10 * 60, 11 * 60, source="FAX")
    with pytest.raises(NotFoundError):
        _create(db, org, stranger, 10 * 60, 11 * 60)


def test_create_writes_redacted_audit_row(make_org, make_worker, db):
    org = make_org()
    w1 = make_worker(org, name="W1")
    hold = _create(db, org, w1, 10 * 60, 10 * 60 + 30, customer_name="Jane Client", source="SMS_AGENT")

    row = db.query(AuditLog).filter(AuditLog.action == "HOLD_CREATED").one()
    assert row.entity_id == hold.id
    assert row.new_value["customer_name"] == "[REDACTED]"
    assert row.new_value["source"] == "SMS_AGENT"


def test_update_hold_status_and_expiry(make_org, make_worker, db):
    org = make_org()
    w1 = make_worker(org, name="W1")
    hold = _create(db, org, w1, 10 * 60, 10 * 60 + 30)

    new_expiry = NOW + timedelta(hours=1)
    hold = hold_service.update_hold(db, hold, status="cancelled", expires_at=new_expiry)
    assert hold.status == "CANCELLED"
    assert as_utc(hold.expires_at) == new_expiry

    with pytest.raises(InvalidInputError):
        hold_service.update_hold(db, hold, status="PAUSED")


def test_get_and_delete_hold(make_org, make_worker, db):
    org = make_org()
    w1 = make_worker(org, name="W1")
    hold = _create(db, org, w1, 10 * 60, 10 * 60 + 30)

    hold_id = hold.id
    assert hold_service.get_hold(db, str(hold_id)).id == hold_id
    deleted_id = hold_service.delete_hold(db, hold)
    assert deleted_id == hold_id
    assert db.query(AuditLog).filter(AuditLog.action == "HOLD_DELETED").count() == 1

    with pytest.raises(NotFoundError):
        hold_service.get_hold(db, deleted_id)
    with pytest.raises(NotFoundError):
        hold_service.get_hold(db, "not-a-uuid")


def test_list_holds_filters(make_org, make_worker, db):
    org = make_org()
    w1 = make_worker(org, name="W1")
    w2 = make_worker(org, name="W2")
    a = _create(db, org, w1, 9 * 60, 9 * 60 + 30)
    b = _create(db, org, w2, 10 * 60, 10 * 60 + 30)
    c = hold_service.create_hold(
        db,
        org_id=org.id,
        worker_user_id=w1.id,
        start_at=local_to_utc("2024-06-04", 9 * 60, LA),
        end_at=local_to_utc("2024-06-04", 10 * 60, LA),
        now=NOW,
    )
    hold_service.update_hold(db, b, status="CANCELLED")

    assert [h.id for h in hold_service.list_holds(db, org_id=org.id)] == [a.id, c.id]
    assert [h.id for h in hold_service.list_holds(db, org_id=org.id, date_key=DAY)] == [a.id]
    assert [h.id for h in hold_service.list_holds(db, org_id=org.id, worker_user_id=str(w2.id), status=None)] == [b.id]
    assert [h.id for h in hold_service.list_holds(db, org_id=org.id, status="CANCELLED")] == [b.id]


def test_confirm_hold_creates_event(make_org, make_worker, db):
    org = make_org()
    w1 = make_worker(org, name="W1")
    w2 = make_worker(org, name="W2")
    hold = _create(db, org, w1, 10 * 60, 11 * 60, title="Gutter repair")

    event = hold_service.confirm_hold(
        db,
        hold,
        worker_user_ids=[str(w1.id), str(w2.id)],
        event_type="estimate",
        now=NOW + timedelta(minutes=1),
    )

    assert hold.status == "CONFIRMED"
    assert hold.confirmed_event_id == event.id
    assert event.type == "ESTIMATE"
    assert event.status == "CONFIRMED"
    assert event.title == "Gutter repair"
    assert as_utc(event.start_at) == _local(10 * 60)
    assert as_utc(event.end_at) == _local(11 * 60)
    workers = {
        row.worker_user_id
        for row in db.query(EventWorkerAssignment).filter(EventWorkerAssignment.event_id == event.id)
    }
    assert workers == {w1.id, w2.id}


def test_confirm_hold_conflicting_with_second_worker(make_org, make_worker, make_event, db):
    org = make_org()
    w1 = make_worker(org, name="W1")
    w2 = make_worker(org, name="W2")
    busy = make_event(org, [w2], _local(10 * 60 + 30), _local(12 * 60))
    hold = _create(db, org, w1, 10 * 60, 11 * 60)

    with pytest.raises(ConflictError) as exc:
        hold_service.confirm_hold(db, hold, worker_user_ids=[w1.id, w2.id], now=NOW)
    assert [item.source_id for item in exc.value.conflicts] == [busy.id]
    db.refresh(hold)
    assert hold.status == "ACTIVE"


def test_confirm_lapsed_hold_marks_it_expired(make_org, make_worker, db):
    org = make_org()
    w1 = make_worker(org, name="W1")
    hold = _create(db, org, w1, 10 * 60, 11 * 60, expires_in_minutes=5)

    with pytest.raises(InvalidInputError):
        hold_service.confirm_hold(db, hold, now=NOW + timedelta(minutes=10))
    db.refresh(hold)
    assert hold.status == "EXPIRED"

    with pytest.raises(InvalidInputError):
        hold_service.confirm_hold(db, hold, now=NOW)


def test_expire_lapsed_holds(make_org, make_worker, db):
    org = make_org()
    w1 = make_worker(org, name="W1")
    lapsed = _create(db, org, w1, 9 * 60, 9 * 60 + 30, expires_in_minutes=5)
    live = _create(db, org, w1, 10 * 60, 10 * 60 + 30, expires_in_minutes=60)

    count = hold_service.expire_lapsed_holds(db, now=NOW + timedelta(minutes=30))
    db.commit()

    assert count == 1
    db.refresh(lapsed)
    db.refresh(live)
    assert lapsed.status == "EXPIRED"
    assert live.status == "ACTIVE"
    assert hold_service.expire_lapsed_holds(db, now=NOW + timedelta(minutes=30)) == 0


def test_unknown_hold_id_is_not_found(db):
    with pytest.raises(NotFoundError):
        hold_service.get_hold(db, uuid.uuid4())

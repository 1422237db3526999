"""
Tests for the conflict detector.

Covers:
  - Half-open overlap: back-to-back intervals never collide
  - Lapsed holds are transparent even while stored status is ACTIVE
  - Busy blocks always block; events stop blocking when the org allows overlaps
  - include_events=False, exclude ids, multi-worker results ordered by start
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from fieldcal.core.errors import InvalidInputError
from fieldcal.models.calendar import BusyBlock, CalendarHold
from fieldcal.services.calendar.conflicts import (
    SOURCE_BUSY_BLOCK,
    SOURCE_EVENT,
    SOURCE_HOLD,
    detect_conflicts,
    overlaps,
)

T0 = datetime(2024, 6, 3, 17, 0, tzinfo=timezone.utc)  # 10:00 in Los Angeles


def _add_hold(db, org, worker, start, end, *, expires_at, status="ACTIVE"):
    hold = CalendarHold(
        org_id=org.id,
        worker_user_id=worker.id,
        start_at=start,
        end_at=end,
        status=status,
        expires_at=expires_at,
    )
    db.add(hold)
    db.commit()
    return hold


def test_overlaps_is_half_open():
    hour = timedelta(hours=1)
    assert overlaps(T0, T0 + hour, T0 + timedelta(minutes=30), T0 + 2 * hour)
    assert not overlaps(T0, T0 + hour, T0 + hour, T0 + 2 * hour)
    assert not overlaps(T0 + hour, T0 + 2 * hour, T0, T0 + hour)


def test_back_to_back_event_is_not_a_conflict(make_org, make_worker, make_event, db):
    org = make_org()
    worker = make_worker(org, name="Worker")
    make_event(org, [worker], T0, T0 + timedelta(hours=1))

    assert detect_conflicts(
        db, org_id=org.id, worker_user_ids=[worker.id], start_utc=T0 + timedelta(hours=1), end_utc=T0 + timedelta(hours=2)
    ) == []
    found = detect_conflicts(
        db, org_id=org.id, worker_user_ids=[worker.id], start_utc=T0 + timedelta(minutes=59), end_utc=T0 + timedelta(hours=2)
    )
    assert [item.source for item in found] == [SOURCE_EVENT]


def test_lapsed_hold_is_transparent(make_org, make_worker, db):
    org = make_org()
    worker = make_worker(org, name="Worker")
    now = T0 - timedelta(days=1)
    _add_hold(db, org, worker, T0, T0 + timedelta(minutes=30), expires_at=now - timedelta(seconds=1))

    assert detect_conflicts(
        db, org_id=org.id, worker_user_ids=[worker.id], start_utc=T0, end_utc=T0 + timedelta(minutes=30), now=now
    ) == []


def test_live_hold_blocks_until_it_expires(make_org, make_worker, db):
    org = make_org()
    worker = make_worker(org, name="Worker")
    now = T0 - timedelta(days=1)
    hold = _add_hold(db, org, worker, T0, T0 + timedelta(minutes=30), expires_at=now + timedelta(minutes=5))

    found = detect_conflicts(
        db, org_id=org.id, worker_user_ids=[worker.id], start_utc=T0, end_utc=T0 + timedelta(minutes=30), now=now
    )
    assert [(item.source, item.source_id) for item in found] == [(SOURCE_HOLD, hold.id)]

    later = now + timedelta(minutes=5)
    assert detect_conflicts(
        db, org_id=org.id, worker_user_ids=[worker.id], start_utc=T0, end_utc=T0 + timedelta(minutes=30), now=later
    ) == []


@pytest.mark.parametrize("status", ["CONFIRMED", "EXPIRED", "CANCELLED"])
def test_inactive_hold_statuses_do_not_block(make_org, make_worker, db, status):
    org = make_org()
    worker = make_worker(org, name="Worker")
    now = T0 - timedelta(days=1)
    _add_hold(db, org, worker, T0, T0 + timedelta(minutes=30), expires_at=now + timedelta(hours=1), status=status)

    assert detect_conflicts(
        db, org_id=org.id, worker_user_ids=[worker.id], start_utc=T0, end_utc=T0 + timedelta(minutes=30), now=now
    ) == []


def test_allow_overlaps_ignores_events_but_not_busy_blocks(make_org, make_worker, make_event, db):
    org = make_org(allow_overlaps=True)
    worker = make_worker(org, name="Worker")
    make_event(org, [worker], T0, T0 + timedelta(hours=1))
    db.add(
        BusyBlock(
            org_id=org.id,
            worker_user_id=worker.id,
            external_id="gcal-1",
            start_at=T0 + timedelta(minutes=30),
            end_at=T0 + timedelta(hours=2),
        )
    )
    db.commit()

    found = detect_conflicts(
        db, org_id=org.id, worker_user_ids=[worker.id], start_utc=T0, end_utc=T0 + timedelta(hours=1)
    )
    assert [item.source for item in found] == [SOURCE_BUSY_BLOCK]


def test_include_events_false_skips_events(make_org, make_worker, make_event, db):
    org = make_org()
    worker = make_worker(org, name="Worker")
    make_event(org, [worker], T0, T0 + timedelta(hours=1))

    assert detect_conflicts(
        db,
        org_id=org.id,
        worker_user_ids=[worker.id],
        start_utc=T0,
        end_utc=T0 + timedelta(hours=1),
        include_events=False,
    ) == []


def test_multi_worker_results_are_sorted_and_deduplicated(make_org, make_worker, make_event, db):
    org = make_org()
    first = make_worker(org, name="First")
    second = make_worker(org, name="Second")
    shared = make_event(org, [first, second], T0 + timedelta(minutes=30), T0 + timedelta(hours=1))
    early = make_event(org, [second], T0, T0 + timedelta(minutes=15))

    found = detect_conflicts(
        db,
        org_id=org.id,
        worker_user_ids=[first.id, second.id, first.id],
        start_utc=T0,
        end_utc=T0 + timedelta(hours=2),
    )

    assert found[0].source_id == early.id
    assert {(item.worker_user_id, item.source_id) for item in found[1:]} == {
        (first.id, shared.id),
        (second.id, shared.id),
    }
    assert len(found) == 3


def test_exclude_ids(make_org, make_worker, make_event, db):
    org = make_org()
    worker = make_worker(org, name="Worker")
    event = make_event(org, [worker], T0, T0 + timedelta(hours=1))
    now = T0 - timedelta(days=1)
    hold = _add_hold(db, org, worker, T0, T0 + timedelta(hours=1), expires_at=now + timedelta(hours=1))

    found = detect_conflicts(
        db,
        org_id=org.id,
        worker_user_ids=[worker.id],
        start_utc=T0,
        end_utc=T0 + timedelta(hours=1),
        exclude_event_id=event.id,
        exclude_hold_id=hold.id,
        now=now,
    )
    assert found == []


def test_empty_or_inverted_range_rejected(make_org, make_worker, db):
    org = make_org()
    worker = make_worker(org, name="Worker")
    with pytest.raises(InvalidInputError):
        detect_conflicts(db, org_id=org.id, worker_user_ids=[worker.id], start_utc=T0, end_utc=T0)


def test_bad_worker_id_rejected(make_org, db):
    org = make_org()
    with pytest.raises(InvalidInputError):
        detect_conflicts(
            db, org_id=org.id, worker_user_ids=["not-a-uuid"], start_utc=T0, end_utc=T0 + timedelta(hours=1)
        )

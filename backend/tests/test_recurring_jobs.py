"""
Tests for recurring jobs: the hold expiry sweep.

Covers:
  - run_hold_expiry_once marks lapsed ACTIVE holds EXPIRED and commits
  - Live and already-confirmed holds are left alone
  - start_hold_expiry_worker clamps the interval and can be cancelled
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from fieldcal.core.config import get_settings
from fieldcal.models.calendar import CalendarHold


def _now():
    return datetime.now(timezone.utc).replace(microsecond=0)


def _hold(db, org, worker, *, expires_at, status="ACTIVE", offset_hours=24):
    start = _now() + timedelta(hours=offset_hours)
    hold = CalendarHold(
        org_id=org.id,
        worker_user_id=worker.id,
        start_at=start,
        end_at=start + timedelta(minutes=30),
        status=status,
        expires_at=expires_at,
    )
    db.add(hold)
    db.commit()
    return hold.id


def test_sweep_expires_only_lapsed_active_holds(make_org, make_worker, db):
    from fieldcal.services.recurring_jobs import run_hold_expiry_once

    org = make_org()
    worker = make_worker(org, name="Worker")
    lapsed_id = _hold(db, org, worker, expires_at=_now() - timedelta(minutes=5))
    live_id = _hold(db, org, worker, expires_at=_now() + timedelta(minutes=30), offset_hours=25)
    confirmed_id = _hold(db, org, worker, expires_at=_now() - timedelta(minutes=5), status="CONFIRMED", offset_hours=26)

    assert run_hold_expiry_once() == 1

    db.expire_all()
    assert db.get(CalendarHold, lapsed_id).status == "EXPIRED"
    assert db.get(CalendarHold, live_id).status == "ACTIVE"
    assert db.get(CalendarHold, confirmed_id).status == "CONFIRMED"
    assert run_hold_expiry_once() == 0


@pytest.mark.asyncio
async def test_worker_task_starts_and_cancels(monkeypatch):
    from fieldcal.services import recurring_jobs

    captured = {}

    async def _fake_loop(*, interval_seconds: int) -> None:
        captured["interval"] = interval_seconds
        await asyncio.sleep(3600)

    monkeypatch.setenv("HOLD_EXPIRY_SWEEP_INTERVAL_SECONDS", "1")
    get_settings.cache_clear()
    monkeypatch.setattr(recurring_jobs, "_hold_expiry_loop", _fake_loop)

    task = recurring_jobs.start_hold_expiry_worker()
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert captured["interval"] == 15

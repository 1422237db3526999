from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from fieldcal.core.config import get_settings
from fieldcal.core.dependencies import get_db
from fieldcal.core.permissions import CalendarActor, assert_internal_user, get_calendar_actor
from fieldcal.schemas.calendar import (
    RoundRobinAssignment,
    RoundRobinTestRequest,
    RoundRobinTestResponse,
    WorkerRef,
)
from fieldcal.services.calendar.assignment import run_round_robin_self_test

router = APIRouter()


def _worker_ref(worker) -> WorkerRef:
    return WorkerRef(id=str(worker.id), name=worker.name or worker.email, role=worker.calendar_access_role)


@router.post("/internal/diagnostics/round-robin-test", response_model=RoundRobinTestResponse)
async def round_robin_test(
    payload: RoundRobinTestRequest,
    actor: CalendarActor = Depends(get_calendar_actor),
    db: Session = Depends(get_db),
):
    if not get_settings().enable_calendar_engine:
        raise HTTPException(404, "Not found")
    assert_internal_user(actor)

    result = run_round_robin_self_test(
        db,
        org_id=payload.org_id,
        worker_ids=payload.worker_ids,
        iterations=payload.iterations,
        duration_minutes=payload.duration_minutes,
        lookahead_days=payload.lookahead_days,
        date_key=payload.date,
    )
    return RoundRobinTestResponse(
        passed=result.passed,
        org_id=str(result.org_id),
        start_date=result.start_date,
        iterations=result.iterations,
        duration_minutes=result.duration_minutes,
        lookahead_days=result.lookahead_days,
        last_assigned_worker_id=str(result.last_assigned_worker_id) if result.last_assigned_worker_id else None,
        eligible_workers=[_worker_ref(worker) for worker in result.eligible_workers],
        skipped_workers=[_worker_ref(worker) for worker in result.skipped_workers],
        assignments=[
            RoundRobinAssignment(
                turn=turn.turn,
                worker_id=str(turn.worker_id),
                worker_name=turn.worker_name,
                slot=turn.slot,
            )
            for turn in result.assignments
        ],
        expected_sequence=[str(worker_id) for worker_id in result.expected_sequence],
        actual_sequence=[str(worker_id) for worker_id in result.actual_sequence],
        summary=result.summary,
    )

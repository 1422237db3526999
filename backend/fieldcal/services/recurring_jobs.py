from __future__ import annotations

import asyncio
import logging

from fieldcal.core.config import get_settings
from fieldcal.core.dependencies import SessionLocal, session_scope
from fieldcal.services.calendar.holds import expire_lapsed_holds

logger = logging.getLogger(__name__)


def run_hold_expiry_once() -> int:
    if SessionLocal is None:
        return 0
    with session_scope() as db:
        expired_count = expire_lapsed_holds(db)
    if expired_count:
        logger.info("Expired lapsed calendar holds: %s", expired_count)
    return expired_count


async def _hold_expiry_loop(*, interval_seconds: int) -> None:
    # Back off on errors instead of spinning.
    error_sleep = max(10, min(60, interval_seconds))
    while True:
        try:
            settings = get_settings()
            if settings.enable_recurring_jobs and settings.enable_calendar_engine:
                run_hold_expiry_once()
            await asyncio.sleep(interval_seconds)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Hold expiry worker error")
            await asyncio.sleep(error_sleep)


def start_hold_expiry_worker() -> asyncio.Task:
    """Start the in-process sweep; the caller keeps the task to cancel it on shutdown."""
    settings = get_settings()
    interval = int(max(15, min(300, settings.hold_expiry_sweep_interval_seconds or 60)))
    return asyncio.create_task(_hold_expiry_loop(interval_seconds=interval))

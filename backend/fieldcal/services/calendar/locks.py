"""Serialize check-then-write sequences on a worker calendar or an org cursor.

Each key gets a process-local lock; on PostgreSQL a transaction-scoped advisory
lock is taken as well so separate processes serialize too. The advisory lock is
released by the commit, so callers must commit inside the ``with`` block.
"""

from __future__ import annotations

import hashlib
import threading
import weakref
from contextlib import AbstractContextManager, ExitStack, contextmanager
from typing import Iterable, Iterator

from sqlalchemy import text
from sqlalchemy.orm import Session

_registry_lock = threading.Lock()
# Entries vanish once no caller holds or waits on the lock.
_local_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()


def _local_lock(name: str) -> threading.Lock:
    with _registry_lock:
        lock = _local_locks.get(name)
        if lock is None:
            lock = threading.Lock()
            _local_locks[name] = lock
        return lock


def registered_lock_count() -> int:
    with _registry_lock:
        return len(_local_locks)


def advisory_key(name: str) -> int:
    digest = hashlib.sha256(name.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


@contextmanager
def schedule_lock(db: Session, names: Iterable[str]) -> Iterator[None]:
    # Sorted acquisition keeps multi-worker confirmations deadlock free.
    ordered = sorted(set(names))
    is_postgres = db.bind is not None and db.bind.dialect.name == "postgresql"
    with ExitStack() as stack:
        for name in ordered:
            stack.enter_context(_local_lock(name))
        if is_postgres:
            for name in ordered:
                db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": advisory_key(name)})
        yield


def worker_schedule_lock(
    db: Session,
    org_id,
    worker_user_ids,
    *,
    record_keys: Iterable[str] = (),
) -> AbstractContextManager[None]:
    """Lock the listed workers' calendars, plus records such as ``hold:<id>`` being rewritten."""
    names = [f"calendar:{org_id}:worker:{worker_id}" for worker_id in worker_user_ids]
    names.extend(f"calendar:{org_id}:{key}" for key in record_keys)
    return schedule_lock(db, names)


def round_robin_lock(db: Session, org_id) -> AbstractContextManager[None]:
    return schedule_lock(db, [f"calendar:{org_id}:round-robin"])


def refresh_for_update(db: Session, instance) -> None:
    """Re-read ``instance`` from the database; row-locked where the dialect supports it."""
    # SQLite has no SELECT ... FOR UPDATE.
    if db.bind is not None and db.bind.dialect.name == "sqlite":
        db.refresh(instance)
        return
    db.refresh(instance, with_for_update=True)

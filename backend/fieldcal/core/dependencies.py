"""Engine, session factory and the request-scoped ``get_db`` dependency."""

from collections.abc import Generator, Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from fieldcal.core.config import get_settings

settings = get_settings()


def _build_engine(database_url: str) -> Engine:
    is_sqlite = database_url.startswith("sqlite")
    # ASGI tests run sync handlers in a threadpool, so SQLite connections cross threads.
    connect_args: dict[str, object] = {"check_same_thread": False, "timeout": 30} if is_sqlite else {}
    built = create_engine(database_url, pool_pre_ping=True, connect_args=connect_args)

    if is_sqlite:
        @event.listens_for(built, "connect")
        def _sqlite_pragmas(dbapi_connection, _connection_record) -> None:  # type: ignore[no-untyped-def]
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=30000")
            cursor.close()

    return built


engine = _build_engine(settings.database_url) if settings.database_url else None
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine) if engine else None


def get_db() -> Generator[Session, None, None]:
    if SessionLocal is None:
        raise RuntimeError("DATABASE_URL is not configured")
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for work outside a request: commit on success, roll back on error."""
    if SessionLocal is None:
        raise RuntimeError("DATABASE_URL is not configured")
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

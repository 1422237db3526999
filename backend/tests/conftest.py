import os
import tempfile
import uuid
from datetime import datetime, timedelta, timezone

_TEST_DB_DIR = tempfile.mkdtemp(prefix="fieldcal-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TEST_DB_DIR, 'fieldcal.db')}")
os.environ.setdefault("AUTH_JWT_SECRET", "fieldcal-test-secret")
os.environ.setdefault("ENABLE_RECURRING_JOBS", "false")

import httpx  # noqa: E402
import jwt  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from fieldcal.core.config import get_settings  # noqa: E402

LA = "America/Los_Angeles"


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    # Tests may mutate env vars; never leak a cached Settings instance.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _schema():
    from fieldcal.core.dependencies import engine
    from fieldcal.models.calendar import Base

    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture
def db():
    from fieldcal.core.dependencies import SessionLocal

    # Objects stay loaded after commit, so threaded tests never lazy-load through this session.
    session = SessionLocal(expire_on_commit=False)
    try:
        yield session
    finally:
        session.close()


# ── factories ──────────────────────────────────────────────────────


@pytest.fixture
def make_org(db):
    from fieldcal.models.calendar import Organization, OrgBusinessHours

    def _make(
        *,
        timezone_name: str | None = LA,
        slot_minutes: int | None = 30,
        hours: tuple[int, int] | None = None,
        quiet_hours: tuple[int, int] | None = None,
        allow_overlaps: bool = False,
    ):
        org = Organization(
            name=f"Org {uuid.uuid4().hex[:6]}",
            calendar_timezone=timezone_name,
            default_slot_minutes=slot_minutes,
            quiet_hours_start_minute=quiet_hours[0] if quiet_hours else None,
            quiet_hours_end_minute=quiet_hours[1] if quiet_hours else None,
            allow_overlaps=allow_overlaps,
        )
        db.add(org)
        db.flush()
        if hours is not None:
            for weekday in range(7):
                db.add(
                    OrgBusinessHours(
                        org_id=org.id,
                        day_of_week=weekday,
                        open_minute=hours[0],
                        close_minute=hours[1],
                    )
                )
        db.commit()
        return org

    return _make


@pytest.fixture
def make_worker(db):
    from fieldcal.models.calendar import User

    def _make(org, *, name: str, access: str = "WORKER", role: str = "CLIENT", active: bool = True):
        user = User(
            org_id=org.id if org is not None else None,
            email=f"{name.lower().replace(' ', '.')}.{uuid.uuid4().hex[:6]}@test.local",
            name=name,
            role=role,
            calendar_access_role=access,
            is_active=active,
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def make_event(db):
    from fieldcal.models.calendar import EventWorkerAssignment, ScheduledEvent

    def _make(org, workers, start_at: datetime, end_at: datetime | None, **fields):
        event = ScheduledEvent(org_id=org.id, start_at=start_at, end_at=end_at, **fields)
        db.add(event)
        db.flush()
        for worker in workers:
            db.add(EventWorkerAssignment(org_id=org.id, event_id=event.id, worker_user_id=worker.id))
        db.commit()
        return event

    return _make


# ── auth ───────────────────────────────────────────────────────────


def auth_headers(user_id, role: str = "CLIENT", email: str = "tests@example.com") -> dict:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "email": email,
        "app_metadata": {"role": role},
        "aud": settings.auth_jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(hours=1)).timestamp()),
    }
    return {"Authorization": f"Bearer {jwt.encode(payload, settings.auth_jwt_secret, algorithm='HS256')}"}


@pytest_asyncio.fixture
async def client():
    from httpx import ASGITransport

    from fieldcal.main import app

    transport = ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def headers_for():
    return auth_headers

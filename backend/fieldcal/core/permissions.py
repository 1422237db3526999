from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Iterable, Optional

from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from fieldcal.core.auth import CurrentUser, get_current_user
from fieldcal.core.dependencies import get_db
from fieldcal.core.errors import ForbiddenError
from fieldcal.models.calendar import User

INTERNAL_ROLES = {"INTERNAL"}
EDIT_ANY_CALENDAR_ROLES = {"OWNER", "ADMIN"}


@dataclass
class CalendarActor:
    id: str
    role: str
    org_id: Optional[str]
    calendar_access_role: str
    internal_user: bool

    @property
    def actor_type(self) -> str:
        return "INTERNAL" if self.internal_user else self.calendar_access_role


def get_calendar_actor(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> CalendarActor:
    try:
        user_id = uuid.UUID(current_user.id)
    except ValueError:
        raise HTTPException(401, "Unauthorized")
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise HTTPException(401, "Unauthorized")
    return CalendarActor(
        id=str(user.id),
        role=user.role,
        org_id=str(user.org_id) if user.org_id else None,
        calendar_access_role=user.calendar_access_role,
        internal_user=user.role in INTERNAL_ROLES,
    )


def assert_org_read_access(actor: CalendarActor, org_id: str | uuid.UUID) -> None:
    if actor.internal_user:
        return
    if not actor.org_id or actor.org_id != str(org_id):
        raise ForbiddenError("Forbidden")


def assert_org_write_access(actor: CalendarActor, org_id: str | uuid.UUID) -> None:
    assert_org_read_access(actor, org_id)
    if actor.internal_user:
        return
    if actor.calendar_access_role == "READ_ONLY":
        raise ForbiddenError("Read-only users cannot edit calendar data.")


def can_edit_any_event_in_org(actor: CalendarActor) -> bool:
    if actor.internal_user:
        return True
    return actor.calendar_access_role in EDIT_ANY_CALENDAR_ROLES


def assert_worker_edit_allowed(actor: CalendarActor, worker_user_ids: Iterable[str | uuid.UUID]) -> None:
    if can_edit_any_event_in_org(actor):
        return
    if actor.calendar_access_role == "READ_ONLY":
        raise ForbiddenError("Read-only users cannot edit calendar data.")
    if actor.id not in {str(worker_id) for worker_id in worker_user_ids}:
        raise ForbiddenError("Workers can only edit calendars assigned to themselves.")


def assert_internal_user(actor: CalendarActor) -> None:
    if not actor.internal_user:
        raise ForbiddenError("Internal access required.")


def assert_event_edit_allowed(actor: CalendarActor, current_worker_ids: Iterable[str | uuid.UUID]) -> None:
    """Workers may only touch events they are already assigned to."""
    if can_edit_any_event_in_org(actor):
        return
    if actor.calendar_access_role == "READ_ONLY":
        raise ForbiddenError("Read-only users cannot edit calendar data.")
    if actor.id not in {str(worker_id) for worker_id in current_worker_ids}:
        raise ForbiddenError("Workers can only edit events assigned to themselves.")

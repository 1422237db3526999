"""Typed failures raised by the calendar engine.

Routes never translate these by hand: ``fieldcal.main`` registers one exception
handler that turns any ``CalendarError`` into a JSON body carrying ``code`` so
clients can branch on the kind. ``NotFoundError`` and ``ConflictError`` are
ordinary outcomes of a booking flow; ``InvalidInputError`` and
``ForbiddenError`` point at a caller bug or a permission veto.
"""

from __future__ import annotations

from typing import Any, Sequence


class CalendarError(Exception):
    status_code = 400
    code = "CALENDAR_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(CalendarError):
    status_code = 404
    code = "NOT_FOUND"


class InvalidInputError(CalendarError):
    status_code = 400
    code = "INVALID_INPUT"


class ForbiddenError(CalendarError):
    status_code = 403
    code = "FORBIDDEN"


class ConflictError(CalendarError):
    status_code = 409
    code = "CONFLICT"

    def __init__(self, message: str, conflicts: Sequence[Any] = ()) -> None:
        super().__init__(message)
        self.conflicts = list(conflicts)

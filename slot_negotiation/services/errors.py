"""Exceptions raised by the scheduling services.

Every error carries a stable machine-readable ``code`` that routers pass
through to clients, and optional ``details`` for structured context.
"""

from typing import Any


class SchedulingError(Exception):
    """Base exception for scheduling operations."""

    default_code = "scheduling_error"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}


class InvalidArgumentError(SchedulingError):
    """Malformed input: bad batch, unknown value, foreign slot."""

    default_code = "invalid_argument"


class NotFoundError(SchedulingError):
    """Referenced proposal or slot does not exist."""

    default_code = "not_found"


class ForbiddenError(SchedulingError):
    """Caller lacks the required relationship to the proposal."""

    default_code = "forbidden"


class ConflictError(SchedulingError):
    """State precondition failed or an optimistic transition lost a race."""

    default_code = "conflict"


class InternalError(SchedulingError):
    """Store or provider failure."""

    default_code = "internal_error"

from __future__ import annotations

from typing import TYPE_CHECKING, List, Sequence

if TYPE_CHECKING:
    from .models.window import Slot


class SchedulingError(Exception):
    """Base for every error raised by the engine."""

    code = "scheduling_error"


class InvalidRangeError(SchedulingError, ValueError):
    code = "invalid_range"


class InvalidWindowError(SchedulingError, ValueError):
    code = "invalid_window"


class InsufficientHoursError(SchedulingError):
    code = "insufficient_hours"

    def __init__(self, student_id: str, balance: float, requested: float):
        super().__init__(
            f"student {student_id} has {balance:g}h remaining, {requested:g}h requested"
        )
        self.student_id = student_id
        self.balance = balance
        self.requested = requested


class ConflictError(SchedulingError):
    code = "conflict"

    def __init__(
        self,
        reason: str,
        alternatives: Sequence[Slot] = (),
        detail: str = "",
        waitlist_position: int | None = None,
    ):
        super().__init__(detail or reason)
        self.reason = reason
        self.alternatives: List[Slot] = list(alternatives)
        self.waitlist_position = waitlist_position


class NoAvailabilityError(SchedulingError):
    code = "no_availability"

    def __init__(self, detail: str = "", alternatives: Sequence[Slot] = ()):
        super().__init__(detail or "no teacher available for the requested window")
        self.reason = self.code
        self.alternatives: List[Slot] = list(alternatives)


class BookingTimeoutError(SchedulingError):
    code = "timeout"


class PersistenceError(SchedulingError):
    """Opaque wrapper for failures of the backing store."""

    code = "persistence_error"


class StaleWriteError(PersistenceError):
    code = "stale_write"


class BookingNotFoundError(SchedulingError, KeyError):
    code = "not_found"


class InvalidTransitionError(SchedulingError):
    code = "invalid_transition"


class InvalidLeaveError(SchedulingError):
    code = "invalid_leave"


# Raised by a booking attempt and turned into a rejected ScheduleResult.
REJECTIONS = (ConflictError, NoAvailabilityError, InsufficientHoursError)

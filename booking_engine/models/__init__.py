# Re-export common types
from .booking import Booking, BookingStatus, BookingType
from .hours import HourLedgerEntry, LedgerReason
from .leave import LeaveOutcome, LeaveRequest, LeaveResult
from .request import (
    AttemptState,
    Recurrence,
    RecurringPattern,
    RecurringResult,
    ScheduleRequest,
    ScheduleResult,
    ScheduleStatus,
)
from .session import ClassSession
from .teacher import Teacher, TeacherAvailability
from .window import Block, Slot, TimeWindow

__all__ = [
    "AttemptState",
    "Block",
    "Booking",
    "BookingStatus",
    "BookingType",
    "ClassSession",
    "HourLedgerEntry",
    "LeaveOutcome",
    "LeaveRequest",
    "LeaveResult",
    "LedgerReason",
    "Recurrence",
    "RecurringPattern",
    "RecurringResult",
    "ScheduleRequest",
    "ScheduleResult",
    "ScheduleStatus",
    "Slot",
    "Teacher",
    "TeacherAvailability",
    "TimeWindow",
]

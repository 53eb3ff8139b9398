from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import StrEnum

from ..errors import InvalidTransitionError
from .window import Slot


class BookingType(StrEnum):
    INDIVIDUAL = "individual"
    GROUP = "group"


class BookingStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    RESCHEDULED = "rescheduled"
    NO_SHOW = "no_show"


TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
        BookingStatus.RESCHEDULED,
        BookingStatus.NO_SHOW,
    },
    # A postponed class with no make-up booked can still be cancelled for a refund
    BookingStatus.RESCHEDULED: {BookingStatus.CANCELLED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
    BookingStatus.NO_SHOW: set(),
}


@dataclass
class Booking:
    id: str
    student_id: str
    teacher_id: str
    subject_id: str
    start: datetime
    duration: timedelta
    type: BookingType = BookingType.INDIVIDUAL
    status: BookingStatus = BookingStatus.PENDING
    recurring_group_id: str | None = None
    session_id: str | None = None
    idempotency_key: str | None = None
    makeup_of: str | None = None  # id of the postponed booking whose hours this carries
    cancelled_by: str | None = None

    @property
    def end(self) -> datetime:
        return self.start + self.duration

    @property
    def date(self) -> date:
        return self.start.date()

    @property
    def hours(self) -> float:
        return self.duration.total_seconds() / 3600

    @property
    def slot(self) -> Slot:
        return Slot(self.start, self.end, self.teacher_id)

    @property
    def charge_ref(self) -> str:
        # Ledger entries of a make-up stay on the booking that paid for it
        return self.makeup_of or self.id

    @property
    def is_confirmed(self) -> bool:
        return self.status == BookingStatus.CONFIRMED

    def transition(self, status: BookingStatus) -> None:
        if status not in TRANSITIONS[self.status]:
            raise InvalidTransitionError(f"booking {self.id}: {self.status} -> {status} not allowed")
        self.status = status

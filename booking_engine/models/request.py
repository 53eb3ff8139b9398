from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from enum import StrEnum
from typing import List

from ..errors import InvalidRangeError
from .booking import BookingType
from .window import Slot


class Recurrence(StrEnum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


@dataclass(frozen=True)
class RecurringPattern:
    frequency: Recurrence
    count: int
    until: date | None = None


@dataclass(frozen=True)
class ScheduleRequest:
    student_id: str
    subject_id: str
    start: datetime
    duration: timedelta
    type: BookingType = BookingType.INDIVIDUAL
    teacher_id: str | None = None
    session_id: str | None = None
    content_unit: str | None = None
    recurrence: RecurringPattern | None = None
    idempotency_key: str | None = None
    join_waitlist: bool = False

    def __post_init__(self) -> None:
        if self.start.tzinfo is None or self.start.utcoffset() is None:
            raise InvalidRangeError(f"start {self.start.isoformat()} has no timezone")
        if self.duration <= timedelta(0):
            raise InvalidRangeError(f"duration must be positive, got {self.duration}")

    @property
    def end(self) -> datetime:
        return self.start + self.duration

    @property
    def desired_window(self) -> Slot:
        return Slot(self.start, self.end, self.student_id)

    @property
    def hours(self) -> float:
        return self.duration.total_seconds() / 3600

    @property
    def auto_match(self) -> bool:
        return self.type == BookingType.INDIVIDUAL and self.teacher_id is None

    def at(self, start: datetime, **changes) -> "ScheduleRequest":
        return replace(self, start=start, **changes)


class AttemptState(StrEnum):
    REQUESTED = "requested"
    MATCHED = "matched"
    CONFLICT_CHECKED = "conflict_checked"
    HOUR_RESERVED = "hour_reserved"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class ScheduleStatus(StrEnum):
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


@dataclass
class ScheduleResult:
    status: ScheduleStatus
    booking_id: str | None = None
    teacher_id: str | None = None
    session_id: str | None = None
    start: datetime | None = None
    reason: str | None = None
    alternatives: List[Slot] = field(default_factory=list)
    states: List[AttemptState] = field(default_factory=list)
    waitlist_position: int | None = None

    @property
    def confirmed(self) -> bool:
        return self.status == ScheduleStatus.CONFIRMED


@dataclass
class RecurringResult:
    recurring_group_id: str
    occurrences: List[ScheduleResult] = field(default_factory=list)

    @property
    def confirmed(self) -> List[ScheduleResult]:
        return [r for r in self.occurrences if r.confirmed]

    @property
    def rejected(self) -> List[ScheduleResult]:
        return [r for r in self.occurrences if not r.confirmed]

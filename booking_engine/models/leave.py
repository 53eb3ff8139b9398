from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import List

from .window import Slot


class LeaveOutcome(StrEnum):
    POSTPONED = "postponed"
    ONE_CHANCE_USED = "one_chance_used"
    DEDUCTED = "deducted"


@dataclass(frozen=True)
class LeaveRequest:
    id: str
    booking_id: str
    student_id: str
    subject_id: str
    requested_at: datetime
    notice_hours: float
    outcome: LeaveOutcome
    reason: str = ""

    @property
    def postponed(self) -> bool:
        return self.outcome != LeaveOutcome.DEDUCTED


@dataclass
class LeaveResult:
    leave: LeaveRequest
    suggestions: List[Slot] = field(default_factory=list)
    makeup_until: datetime | None = None

    @property
    def outcome(self) -> LeaveOutcome:
        return self.leave.outcome

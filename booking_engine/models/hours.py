from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class LedgerReason(StrEnum):
    ATTENDED = "attended"
    LEAVE_LATE = "leave_late"
    NO_SHOW = "no_show"
    PURCHASE = "purchase"
    REFUND = "refund"


@dataclass(frozen=True)
class HourLedgerEntry:
    id: str
    student_id: str
    delta: float  # signed hours, negative for deductions
    reason: LedgerReason
    timestamp: datetime
    booking_id: str | None = None
    reverses: str | None = None  # id of the entry this one cancels out

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Iterable, List

from ..errors import InsufficientHoursError
from ..models.hours import HourLedgerEntry, LedgerReason

DEBIT_REASONS = {LedgerReason.ATTENDED, LedgerReason.LEAVE_LATE, LedgerReason.NO_SHOW}
CREDIT_REASONS = {LedgerReason.PURCHASE, LedgerReason.REFUND}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class HourLedger:
    """Append-only hour ledger. A balance is the sum of a student's deltas.

    Entries are never edited; corrections go in as reversal entries.
    The ledger only builds and validates entries, persisting them is the
    caller's job.
    """

    def __init__(self, entries: Iterable[HourLedgerEntry] = ()):
        self.entries: List[HourLedgerEntry] = list(entries)

    def history(self, student_id: str) -> List[HourLedgerEntry]:
        return [e for e in self.entries if e.student_id == student_id]

    def balance(self, student_id: str) -> float:
        return round(sum(e.delta for e in self.entries if e.student_id == student_id), 6)

    def net_for_booking(self, booking_id: str) -> float:
        return round(sum(e.delta for e in self.entries if e.booking_id == booking_id), 6)

    def debit(
        self,
        student_id: str,
        hours: float,
        reason: LedgerReason,
        booking_id: str | None = None,
        at: datetime | None = None,
    ) -> HourLedgerEntry:
        if hours <= 0:
            raise ValueError(f"debit must be positive, got {hours}")
        if reason not in DEBIT_REASONS:
            raise ValueError(f"{reason} is not a deduction reason")
        balance = self.balance(student_id)
        # A no-show is a penalty already incurred, so it may overdraw
        if reason != LedgerReason.NO_SHOW and balance - hours < 0:
            raise InsufficientHoursError(student_id, balance, hours)
        return self._append(student_id, -hours, reason, booking_id, at)

    def credit(
        self,
        student_id: str,
        hours: float,
        reason: LedgerReason,
        booking_id: str | None = None,
        at: datetime | None = None,
    ) -> HourLedgerEntry:
        if hours <= 0:
            raise ValueError(f"credit must be positive, got {hours}")
        if reason not in CREDIT_REASONS:
            raise ValueError(f"{reason} is not a credit reason")
        return self._append(student_id, hours, reason, booking_id, at)

    def reverse(self, entry: HourLedgerEntry, at: datetime | None = None) -> HourLedgerEntry:
        reason = LedgerReason.REFUND if entry.delta < 0 else entry.reason
        return self._append(
            entry.student_id, -entry.delta, reason, entry.booking_id, at, reverses=entry.id
        )

    def retag(
        self, student_id: str, booking_id: str, reason: LedgerReason, at: datetime | None = None
    ) -> List[HourLedgerEntry]:
        """Re-attribute the net charge held on a booking to ``reason``.

        Writes a refund of the held hours and a fresh deduction of the same
        amount, so the balance does not move.
        """
        held = -self.net_for_booking(booking_id)
        if held <= 0:
            return []
        refund = self.credit(student_id, held, LedgerReason.REFUND, booking_id, at)
        charge = self._append(student_id, -held, reason, booking_id, at)
        return [refund, charge]

    def _append(
        self,
        student_id: str,
        delta: float,
        reason: LedgerReason,
        booking_id: str | None,
        at: datetime | None,
        reverses: str | None = None,
    ) -> HourLedgerEntry:
        entry = HourLedgerEntry(
            id=_new_id(),
            student_id=student_id,
            delta=delta,
            reason=reason,
            timestamp=at or _now(),
            booking_id=booking_id,
            reverses=reverses,
        )
        self.entries.append(entry)
        return entry

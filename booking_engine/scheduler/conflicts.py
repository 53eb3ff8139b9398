from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Sequence

from ..data.store import Snapshot
from ..errors import ConflictError
from ..models.booking import Booking
from ..models.session import ClassSession
from ..models.window import Slot, overlaps
from .availability import AvailabilityIndex

logger = logging.getLogger(__name__)


class ConflictReason(StrEnum):
    TEACHER_UNAVAILABLE = "teacher_unavailable"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    DUPLICATE_ENROLLMENT = "duplicate_enrollment"
    STUDENT_DOUBLE_BOOKED = "student_double_booked"
    CONTENT_MISMATCH = "content_mismatch"


@dataclass(frozen=True)
class ConflictCheck:
    reason: ConflictReason | None = None

    @property
    def ok(self) -> bool:
        return self.reason is None

    def raise_for_conflict(self, alternatives: Sequence[Slot] = ()) -> None:
        if self.reason is not None:
            raise ConflictError(self.reason.value, alternatives)


OK = ConflictCheck()


class ConflictDetector:
    """Validates one candidate booking against a snapshot.

    Checks run cheapest first and stop at the first failure: teacher
    availability, session capacity, duplicate enrollment, content unit,
    then the student's own calendar.
    """

    def __init__(self, snapshot: Snapshot, index: AvailabilityIndex | None = None):
        self.snapshot = snapshot
        self.index = index or AvailabilityIndex(snapshot)

    def check(
        self,
        candidate: Booking,
        session: ClassSession | None = None,
        content_unit: str | None = None,
    ) -> ConflictCheck:
        if not self.index.covers(
            candidate.teacher_id,
            candidate.start,
            candidate.end,
            exclude_session=candidate.session_id,
            exclude_booking=candidate.id,
        ):
            return self._fail(candidate, ConflictReason.TEACHER_UNAVAILABLE)
        if session is not None:
            if session.is_full:
                return self._fail(candidate, ConflictReason.CAPACITY_EXCEEDED)
            if candidate.student_id in session.enrolled:
                return self._fail(candidate, ConflictReason.DUPLICATE_ENROLLMENT)
            if content_unit is not None and content_unit != session.content_unit:
                return self._fail(candidate, ConflictReason.CONTENT_MISMATCH)
        for other in self.snapshot.confirmed_for_student(candidate.student_id):
            if other.id == candidate.id:
                continue
            if overlaps(other.start, other.end, candidate.start, candidate.end):
                return self._fail(candidate, ConflictReason.STUDENT_DOUBLE_BOOKED)
        return OK

    def _fail(self, candidate: Booking, reason: ConflictReason) -> ConflictCheck:
        logger.info(
            f"Conflict {reason} for student {candidate.student_id} with "
            f"{candidate.teacher_id} at {candidate.start.isoformat()}"
        )
        return ConflictCheck(reason)

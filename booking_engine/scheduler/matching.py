from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterator, List, Tuple

from ..config import SchedulingConfig
from ..data.store import Snapshot
from ..models.booking import Booking, BookingStatus
from ..models.request import ScheduleRequest
from ..models.session import ClassSession
from ..models.teacher import Teacher
from ..models.window import Slot, overlaps
from .availability import AvailabilityIndex, carve
from .score import score_teacher

logger = logging.getLogger(__name__)

# Pluggable proficiency/fit signal supplied by the application, 0..1
ExternalScorer = Callable[[Teacher, ScheduleRequest], float]


@dataclass(frozen=True)
class TeacherCandidate:
    teacher_id: str
    slot: Slot
    score: float
    exact: bool
    weekly_load: int


@dataclass
class MatchOutcome:
    candidates: List[TeacherCandidate] = field(default_factory=list)

    @property
    def no_availability(self) -> bool:
        return not self.candidates

    @property
    def best(self) -> TeacherCandidate | None:
        return self.candidates[0] if self.candidates else None


@dataclass
class GroupAssignment:
    content_unit: str
    session: ClassSession | None = None

    @property
    def open_new(self) -> bool:
        return self.session is None


def _week_bounds(at: datetime) -> Tuple[datetime, datetime]:
    monday = (at - timedelta(days=at.weekday())).replace(hour=0, minute=0, second=0, microsecond=0)
    return monday, monday + timedelta(days=7)


class MatchingEngine:
    """Read-only teacher ranking and group placement over one snapshot."""

    def __init__(
        self,
        snapshot: Snapshot,
        config: SchedulingConfig,
        index: AvailabilityIndex | None = None,
        external_scorer: ExternalScorer | None = None,
    ):
        self.snapshot = snapshot
        self.config = config
        self.index = index or AvailabilityIndex(snapshot)
        self.external_scorer = external_scorer

    # -- helpers -------------------------------------------------------

    def weekly_load(self, teacher_id: str, around: datetime) -> int:
        lo, hi = _week_bounds(around)
        seen: set[str] = set()
        for b in self.snapshot.confirmed_for_teacher(teacher_id):
            if lo <= b.start < hi:
                # A group session counts once however many students it seats
                seen.add(b.session_id or b.id)
        return len(seen)

    def prior_classes(self, student_id: str, teacher_id: str) -> int:
        kept = {BookingStatus.CONFIRMED, BookingStatus.COMPLETED}
        return sum(
            1
            for b in self.snapshot.bookings.values()
            if b.student_id == student_id and b.teacher_id == teacher_id and b.status in kept
        )

    def student_free(self, student_id: str, start: datetime, end: datetime, exclude_booking: str | None = None) -> bool:
        for b in self.snapshot.confirmed_for_student(student_id):
            if b.id == exclude_booking:
                continue
            if overlaps(b.start, b.end, start, end):
                return False
        return True

    def _starts(self, teacher_id: str, lo: datetime, hi: datetime, duration: timedelta) -> Iterator[datetime]:
        for slot in self.index.open_slots(teacher_id, lo, hi):
            yield from carve(slot, duration, self.config.slot_step_minutes)

    # -- 1-on-1 ----------------------------------------------------------

    def _fit(self, teacher_id: str, request: ScheduleRequest) -> Tuple[datetime, bool] | None:
        if self.index.covers(teacher_id, request.start, request.end):
            if self.student_free(request.student_id, request.start, request.end):
                return request.start, True
        shift = timedelta(minutes=self.config.adjacent_shift_minutes)
        if not shift:
            return None
        best: Tuple[timedelta, datetime] | None = None
        for start in self._starts(teacher_id, request.start - shift, request.end + shift, request.duration):
            offset = abs(start - request.start)
            if offset > shift or offset == timedelta(0):
                continue
            if not self.student_free(request.student_id, start, start + request.duration):
                continue
            if best is None or (offset, start) < best:
                best = (offset, start)
        if best is None:
            return None
        return best[1], False

    def match_teachers(self, request: ScheduleRequest) -> MatchOutcome:
        """Rank teachers able to take the request.

        Exact fits always rank above shifted ones; within a fit class the
        weighted score decides, then the lighter weekly load, then id.
        """
        ranked: List[Tuple[Tuple[bool, float, int, str], TeacherCandidate]] = []
        for teacher in self.snapshot.teachers_for(request.subject_id):
            if request.teacher_id is not None and teacher.id != request.teacher_id:
                continue
            fit = self._fit(teacher.id, request)
            if fit is None:
                continue
            start, exact = fit
            load = self.weekly_load(teacher.id, start)
            external = self.external_scorer(teacher, request) if self.external_scorer else None
            score = score_teacher(
                exact=exact,
                shift_minutes=int(abs(start - request.start).total_seconds() // 60),
                max_shift_minutes=self.config.adjacent_shift_minutes,
                specialized=request.subject_id in teacher.specializations,
                weekly_load=load,
                max_weekly_load=teacher.max_weekly_load,
                prior_classes=self.prior_classes(request.student_id, teacher.id),
                external=external,
                weights=self.config,
            )
            cand = TeacherCandidate(teacher.id, Slot(start, start + request.duration, teacher.id), score, exact, load)
            ranked.append(((not exact, -score, load, teacher.id), cand))
        ranked.sort(key=lambda pair: pair[0])
        outcome = MatchOutcome([c for _, c in ranked])
        logger.info(
            f"Matched {len(outcome.candidates)} teacher(s) for {request.student_id} "
            f"{request.subject_id} at {request.start.isoformat()}"
        )
        return outcome

    # -- alternatives ----------------------------------------------------

    def alternatives(
        self,
        request: ScheduleRequest,
        not_before: datetime | None = None,
        limit: int | None = None,
    ) -> List[Slot]:
        """Other (teacher, start) pairs near the desired window, closest first."""
        limit = self.config.alternatives_limit if limit is None else limit
        widen = timedelta(days=self.config.widen_days)
        lo = request.start - widen
        if not_before is not None:
            lo = max(lo, not_before)
        hi = request.end + widen
        found: List[Tuple[timedelta, datetime, str]] = []
        for teacher in self.snapshot.teachers_for(request.subject_id):
            for start in self._starts(teacher.id, lo, hi, request.duration):
                if start == request.start and teacher.id == request.teacher_id:
                    continue
                if not self.student_free(request.student_id, start, start + request.duration):
                    continue
                found.append((abs(start - request.start), start, teacher.id))
        found.sort()
        return [Slot(start, start + request.duration, tid) for _, start, tid in found[:limit]]

    def makeup_slots(
        self,
        booking: Booking,
        not_before: datetime,
        until: datetime,
        limit: int,
    ) -> List[Slot]:
        """Soonest open slots for a postponed class, same subject, any teacher."""
        if until <= not_before or limit <= 0:
            return []
        streams = []
        for teacher in self.snapshot.teachers_for(booking.subject_id):
            streams.append(self._free_starts(teacher.id, booking, not_before, until))
        out: List[Slot] = []
        # Each stream is already in time order, so a lazy merge stops early
        for start, _, tid in heapq.merge(*streams):
            out.append(Slot(start, start + booking.duration, tid))
            if len(out) >= limit:
                break
        return out

    def _free_starts(
        self, teacher_id: str, booking: Booking, lo: datetime, hi: datetime
    ) -> Iterator[Tuple[datetime, int, str]]:
        # The original teacher wins ties at the same start
        rank = 0 if teacher_id == booking.teacher_id else 1
        for start in self._starts(teacher_id, lo, hi, booking.duration):
            # Never offer the postponed slot itself
            if overlaps(start, start + booking.duration, booking.start, booking.end):
                continue
            if self.student_free(booking.student_id, start, start + booking.duration, exclude_booking=booking.id):
                yield start, rank, teacher_id

    # -- group -----------------------------------------------------------

    def open_sessions(
        self, student_id: str, subject_id: str, content_unit: str, not_before: datetime
    ) -> List[ClassSession]:
        """Sessions the student could join, earliest start first."""
        sessions = sorted(
            (
                s
                for s in self.snapshot.sessions.values()
                if s.subject_id == subject_id
                and s.content_unit == content_unit
                and s.start >= not_before
                and not s.is_full
                and student_id not in s.enrolled
            ),
            key=lambda s: (s.start, s.id),
        )
        return [s for s in sessions if self.student_free(student_id, s.start, s.end)]

    def assign_group(
        self, student_id: str, subject_id: str, content_unit: str, not_before: datetime
    ) -> GroupAssignment:
        for s in self.open_sessions(student_id, subject_id, content_unit, not_before):
            logger.info(f"Group match {student_id} -> session {s.id} ({content_unit})")
            return GroupAssignment(content_unit, s)
        return GroupAssignment(content_unit)

    def next_session_slot(
        self, student_id: str, subject_id: str, duration: timedelta, not_before: datetime
    ) -> Slot | None:
        """Earliest teacher slot where a new session could open."""
        hi = not_before + timedelta(days=self.config.session_search_days)
        best: Tuple[datetime, int, str] | None = None
        for teacher in self.snapshot.teachers_for(subject_id):
            for start in self._starts(teacher.id, not_before, hi, duration):
                if not self.student_free(student_id, start, start + duration):
                    continue
                key = (start, self.weekly_load(teacher.id, start), teacher.id)
                if best is None or key < best:
                    best = key
                break
        if best is None:
            return None
        return Slot(best[0], best[0] + duration, best[2])

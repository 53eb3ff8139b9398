from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Iterable, List, Sequence, Tuple, TypeVar

from ..config import SchedulingConfig, load_config
from ..data.store import ScheduleStore, Snapshot
from ..errors import (
    REJECTIONS,
    BookingNotFoundError,
    BookingTimeoutError,
    ConflictError,
    InvalidLeaveError,
    InvalidTransitionError,
    NoAvailabilityError,
    PersistenceError,
    SchedulingError,
)
from ..models.booking import Booking, BookingStatus, BookingType
from ..models.hours import HourLedgerEntry, LedgerReason
from ..models.leave import LeaveResult
from ..models.request import (
    AttemptState,
    RecurringResult,
    ScheduleRequest,
    ScheduleResult,
    ScheduleStatus,
)
from ..models.session import GROUP_MAX, GROUP_MIN, ClassSession
from ..models.window import Slot
from ..solvers.cpsat import GroupPlan, SolverConfig, plan_group_sessions
from .availability import AvailabilityIndex, carve
from .conflicts import ConflictDetector, ConflictReason
from .leave import LeaveWorkflow
from .ledger import HourLedger
from .locks import KeyedLock, LockKey, session_key, student_key, teacher_key
from .matching import ExternalScorer, MatchingEngine
from .recurrence import expand

logger = logging.getLogger(__name__)

T = TypeVar("T")
UndoOp = Callable[[], Awaitable[None]]

# Statuses that mean a make-up has been used up
MAKEUP_TAKEN = {BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.COMPLETED, BookingStatus.NO_SHOW}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class Compensation:
    """Undo log for one operation, replayed newest first on failure.

    Undo steps are registered before the write they guard, and each step
    checks the store first, so a write that timed out but landed is still
    undone and one that never landed is left alone.
    """

    def __init__(self, scheduler: "Scheduler"):
        self.scheduler = scheduler
        self._undo: List[Tuple[str, UndoOp]] = []

    def push(self, what: str, op: UndoOp) -> None:
        self._undo.append((what, op))

    def reverse_entry(self, entry: HourLedgerEntry, timeout: float) -> None:
        sched = self.scheduler
        reversal = HourLedger().reverse(entry, at=sched.clock())

        async def op() -> None:
            if not await sched._call(sched.store.has_ledger_entry(entry.id), timeout):
                return
            if await sched._call(sched.store.has_ledger_entry(reversal.id), timeout):
                return
            await sched._call(sched.store.append_ledger_entry(reversal), timeout)

        self.push(f"ledger entry {entry.id}", op)

    async def rollback(self) -> None:
        while self._undo:
            what, op = self._undo.pop()
            await self.scheduler._retry(what, op)


class Scheduler:
    """Runs booking attempts against a store as effectively atomic steps.

    Each attempt moves requested -> matched -> conflict_checked ->
    hour_reserved -> confirmed, or ends rejected. Ranking reads an
    unlocked snapshot; the commit re-reads under per-key locks.
    """

    def __init__(
        self,
        store: ScheduleStore,
        config: SchedulingConfig | None = None,
        *,
        locks: KeyedLock | None = None,
        clock: Callable[[], datetime] | None = None,
        external_scorer: ExternalScorer | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        self.store = store
        self.config = config or load_config()
        self.locks = locks or KeyedLock()
        self.clock = clock or _utcnow
        self.external_scorer = external_scorer
        self._sleep = sleep or asyncio.sleep
        self.leave = LeaveWorkflow(self)

    # -- plumbing --------------------------------------------------------

    def _timeout(self, timeout: float | None) -> float:
        return self.config.store_timeout_sec if timeout is None else timeout

    async def _call(self, aw: Awaitable[T], timeout: float) -> T:
        try:
            return await asyncio.wait_for(aw, timeout)
        except TimeoutError as exc:
            raise BookingTimeoutError(f"store call exceeded {timeout}s") from exc
        except SchedulingError:
            raise
        except Exception as exc:
            raise PersistenceError(f"{type(exc).__name__}: {exc}") from exc

    async def _retry(self, what: str, op: UndoOp) -> bool:
        attempts = max(1, self.config.rollback_attempts)
        for attempt in range(1, attempts + 1):
            try:
                await op()
                return True
            except (PersistenceError, BookingTimeoutError) as exc:
                logger.warning(f"Rollback of {what} failed ({attempt}/{attempts}): {exc}")
                if attempt < attempts:
                    await self._sleep(self.config.rollback_backoff_sec * 2 ** (attempt - 1))
        logger.error(f"Rollback of {what} abandoned after {attempts} attempts")
        return False

    def compensation(self) -> Compensation:
        return Compensation(self)

    def _matching(self, snap: Snapshot) -> MatchingEngine:
        return MatchingEngine(snap, self.config, external_scorer=self.external_scorer)

    def _booking_keys(self, booking: Booking) -> List[LockKey]:
        keys = [student_key(booking.student_id)]
        if booking.session_id is not None:
            keys.append(session_key(booking.session_id))
        else:
            keys.append(teacher_key(booking.teacher_id, booking.start))
        return keys

    @staticmethod
    def _get(snap: Snapshot, booking_id: str) -> Booking:
        booking = snap.bookings.get(booking_id)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        return booking

    async def balance(self, student_id: str, timeout: float | None = None) -> float:
        snap = await self._call(self.store.snapshot(), self._timeout(timeout))
        return HourLedger(snap.ledger_entries).balance(student_id)

    # -- results ---------------------------------------------------------

    def _result_for(self, booking: Booking, states: List[AttemptState]) -> ScheduleResult:
        if booking.status in (BookingStatus.CONFIRMED, BookingStatus.COMPLETED):
            if states[-1] != AttemptState.CONFIRMED:
                states.append(AttemptState.CONFIRMED)
            status = ScheduleStatus.CONFIRMED
            reason = None
        else:
            states.append(AttemptState.REJECTED)
            status = ScheduleStatus.REJECTED
            reason = str(booking.status)
        return ScheduleResult(
            status,
            booking_id=booking.id,
            teacher_id=booking.teacher_id,
            session_id=booking.session_id,
            start=booking.start,
            reason=reason,
            states=states,
        )

    def _rejected(self, request: ScheduleRequest, exc: SchedulingError, states: List[AttemptState]) -> ScheduleResult:
        states.append(AttemptState.REJECTED)
        reason = str(getattr(exc, "reason", exc.code))
        logger.info(f"Rejected {request.student_id} {request.subject_id} at {request.start.isoformat()}: {reason}")
        return ScheduleResult(
            ScheduleStatus.REJECTED,
            teacher_id=request.teacher_id,
            session_id=request.session_id,
            start=request.start,
            reason=reason,
            alternatives=list(getattr(exc, "alternatives", [])),
            states=states,
            waitlist_position=getattr(exc, "waitlist_position", None),
        )

    async def _guarded(
        self, request: ScheduleRequest, states: List[AttemptState], work: Callable[[], Awaitable[Booking]]
    ) -> ScheduleResult:
        try:
            booking = await work()
        except REJECTIONS as exc:
            return self._rejected(request, exc, states)
        return self._result_for(booking, states)

    # -- booking ---------------------------------------------------------

    async def schedule(
        self, request: ScheduleRequest, timeout: float | None = None
    ) -> ScheduleResult | RecurringResult:
        if request.recurrence is not None:
            return await self.schedule_recurring(request, timeout)
        return await self._attempt(request, self._timeout(timeout))

    async def schedule_recurring(self, request: ScheduleRequest, timeout: float | None = None) -> RecurringResult:
        """Book each occurrence on its own; one failure never undoes another."""
        if request.recurrence is None:
            raise ValueError("request has no recurrence pattern")
        timeout = self._timeout(timeout)
        result = RecurringResult(recurring_group_id=_new_id())
        for n, start in enumerate(expand(request.start, request.recurrence)):
            key = f"{request.idempotency_key}#{n}" if request.idempotency_key else None
            occ = request.at(start, recurrence=None, idempotency_key=key)
            try:
                outcome = await self._attempt(occ, timeout, recurring_group_id=result.recurring_group_id)
            except (BookingTimeoutError, PersistenceError) as exc:
                logger.warning(f"Occurrence {n} at {start.isoformat()} failed: {exc}")
                outcome = ScheduleResult(
                    ScheduleStatus.REJECTED,
                    start=start,
                    reason=exc.code,
                    states=[AttemptState.REQUESTED, AttemptState.REJECTED],
                )
            result.occurrences.append(outcome)
        logger.info(
            f"Recurring {request.recurrence.frequency} for {request.student_id}: "
            f"{len(result.confirmed)} confirmed, {len(result.rejected)} rejected"
        )
        return result

    async def _attempt(
        self, request: ScheduleRequest, timeout: float, recurring_group_id: str | None = None
    ) -> ScheduleResult:
        states = [AttemptState.REQUESTED]
        logger.info(
            f"Request {request.type} {request.student_id} {request.subject_id} "
            f"at {request.start.isoformat()} for {request.duration}"
        )
        if request.idempotency_key:
            snap = await self._call(self.store.snapshot(), timeout)
            existing = snap.by_idempotency_key(request.idempotency_key)
            if existing is not None:
                logger.info(f"Idempotent replay of {request.idempotency_key} -> {existing.id}")
                return self._result_for(existing, states)
        if request.type == BookingType.GROUP:
            work = lambda: self._attempt_group(request, timeout, states, recurring_group_id)  # noqa: E731
        else:
            work = lambda: self._attempt_individual(request, timeout, states, recurring_group_id)  # noqa: E731
        return await self._guarded(request, states, work)

    async def _attempt_individual(
        self,
        request: ScheduleRequest,
        timeout: float,
        states: List[AttemptState],
        recurring_group_id: str | None,
    ) -> Booking:
        snap = await self._call(self.store.snapshot(), timeout)
        matching = self._matching(snap)
        if request.teacher_id is not None:
            teacher = snap.teachers.get(request.teacher_id)
            if teacher is None or not teacher.teaches(request.subject_id):
                raise ConflictError(
                    ConflictReason.TEACHER_UNAVAILABLE.value,
                    matching.alternatives(request, not_before=self.clock()),
                    detail=f"{request.teacher_id} does not teach {request.subject_id}",
                )
            picks = [(request.teacher_id, request.start)]
        else:
            outcome = matching.match_teachers(request)
            if outcome.no_availability:
                raise NoAvailabilityError(alternatives=matching.alternatives(request, not_before=self.clock()))
            picks = [(c.teacher_id, c.slot.start) for c in outcome.candidates]
        states.append(AttemptState.MATCHED)

        last: ConflictError | None = None
        for teacher_id, start in picks:
            booking = Booking(
                id=_new_id(),
                student_id=request.student_id,
                teacher_id=teacher_id,
                subject_id=request.subject_id,
                start=start,
                duration=request.duration,
                type=BookingType.INDIVIDUAL,
                recurring_group_id=recurring_group_id,
                idempotency_key=request.idempotency_key,
            )
            try:
                return await self._commit(request, booking, timeout, states)
            except ConflictError as exc:
                # Lost a race for this teacher; fall through to the next one
                last = exc
        assert last is not None
        raise last

    def _content_unit(self, snap: Snapshot, request: ScheduleRequest) -> str:
        recorded = snap.content_unit(request.student_id, request.subject_id)
        if request.content_unit and recorded and request.content_unit != recorded:
            raise ConflictError(
                ConflictReason.CONTENT_MISMATCH.value,
                detail=f"{request.student_id} is at {recorded}, not {request.content_unit}",
            )
        unit = request.content_unit or recorded
        if unit is None:
            raise ConflictError(
                ConflictReason.CONTENT_MISMATCH.value,
                detail=f"no recorded progress for {request.student_id} in {request.subject_id}",
            )
        return unit

    async def _attempt_group(
        self,
        request: ScheduleRequest,
        timeout: float,
        states: List[AttemptState],
        recurring_group_id: str | None,
    ) -> Booking:
        snap = await self._call(self.store.snapshot(), timeout)
        matching = self._matching(snap)
        unit = self._content_unit(snap, request)
        proposed: ClassSession | None = None
        if request.session_id is not None:
            session = snap.sessions.get(request.session_id)
            if session is None:
                raise BookingNotFoundError(f"session {request.session_id}")
            if session.subject_id != request.subject_id:
                raise ConflictError(
                    ConflictReason.CONTENT_MISMATCH.value,
                    detail=f"session {session.id} teaches {session.subject_id}",
                )
        else:
            session = matching.assign_group(request.student_id, request.subject_id, unit, request.start).session
            if session is None:
                slot = matching.next_session_slot(request.student_id, request.subject_id, request.duration, request.start)
                if slot is None:
                    raise NoAvailabilityError(f"no teacher can open a {request.subject_id} session at {unit}")
                session = proposed = self._new_session(request.subject_id, slot, unit)
                logger.info(f"Opening session {session.id} ({unit}) with {slot.owner_id} at {slot.start.isoformat()}")
        states.append(AttemptState.MATCHED)
        booking = self._group_booking(request, session, recurring_group_id)
        return await self._commit(
            request, booking, timeout, states, proposed=proposed, content_unit=unit, rejoin=True
        )

    def _new_session(self, subject_id: str, slot: Slot, unit: str) -> ClassSession:
        return ClassSession(
            id=_new_id(),
            subject_id=subject_id,
            teacher_id=slot.owner_id,
            start=slot.start,
            duration=slot.duration,
            content_unit=unit,
            capacity=min(self.config.group_capacity, GROUP_MAX),
        )

    @staticmethod
    def _group_booking(request: ScheduleRequest, session: ClassSession, recurring_group_id: str | None) -> Booking:
        return Booking(
            id=_new_id(),
            student_id=request.student_id,
            teacher_id=session.teacher_id,
            subject_id=session.subject_id,
            start=session.start,
            duration=session.duration,
            type=BookingType.GROUP,
            recurring_group_id=recurring_group_id,
            session_id=session.id,
            idempotency_key=request.idempotency_key,
        )

    async def _commit(
        self,
        request: ScheduleRequest,
        booking: Booking,
        timeout: float,
        states: List[AttemptState],
        *,
        proposed: ClassSession | None = None,
        content_unit: str | None = None,
        charge: bool = True,
        rejoin: bool = False,
    ) -> Booking:
        keys = self._booking_keys(booking)
        if proposed is not None:
            keys.append(teacher_key(proposed.teacher_id, proposed.start))
        async with self.locks.hold(*keys):
            snap = await self._call(self.store.snapshot(), timeout)
            if request.idempotency_key:
                existing = snap.by_idempotency_key(request.idempotency_key)
                if existing is not None:
                    return existing
            joined = None
            if rejoin and proposed is not None and proposed.id not in snap.sessions:
                # Another request may have opened a compatible session meanwhile
                joined = self._matching(snap).assign_group(
                    booking.student_id, booking.subject_id, proposed.content_unit, request.start
                ).session
            if joined is None:
                session = None
                if booking.session_id is not None:
                    session = snap.sessions.get(booking.session_id, proposed)
                check = ConflictDetector(snap).check(booking, session, content_unit)
                if not check.ok:
                    await self._reject(snap, request, booking, session, check.reason, timeout)
                states.append(AttemptState.CONFLICT_CHECKED)
                await self._reserve_and_confirm(snap, booking, session, content_unit, timeout, states, charge)
        if joined is not None:
            logger.info(f"Session {joined.id} opened meanwhile; {booking.student_id} joins it")
            rebased = self._group_booking(request, joined, booking.recurring_group_id)
            return await self._commit(request, rebased, timeout, states, content_unit=content_unit, charge=charge)
        logger.info(
            f"Confirmed {booking.id}: {booking.student_id} with {booking.teacher_id} "
            f"at {booking.start.isoformat()} ({booking.type})"
        )
        return booking

    async def _reject(
        self,
        snap: Snapshot,
        request: ScheduleRequest,
        booking: Booking,
        session: ClassSession | None,
        reason: ConflictReason,
        timeout: float,
    ) -> None:
        matching = self._matching(snap)
        position = None
        if session is not None:
            alternatives = [
                s.slot
                for s in matching.open_sessions(
                    request.student_id, session.subject_id, session.content_unit, self.clock()
                )
                if s.id != session.id
            ][: self.config.alternatives_limit]
            if reason == ConflictReason.CAPACITY_EXCEEDED and request.join_waitlist:
                version = session.version
                position = session.add_to_waitlist(request.student_id) or None
                if position is not None:
                    await self._call(self.store.save_session(session, expected_version=version), timeout)
                    logger.info(f"{request.student_id} waitlisted at #{position} for {session.id}")
        else:
            wanted = request.at(booking.start, teacher_id=booking.teacher_id)
            alternatives = matching.alternatives(wanted, not_before=self.clock())
        raise ConflictError(reason.value, alternatives, waitlist_position=position)

    async def _reserve_and_confirm(
        self,
        snap: Snapshot,
        booking: Booking,
        session: ClassSession | None,
        content_unit: str | None,
        timeout: float,
        states: List[AttemptState],
        charge: bool,
    ) -> None:
        undo = self.compensation()
        try:
            if charge:
                entry = HourLedger(snap.ledger_entries).debit(
                    booking.student_id, booking.hours, LedgerReason.ATTENDED, booking.charge_ref, at=self.clock()
                )
                undo.reverse_entry(entry, timeout)
                await self._call(self.store.append_ledger_entry(entry), timeout)
            states.append(AttemptState.HOUR_RESERVED)
            booking.transition(BookingStatus.CONFIRMED)
            if session is not None:
                version = session.version
                session.enroll(booking.student_id, content_unit or session.content_unit)
                undo.push(f"enrollment in {session.id}", self._unenroll_op(session.id, booking.student_id, timeout))
                await self._call(self.store.save_session(session, expected_version=version), timeout)
            undo.push(f"booking {booking.id}", self._void_op(booking.id, timeout))
            await self._call(self.store.save_booking(booking), timeout)
        except BaseException:
            await undo.rollback()
            raise
        states.append(AttemptState.CONFIRMED)

    def _unenroll_op(self, session_id: str, student_id: str, timeout: float) -> UndoOp:
        async def op() -> None:
            snap = await self._call(self.store.snapshot(), timeout)
            session = snap.sessions.get(session_id)
            if session is None or student_id not in session.enrolled:
                return
            session.drop(student_id)
            await self._call(self.store.save_session(session), timeout)

        return op

    def _reenroll_op(self, session_id: str, student_id: str, timeout: float) -> UndoOp:
        async def op() -> None:
            snap = await self._call(self.store.snapshot(), timeout)
            session = snap.sessions.get(session_id)
            if session is None or student_id in session.enrolled or session.is_full:
                return
            session.enrolled.append(student_id)
            await self._call(self.store.save_session(session), timeout)

        return op

    def _void_op(self, booking_id: str, timeout: float) -> UndoOp:
        async def op() -> None:
            snap = await self._call(self.store.snapshot(), timeout)
            stored = snap.bookings.get(booking_id)
            if stored is None or stored.status != BookingStatus.CONFIRMED:
                return
            stored.transition(BookingStatus.CANCELLED)
            stored.cancelled_by = "rollback"
            # A retry with the same key must be able to book again
            stored.idempotency_key = None
            await self._call(self.store.save_booking(stored), timeout)

        return op

    async def _save_status(self, booking: Booking, original: Booking, timeout: float, undo: Compensation) -> None:
        before = copy.deepcopy(original)

        async def op() -> None:
            await self._call(self.store.save_booking(before), timeout)

        undo.push(f"status of {booking.id}", op)
        await self._call(self.store.save_booking(booking), timeout)

    async def _drop_from_session(self, snap: Snapshot, booking: Booking, timeout: float, undo: Compensation) -> None:
        session = snap.sessions.get(booking.session_id or "")
        if session is None or booking.student_id not in session.enrolled:
            return
        version = session.version
        session.drop(booking.student_id)
        undo.push(f"drop from {session.id}", self._reenroll_op(session.id, booking.student_id, timeout))
        await self._call(self.store.save_session(session, expected_version=version), timeout)

    # -- lifecycle -------------------------------------------------------

    async def cancel(self, booking_id: str, by: str = "student", timeout: float | None = None) -> float:
        """Cancel a booking and refund exactly the hours it holds."""
        timeout = self._timeout(timeout)
        snap = await self._call(self.store.snapshot(), timeout)
        booking = self._get(snap, booking_id)
        async with self.locks.hold(*self._booking_keys(booking)):
            snap = await self._call(self.store.snapshot(), timeout)
            original = self._get(snap, booking_id)
            if original.status == BookingStatus.RESCHEDULED:
                for b in snap.bookings.values():
                    if b.makeup_of == original.charge_ref and b.status in MAKEUP_TAKEN:
                        raise InvalidTransitionError(f"make-up {b.id} holds the hours of {booking_id}")
            booking = copy.deepcopy(original)
            booking.transition(BookingStatus.CANCELLED)
            booking.cancelled_by = by
            ledger = HourLedger(snap.ledger_entries)
            held = -ledger.net_for_booking(booking.charge_ref)
            undo = self.compensation()
            try:
                if held > 0:
                    refund = ledger.credit(
                        booking.student_id, held, LedgerReason.REFUND, booking.charge_ref, at=self.clock()
                    )
                    undo.reverse_entry(refund, timeout)
                    await self._call(self.store.append_ledger_entry(refund), timeout)
                if booking.session_id is not None:
                    await self._drop_from_session(snap, booking, timeout, undo)
                await self._save_status(booking, original, timeout, undo)
            except BaseException:
                await undo.rollback()
                raise
        logger.info(f"Cancelled {booking_id} by {by}; refunded {max(held, 0.0):g}h")
        if booking.session_id is not None:
            await self._promote_waitlist(booking.session_id, timeout)
        return max(held, 0.0)

    async def complete(self, booking_id: str, timeout: float | None = None) -> Booking:
        """Mark attended; the reserved hours become final."""
        return await self._finish(booking_id, BookingStatus.COMPLETED, self._timeout(timeout))

    async def mark_no_show(self, booking_id: str, timeout: float | None = None) -> Booking:
        """Deduct the full duration as a no-show, with no postponement."""
        return await self._finish(booking_id, BookingStatus.NO_SHOW, self._timeout(timeout))

    async def _finish(self, booking_id: str, status: BookingStatus, timeout: float) -> Booking:
        snap = await self._call(self.store.snapshot(), timeout)
        booking = self._get(snap, booking_id)
        async with self.locks.hold(*self._booking_keys(booking)):
            snap = await self._call(self.store.snapshot(), timeout)
            original = self._get(snap, booking_id)
            booking = copy.deepcopy(original)
            booking.transition(status)
            entries: List[HourLedgerEntry] = []
            if status == BookingStatus.NO_SHOW:
                ledger = HourLedger(snap.ledger_entries)
                at = self.clock()
                entries = ledger.retag(booking.student_id, booking.charge_ref, LedgerReason.NO_SHOW, at=at)
                if not entries:
                    entries = [
                        ledger.debit(booking.student_id, booking.hours, LedgerReason.NO_SHOW, booking.charge_ref, at=at)
                    ]
            undo = self.compensation()
            try:
                for entry in entries:
                    undo.reverse_entry(entry, timeout)
                    await self._call(self.store.append_ledger_entry(entry), timeout)
                await self._save_status(booking, original, timeout, undo)
            except BaseException:
                await undo.rollback()
                raise
        logger.info(f"Booking {booking_id} -> {status}")
        return booking

    async def _promote_waitlist(self, session_id: str, timeout: float) -> List[str]:
        """Seat waitlisted students in order; never fails the caller's committed change."""
        promoted: List[str] = []
        try:
            await self._drain_waitlist(session_id, timeout, promoted)
        except (PersistenceError, BookingTimeoutError) as exc:
            logger.warning(f"Waitlist promotion for {session_id} stopped after {len(promoted)}: {exc}")
        return promoted

    async def _drain_waitlist(self, session_id: str, timeout: float, promoted: List[str]) -> None:
        while True:
            snap = await self._call(self.store.snapshot(), timeout)
            session = snap.sessions.get(session_id)
            if session is None or session.is_full or not session.waitlist:
                return
            student_id = session.waitlist[0]
            request = ScheduleRequest(
                student_id=student_id,
                subject_id=session.subject_id,
                start=session.start,
                duration=session.duration,
                type=BookingType.GROUP,
                session_id=session.id,
                content_unit=session.content_unit,
            )
            result = await self._attempt(request, timeout)
            if result.confirmed:
                logger.info(f"Promoted {student_id} from waitlist into {session_id}")
                promoted.append(student_id)
                continue
            logger.info(f"Waitlisted {student_id} not seated in {session_id}: {result.reason}")
            if result.reason == ConflictReason.CAPACITY_EXCEEDED:
                continue
            async with self.locks.hold(session_key(session_id)):
                snap = await self._call(self.store.snapshot(), timeout)
                current = snap.sessions.get(session_id)
                if current is not None and student_id in current.waitlist:
                    version = current.version
                    current.waitlist.remove(student_id)
                    await self._call(self.store.save_session(current, expected_version=version), timeout)

    # -- leave & make-up -------------------------------------------------

    async def request_leave(
        self,
        booking_id: str,
        requested_at: datetime | None = None,
        reason: str = "",
        timeout: float | None = None,
    ) -> LeaveResult:
        return await self.leave.request_leave(booking_id, requested_at, reason, timeout)

    async def confirm_makeup(self, booking_id: str, slot: Slot, timeout: float | None = None) -> ScheduleResult:
        """Book a chosen make-up slot for a postponed class, carrying its hours."""
        timeout = self._timeout(timeout)
        snap = await self._call(self.store.snapshot(), timeout)
        original = self._get(snap, booking_id)
        if original.status != BookingStatus.RESCHEDULED:
            raise InvalidLeaveError(f"booking {booking_id} was not postponed")
        if any(b.makeup_of == original.charge_ref and b.status in MAKEUP_TAKEN for b in snap.bookings.values()):
            raise InvalidLeaveError(f"make-up for {booking_id} already booked")
        until = original.start + timedelta(days=self.config.makeup_window_days)
        if slot.start > until:
            raise InvalidLeaveError(f"make-up must start by {until.isoformat()}")
        request = ScheduleRequest(
            student_id=original.student_id,
            subject_id=original.subject_id,
            start=slot.start,
            duration=original.duration,
            teacher_id=slot.owner_id,
        )
        booking = Booking(
            id=_new_id(),
            student_id=original.student_id,
            teacher_id=slot.owner_id,
            subject_id=original.subject_id,
            start=slot.start,
            duration=original.duration,
            makeup_of=original.charge_ref,
        )
        # Hours still held by the postponed class move over; otherwise charge afresh
        held = -HourLedger(snap.ledger_entries).net_for_booking(original.charge_ref)
        states = [AttemptState.REQUESTED, AttemptState.MATCHED]
        return await self._guarded(
            request, states, lambda: self._commit(request, booking, timeout, states, charge=held <= 0)
        )

    # -- batch planning --------------------------------------------------

    async def auto_schedule_groups(
        self,
        subject_id: str,
        student_ids: Iterable[str],
        start: datetime,
        end: datetime,
        duration: timedelta,
        timeout: float | None = None,
    ) -> Tuple[GroupPlan, List[ScheduleResult]]:
        """Plan new sessions for a backlog with CP-SAT, then book each seat."""
        timeout = self._timeout(timeout)
        snap = await self._call(self.store.snapshot(), timeout)
        index = AvailabilityIndex(snap)
        waiting = {}
        for sid in student_ids:
            unit = snap.content_unit(sid, subject_id)
            if unit is None:
                logger.warning(f"Skipping {sid}: no recorded progress in {subject_id}")
                continue
            waiting[sid] = unit
        slots: List[Slot] = []
        for teacher in snap.teachers_for(subject_id):
            for open_slot in index.open_slots(teacher.id, start, end):
                for at in carve(open_slot, duration, self.config.slot_step_minutes):
                    slots.append(Slot(at, at + duration, teacher.id))
        busy = {sid: [(b.start, b.end) for b in snap.confirmed_for_student(sid)] for sid in waiting}
        plan = plan_group_sessions(
            waiting,
            slots,
            busy,
            capacity=min(self.config.group_capacity, GROUP_MAX),
            min_size=GROUP_MIN,
            cfg=SolverConfig(self.config.solver_timeout_sec, self.config.solver_workers),
        )
        results: List[ScheduleResult] = []
        for planned in plan.sessions:
            session = self._new_session(subject_id, planned.slot, planned.content_unit)
            results.extend(await self._seat_planned(session, planned.students, timeout))
        return plan, results

    async def _seat_planned(
        self, session: ClassSession, students: Sequence[str], timeout: float
    ) -> List[ScheduleResult]:
        results: List[ScheduleResult] = []
        opened = False
        for sid in students:
            request = ScheduleRequest(
                student_id=sid,
                subject_id=session.subject_id,
                start=session.start,
                duration=session.duration,
                type=BookingType.GROUP,
                session_id=session.id if opened else None,
                content_unit=session.content_unit,
            )
            if opened:
                results.append(await self._attempt(request, timeout))
                continue
            # The first seat creates the session under the teacher lock
            states = [AttemptState.REQUESTED, AttemptState.MATCHED]
            booking = self._group_booking(request, session, None)
            result = await self._guarded(
                request,
                states,
                lambda: self._commit(
                    request, booking, timeout, states, proposed=copy.deepcopy(session), content_unit=session.content_unit
                ),
            )
            opened = result.confirmed
            results.append(result)
        return results

from __future__ import annotations

import copy
import logging
import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from ..config import SchedulingConfig
from ..data.store import Snapshot
from ..errors import BookingNotFoundError, InvalidLeaveError
from ..models.booking import Booking, BookingStatus
from ..models.hours import LedgerReason
from ..models.leave import LeaveOutcome, LeaveRequest, LeaveResult
from .ledger import HourLedger
from .matching import MatchingEngine

if TYPE_CHECKING:
    from .orchestrator import Scheduler

logger = logging.getLogger(__name__)


def notice_hours(class_start: datetime, requested_at: datetime) -> float:
    return (class_start - requested_at).total_seconds() / 3600


def graces_used(snapshot: Snapshot, student_id: str, subject_id: str) -> int:
    return sum(
        1
        for lv in snapshot.leaves
        if lv.student_id == student_id
        and lv.subject_id == subject_id
        and lv.outcome == LeaveOutcome.ONE_CHANCE_USED
    )


def decide(notice: float, used: int, config: SchedulingConfig) -> LeaveOutcome:
    """Apply the leave table.

    More than ``late_notice_hours`` ahead postpones for free. A late leave
    postpones while the student-subject pair has grace left, then deducts.
    """
    if notice > config.late_notice_hours:
        return LeaveOutcome.POSTPONED
    if used < config.grace_postponements:
        return LeaveOutcome.ONE_CHANCE_USED
    return LeaveOutcome.DEDUCTED


class LeaveWorkflow:
    def __init__(self, scheduler: "Scheduler"):
        self.scheduler = scheduler

    @property
    def config(self) -> SchedulingConfig:
        return self.scheduler.config

    def _validate(self, booking: Booking | None, booking_id: str, requested_at: datetime) -> Booking:
        if booking is None:
            raise BookingNotFoundError(booking_id)
        if booking.status != BookingStatus.CONFIRMED:
            raise InvalidLeaveError(f"booking {booking.id} is {booking.status}, not confirmed")
        if notice_hours(booking.start, requested_at) <= 0:
            raise InvalidLeaveError(f"booking {booking.id} already started at {booking.start.isoformat()}")
        return booking

    async def request_leave(
        self,
        booking_id: str,
        requested_at: datetime | None = None,
        reason: str = "",
        timeout: float | None = None,
    ) -> LeaveResult:
        sched = self.scheduler
        timeout = sched._timeout(timeout)
        requested_at = requested_at or sched.clock()
        snap = await sched._call(sched.store.snapshot(), timeout)
        booking = self._validate(snap.bookings.get(booking_id), booking_id, requested_at)

        async with sched.locks.hold(*sched._booking_keys(booking)):
            snap = await sched._call(sched.store.snapshot(), timeout)
            original = self._validate(snap.bookings.get(booking_id), booking_id, requested_at)
            booking = copy.deepcopy(original)
            notice = notice_hours(booking.start, requested_at)
            outcome = decide(notice, graces_used(snap, booking.student_id, booking.subject_id), self.config)
            leave = LeaveRequest(
                id=uuid.uuid4().hex,
                booking_id=booking.id,
                student_id=booking.student_id,
                subject_id=booking.subject_id,
                requested_at=requested_at,
                notice_hours=round(notice, 2),
                outcome=outcome,
                reason=reason,
            )
            ledger = HourLedger(snap.ledger_entries)
            if leave.postponed:
                booking.transition(BookingStatus.RESCHEDULED)
                entries = []
            else:
                booking.transition(BookingStatus.CANCELLED)
                booking.cancelled_by = "leave"
                entries = ledger.retag(booking.student_id, booking.charge_ref, LedgerReason.LEAVE_LATE, at=requested_at)

            undo = sched.compensation()
            try:
                for entry in entries:
                    undo.reverse_entry(entry, timeout)
                    await sched._call(sched.store.append_ledger_entry(entry), timeout)
                if booking.session_id is not None:
                    await sched._drop_from_session(snap, booking, timeout, undo)
                await sched._save_status(booking, original, timeout, undo)
                await sched._call(sched.store.save_leave(leave), timeout)
            except BaseException:
                await undo.rollback()
                raise

        logger.info(
            f"Leave on {booking.id}: notice {leave.notice_hours}h -> {outcome} "
            f"({booking.student_id}, {booking.subject_id})"
        )
        result = LeaveResult(leave)
        if booking.session_id is not None:
            await sched._promote_waitlist(booking.session_id, timeout)
        if leave.postponed:
            until = booking.start + timedelta(days=self.config.makeup_window_days)
            fresh = await sched._call(sched.store.snapshot(), timeout)
            matching = MatchingEngine(fresh, self.config)
            result.suggestions = matching.makeup_slots(
                booking, not_before=requested_at, until=until, limit=self.config.makeup_suggestions
            )
            result.makeup_until = until
        return result

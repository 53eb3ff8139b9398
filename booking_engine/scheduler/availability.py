from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterator, List, Tuple

from ..data.store import Snapshot
from ..errors import InvalidRangeError
from ..models.window import Slot

logger = logging.getLogger(__name__)

Interval = Tuple[datetime, datetime]


def subtract(start: datetime, end: datetime, busy: List[Interval]) -> List[Interval]:
    """Cut the busy intervals out of [start, end). ``busy`` must be sorted."""
    out: List[Interval] = []
    cursor = start
    for b_start, b_end in busy:
        if b_end <= cursor:
            continue
        if b_start >= end:
            break
        if b_start > cursor:
            out.append((cursor, b_start))
        cursor = max(cursor, b_end)
        if cursor >= end:
            break
    if cursor < end:
        out.append((cursor, end))
    return out


def merge(intervals: List[Interval]) -> List[Interval]:
    """Join overlapping or touching intervals."""
    out: List[Interval] = []
    for i_start, i_end in sorted(intervals):
        if out and i_start <= out[-1][1]:
            out[-1] = (out[-1][0], max(out[-1][1], i_end))
        else:
            out.append((i_start, i_end))
    return out


def carve(slot: Slot, duration: timedelta, step_minutes: int) -> Iterator[datetime]:
    """Start times inside ``slot`` aligned to the step grid that fit ``duration``."""
    step = timedelta(minutes=step_minutes)
    # Align to the step grid counted from the top of the hour
    top = slot.start.replace(minute=0, second=0, microsecond=0)
    offset = slot.start - top
    first = top + step * -(-offset // step) if offset else slot.start
    cursor = first
    while cursor + duration <= slot.end:
        yield cursor
        cursor += step


class SlotRange:
    """Lazy open slots for one owner and range; each iteration starts over."""

    def __init__(self, index: "AvailabilityIndex", owner_id: str, start: datetime, end: datetime, **exclude):
        self.index = index
        self.owner_id = owner_id
        self.start = start
        self.end = end
        self.exclude = exclude

    def __iter__(self) -> Iterator[Slot]:
        return self.index._iter_open(self.owner_id, self.start, self.end, **self.exclude)

    def first(self) -> Slot | None:
        return next(iter(self), None)


class AvailabilityIndex:
    def __init__(self, snapshot: Snapshot):
        self.snapshot = snapshot

    def has_record(self, owner_id: str) -> bool:
        return owner_id in self.snapshot.availability

    def open_slots(
        self,
        owner_id: str,
        start: datetime,
        end: datetime,
        *,
        exclude_session: str | None = None,
        exclude_booking: str | None = None,
    ) -> SlotRange:
        if end < start:
            raise InvalidRangeError(f"range end {end} precedes start {start}")
        return SlotRange(
            self,
            owner_id,
            start,
            end,
            exclude_session=exclude_session,
            exclude_booking=exclude_booking,
        )

    def covers(self, owner_id: str, start: datetime, end: datetime, **exclude) -> bool:
        return any(s.contains(start, end) for s in self.open_slots(owner_id, start, end, **exclude))

    def _busy(
        self,
        owner_id: str,
        start: datetime,
        end: datetime,
        exclude_session: str | None,
        exclude_booking: str | None,
    ) -> List[Interval]:
        record = self.snapshot.availability[owner_id]
        busy: List[Interval] = [(b.start, b.end) for b in record.blocks if b.end > start and b.start < end]
        day = start.date() - timedelta(days=1)
        while day <= end.date() + timedelta(days=1):
            for w in record.blocking_windows():
                if w.applies_on(day):
                    busy.append(w.on(day))
            day += timedelta(days=1)
        for b in self.snapshot.bookings.values():
            if not b.is_confirmed:
                continue
            if owner_id not in (b.teacher_id, b.student_id):
                continue
            if exclude_booking is not None and b.id == exclude_booking:
                continue
            if exclude_session is not None and b.session_id == exclude_session:
                continue
            busy.append((b.start, b.end))
        for s in self.snapshot.sessions.values():
            # A scheduled session holds its teacher even before anyone is seated
            if s.teacher_id == owner_id and s.id != exclude_session and s.end > start and s.start < end:
                busy.append((s.start, s.end))
        busy.sort()
        return busy

    def _iter_open(
        self,
        owner_id: str,
        start: datetime,
        end: datetime,
        exclude_session: str | None = None,
        exclude_booking: str | None = None,
    ) -> Iterator[Slot]:
        record = self.snapshot.availability.get(owner_id)
        if record is None:
            return
        busy = self._busy(owner_id, start, end, exclude_session, exclude_booking)
        windows = record.open_windows()
        # One day of slack either side so windows in other zones are not missed
        day = start.date() - timedelta(days=1)
        free: List[Interval] = []
        while day <= end.date() + timedelta(days=1):
            for w_start, w_end in (w.on(day) for w in windows if w.applies_on(day)):
                lo = max(w_start, start)
                hi = min(w_end, end)
                if lo < hi:
                    free.extend(subtract(lo, hi, busy))
            day += timedelta(days=1)
        # Back-to-back windows read as one stretch
        for f_start, f_end in merge(free):
            yield Slot(f_start, f_end, owner_id)

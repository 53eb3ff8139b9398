from __future__ import annotations

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from ..errors import PersistenceError, StaleWriteError
from ..models.booking import Booking, BookingStatus
from ..models.hours import HourLedgerEntry
from ..models.leave import LeaveRequest
from ..models.session import ClassSession
from ..models.teacher import Teacher, TeacherAvailability

logger = logging.getLogger(__name__)

ProgressKey = Tuple[str, str]  # (student_id, subject_id)


@dataclass
class Snapshot:
    """Point-in-time copy of everything the engine reads.

    Computation over a snapshot is synchronous; ``version`` lets a caller
    tell whether the store moved on since the snapshot was taken.
    """

    teachers: Dict[str, Teacher] = field(default_factory=dict)
    availability: Dict[str, TeacherAvailability] = field(default_factory=dict)
    bookings: Dict[str, Booking] = field(default_factory=dict)
    sessions: Dict[str, ClassSession] = field(default_factory=dict)
    ledger_entries: List[HourLedgerEntry] = field(default_factory=list)
    leaves: List[LeaveRequest] = field(default_factory=list)
    progress: Dict[ProgressKey, str] = field(default_factory=dict)
    version: int = 0

    def confirmed_for_teacher(self, teacher_id: str) -> List[Booking]:
        return [
            b
            for b in self.bookings.values()
            if b.teacher_id == teacher_id and b.status == BookingStatus.CONFIRMED
        ]

    def confirmed_for_student(self, student_id: str) -> List[Booking]:
        return [
            b
            for b in self.bookings.values()
            if b.student_id == student_id and b.status == BookingStatus.CONFIRMED
        ]

    def by_idempotency_key(self, key: str) -> Booking | None:
        for b in self.bookings.values():
            if b.idempotency_key == key:
                return b
        return None

    def teachers_for(self, subject_id: str) -> List[Teacher]:
        return sorted(
            (t for t in self.teachers.values() if t.teaches(subject_id)), key=lambda t: t.id
        )

    def content_unit(self, student_id: str, subject_id: str) -> str | None:
        return self.progress.get((student_id, subject_id))


class ScheduleStore(ABC):
    """Persistence boundary. Every call is a suspension point."""

    @abstractmethod
    async def snapshot(self) -> Snapshot: ...

    @abstractmethod
    async def save_booking(self, booking: Booking) -> None: ...

    @abstractmethod
    async def save_session(self, session: ClassSession, expected_version: int | None = None) -> int:
        """Write a session; with ``expected_version`` acts as compare-and-swap."""

    @abstractmethod
    async def append_ledger_entry(self, entry: HourLedgerEntry) -> None: ...

    @abstractmethod
    async def has_ledger_entry(self, entry_id: str) -> bool: ...

    @abstractmethod
    async def save_leave(self, leave: LeaveRequest) -> None: ...


class InMemoryStore(ScheduleStore):
    def __init__(
        self,
        teachers: Iterable[Teacher] = (),
        availability: Iterable[TeacherAvailability] = (),
        bookings: Iterable[Booking] = (),
        sessions: Iterable[ClassSession] = (),
        entries: Iterable[HourLedgerEntry] = (),
        leaves: Iterable[LeaveRequest] = (),
        progress: Dict[ProgressKey, str] | None = None,
        latency: float = 0.0,
    ):
        self.teachers: Dict[str, Teacher] = {t.id: t for t in teachers}
        self.availability: Dict[str, TeacherAvailability] = {a.owner_id: a for a in availability}
        self.bookings: Dict[str, Booking] = {b.id: b for b in bookings}
        self.sessions: Dict[str, ClassSession] = {s.id: s for s in sessions}
        self.entries: List[HourLedgerEntry] = list(entries)
        self.leaves: List[LeaveRequest] = list(leaves)
        self.progress: Dict[ProgressKey, str] = dict(progress or {})
        self.latency = latency
        self.version = 0

    async def _round_trip(self) -> None:
        await asyncio.sleep(self.latency)

    def _bump(self) -> None:
        self.version += 1

    async def snapshot(self) -> Snapshot:
        await self._round_trip()
        return Snapshot(
            teachers=dict(self.teachers),
            availability=copy.deepcopy(self.availability),
            bookings=copy.deepcopy(self.bookings),
            sessions=copy.deepcopy(self.sessions),
            ledger_entries=list(self.entries),
            leaves=list(self.leaves),
            progress=dict(self.progress),
            version=self.version,
        )

    async def save_booking(self, booking: Booking) -> None:
        await self._round_trip()
        self.bookings[booking.id] = copy.deepcopy(booking)
        self._bump()
        logger.debug(f"Stored booking {booking.id} ({booking.status})")

    async def save_session(self, session: ClassSession, expected_version: int | None = None) -> int:
        await self._round_trip()
        current = self.sessions.get(session.id)
        if expected_version is not None:
            have = current.version if current is not None else 0
            if have != expected_version:
                raise StaleWriteError(
                    f"session {session.id} at version {have}, expected {expected_version}"
                )
        stored = copy.deepcopy(session)
        stored.version = (current.version if current is not None else 0) + 1
        self.sessions[session.id] = stored
        session.version = stored.version
        self._bump()
        return stored.version

    async def append_ledger_entry(self, entry: HourLedgerEntry) -> None:
        await self._round_trip()
        if any(e.id == entry.id for e in self.entries):
            raise PersistenceError(f"ledger entry {entry.id} already exists")
        self.entries.append(entry)
        self._bump()

    async def has_ledger_entry(self, entry_id: str) -> bool:
        await self._round_trip()
        return any(e.id == entry_id for e in self.entries)

    async def save_leave(self, leave: LeaveRequest) -> None:
        await self._round_trip()
        self.leaves.append(leave)
        self._bump()

    def set_progress(self, student_id: str, subject_id: str, content_unit: str) -> None:
        self.progress[(student_id, subject_id)] = content_unit

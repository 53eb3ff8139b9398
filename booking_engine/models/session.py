from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List

from ..errors import ConflictError
from .window import Slot

GROUP_MAX = 9
GROUP_MIN = 2
WAITLIST_MAX = 15


@dataclass
class ClassSession:
    """A group class. Every enrolled student is at ``content_unit``."""

    id: str
    subject_id: str
    teacher_id: str
    start: datetime
    duration: timedelta
    content_unit: str
    capacity: int = GROUP_MAX
    enrolled: List[str] = field(default_factory=list)
    waitlist: List[str] = field(default_factory=list)
    version: int = 0

    def __post_init__(self) -> None:
        if not 1 <= self.capacity <= GROUP_MAX:
            raise ValueError(f"session capacity must be 1..{GROUP_MAX}, got {self.capacity}")
        if len(set(self.enrolled)) != len(self.enrolled):
            raise ConflictError("duplicate_enrollment", detail=f"session {self.id} has duplicate students")
        if len(self.enrolled) > self.capacity:
            raise ConflictError("capacity_exceeded", detail=f"session {self.id} over capacity")

    @property
    def end(self) -> datetime:
        return self.start + self.duration

    @property
    def slot(self) -> Slot:
        return Slot(self.start, self.end, self.teacher_id)

    @property
    def seats_left(self) -> int:
        return self.capacity - len(self.enrolled)

    @property
    def is_full(self) -> bool:
        return self.seats_left <= 0

    def enroll(self, student_id: str, content_unit: str) -> None:
        if content_unit != self.content_unit:
            raise ConflictError(
                "content_mismatch",
                detail=f"student at {content_unit}, session {self.id} at {self.content_unit}",
            )
        if student_id in self.enrolled:
            raise ConflictError("duplicate_enrollment", detail=f"{student_id} already in {self.id}")
        if self.is_full:
            raise ConflictError("capacity_exceeded", detail=f"session {self.id} is full")
        self.enrolled.append(student_id)
        if student_id in self.waitlist:
            self.waitlist.remove(student_id)

    def drop(self, student_id: str) -> None:
        if student_id in self.enrolled:
            self.enrolled.remove(student_id)

    def add_to_waitlist(self, student_id: str) -> int:
        """Return the 1-based waitlist position, or 0 when the waitlist is full."""
        if student_id in self.waitlist:
            return self.waitlist.index(student_id) + 1
        if len(self.waitlist) >= WAITLIST_MAX:
            return 0
        self.waitlist.append(student_id)
        return len(self.waitlist)

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from ..errors import InvalidWindowError

WINDOW_KINDS = {"open", "block"}


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    # Half-open intervals: touching ends do not overlap
    return a_start < b_end and b_start < a_end


@dataclass(frozen=True)
class TimeWindow:
    """A weekly recurring window in local time, e.g. Monday 09:30-12:30.

    ``kind="block"`` windows are subtracted from the owner's open windows
    and are the only kind allowed to overlap other windows.
    """

    day_of_week: int  # 0 = Monday
    start: time
    end: time
    timezone: str = "UTC"
    valid_from: date | None = None
    valid_to: date | None = None
    kind: str = "open"

    def __post_init__(self) -> None:
        if not 0 <= self.day_of_week <= 6:
            raise InvalidWindowError(f"day_of_week out of range: {self.day_of_week}")
        if not self.start < self.end:
            raise InvalidWindowError(f"window start {self.start} is not before end {self.end}")
        if self.kind not in WINDOW_KINDS:
            raise InvalidWindowError(f"unknown window kind: {self.kind}")
        if self.valid_from and self.valid_to and self.valid_to < self.valid_from:
            raise InvalidWindowError("valid_to precedes valid_from")

    def applies_on(self, d: date) -> bool:
        if d.weekday() != self.day_of_week:
            return False
        if self.valid_from is not None and d < self.valid_from:
            return False
        if self.valid_to is not None and d > self.valid_to:
            return False
        return True

    def on(self, d: date) -> tuple[datetime, datetime]:
        tz = ZoneInfo(self.timezone)
        return (
            datetime.combine(d, self.start, tzinfo=tz),
            datetime.combine(d, self.end, tzinfo=tz),
        )

    def overlaps(self, other: "TimeWindow") -> bool:
        if self.day_of_week != other.day_of_week:
            return False
        # Disjoint validity ranges never collide
        if self.valid_to and other.valid_from and self.valid_to < other.valid_from:
            return False
        if other.valid_to and self.valid_from and other.valid_to < self.valid_from:
            return False
        if self.timezone == other.timezone:
            return self.start < other.end and other.start < self.end
        # Different zones: compare on a reference date of the same weekday
        ref = date(2024, 1, 1) + timedelta(days=self.day_of_week)
        return overlaps(*self.on(ref), *other.on(ref))


@dataclass(frozen=True)
class Block:
    """One-off unavailability (holiday, sick day, admin block)."""

    start: datetime
    end: datetime
    reason: str = "block"

    def __post_init__(self) -> None:
        if not self.start < self.end:
            raise InvalidWindowError(f"block start {self.start} is not before end {self.end}")


@dataclass(frozen=True, order=True)
class Slot:
    start: datetime
    end: datetime
    owner_id: str = ""

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def hours(self) -> float:
        return self.duration.total_seconds() / 3600

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return overlaps(self.start, self.end, start, end)

    def contains(self, start: datetime, end: datetime) -> bool:
        return self.start <= start and end <= self.end

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List

from ..errors import InvalidWindowError
from .window import Block, TimeWindow


@dataclass(frozen=True)
class Teacher:
    id: str
    name: str
    subjects: List[str]
    specializations: List[str] = field(default_factory=list)
    max_weekly_load: int = 30

    def teaches(self, subject_id: str) -> bool:
        return subject_id in self.subjects


@dataclass
class TeacherAvailability:
    """Recurring windows plus one-off blocks for one owner.

    The owner is usually a teacher; students may carry a record too.
    Open windows of one owner never overlap.
    """

    owner_id: str
    windows: List[TimeWindow] = field(default_factory=list)
    blocks: List[Block] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._check_disjoint(self.windows)

    @staticmethod
    def _check_disjoint(windows: Iterable[TimeWindow]) -> None:
        opened = [w for w in windows if w.kind == "open"]
        for i, a in enumerate(opened):
            for b in opened[i + 1 :]:
                if a.overlaps(b):
                    raise InvalidWindowError(
                        f"overlapping windows on day {a.day_of_week}: "
                        f"{a.start}-{a.end} and {b.start}-{b.end}"
                    )

    def replace_windows(self, windows: Iterable[TimeWindow]) -> None:
        new = list(windows)
        self._check_disjoint(new)
        self.windows = new

    def add_window(self, window: TimeWindow) -> None:
        self._check_disjoint(self.windows + [window])
        self.windows.append(window)

    def add_block(self, block: Block) -> None:
        self.blocks.append(block)

    def open_windows(self) -> List[TimeWindow]:
        return [w for w in self.windows if w.kind == "open"]

    def blocking_windows(self) -> List[TimeWindow]:
        return [w for w in self.windows if w.kind == "block"]

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Sequence, Tuple

from ortools.sat.python import cp_model

from ..models.window import Slot, overlaps

logger = logging.getLogger(__name__)

Interval = Tuple[datetime, datetime]


@dataclass
class SolverConfig:
    timeout_sec: int = 10
    workers: int = 8


@dataclass(frozen=True)
class PlannedSession:
    slot: Slot
    content_unit: str
    students: Tuple[str, ...]


@dataclass
class GroupPlan:
    status: str
    sessions: List[PlannedSession] = field(default_factory=list)
    objective: float | None = None

    @property
    def seated(self) -> int:
        return sum(len(p.students) for p in self.sessions)


def plan_group_sessions(
    waiting: Dict[str, str],
    slots: Sequence[Slot],
    student_busy: Dict[str, List[Interval]],
    *,
    capacity: int,
    min_size: int = 1,
    cfg: SolverConfig | None = None,
) -> GroupPlan:
    """Open group sessions for students waiting on a content unit.

    ``waiting`` maps student id -> content unit. Each candidate slot
    (owner = teacher) opens for at most one unit; a teacher never runs two
    overlapping sessions; an opened session seats between ``min_size`` and
    ``capacity`` students of its unit who are free at that time. Seats
    are maximized first, then the number of sessions is minimized.
    """
    cfg = cfg or SolverConfig()
    if not waiting or not slots:
        return GroupPlan(status="EMPTY")

    units = sorted(set(waiting.values()))
    students = sorted(waiting)
    model = cp_model.CpModel()

    opened: Dict[Tuple[int, str], cp_model.IntVar] = {}
    seat: Dict[Tuple[str, int], cp_model.IntVar] = {}
    for i, slot in enumerate(slots):
        for u in units:
            opened[(i, u)] = model.NewBoolVar(f"open[{i},{u}]")
        model.Add(sum(opened[(i, u)] for u in units) <= 1)

    for st in students:
        busy = student_busy.get(st, [])
        unit = waiting[st]
        terms = []
        for i, slot in enumerate(slots):
            if any(overlaps(slot.start, slot.end, b0, b1) for b0, b1 in busy):
                continue
            var = model.NewBoolVar(f"seat[{st},{i}]")
            seat[(st, i)] = var
            # Content units never mix inside a session
            model.Add(var <= opened[(i, unit)])
            terms.append(var)
        if terms:
            model.Add(sum(terms) <= 1)

    for i, _ in enumerate(slots):
        for u in units:
            seated = [v for (st, j), v in seat.items() if j == i and waiting[st] == u]
            model.Add(sum(seated) <= capacity * opened[(i, u)])
            model.Add(sum(seated) >= min_size * opened[(i, u)])

    # A teacher runs one session at a time
    by_teacher: Dict[str, List[int]] = defaultdict(list)
    for i, slot in enumerate(slots):
        by_teacher[slot.owner_id].append(i)
    for idxs in by_teacher.values():
        for a_pos, a in enumerate(idxs):
            for b in idxs[a_pos + 1 :]:
                if slots[a].overlaps(slots[b].start, slots[b].end):
                    model.Add(
                        sum(opened[(a, u)] for u in units) + sum(opened[(b, u)] for u in units) <= 1
                    )

    big = len(slots) + 1
    model.Maximize(big * sum(seat.values()) - sum(opened.values()))

    solver = cp_model.CpSolver()
    solver.parameters.max_time_in_seconds = float(cfg.timeout_sec)
    solver.parameters.num_search_workers = int(cfg.workers)
    status = solver.Solve(model)
    name = solver.StatusName(status)
    logger.info(
        f"Group plan status={name} objective="
        f"{solver.ObjectiveValue() if status in (cp_model.OPTIMAL, cp_model.FEASIBLE) else 'n/a'}"
    )
    if status not in (cp_model.OPTIMAL, cp_model.FEASIBLE):
        return GroupPlan(status=name)

    plan = GroupPlan(status=name, objective=solver.ObjectiveValue())
    for i, slot in enumerate(slots):
        for u in units:
            if solver.Value(opened[(i, u)]) != 1:
                continue
            members = tuple(st for st in students if (st, i) in seat and solver.Value(seat[(st, i)]) == 1)
            if members:
                plan.sessions.append(PlannedSession(slot, u, members))
    plan.sessions.sort(key=lambda p: (p.slot.start, p.slot.owner_id))
    return plan

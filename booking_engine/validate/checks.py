from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Dict, List

from ..data.store import Snapshot
from ..models.booking import BookingStatus, BookingType
from ..models.session import WAITLIST_MAX
from ..models.window import overlaps
from ..scheduler.ledger import HourLedger


def validate_snapshot(snap: Snapshot, now: datetime | None = None) -> Dict[str, object]:
    """Check the stored state against the engine's invariants.

    Counts are reported per rule; every violation also gets a one-line
    description under ``violations_by_rule``. ``now`` limits the content
    unit check to sessions that have not started yet.
    """
    report: Dict[str, object] = {}
    violations_by_rule: Dict[str, List[str]] = defaultdict(list)
    confirmed = [b for b in snap.bookings.values() if b.status == BookingStatus.CONFIRMED]

    # Collisions
    by_teacher: Dict[str, list] = defaultdict(list)
    by_student: Dict[str, list] = defaultdict(list)
    for b in confirmed:
        by_teacher[b.teacher_id].append(b)
        by_student[b.student_id].append(b)
    clashes = 0
    for tid, items in by_teacher.items():
        items.sort(key=lambda b: (b.start, b.id))
        for i, a in enumerate(items):
            for b in items[i + 1 :]:
                if b.start >= a.end:
                    break
                # Seats of one group session share the teacher's time
                if a.session_id is not None and a.session_id == b.session_id:
                    continue
                clashes += 1
                violations_by_rule["teacher_overlap"].append(f"{tid} {a.id} x {b.id}")
    for sid, items in by_student.items():
        items.sort(key=lambda b: (b.start, b.id))
        for i, a in enumerate(items):
            for b in items[i + 1 :]:
                if not overlaps(a.start, a.end, b.start, b.end):
                    break
                clashes += 1
                violations_by_rule["student_double_booked"].append(f"{sid} {a.id} x {b.id}")
    report["clash_count"] = clashes

    # Sessions
    seated: Dict[str, set] = defaultdict(set)
    for b in confirmed:
        if b.type == BookingType.GROUP and b.session_id is not None:
            seated[b.session_id].add(b.student_id)
    for s in snap.sessions.values():
        if len(s.enrolled) > s.capacity:
            violations_by_rule["capacity_exceeded"].append(f"{s.id} {len(s.enrolled)}/{s.capacity}")
        if len(s.waitlist) > WAITLIST_MAX:
            violations_by_rule["waitlist_overflow"].append(f"{s.id} {len(s.waitlist)}")
        if set(s.enrolled) != seated.get(s.id, set()):
            violations_by_rule["enrollment_out_of_sync"].append(
                f"{s.id} enrolled={sorted(s.enrolled)} booked={sorted(seated.get(s.id, set()))}"
            )
        if now is not None and s.start < now:
            continue
        for st in s.enrolled:
            unit = snap.content_unit(st, s.subject_id)
            if unit is not None and unit != s.content_unit:
                violations_by_rule["content_mismatch"].append(f"{s.id} {st} at {unit}, session at {s.content_unit}")

    # Ledger
    ledger = HourLedger(snap.ledger_entries)
    ids = {e.id for e in snap.ledger_entries}
    for e in snap.ledger_entries:
        if e.reverses is not None and e.reverses not in ids:
            violations_by_rule["orphan_reversal"].append(f"{e.id} reverses missing {e.reverses}")
    for b in confirmed:
        held = -ledger.net_for_booking(b.charge_ref)
        if abs(held - b.hours) > 1e-6:
            violations_by_rule["reservation_mismatch"].append(f"{b.id} holds {held:g}h for {b.hours:g}h")
    balances = {st: ledger.balance(st) for st in sorted({e.student_id for e in snap.ledger_entries})}
    negative = {st: bal for st, bal in balances.items() if bal < 0}
    report["balances"] = balances
    report["negative_balances"] = negative

    report["violations_by_rule"] = dict(violations_by_rule)
    report["booking_status_counts"] = dict(
        sorted(
            ((str(status), sum(1 for b in snap.bookings.values() if b.status == status)) for status in BookingStatus),
        )
    )
    return report

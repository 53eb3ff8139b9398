from __future__ import annotations

import json
import logging
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Any, Dict, List

from ..models.booking import Booking, BookingStatus, BookingType
from ..models.hours import HourLedgerEntry, LedgerReason
from ..models.leave import LeaveOutcome, LeaveRequest
from ..models.session import ClassSession
from ..models.teacher import Teacher, TeacherAvailability
from ..models.window import Block, TimeWindow
from .store import InMemoryStore

logger = logging.getLogger(__name__)

FILES = ("teachers", "availability", "sessions", "bookings", "ledger", "leaves", "progress")


def load_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _records(data_dir: Path, name: str) -> List[Dict[str, Any]]:
    path = data_dir / f"{name}.json"
    if not path.exists():
        return []
    return load_json(path)


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _d(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


def _minutes(td: timedelta) -> int:
    return int(td.total_seconds() // 60)


# -- decoding ------------------------------------------------------------


def teacher_from_dict(raw: Dict[str, Any]) -> Teacher:
    return Teacher(
        id=raw["id"],
        name=raw.get("name", raw["id"]),
        subjects=list(raw.get("subjects", [])),
        specializations=list(raw.get("specializations", [])),
        max_weekly_load=int(raw.get("max_weekly_load", 30)),
    )


def availability_from_dict(raw: Dict[str, Any]) -> TeacherAvailability:
    windows = [
        TimeWindow(
            day_of_week=int(w["day_of_week"]),
            start=time.fromisoformat(w["start"]),
            end=time.fromisoformat(w["end"]),
            timezone=w.get("timezone", "UTC"),
            valid_from=_d(w.get("valid_from")),
            valid_to=_d(w.get("valid_to")),
            kind=w.get("kind", "open"),
        )
        for w in raw.get("windows", [])
    ]
    blocks = [
        Block(datetime.fromisoformat(b["start"]), datetime.fromisoformat(b["end"]), b.get("reason", "block"))
        for b in raw.get("blocks", [])
    ]
    return TeacherAvailability(raw["owner_id"], windows, blocks)


def session_from_dict(raw: Dict[str, Any]) -> ClassSession:
    return ClassSession(
        id=raw["id"],
        subject_id=raw["subject_id"],
        teacher_id=raw["teacher_id"],
        start=datetime.fromisoformat(raw["start"]),
        duration=timedelta(minutes=int(raw["duration_minutes"])),
        content_unit=raw["content_unit"],
        capacity=int(raw.get("capacity", 9)),
        enrolled=list(raw.get("enrolled", [])),
        waitlist=list(raw.get("waitlist", [])),
        version=int(raw.get("version", 0)),
    )


def booking_from_dict(raw: Dict[str, Any]) -> Booking:
    return Booking(
        id=raw["id"],
        student_id=raw["student_id"],
        teacher_id=raw["teacher_id"],
        subject_id=raw["subject_id"],
        start=datetime.fromisoformat(raw["start"]),
        duration=timedelta(minutes=int(raw["duration_minutes"])),
        type=BookingType(raw.get("type", "individual")),
        status=BookingStatus(raw.get("status", "pending")),
        recurring_group_id=raw.get("recurring_group_id"),
        session_id=raw.get("session_id"),
        idempotency_key=raw.get("idempotency_key"),
        makeup_of=raw.get("makeup_of"),
        cancelled_by=raw.get("cancelled_by"),
    )


def entry_from_dict(raw: Dict[str, Any]) -> HourLedgerEntry:
    return HourLedgerEntry(
        id=raw["id"],
        student_id=raw["student_id"],
        delta=float(raw["delta"]),
        reason=LedgerReason(raw["reason"]),
        timestamp=datetime.fromisoformat(raw["timestamp"]),
        booking_id=raw.get("booking_id"),
        reverses=raw.get("reverses"),
    )


def leave_from_dict(raw: Dict[str, Any]) -> LeaveRequest:
    return LeaveRequest(
        id=raw["id"],
        booking_id=raw["booking_id"],
        student_id=raw["student_id"],
        subject_id=raw["subject_id"],
        requested_at=datetime.fromisoformat(raw["requested_at"]),
        notice_hours=float(raw["notice_hours"]),
        outcome=LeaveOutcome(raw["outcome"]),
        reason=raw.get("reason", ""),
    )


def load_store(data_dir: Path, latency: float = 0.0) -> InMemoryStore:
    """Build an in-memory store from the JSON files under ``data_dir``.

    Missing files count as empty collections.
    """
    data_dir = Path(data_dir)
    store = InMemoryStore(
        teachers=[teacher_from_dict(r) for r in _records(data_dir, "teachers")],
        availability=[availability_from_dict(r) for r in _records(data_dir, "availability")],
        sessions=[session_from_dict(r) for r in _records(data_dir, "sessions")],
        bookings=[booking_from_dict(r) for r in _records(data_dir, "bookings")],
        entries=[entry_from_dict(r) for r in _records(data_dir, "ledger")],
        leaves=[leave_from_dict(r) for r in _records(data_dir, "leaves")],
        progress={(r["student_id"], r["subject_id"]): r["content_unit"] for r in _records(data_dir, "progress")},
        latency=latency,
    )
    logger.info(
        f"Loaded {len(store.teachers)} teachers, {len(store.bookings)} bookings, "
        f"{len(store.sessions)} sessions, {len(store.entries)} ledger entries from {data_dir}"
    )
    return store


# -- encoding ------------------------------------------------------------


def _teacher_to_dict(t: Teacher) -> Dict[str, Any]:
    return {
        "id": t.id,
        "name": t.name,
        "subjects": list(t.subjects),
        "specializations": list(t.specializations),
        "max_weekly_load": t.max_weekly_load,
    }


def _availability_to_dict(a: TeacherAvailability) -> Dict[str, Any]:
    return {
        "owner_id": a.owner_id,
        "windows": [
            {
                "day_of_week": w.day_of_week,
                "start": w.start.strftime("%H:%M"),
                "end": w.end.strftime("%H:%M"),
                "timezone": w.timezone,
                "valid_from": w.valid_from.isoformat() if w.valid_from else None,
                "valid_to": w.valid_to.isoformat() if w.valid_to else None,
                "kind": w.kind,
            }
            for w in a.windows
        ],
        "blocks": [
            {"start": b.start.isoformat(), "end": b.end.isoformat(), "reason": b.reason} for b in a.blocks
        ],
    }


def _session_to_dict(s: ClassSession) -> Dict[str, Any]:
    return {
        "id": s.id,
        "subject_id": s.subject_id,
        "teacher_id": s.teacher_id,
        "start": s.start.isoformat(),
        "duration_minutes": _minutes(s.duration),
        "content_unit": s.content_unit,
        "capacity": s.capacity,
        "enrolled": list(s.enrolled),
        "waitlist": list(s.waitlist),
        "version": s.version,
    }


def _booking_to_dict(b: Booking) -> Dict[str, Any]:
    return {
        "id": b.id,
        "student_id": b.student_id,
        "teacher_id": b.teacher_id,
        "subject_id": b.subject_id,
        "start": b.start.isoformat(),
        "duration_minutes": _minutes(b.duration),
        "type": str(b.type),
        "status": str(b.status),
        "recurring_group_id": b.recurring_group_id,
        "session_id": b.session_id,
        "idempotency_key": b.idempotency_key,
        "makeup_of": b.makeup_of,
        "cancelled_by": b.cancelled_by,
    }


def _entry_to_dict(e: HourLedgerEntry) -> Dict[str, Any]:
    return {
        "id": e.id,
        "student_id": e.student_id,
        "delta": e.delta,
        "reason": str(e.reason),
        "timestamp": e.timestamp.isoformat(),
        "booking_id": e.booking_id,
        "reverses": e.reverses,
    }


def _leave_to_dict(lv: LeaveRequest) -> Dict[str, Any]:
    return {
        "id": lv.id,
        "booking_id": lv.booking_id,
        "student_id": lv.student_id,
        "subject_id": lv.subject_id,
        "requested_at": lv.requested_at.isoformat(),
        "notice_hours": lv.notice_hours,
        "outcome": str(lv.outcome),
        "reason": lv.reason,
    }


def save_store(store: InMemoryStore, data_dir: Path) -> None:
    data_dir = Path(data_dir)
    data_dir.mkdir(parents=True, exist_ok=True)
    payload: Dict[str, List[Dict[str, Any]]] = {
        "teachers": [_teacher_to_dict(t) for t in store.teachers.values()],
        "availability": [_availability_to_dict(a) for a in store.availability.values()],
        "sessions": [_session_to_dict(s) for s in store.sessions.values()],
        "bookings": [_booking_to_dict(b) for b in sorted(store.bookings.values(), key=lambda b: (b.start, b.id))],
        "ledger": [_entry_to_dict(e) for e in store.entries],
        "leaves": [_leave_to_dict(lv) for lv in store.leaves],
        "progress": [
            {"student_id": st, "subject_id": subj, "content_unit": unit}
            for (st, subj), unit in sorted(store.progress.items())
        ],
    }
    for name in FILES:
        with (data_dir / f"{name}.json").open("w", encoding="utf-8") as f:
            json.dump(payload[name], f, indent=2)
    logger.info(f"Wrote store to {data_dir}")

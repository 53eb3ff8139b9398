from datetime import timedelta
from pathlib import Path

from booking_engine.data.store import Snapshot
from booking_engine.models import Booking, BookingStatus, HourLedgerEntry, LedgerReason

from booking_engine.validate.checks import validate_snapshot
from booking_engine.validate.report import format_validation_report, write_validation_report

from factories import HOUR, NOW, at, purchase, session


def _confirmed(booking_id: str, student: str, teacher: str, start) -> Booking:
    return Booking(booking_id, student, teacher, "math", start, HOUR, status=BookingStatus.CONFIRMED)


def test_clean_snapshot_has_no_violations() -> None:
    snap = Snapshot(ledger_entries=[purchase("s-1", 3.0)])
    report = validate_snapshot(snap)
    assert report["clash_count"] == 0
    assert report["violations_by_rule"] == {}
    assert report["balances"] == {"s-1": 3.0}


def test_clashes_and_ledger_problems_are_reported(tmp_path: Path) -> None:
    bookings = [
        _confirmed("b-1", "s-1", "t-ana", at(10)),
        _confirmed("b-2", "s-2", "t-ana", at(10, 30)),
    ]
    orphan = HourLedgerEntry("r-1", "s-2", 1.0, LedgerReason.REFUND, NOW, reverses="gone")
    snap = Snapshot(
        bookings={b.id: b for b in bookings},
        sessions={"g-1": session("g-1", enrolled=["s-3"])},
        ledger_entries=[purchase("s-1", 1.0), orphan],
    )
    report = validate_snapshot(snap)
    rules = report["violations_by_rule"]
    assert report["clash_count"] == 1
    assert rules["teacher_overlap"] == ["t-ana b-1 x b-2"]
    assert rules["orphan_reversal"] == ["r-1 reverses missing gone"]
    assert len(rules["reservation_mismatch"]) == 2
    assert len(rules["enrollment_out_of_sync"]) == 1

    text = format_validation_report(report)
    assert "clash_count: 1" in text
    assert "bookings: confirmed=2" in text
    assert "  teacher_overlap (1)\n    t-ana b-1 x b-2" in text
    assert "ledger: 2 students, 0 below zero" in text
    assert "  s-1: 1h" in text
    path = write_validation_report(report, tmp_path / "out")
    assert path.exists()


def test_content_check_skips_sessions_already_started() -> None:
    started = session("g-1", enrolled=["s-1"], start=at(0) - timedelta(days=3))
    snap = Snapshot(sessions={"g-1": started}, progress={("s-1", "math"): "algebra-3"})
    assert "content_mismatch" in validate_snapshot(snap)["violations_by_rule"]
    assert "content_mismatch" not in validate_snapshot(snap, now=at(0))["violations_by_rule"]

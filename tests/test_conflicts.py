import pytest

from booking_engine.data.store import Snapshot
from booking_engine.errors import ConflictError
from booking_engine.models import Booking, BookingStatus, BookingType
from booking_engine.scheduler.conflicts import ConflictDetector, ConflictReason

from factories import HOUR, at, default_availability, default_teachers, session


def _detector(*bookings: Booking) -> ConflictDetector:
    snap = Snapshot(
        teachers={t.id: t for t in default_teachers()},
        availability={a.owner_id: a for a in default_availability()},
        bookings={b.id: b for b in bookings},
    )
    return ConflictDetector(snap)


def _seat(teacher_id: str = "t-ben", start=None, session_id: str = "g-1") -> Booking:
    return Booking(
        "b-new",
        "s-9",
        teacher_id,
        "math",
        start or at(14),
        HOUR,
        type=BookingType.GROUP,
        session_id=session_id,
    )


def test_free_slot_passes() -> None:
    check = _detector().check(Booking("b-1", "s-1", "t-ana", "math", at(10), HOUR))
    assert check.ok
    check.raise_for_conflict()


def test_teacher_availability_is_checked_first() -> None:
    full = session(teacher_id="t-ana", capacity=1, enrolled=["s-9"])
    check = _detector().check(_seat("t-ana"), full, "geometry-1")
    assert check.reason == ConflictReason.TEACHER_UNAVAILABLE


def test_capacity_before_duplicate_before_content() -> None:
    det = _detector()
    assert det.check(_seat(), session(capacity=1, enrolled=["s-9"]), "algebra-2").reason == ConflictReason.CAPACITY_EXCEEDED
    assert det.check(_seat(), session(enrolled=["s-9"]), "geometry-1").reason == ConflictReason.DUPLICATE_ENROLLMENT
    assert det.check(_seat(), session(), "geometry-1").reason == ConflictReason.CONTENT_MISMATCH
    assert det.check(_seat(), session(), "algebra-2").ok


def test_teacher_with_confirmed_booking_is_unavailable() -> None:
    taken = Booking("b-1", "s-1", "t-ana", "math", at(10), HOUR, status=BookingStatus.CONFIRMED)
    check = _detector(taken).check(Booking("b-2", "s-2", "t-ana", "math", at(10, 30), HOUR))
    assert check.reason == ConflictReason.TEACHER_UNAVAILABLE
    with pytest.raises(ConflictError) as err:
        check.raise_for_conflict()
    assert err.value.reason == "teacher_unavailable"


def test_student_double_booking_is_caught() -> None:
    mine = Booking("b-1", "s-1", "t-ben", "math", at(10), HOUR, status=BookingStatus.CONFIRMED)
    check = _detector(mine).check(Booking("b-2", "s-1", "t-ana", "math", at(10, 30), HOUR))
    assert check.reason == ConflictReason.STUDENT_DOUBLE_BOOKED


def test_touching_slots_do_not_conflict() -> None:
    mine = Booking("b-1", "s-1", "t-ana", "math", at(10), HOUR, status=BookingStatus.CONFIRMED)
    assert _detector(mine).check(Booking("b-2", "s-1", "t-ana", "math", at(11), HOUR)).ok

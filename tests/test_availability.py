from datetime import timedelta

import pytest

from booking_engine.data.store import Snapshot
from booking_engine.errors import InvalidRangeError, InvalidWindowError
from booking_engine.models import Block, Booking, BookingStatus, Slot, TeacherAvailability
from booking_engine.scheduler.availability import AvailabilityIndex, carve, merge, subtract

from factories import HOUR, at, window


def _index(*records: TeacherAvailability, bookings=()) -> AvailabilityIndex:
    snap = Snapshot(
        availability={r.owner_id: r for r in records},
        bookings={b.id: b for b in bookings},
    )
    return AvailabilityIndex(snap)


def test_weekly_window_expands_to_the_matching_weekday_only() -> None:
    idx = _index(TeacherAvailability("t-1", [window(0, "09:00", "13:00")]))
    slots = list(idx.open_slots("t-1", at(0), at(0, days=7)))
    assert slots == [Slot(at(9), at(13), "t-1")]


def test_confirmed_booking_is_cut_out_of_open_time() -> None:
    booked = Booking("b-1", "s-1", "t-1", "math", at(10), HOUR, status=BookingStatus.CONFIRMED)
    pending = Booking("b-2", "s-2", "t-1", "math", at(12), HOUR)
    idx = _index(TeacherAvailability("t-1", [window(0, "09:00", "13:00")]), bookings=[booked, pending])
    slots = list(idx.open_slots("t-1", at(0), at(24)))
    assert slots == [Slot(at(9), at(10), "t-1"), Slot(at(11), at(13), "t-1")]


def test_blocks_and_blocking_windows_are_subtracted() -> None:
    record = TeacherAvailability(
        "t-1",
        [window(0, "09:00", "17:00"), window(0, "12:00", "13:00", kind="block")],
        [Block(at(15), at(20), "sick")],
    )
    slots = list(_index(record).open_slots("t-1", at(0), at(24)))
    assert slots == [Slot(at(9), at(12), "t-1"), Slot(at(13), at(15), "t-1")]


def test_window_in_another_zone_is_converted() -> None:
    # New York is on EST (UTC-5) in early November 2026
    record = TeacherAvailability("t-1", [window(0, "09:00", "10:00", timezone="America/New_York")])
    slots = list(_index(record).open_slots("t-1", at(0), at(24)))
    assert slots == [Slot(at(14), at(15), "t-1")]


def test_validity_range_limits_window() -> None:
    record = TeacherAvailability("t-1", [window(0, "09:00", "10:00", valid_to=at(0, days=-1).date())])
    assert list(_index(record).open_slots("t-1", at(0), at(24))) == []


def test_unknown_owner_has_no_slots_and_range_is_restartable() -> None:
    idx = _index(TeacherAvailability("t-1", [window(0, "09:00", "10:00")]))
    assert idx.open_slots("nobody", at(0), at(24)).first() is None
    found = idx.open_slots("t-1", at(0), at(24))
    assert list(found) == list(found)


def test_reversed_range_raises() -> None:
    idx = _index(TeacherAvailability("t-1", []))
    with pytest.raises(InvalidRangeError):
        idx.open_slots("t-1", at(12), at(10))


def test_overlapping_open_windows_are_rejected() -> None:
    with pytest.raises(InvalidWindowError):
        TeacherAvailability("t-1", [window(0, "09:00", "12:00"), window(0, "11:00", "13:00")])
    record = TeacherAvailability("t-1", [window(0, "09:00", "12:00")])
    with pytest.raises(InvalidWindowError):
        record.add_window(window(0, "11:30", "12:30"))
    record.add_window(window(0, "12:00", "13:00"))
    assert len(record.open_windows()) == 2


def test_window_start_must_precede_end() -> None:
    with pytest.raises(InvalidWindowError):
        window(0, "10:00", "10:00")


def test_carve_aligns_to_step_grid() -> None:
    starts = list(carve(Slot(at(9, 15), at(11)), HOUR, 30))
    assert starts == [at(9, 30), at(10)]


def test_subtract_merges_overlapping_busy_intervals() -> None:
    busy = [(at(9), at(10)), (at(9, 30), at(11)), (at(12), at(13))]
    assert subtract(at(8), at(14), busy) == [(at(8), at(9)), (at(11), at(12)), (at(13), at(14))]
    assert subtract(at(9), at(9) + timedelta(minutes=30), busy) == []


def test_back_to_back_windows_form_one_slot() -> None:
    record = TeacherAvailability("t-1", [window(0, "09:00", "12:00"), window(0, "12:00", "15:00")])
    idx = _index(record)
    assert list(idx.open_slots("t-1", at(0), at(24))) == [Slot(at(9), at(15), "t-1")]
    assert idx.covers("t-1", at(11, 30), at(12, 30))
    assert at(11, 30) in list(carve(idx.open_slots("t-1", at(0), at(24)).first(), HOUR, 30))


def test_merge_joins_touching_intervals_only() -> None:
    assert merge([(at(12), at(13)), (at(9), at(12)), (at(14), at(15))]) == [(at(9), at(13)), (at(14), at(15))]

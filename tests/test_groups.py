import asyncio

from booking_engine.models import BookingType
from booking_engine.scheduler.ledger import HourLedger
from booking_engine.validate.checks import validate_snapshot

from factories import at, group_request, make_scheduler, make_store, session

UNIT = "algebra-2"


def _progress(*students: str, unit: str = UNIT) -> dict:
    return {(st, "math"): unit for st in students}


def test_full_session_rejects_and_can_waitlist() -> None:
    seated = [f"s-x{i}" for i in range(9)]
    store = make_store({"s-1": 10.0}, sessions=[session("g-1", enrolled=seated)], progress=_progress("s-1"))
    sched = make_scheduler(store)
    result = asyncio.run(sched.schedule(group_request("s-1", "g-1")))
    assert result.reason == "capacity_exceeded"
    assert result.waitlist_position is None
    assert len(store.sessions["g-1"].enrolled) == 9

    queued = asyncio.run(sched.schedule(group_request("s-1", "g-1", join_waitlist=True)))
    assert queued.reason == "capacity_exceeded"
    assert queued.waitlist_position == 1
    assert store.sessions["g-1"].waitlist == ["s-1"]
    assert HourLedger(store.entries).balance("s-1") == 10.0


def test_student_is_placed_in_matching_session() -> None:
    store = make_store(
        {"s-1": 10.0},
        sessions=[session("g-1", enrolled=[]), session("g-2", content_unit="geometry-1", start=at(12))],
        progress=_progress("s-1"),
    )
    result = asyncio.run(make_scheduler(store).schedule(group_request("s-1")))
    assert result.confirmed
    assert result.session_id == "g-1"
    assert store.sessions["g-1"].enrolled == ["s-1"]
    assert store.bookings[result.booking_id].type == BookingType.GROUP
    assert HourLedger(store.entries).balance("s-1") == 9.0


def test_content_unit_mismatch_is_rejected() -> None:
    store = make_store({"s-1": 10.0}, sessions=[session("g-1")], progress=_progress("s-1", unit="geometry-1"))
    sched = make_scheduler(store)
    assert asyncio.run(sched.schedule(group_request("s-1", "g-1"))).reason == "content_mismatch"
    # A stated unit that disagrees with recorded progress is refused too
    stated = group_request("s-1", "g-1", content_unit=UNIT)
    assert asyncio.run(sched.schedule(stated)).reason == "content_mismatch"
    unknown = make_store({"s-2": 10.0}, sessions=[session("g-1")])
    assert asyncio.run(make_scheduler(unknown).schedule(group_request("s-2"))).reason == "content_mismatch"


def test_new_session_opens_and_fills_with_same_unit() -> None:
    store = make_store({"s-1": 10.0, "s-2": 10.0}, progress=_progress("s-1", "s-2"))
    sched = make_scheduler(store)
    first = asyncio.run(sched.schedule(group_request("s-1")))
    second = asyncio.run(sched.schedule(group_request("s-2")))
    assert first.confirmed and second.confirmed
    assert first.session_id == second.session_id
    opened = store.sessions[first.session_id]
    assert opened.teacher_id == "t-ana"
    assert opened.start == at(10)
    assert opened.content_unit == UNIT
    assert opened.enrolled == ["s-1", "s-2"]
    report = validate_snapshot(asyncio.run(store.snapshot()))
    assert report["clash_count"] == 0
    assert report["violations_by_rule"] == {}


def test_drop_promotes_from_waitlist() -> None:
    students = ("s-1", "s-2", "s-3")
    store = make_store(
        {st: 10.0 for st in students},
        sessions=[session("g-1", capacity=2)],
        progress=_progress(*students),
    )
    sched = make_scheduler(store)
    seat_1 = asyncio.run(sched.schedule(group_request("s-1", "g-1")))
    asyncio.run(sched.schedule(group_request("s-2", "g-1")))
    waiting = asyncio.run(sched.schedule(group_request("s-3", "g-1", join_waitlist=True)))
    assert waiting.waitlist_position == 1

    asyncio.run(sched.cancel(seat_1.booking_id))
    g1 = store.sessions["g-1"]
    assert g1.enrolled == ["s-2", "s-3"]
    assert g1.waitlist == []
    ledger = HourLedger(store.entries)
    assert ledger.balance("s-1") == 10.0
    assert ledger.balance("s-3") == 9.0


def test_leave_from_group_frees_the_seat() -> None:
    store = make_store({"s-1": 10.0}, sessions=[session("g-1")], progress=_progress("s-1"))
    sched = make_scheduler(store)
    seat = asyncio.run(sched.schedule(group_request("s-1", "g-1")))
    asyncio.run(sched.request_leave(seat.booking_id, requested_at=at(0, days=-5)))
    assert store.sessions["g-1"].enrolled == []


def test_simultaneous_requests_share_the_session_one_of_them_opens() -> None:
    store = make_store({"s-1": 10.0, "s-2": 10.0}, progress=_progress("s-1", "s-2"), latency=0.01)
    sched = make_scheduler(store)

    async def both():
        return await asyncio.gather(sched.schedule(group_request("s-1")), sched.schedule(group_request("s-2")))

    first, second = asyncio.run(both())
    assert first.confirmed and second.confirmed
    assert first.session_id == second.session_id
    assert len(store.sessions) == 1
    assert sorted(store.sessions[first.session_id].enrolled) == ["s-1", "s-2"]

import asyncio

from booking_engine.models import BookingStatus
from booking_engine.scheduler.ledger import HourLedger
from booking_engine.scheduler.locks import KeyedLock, student_key, teacher_key

from factories import at, make_scheduler, make_store, one_on_one


def test_same_key_is_exclusive_and_locks_are_released() -> None:
    locks = KeyedLock()
    inside = []

    async def worker(name: str) -> None:
        async with locks.hold(student_key("s-1")):
            inside.append(name)
            assert len(inside) == 1
            await asyncio.sleep(0.01)
            inside.remove(name)

    async def main() -> None:
        await asyncio.gather(*(worker(f"w{i}") for i in range(4)))

    asyncio.run(main())
    assert locks._locks == {}


def test_opposite_acquisition_order_does_not_deadlock() -> None:
    locks = KeyedLock()
    a, b = student_key("s-1"), teacher_key("t-ana", at(10))

    async def take(*keys) -> None:
        async with locks.hold(*keys):
            await asyncio.sleep(0.01)

    async def main() -> None:
        await asyncio.wait_for(asyncio.gather(take(a, b), take(b, a)), timeout=2)

    asyncio.run(main())
    assert not locks.locked(a) and not locks.locked(b)


def test_racing_students_get_one_seat_with_a_named_teacher() -> None:
    store = make_store({"s-1": 10.0, "s-2": 10.0, "s-3": 10.0}, latency=0.001)
    sched = make_scheduler(store)

    async def race():
        return await asyncio.gather(*(sched.schedule(one_on_one(st, teacher_id="t-ana")) for st in ("s-1", "s-2", "s-3")))

    results = asyncio.run(race())
    assert sum(r.confirmed for r in results) == 1
    assert {r.reason for r in results if not r.confirmed} == {"teacher_unavailable"}


def test_one_student_cannot_take_two_teachers_at_once() -> None:
    store = make_store({"s-1": 10.0}, latency=0.001)
    sched = make_scheduler(store)

    async def race():
        return await asyncio.gather(
            sched.schedule(one_on_one(teacher_id="t-ana")),
            sched.schedule(one_on_one(teacher_id="t-ben")),
        )

    first, second = asyncio.run(race())
    assert first.confirmed != second.confirmed
    loser = second if first.confirmed else first
    assert loser.reason == "student_double_booked"
    assert sum(b.status == BookingStatus.CONFIRMED for b in store.bookings.values()) == 1
    assert HourLedger(store.entries).balance("s-1") == 9.0

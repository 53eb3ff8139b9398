from booking_engine.config import SchedulingConfig
from booking_engine.data.store import Snapshot
from booking_engine.models import Booking, BookingStatus, Slot, Teacher
from booking_engine.scheduler.matching import MatchingEngine

from factories import HOUR, NOW, at, default_availability, default_teachers, one_on_one, session


def _engine(bookings=(), sessions=(), teachers=None, config=None, **kw) -> MatchingEngine:
    snap = Snapshot(
        teachers={t.id: t for t in (teachers or default_teachers())},
        availability={a.owner_id: a for a in default_availability()},
        bookings={b.id: b for b in bookings},
        sessions={s.id: s for s in sessions},
    )
    return MatchingEngine(snap, config or SchedulingConfig(), **kw)


def _confirmed(booking_id: str, student: str, teacher: str, start) -> Booking:
    return Booking(booking_id, student, teacher, "math", start, HOUR, status=BookingStatus.CONFIRMED)


def test_specialist_ranks_first_when_both_fit_exactly() -> None:
    outcome = _engine().match_teachers(one_on_one(start=at(10)))
    assert [c.teacher_id for c in outcome.candidates] == ["t-ana", "t-ben"]
    assert all(c.exact for c in outcome.candidates)
    assert outcome.candidates[0].score > outcome.candidates[1].score


def test_exact_fit_beats_shifted_specialist() -> None:
    # Ana stops at 13:00, so a 12:30 start only fits her shifted to 12:00
    outcome = _engine().match_teachers(one_on_one(start=at(12, 30)))
    first, second = outcome.candidates
    assert (first.teacher_id, first.exact) == ("t-ben", True)
    assert (second.teacher_id, second.exact) == ("t-ana", False)
    assert second.slot == Slot(at(12), at(13), "t-ana")


def test_lighter_weekly_load_wins_between_equal_teachers() -> None:
    teachers = [Teacher("t-ana", "Ana", ["math"]), Teacher("t-ben", "Ben", ["math"])]
    busy = _confirmed("b-0", "s-2", "t-ana", at(10, days=2))
    outcome = _engine([busy], teachers=teachers).match_teachers(one_on_one(start=at(10)))
    assert outcome.best.teacher_id == "t-ben"
    assert outcome.candidates[1].weekly_load == 1


def test_full_tie_falls_back_to_teacher_id() -> None:
    teachers = [Teacher("t-ben", "Ben", ["math"]), Teacher("t-ana", "Ana", ["math"])]
    outcome = _engine(teachers=teachers).match_teachers(one_on_one(start=at(10)))
    assert [c.teacher_id for c in outcome.candidates] == ["t-ana", "t-ben"]


def test_student_calendar_pushes_to_adjacent_slot() -> None:
    mine = _confirmed("b-0", "s-1", "t-ben", at(10))
    best = _engine([mine]).match_teachers(one_on_one(start=at(10))).best
    assert (best.teacher_id, best.slot.start, best.exact) == ("t-ana", at(9), False)


def test_named_teacher_filters_and_nobody_is_free_late() -> None:
    engine = _engine()
    assert [c.teacher_id for c in engine.match_teachers(one_on_one(teacher_id="t-ben")).candidates] == ["t-ben"]
    assert engine.match_teachers(one_on_one(start=at(20))).no_availability


def test_external_scorer_feeds_the_ranking() -> None:
    config = SchedulingConfig(weight_external=1.0)
    engine = _engine(config=config, external_scorer=lambda t, req: 1.0 if t.id == "t-ben" else 0.0)
    assert engine.match_teachers(one_on_one(start=at(10))).best.teacher_id == "t-ben"


def test_alternatives_are_closest_first() -> None:
    alts = _engine().alternatives(one_on_one(start=at(14), teacher_id="t-ana"), not_before=NOW)
    assert alts == [
        Slot(at(14), at(15), "t-ben"),
        Slot(at(13, 30), at(14, 30), "t-ben"),
        Slot(at(14, 30), at(15, 30), "t-ben"),
    ]


def test_makeup_slots_prefer_soonest_then_original_teacher() -> None:
    postponed = Booking("b-1", "s-1", "t-ana", "math", at(10), HOUR, status=BookingStatus.RESCHEDULED)
    slots = _engine([postponed]).makeup_slots(postponed, not_before=at(0), until=at(0, days=30), limit=3)
    assert slots == [
        Slot(at(9), at(10), "t-ana"),
        Slot(at(9), at(10), "t-ben"),
        Slot(at(11), at(12), "t-ana"),
    ]
    assert all(not s.overlaps(postponed.start, postponed.end) for s in slots)


def test_group_assignment_matches_content_unit() -> None:
    same = session("g-1", enrolled=["s-2"])
    other = session("g-2", content_unit="geometry-1", start=at(15))
    engine = _engine(sessions=[same, other])
    assert engine.assign_group("s-1", "math", "algebra-2", at(0)).session.id == "g-1"
    assert engine.assign_group("s-1", "math", "algebra-3", at(0)).open_new
    full = session("g-3", capacity=1, enrolled=["s-2"])
    assert _engine(sessions=[full]).assign_group("s-1", "math", "algebra-2", at(0)).open_new


def test_next_session_slot_picks_earliest_teacher_start() -> None:
    slot = _engine().next_session_slot("s-1", "math", HOUR, at(0))
    assert slot == Slot(at(9), at(10), "t-ana")

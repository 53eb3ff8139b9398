from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from pathlib import Path

import typer

from ..config import load_config
from ..data.loader import load_store, save_store
from ..models.booking import BookingType
from ..models.request import Recurrence, RecurringPattern, RecurringResult, ScheduleRequest, ScheduleResult
from ..scheduler.orchestrator import Scheduler
from ..validate.checks import validate_snapshot
from ..validate.report import format_validation_report, write_validation_report

ROOT = Path(__file__).resolve().parents[2]

app = typer.Typer(add_completion=False, help="Tutoring booking engine")


def _setup_logging(project_root: Path, log_level: str = "INFO") -> None:
    logs_dir = project_root / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(logs_dir / "booking.log", encoding="utf-8"),
            logging.StreamHandler(),
        ],
    )


def _scheduler(data_dir: Path) -> Scheduler:
    return Scheduler(load_store(data_dir), load_config(ROOT))


def _format_result(result: ScheduleResult) -> str:
    when = result.start.isoformat() if result.start else "-"
    if result.confirmed:
        line = f"confirmed {result.booking_id} teacher={result.teacher_id} at {when}"
        if result.session_id:
            line += f" session={result.session_id}"
        return line
    line = f"rejected at {when}: {result.reason}"
    if result.waitlist_position:
        line += f" (waitlist #{result.waitlist_position})"
    for alt in result.alternatives:
        line += f"\n  alternative: {alt.owner_id} {alt.start.isoformat()}"
    return line


@app.command("book")
def cli_book(
    student: str = typer.Option(..., help="Student id"),
    subject: str = typer.Option(..., help="Subject id"),
    start: str = typer.Option(..., help="Desired start (ISO 8601 with offset)"),
    minutes: int = typer.Option(60, help="Class length in minutes"),
    teacher: str | None = typer.Option(None, help="Named teacher; omit to auto-match"),
    group: bool = typer.Option(False, help="Book a group class"),
    session: str | None = typer.Option(None, help="Join this group session"),
    repeat: str | None = typer.Option(None, help="weekly, biweekly or monthly"),
    count: int = typer.Option(1, help="Number of occurrences when repeating"),
    key: str | None = typer.Option(None, help="Idempotency key"),
    waitlist: bool = typer.Option(False, help="Join the waitlist if the session is full"),
    data_dir: Path = typer.Option(ROOT / "data", help="JSON data directory"),
    log_level: str = typer.Option("INFO", help="Log level"),
) -> None:
    _setup_logging(ROOT, log_level)
    sched = _scheduler(data_dir)
    request = ScheduleRequest(
        student_id=student,
        subject_id=subject,
        start=datetime.fromisoformat(start),
        duration=timedelta(minutes=minutes),
        type=BookingType.GROUP if group or session else BookingType.INDIVIDUAL,
        teacher_id=teacher,
        session_id=session,
        recurrence=RecurringPattern(Recurrence(repeat), count) if repeat else None,
        idempotency_key=key,
        join_waitlist=waitlist,
    )
    result = asyncio.run(sched.schedule(request))
    save_store(sched.store, data_dir)
    if isinstance(result, RecurringResult):
        print(f"recurring group {result.recurring_group_id}")
        for occ in result.occurrences:
            print(_format_result(occ))
        return
    print(_format_result(result))


@app.command("leave")
def cli_leave(
    booking_id: str = typer.Argument(..., help="Booking to take leave from"),
    at: str | None = typer.Option(None, help="Request time (ISO 8601); defaults to now"),
    reason: str = typer.Option("", help="Free-text reason"),
    data_dir: Path = typer.Option(ROOT / "data", help="JSON data directory"),
) -> None:
    _setup_logging(ROOT)
    sched = _scheduler(data_dir)
    requested_at = datetime.fromisoformat(at) if at else None
    result = asyncio.run(sched.request_leave(booking_id, requested_at, reason))
    save_store(sched.store, data_dir)
    print(f"{result.outcome} (notice {result.leave.notice_hours}h)")
    for slot in result.suggestions:
        print(f"  make-up: {slot.owner_id} {slot.start.isoformat()}")


@app.command("cancel")
def cli_cancel(
    booking_id: str = typer.Argument(...),
    data_dir: Path = typer.Option(ROOT / "data", help="JSON data directory"),
) -> None:
    _setup_logging(ROOT)
    sched = _scheduler(data_dir)
    refunded = asyncio.run(sched.cancel(booking_id))
    save_store(sched.store, data_dir)
    print(f"cancelled {booking_id}, refunded {refunded:g}h")


@app.command("balance")
def cli_balance(
    student: str = typer.Argument(...),
    data_dir: Path = typer.Option(ROOT / "data", help="JSON data directory"),
) -> None:
    sched = _scheduler(data_dir)
    print(f"{student}: {asyncio.run(sched.balance(student)):g}h")


@app.command("validate")
def cli_validate(
    data_dir: Path = typer.Option(ROOT / "data", help="JSON data directory"),
    outputs_dir: Path = typer.Option(ROOT / "outputs", help="Where validation.json goes"),
) -> None:
    _setup_logging(ROOT)
    store = load_store(data_dir)
    report = validate_snapshot(asyncio.run(store.snapshot()))
    write_validation_report(report, outputs_dir)
    print(format_validation_report(report))


@app.command("plan-groups")
def cli_plan_groups(
    subject: str = typer.Option(..., help="Subject id"),
    students: str = typer.Option(..., help="Comma-separated student ids"),
    start: str = typer.Option(..., help="Planning window start (ISO 8601)"),
    end: str = typer.Option(..., help="Planning window end (ISO 8601)"),
    minutes: int = typer.Option(60, help="Session length in minutes"),
    data_dir: Path = typer.Option(ROOT / "data", help="JSON data directory"),
) -> None:
    _setup_logging(ROOT)
    sched = _scheduler(data_dir)
    plan, results = asyncio.run(
        sched.auto_schedule_groups(
            subject,
            [s.strip() for s in students.split(",") if s.strip()],
            datetime.fromisoformat(start),
            datetime.fromisoformat(end),
            timedelta(minutes=minutes),
        )
    )
    save_store(sched.store, data_dir)
    print(f"status={plan.status} sessions={len(plan.sessions)} seated={plan.seated}")
    for result in results:
        print(_format_result(result))


if __name__ == "__main__":  # pragma: no cover
    app()

from __future__ import annotations

from datetime import datetime
from typing import Iterator

from dateutil.relativedelta import relativedelta

from ..models.request import Recurrence, RecurringPattern


def occurrence(start: datetime, frequency: Recurrence, n: int) -> datetime:
    """Return the nth occurrence (0-based) of a series starting at ``start``.

    Each date is computed from the first one, never from the previous
    occurrence, so a month-end start clamps per month without drifting.
    """
    if frequency == Recurrence.WEEKLY:
        return start + relativedelta(weeks=n)
    if frequency == Recurrence.BIWEEKLY:
        return start + relativedelta(weeks=2 * n)
    return start + relativedelta(months=n)


def expand(start: datetime, pattern: RecurringPattern) -> Iterator[datetime]:
    for n in range(pattern.count):
        at = occurrence(start, pattern.frequency, n)
        if pattern.until is not None and at.date() > pattern.until:
            return
        yield at

"""Inclusive date-range arithmetic for leave requests."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Union

from hr_records.common.constants import HALF_DAY
from hr_records.leave.exceptions import InvalidRangeError

DateLike = Union[date, datetime]


def _as_date(value: DateLike) -> date:
    """Truncate a datetime to its calendar day."""
    if isinstance(value, datetime):
        return value.date()
    return value


def days_between(start: DateLike, end: DateLike) -> int:
    """Inclusive number of calendar days from *start* to *end*.

    ``days_between(d, d) == 1``. Raises ``InvalidRangeError`` if end < start.
    """
    start_day, end_day = _as_date(start), _as_date(end)
    if end_day < start_day:
        raise InvalidRangeError(start_day, end_day)
    return (end_day - start_day).days + 1


def overlaps(
    a_start: DateLike,
    a_end: DateLike,
    b_start: DateLike,
    b_end: DateLike,
) -> bool:
    """True iff the closed ranges share at least one calendar day."""
    return _as_date(a_start) <= _as_date(b_end) and _as_date(b_start) <= _as_date(a_end)


def leave_day_count(
    start: DateLike,
    end: DateLike,
    *,
    half_day_start: bool = False,
    half_day_end: bool = False,
) -> Decimal:
    """Chargeable days for a request, at half-day granularity.

    Each half-day flag takes half a day off the inclusive span. A single-day
    request marked as half day counts as 0.5 whichever flag is set.
    """
    span = days_between(start, end)
    if span == 1:
        return HALF_DAY if (half_day_start or half_day_end) else Decimal(1)

    total = Decimal(span)
    if half_day_start:
        total -= HALF_DAY
    if half_day_end:
        total -= HALF_DAY
    return total

"""Overlap detection between a candidate range and existing requests.

Pending requests block because approving them later would double-book the
employee; approved requests block for the obvious reason. Rejected and
cancelled requests never block a resubmission.
"""

from __future__ import annotations

import uuid
from datetime import date
from typing import TYPE_CHECKING, Iterable, Protocol

from hr_records.common.constants import LeaveStatus
from hr_records.leave.dates import overlaps

if TYPE_CHECKING:
    from hr_records.leave.repository import LeaveRepository

BLOCKING_STATUSES = frozenset({LeaveStatus.pending, LeaveStatus.approved})


class DatedRequest(Protocol):
    id: uuid.UUID
    status: LeaveStatus
    start_date: date
    end_date: date


def find_overlapping(
    existing: Iterable[DatedRequest],
    start: date,
    end: date,
) -> list[DatedRequest]:
    """Return the blocking requests whose range shares a day with [start, end]."""
    return [
        req
        for req in existing
        if req.status in BLOCKING_STATUSES
        and overlaps(req.start_date, req.end_date, start, end)
    ]


async def find_conflicts(
    repository: "LeaveRepository",
    employee_id: uuid.UUID,
    start: date,
    end: date,
) -> list[DatedRequest]:
    """Load the employee's blocking requests around [start, end] and filter them."""
    candidates = await repository.list_requests(
        employee_id,
        statuses=BLOCKING_STATUSES,
        window=(start, end),
    )
    return find_overlapping(candidates, start, end)


async def has_overlap(
    repository: "LeaveRepository",
    employee_id: uuid.UUID,
    start: date,
    end: date,
) -> bool:
    return bool(await find_conflicts(repository, employee_id, start, end))

"""Leave workflow error taxonomy.

Every outcome a caller can recover from has its own exception class and a
stable ``kind`` string, rendered by the RFC 7807 handlers in
``hr_records.common.exceptions``. Only ``ConcurrentModificationError``,
``LeaveTimeoutError`` and ``StorageUnavailableError`` are ``retryable``.
``LedgerInvariantError`` signals corrupt stored data and renders as a 500.
"""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from hr_records.common.constants import LeaveCategory, LeaveStatus
from hr_records.common.exceptions import (
    AppException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)


# ── Input validation (raised before any transaction is opened) ──────

class InvalidRangeError(ValidationException):
    def __init__(self, start: date, end: date) -> None:
        super().__init__(
            {"end_date": [f"End date {end} is before start date {start}."]},
            error_type="invalid-range",
            detail="The leave date range is invalid.",
        )


class PastDateError(ValidationException):
    def __init__(self, start: date, today: date) -> None:
        super().__init__(
            {"start_date": [f"Start date {start} is before today ({today})."]},
            error_type="past-date",
            detail="Leave cannot start in the past.",
        )


class RangeTooLargeError(ValidationException):
    def __init__(self, days: int, limit: int) -> None:
        super().__init__(
            {"end_date": [f"Leave spans {days} days; the maximum is {limit}."]},
            error_type="range-too-large",
            detail="The leave period is too long.",
        )


class InvalidReasonError(ValidationException):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(
            {field: [message]},
            error_type="invalid-reason",
            detail=message,
        )


# ── Business rule outcomes ──────────────────────────────────────────

class OverlappingRequestError(ValidationException):
    def __init__(self, start: date, end: date, conflicting: list[uuid.UUID]) -> None:
        super().__init__(
            {"dates": [
                f"{start} to {end} overlaps a pending or approved leave request."
            ]},
            error_type="overlapping-request",
            detail="You already have a pending or approved leave request "
                   "overlapping with these dates.",
        )
        self.conflicting = conflicting


class InsufficientBalanceError(ValidationException):
    def __init__(
        self,
        category: LeaveCategory,
        requested: Decimal,
        remaining: Decimal,
    ) -> None:
        super().__init__(
            {"balance": [
                f"Insufficient {category.value} balance. "
                f"Available: {remaining}, Requested: {requested}."
            ]},
            error_type="insufficient-balance",
            detail=f"Insufficient {category.value} leave balance.",
        )
        self.category = category
        self.requested = requested
        self.remaining = remaining


class RequestNotFoundError(NotFoundException):
    def __init__(self, request_id: uuid.UUID) -> None:
        super().__init__(
            "LeaveRequest", request_id, error_type="request-not-found",
        )
        self.request_id = request_id


class InvalidTransitionError(AppException):
    """409: the request is not in a state that allows this transition."""

    def __init__(self, current: LeaveStatus, target: LeaveStatus) -> None:
        super().__init__(
            status_code=409,
            error_type="invalid-transition",
            title="Invalid Transition",
            detail=f"Leave request is already {current.value}; "
                   f"it cannot become {target.value}.",
        )
        self.current = current
        self.target = target


class SelfApprovalForbiddenError(ForbiddenException):
    def __init__(self) -> None:
        super().__init__(
            "You cannot decide on your own leave request.",
            error_type="self-approval-forbidden",
        )


class UnauthorizedError(ForbiddenException):
    def __init__(
        self,
        detail: str = "You are not authorized to act on this leave request.",
    ) -> None:
        super().__init__(detail, error_type="unauthorized")


# ── Storage outcomes (translated inside the workflow) ───────────────

class ConcurrentModificationError(AppException):
    """409: a concurrent operation changed the data; retry from scratch."""

    retryable = True

    def __init__(self, operation: str) -> None:
        super().__init__(
            status_code=409,
            error_type="concurrent-modification",
            title="Concurrent Modification",
            detail=f"The {operation} conflicted with a concurrent change. "
                   "Please retry.",
        )
        self.operation = operation


class LeaveTimeoutError(AppException):
    """503: the unit of work did not finish within its time budget."""

    retryable = True

    def __init__(self, operation: str, timeout: Optional[float] = None) -> None:
        budget = f" within {timeout:g}s" if timeout is not None else ""
        super().__init__(
            status_code=503,
            error_type="timeout",
            title="Timeout",
            detail=f"The {operation} did not complete{budget}. Please retry.",
        )
        self.operation = operation


class StorageUnavailableError(AppException):
    """503: the database could not be reached or failed unexpectedly."""

    retryable = True

    def __init__(self, operation: str) -> None:
        super().__init__(
            status_code=503,
            error_type="storage-unavailable",
            title="Storage Unavailable",
            detail=f"The {operation} could not be completed because the "
                   "database is unavailable. Please retry.",
        )
        self.operation = operation


# ── Data corruption ─────────────────────────────────────────────────

class LedgerInvariantError(AppException):
    """500: stored balances or requests break their accounting invariants.

    Not a caller error: it means stored balances and requests disagree.
    """

    def __init__(self, detail: str) -> None:
        super().__init__(
            status_code=500,
            error_type="ledger-invariant",
            title="Ledger Invariant Violated",
            detail=detail,
        )

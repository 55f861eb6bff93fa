"""Leave request state machine.

    pending ──approve──▶ approved
       │  ──reject───▶ rejected
       └──cancel────▶ cancelled

Approved, rejected and cancelled are terminal. A decision is one of the
closed variants ``Approval``, ``Rejection`` or ``Cancellation``;
``apply_decision`` checks it against the request, writes the
status-dependent fields and returns the balance event the coordinator must
apply in the same transaction.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from hr_records.common.constants import LeaveStatus
from hr_records.leave.exceptions import (
    InvalidReasonError,
    InvalidTransitionError,
    LedgerInvariantError,
    SelfApprovalForbiddenError,
    UnauthorizedError,
)
from hr_records.leave.ledger import BalanceEvent
from hr_records.leave.models import LeaveRequest

REASON_MAX_LENGTH = 500

ALLOWED_TRANSITIONS: dict[LeaveStatus, frozenset[LeaveStatus]] = {
    LeaveStatus.pending: frozenset(
        {LeaveStatus.approved, LeaveStatus.rejected, LeaveStatus.cancelled}
    ),
    LeaveStatus.approved: frozenset(),
    LeaveStatus.rejected: frozenset(),
    LeaveStatus.cancelled: frozenset(),
}


# ═════════════════════════════════════════════════════════════════════
# Decisions
# ═════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Approval:
    approver_id: uuid.UUID
    decided_at: datetime

    target = LeaveStatus.approved


@dataclass(frozen=True)
class Rejection:
    approver_id: uuid.UUID
    decided_at: datetime
    reason: str

    target = LeaveStatus.rejected


@dataclass(frozen=True)
class Cancellation:
    cancelled_by: uuid.UUID
    cancelled_at: datetime

    target = LeaveStatus.cancelled


Decision = Union[Approval, Rejection, Cancellation]


# ═════════════════════════════════════════════════════════════════════
# Validation helpers
# ═════════════════════════════════════════════════════════════════════


def clean_reason(
    value: Optional[str],
    *,
    field: str = "reason",
    required: bool = False,
    max_length: int = REASON_MAX_LENGTH,
) -> Optional[str]:
    """Trim a free-text reason; blank or overlong text is an error.

    ``None`` is accepted only when the reason is optional.
    """
    if value is None:
        if required:
            raise InvalidReasonError(field, f"{field.replace('_', ' ').capitalize()} is required.")
        return None

    trimmed = value.strip()
    if not trimmed:
        raise InvalidReasonError(field, f"{field.replace('_', ' ').capitalize()} must not be blank.")
    if len(trimmed) > max_length:
        raise InvalidReasonError(
            field,
            f"{field.replace('_', ' ').capitalize()} must not exceed {max_length} characters.",
        )
    return trimmed


def check_transition(current: LeaveStatus, target: LeaveStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(current, target)


# ═════════════════════════════════════════════════════════════════════
# Transition
# ═════════════════════════════════════════════════════════════════════


def validate_decision(
    request: LeaveRequest,
    decision: Decision,
    *,
    reason_max_length: int = REASON_MAX_LENGTH,
) -> None:
    """Check *decision* against *request* without changing anything."""
    check_transition(request.status, decision.target)

    if isinstance(decision, (Approval, Rejection)):
        if decision.approver_id == request.employee_id:
            raise SelfApprovalForbiddenError()
        if isinstance(decision, Rejection):
            clean_reason(
                decision.reason, field="rejection_reason", required=True,
                max_length=reason_max_length,
            )
    elif isinstance(decision, Cancellation):
        if decision.cancelled_by != request.employee_id:
            raise UnauthorizedError("You can only cancel your own leave requests.")
    else:
        raise TypeError(f"Unhandled decision: {decision!r}")


def apply_decision(
    request: LeaveRequest,
    decision: Decision,
    *,
    reason_max_length: int = REASON_MAX_LENGTH,
) -> BalanceEvent:
    """Move *request* out of pending according to *decision*.

    Mutates the request in place and returns the ledger event that keeps the
    balance in step: ``commit`` for an approval, ``release`` otherwise.
    """
    validate_decision(request, decision, reason_max_length=reason_max_length)

    if isinstance(decision, Approval):
        request.status = LeaveStatus.approved
        request.approver_id = decision.approver_id
        request.decided_at = decision.decided_at
        request.updated_at = decision.decided_at
        event = BalanceEvent.commit(request.total_days)
    elif isinstance(decision, Rejection):
        request.status = LeaveStatus.rejected
        request.approver_id = decision.approver_id
        request.decided_at = decision.decided_at
        request.rejection_reason = clean_reason(
            decision.reason, field="rejection_reason", required=True,
            max_length=reason_max_length,
        )
        request.updated_at = decision.decided_at
        event = BalanceEvent.release(request.total_days)
    else:
        request.status = LeaveStatus.cancelled
        request.cancelled_at = decision.cancelled_at
        request.updated_at = decision.cancelled_at
        event = BalanceEvent.release(request.total_days)

    check_request_consistency(request)
    return event


def consistency_errors(request: LeaveRequest) -> list[str]:
    """Status-dependent fields that are present or missing when they should not be."""
    errors: list[str] = []
    decided = request.status in (LeaveStatus.approved, LeaveStatus.rejected)

    if decided != (request.approver_id is not None):
        errors.append("approver_id must be set exactly when the request is decided")
    if decided != (request.decided_at is not None):
        errors.append("decided_at must be set exactly when the request is decided")
    if (request.status is LeaveStatus.rejected) != (request.rejection_reason is not None):
        errors.append("rejection_reason must be set exactly when the request is rejected")
    if (request.status is LeaveStatus.cancelled) != (request.cancelled_at is not None):
        errors.append("cancelled_at must be set exactly when the request is cancelled")
    if request.end_date < request.start_date:
        errors.append("end_date is before start_date")
    if not (0 < request.total_days <= 365):
        errors.append(f"total_days out of range: {request.total_days}")
    return errors


def check_request_consistency(request: LeaveRequest) -> None:
    errors = consistency_errors(request)
    if errors:
        raise LedgerInvariantError(f"Inconsistent leave request {request.id}: {'; '.join(errors)}")

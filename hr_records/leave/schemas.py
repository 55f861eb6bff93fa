"""Leave Pydantic v2 schemas: request / response validation.

Naming conventions:
  - *Create / *Request  → request bodies (write)
  - *Out                → response bodies (read)

Date-range and reason rules are enforced by the workflow, not here, so that
they surface with their own error kinds.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from hr_records.common.constants import LeaveCategory, LeaveStatus
from hr_records.common.pagination import PaginatedResponse


# ═════════════════════════════════════════════════════════════════════
# Leave Balance
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceOut(BaseModel):
    """Balance for one category and year with the computed remainder."""

    model_config = ConfigDict(from_attributes=True)

    category: LeaveCategory
    year: int
    total_days: Optional[Decimal] = None
    used_days: Decimal
    pending_days: Decimal

    # None for unbounded (non-accrual) categories
    remaining_days: Optional[Decimal] = None


# ═════════════════════════════════════════════════════════════════════
# Leave Request: Create
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestCreate(BaseModel):
    """Payload for submitting a leave request."""

    category: LeaveCategory
    start_date: date = Field(..., description="Leave start date (inclusive)")
    end_date: date = Field(..., description="Leave end date (inclusive)")
    reason: Optional[str] = Field(None, description="Optional reason, at most 500 characters")
    half_day_start: bool = False
    half_day_end: bool = False
    backfill: bool = Field(
        False,
        description="Allow a start date in the past (HR and system admins only)",
    )


# ═════════════════════════════════════════════════════════════════════
# Leave Request: Response
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestOut(BaseModel):
    """Full leave request response."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    category: LeaveCategory
    start_date: date
    end_date: date
    half_day_start: bool = False
    half_day_end: bool = False
    total_days: Decimal
    reason: Optional[str] = None
    status: LeaveStatus
    approver_id: Optional[uuid.UUID] = None
    decided_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    is_backfill: bool = False
    created_at: datetime
    updated_at: datetime


LeaveRequestPage = PaginatedResponse[LeaveRequestOut]


# ═════════════════════════════════════════════════════════════════════
# Leave Reject
# ═════════════════════════════════════════════════════════════════════


class LeaveRejectRequest(BaseModel):
    """Payload for rejecting a leave request."""

    reason: str

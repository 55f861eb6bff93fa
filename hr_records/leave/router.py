"""Leave router: submit, approve/reject/cancel, listings, balances.

All endpoints require authentication. Team and decision endpoints enforce
role checks; the workflow additionally checks approval authority per request.
"""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from hr_records.auth.dependencies import get_current_user, is_hr, require_role
from hr_records.common.constants import LeaveStatus, UserRole
from hr_records.common.pagination import PaginationParams
from hr_records.common.rate_limit import limiter
from hr_records.config import settings
from hr_records.database import async_session_factory
from hr_records.employees.models import Employee
from hr_records.leave.exceptions import UnauthorizedError
from hr_records.leave.schemas import (
    LeaveBalanceOut,
    LeaveRejectRequest,
    LeaveRequestCreate,
    LeaveRequestOut,
    LeaveRequestPage,
)
from hr_records.leave.workflow import LeaveWorkflow

router = APIRouter(prefix="", tags=["leave"])

_approvers = require_role(UserRole.manager, UserRole.hr_admin, UserRole.system_admin)


def get_leave_workflow() -> LeaveWorkflow:
    """Workflow bound to the application's session factory (overridable in tests)."""
    return LeaveWorkflow(async_session_factory)


# ── POST /requests ──────────────────────────────────────────────────

@router.post("/requests", response_model=LeaveRequestOut, status_code=201)
@limiter.limit(settings.LEAVE_SUBMIT_RATE_LIMIT)
async def submit_leave(
    request: Request,
    body: LeaveRequestCreate,
    employee: Employee = Depends(get_current_user),
    workflow: LeaveWorkflow = Depends(get_leave_workflow),
):
    """Submit a leave request. Validates range, overlap and balance."""
    if body.backfill and not is_hr(request):
        raise UnauthorizedError("Only HR administrators can record backfilled leave.")
    return await workflow.submit(
        employee.id,
        body.category,
        body.start_date,
        body.end_date,
        body.reason,
        half_day_start=body.half_day_start,
        half_day_end=body.half_day_end,
        backfill=body.backfill,
    )


# ── GET /requests/{id} ──────────────────────────────────────────────

@router.get("/requests/{request_id}", response_model=LeaveRequestOut)
async def get_leave_request(
    request_id: uuid.UUID,
    employee: Employee = Depends(get_current_user),
    workflow: LeaveWorkflow = Depends(get_leave_workflow),
):
    """Get a single leave request (own, or one the caller may decide on)."""
    return await workflow.get_request(request_id, viewer_id=employee.id)


# ── GET /my-requests ────────────────────────────────────────────────

@router.get("/my-requests", response_model=LeaveRequestPage)
async def my_requests(
    status: Optional[LeaveStatus] = Query(None),
    pagination: PaginationParams = Depends(),
    employee: Employee = Depends(get_current_user),
    workflow: LeaveWorkflow = Depends(get_leave_workflow),
):
    """The authenticated user's leave requests, newest first."""
    return await workflow.list_for_employee(
        employee.id,
        [status] if status is not None else None,
        page=pagination.page,
        page_size=pagination.page_size,
    )


# ── GET /team-requests ──────────────────────────────────────────────

@router.get("/team-requests", response_model=list[LeaveRequestOut])
async def team_requests(
    request: Request,
    employee: Employee = Depends(_approvers),
    workflow: LeaveWorkflow = Depends(get_leave_workflow),
):
    """Pending requests awaiting the caller's decision."""
    return await workflow.list_pending_for_approver(
        employee.id, include_all=is_hr(request),
    )


# ── PUT /requests/{id}/approve ──────────────────────────────────────

@router.put("/requests/{request_id}/approve", response_model=LeaveRequestOut)
async def approve_leave(
    request_id: uuid.UUID,
    employee: Employee = Depends(_approvers),
    workflow: LeaveWorkflow = Depends(get_leave_workflow),
):
    """Approve a pending leave request. Moves its days from pending to used."""
    return await workflow.approve(request_id, employee.id)


# ── PUT /requests/{id}/reject ───────────────────────────────────────

@router.put("/requests/{request_id}/reject", response_model=LeaveRequestOut)
async def reject_leave(
    request_id: uuid.UUID,
    body: LeaveRejectRequest,
    employee: Employee = Depends(_approvers),
    workflow: LeaveWorkflow = Depends(get_leave_workflow),
):
    """Reject a pending leave request. Releases its pending days."""
    return await workflow.reject(request_id, employee.id, body.reason)


# ── PUT /requests/{id}/cancel ───────────────────────────────────────

@router.put("/requests/{request_id}/cancel", response_model=LeaveRequestOut)
async def cancel_leave(
    request_id: uuid.UUID,
    employee: Employee = Depends(get_current_user),
    workflow: LeaveWorkflow = Depends(get_leave_workflow),
):
    """Withdraw one of your own pending leave requests."""
    return await workflow.cancel(request_id, employee.id)


# ── GET /balances ───────────────────────────────────────────────────

@router.get("/balances", response_model=list[LeaveBalanceOut])
async def get_balances(
    year: Optional[int] = Query(None, description="Leave year; defaults to current year"),
    employee: Employee = Depends(get_current_user),
    workflow: LeaveWorkflow = Depends(get_leave_workflow),
):
    """The authenticated user's leave balances for a given year."""
    return await workflow.get_balances(employee.id, year)

"""Data access for the leave workflow.

Every method runs inside the caller's transaction; nothing here commits.
Methods named ``lock_*`` and ``get_request(for_update=True)`` take row locks
(``SELECT ... FOR UPDATE``) on backends that support them. Callers acquire
them in the order employee → request → balance.
"""

from __future__ import annotations

import uuid
from datetime import date
from typing import Iterable, Optional, Sequence

from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from hr_records.common.constants import LeaveCategory, LeaveStatus
from hr_records.employees.models import Employee
from hr_records.leave.models import LeaveBalance, LeaveRequest


class LeaveRepository:
    """Queries over employees, leave requests and leave balances."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @property
    def dialect_name(self) -> str:
        return self.session.get_bind().dialect.name

    async def apply_lock_timeout(self, seconds: Optional[float]) -> None:
        """Bound lock waits for the current transaction (PostgreSQL only)."""
        if seconds is None or self.dialect_name != "postgresql":
            return
        millis = max(int(seconds * 1000), 1)
        await self.session.execute(text(f"SET LOCAL lock_timeout = '{millis}ms'"))

    async def flush(self) -> None:
        await self.session.flush()

    # ── Employees ───────────────────────────────────────────────────

    async def lock_employee(
        self,
        employee_id: uuid.UUID,
        *,
        active_only: bool = True,
    ) -> Optional[Employee]:
        query = select(Employee).where(Employee.id == employee_id).with_for_update()
        if active_only:
            query = query.where(Employee.is_active.is_(True))
        result = await self.session.execute(query)
        return result.scalars().first()

    # ── Requests ────────────────────────────────────────────────────

    async def get_request(
        self,
        request_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> Optional[LeaveRequest]:
        query = select(LeaveRequest).where(LeaveRequest.id == request_id)
        if for_update:
            # Re-read under the lock; refresh any copy already in the session
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return result.scalars().first()

    async def list_requests(
        self,
        employee_id: uuid.UUID,
        *,
        statuses: Optional[Iterable[LeaveStatus]] = None,
        window: Optional[tuple[date, date]] = None,
        category: Optional[LeaveCategory] = None,
    ) -> Sequence[LeaveRequest]:
        """Requests of one employee, optionally restricted to those touching *window*."""
        query = select(LeaveRequest).where(LeaveRequest.employee_id == employee_id)
        if statuses is not None:
            query = query.where(LeaveRequest.status.in_(list(statuses)))
        if window is not None:
            start, end = window
            query = query.where(
                LeaveRequest.start_date <= end,
                LeaveRequest.end_date >= start,
            )
        if category is not None:
            query = query.where(LeaveRequest.category == category)

        result = await self.session.execute(query.order_by(LeaveRequest.start_date))
        return result.scalars().all()

    async def page_requests(
        self,
        employee_id: uuid.UUID,
        *,
        statuses: Optional[Iterable[LeaveStatus]] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[Sequence[LeaveRequest], int]:
        """One page of an employee's requests, newest first, plus the total count."""
        conditions = [LeaveRequest.employee_id == employee_id]
        if statuses is not None:
            conditions.append(LeaveRequest.status.in_(list(statuses)))

        count_result = await self.session.execute(
            select(func.count()).select_from(LeaveRequest).where(*conditions)
        )
        total = count_result.scalar_one()

        result = await self.session.execute(
            select(LeaveRequest)
            .where(*conditions)
            .order_by(LeaveRequest.created_at.desc(), LeaveRequest.start_date.desc())
            .offset(offset)
            .limit(limit)
        )
        return result.scalars().all(), total

    async def pending_for_approver(
        self,
        approver_id: uuid.UUID,
        *,
        include_all: bool = False,
    ) -> Sequence[LeaveRequest]:
        """Pending requests awaiting *approver_id*.

        Direct reports only, unless *include_all* (HR view), in which case
        every pending request except the approver's own.
        """
        query = select(LeaveRequest).where(LeaveRequest.status == LeaveStatus.pending)
        if include_all:
            query = query.where(LeaveRequest.employee_id != approver_id)
        else:
            query = query.join(
                Employee, Employee.id == LeaveRequest.employee_id,
            ).where(Employee.reporting_manager_id == approver_id)

        result = await self.session.execute(
            query.order_by(LeaveRequest.start_date, LeaveRequest.created_at)
        )
        return result.scalars().all()

    async def add_request(self, request: LeaveRequest) -> LeaveRequest:
        self.session.add(request)
        await self.session.flush()
        return request

    # ── Balances ────────────────────────────────────────────────────

    async def lock_balance(
        self,
        employee_id: uuid.UUID,
        category: LeaveCategory,
        year: int,
    ) -> Optional[LeaveBalance]:
        result = await self.session.execute(
            select(LeaveBalance)
            .where(
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.category == category,
                LeaveBalance.year == year,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def list_balances(
        self,
        employee_id: uuid.UUID,
        year: int,
    ) -> Sequence[LeaveBalance]:
        result = await self.session.execute(
            select(LeaveBalance)
            .where(
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.year == year,
            )
            .order_by(LeaveBalance.category)
        )
        return result.scalars().all()

    async def add_balance(self, balance: LeaveBalance) -> LeaveBalance:
        self.session.add(balance)
        await self.session.flush()
        return balance

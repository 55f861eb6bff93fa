"""Approval authority: who may decide on whose leave."""

from __future__ import annotations

import uuid
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hr_records.auth.models import RoleAssignment
from hr_records.common.constants import HR_ROLES
from hr_records.employees.models import Employee


class ApprovalAuthority(Protocol):
    async def can_decide(
        self,
        session: AsyncSession,
        approver_id: uuid.UUID,
        employee_id: uuid.UUID,
    ) -> bool:
        ...


async def has_hr_role(session: AsyncSession, employee_id: uuid.UUID) -> bool:
    """True if the employee holds an active, unrevoked HR or system admin role."""
    result = await session.execute(
        select(RoleAssignment.id).where(
            RoleAssignment.employee_id == employee_id,
            RoleAssignment.role.in_(list(HR_ROLES)),
            RoleAssignment.is_active.is_(True),
            RoleAssignment.revoked_at.is_(None),
        ).limit(1)
    )
    return result.scalar() is not None


class ReportingLineAuthority:
    """The direct reporting manager, or anyone holding an HR role."""

    async def can_decide(
        self,
        session: AsyncSession,
        approver_id: uuid.UUID,
        employee_id: uuid.UUID,
    ) -> bool:
        result = await session.execute(
            select(Employee.reporting_manager_id).where(Employee.id == employee_id)
        )
        if result.scalar() == approver_id:
            return True
        return await has_hr_role(session, approver_id)

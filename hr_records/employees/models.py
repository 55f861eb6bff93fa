"""Employee ORM model.

Employees are provisioned by the HR onboarding process; the leave workflow
only reads them (identity, reporting line) and locks the row to serialize
concurrent operations on the same employee.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hr_records.database import Base

if TYPE_CHECKING:
    from hr_records.auth.models import RoleAssignment


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Employee(Base):
    """An employee record."""

    __tablename__ = "employees"

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_code: Mapped[str] = mapped_column(
        sa.String(20), unique=True, nullable=False,
    )
    first_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    email: Mapped[str] = mapped_column(sa.String(255), unique=True, nullable=False)
    reporting_manager_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        sa.Uuid, sa.ForeignKey("employees.id"),
    )
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow,
    )

    # Relationships
    reporting_manager: Mapped[Optional["Employee"]] = relationship(
        remote_side=[id],
    )
    role_assignments: Mapped[list["RoleAssignment"]] = relationship(
        back_populates="employee",
        foreign_keys="RoleAssignment.employee_id",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return f"<Employee {self.employee_code} {self.full_name}>"

"""Leave ORM models: LeaveBalance, LeaveRequest."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hr_records.common.constants import ACCRUAL_CATEGORIES, LeaveCategory, LeaveStatus
from hr_records.database import Base
from hr_records.leave.ledger import BalanceSnapshot

if TYPE_CHECKING:
    from hr_records.employees.models import Employee

# SQL list of accrual category labels, e.g. 'annual', 'sick'
_ACCRUAL_SQL = ", ".join(f"'{c.name}'" for c in sorted(ACCRUAL_CATEGORIES))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LeaveBalance(Base):
    """Allocation and consumption for one (employee, category, year).

    Accrual categories always carry a finite ``total_days`` and stay within
    it. Non-accrual categories have no ceiling: their ``total_days`` is NULL
    when created here and is ignored if provisioned with a value.
    """

    __tablename__ = "leave_balances"
    __table_args__ = (
        sa.UniqueConstraint(
            "employee_id", "category", "year", name="uq_leave_balance"
        ),
        sa.CheckConstraint("used_days >= 0", name="ck_leave_balance_used_non_negative"),
        sa.CheckConstraint(
            "pending_days >= 0", name="ck_leave_balance_pending_non_negative"
        ),
        sa.CheckConstraint(
            f"category NOT IN ({_ACCRUAL_SQL}) OR total_days IS NOT NULL",
            name="ck_leave_balance_accrual_total",
        ),
        sa.CheckConstraint(
            f"category NOT IN ({_ACCRUAL_SQL}) OR used_days + pending_days <= total_days",
            name="ck_leave_balance_within_total",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid, sa.ForeignKey("employees.id"), nullable=False
    )
    category: Mapped[LeaveCategory] = mapped_column(
        sa.Enum(LeaveCategory, name="leave_category"), nullable=False
    )
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    total_days: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(5, 1))
    used_days: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, default=Decimal("0")
    )
    pending_days: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, default=Decimal("0")
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow
    )

    # Relationships
    employee: Mapped["Employee"] = relationship()

    def snapshot(self) -> BalanceSnapshot:
        if not self.category.is_accrual:
            return BalanceSnapshot.unbounded(used=self.used_days, pending=self.pending_days)
        return BalanceSnapshot(
            total=self.total_days,
            used=self.used_days,
            pending=self.pending_days,
        )

    def apply_snapshot(self, snapshot: BalanceSnapshot, *, at: datetime) -> None:
        """Write the ledger result back onto the row."""
        self.used_days = snapshot.used
        self.pending_days = snapshot.pending
        self.updated_at = at


class LeaveRequest(Base):
    __tablename__ = "leave_requests"
    __table_args__ = (
        sa.CheckConstraint("end_date >= start_date", name="ck_leave_request_range"),
        sa.CheckConstraint(
            "total_days > 0 AND total_days <= 365", name="ck_leave_request_days"
        ),
        sa.CheckConstraint(
            "(status IN ('approved', 'rejected')) = "
            "(approver_id IS NOT NULL AND decided_at IS NOT NULL)",
            name="ck_leave_request_decision_fields",
        ),
        sa.CheckConstraint(
            "(status = 'rejected') = (rejection_reason IS NOT NULL)",
            name="ck_leave_request_rejection_reason",
        ),
        sa.CheckConstraint(
            "(status = 'cancelled') = (cancelled_at IS NOT NULL)",
            name="ck_leave_request_cancelled_at",
        ),
        sa.Index("ix_leave_requests_employee_dates", "employee_id", "start_date", "end_date"),
        sa.Index("ix_leave_requests_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid, sa.ForeignKey("employees.id"), nullable=False
    )
    category: Mapped[LeaveCategory] = mapped_column(
        sa.Enum(LeaveCategory, name="leave_category"), nullable=False
    )
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    half_day_start: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False
    )
    half_day_end: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False
    )
    total_days: Mapped[Decimal] = mapped_column(sa.Numeric(5, 1), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    status: Mapped[LeaveStatus] = mapped_column(
        sa.Enum(LeaveStatus, name="leave_status"),
        nullable=False,
        default=LeaveStatus.pending,
    )
    approver_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        sa.Uuid, sa.ForeignKey("employees.id")
    )
    decided_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True)
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True)
    )
    is_backfill: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow
    )

    # Relationships
    employee: Mapped["Employee"] = relationship(foreign_keys=[employee_id])
    approver: Mapped[Optional["Employee"]] = relationship(foreign_keys=[approver_id])

    @property
    def balance_year(self) -> int:
        """Balance scope year: the year the leave starts in."""
        return self.start_date.year

    def __repr__(self) -> str:
        return (
            f"<LeaveRequest {self.id} {self.category.value} "
            f"{self.start_date}..{self.end_date} {self.status.value}>"
        )

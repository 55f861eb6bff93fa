"""Enums and constants for HR Records: matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum
from decimal import Decimal


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    employee = "employee"
    manager = "manager"
    hr_admin = "hr_admin"
    system_admin = "system_admin"


# Roles allowed to decide on any employee's leave and to file backfills
HR_ROLES = frozenset({UserRole.hr_admin, UserRole.system_admin})


# ── Leave ───────────────────────────────────────────────────────────

class LeaveCategory(str, enum.Enum):
    annual = "annual"
    sick = "sick"
    unpaid = "unpaid"
    other = "other"

    @property
    def is_accrual(self) -> bool:
        """Accrual categories draw from a finite yearly allocation."""
        return self in ACCRUAL_CATEGORIES


ACCRUAL_CATEGORIES = frozenset({LeaveCategory.annual, LeaveCategory.sick})


class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not LeaveStatus.pending


# ── Misc constants ──────────────────────────────────────────────────

HALF_DAY = Decimal("0.5")
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50

"""Common module: shared utilities for HR Records."""

from hr_records.common.audit import AuditTrail, create_audit_entry
from hr_records.common.constants import (
    ACCRUAL_CATEGORIES,
    DEFAULT_PAGE_SIZE,
    HR_ROLES,
    MAX_PAGE_SIZE,
    LeaveCategory,
    LeaveStatus,
    UserRole,
)
from hr_records.common.exceptions import (
    AppException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
    register_exception_handlers,
)
from hr_records.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
)

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Constants
    "ACCRUAL_CATEGORIES",
    "DEFAULT_PAGE_SIZE",
    "HR_ROLES",
    "MAX_PAGE_SIZE",
    "LeaveCategory",
    "LeaveStatus",
    "UserRole",
    # Exceptions
    "AppException",
    "ForbiddenException",
    "NotFoundException",
    "ValidationException",
    "register_exception_handlers",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
]

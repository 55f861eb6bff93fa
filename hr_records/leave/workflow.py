"""Leave workflow coordinator.

Each operation is one unit of work: a session, one transaction, row locks in
the order employee → request → balance, and a time budget enforced with
``asyncio.wait_for``. Input validation happens before the session is opened.
Database failures leave the transaction and are translated into the
retryable errors of ``hr_records.leave.exceptions``; business failures roll
the transaction back and propagate unchanged.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import date, datetime, timezone
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hr_records.auth.authority import ApprovalAuthority, ReportingLineAuthority
from hr_records.common.audit import create_audit_entry
from hr_records.common.constants import DEFAULT_PAGE_SIZE, LeaveCategory, LeaveStatus
from hr_records.common.exceptions import AppException, NotFoundException
from hr_records.common.pagination import PaginationMeta
from hr_records.config import settings
from hr_records.leave.dates import days_between, leave_day_count
from hr_records.leave.exceptions import (
    ConcurrentModificationError,
    LeaveTimeoutError,
    LedgerInvariantError,
    OverlappingRequestError,
    PastDateError,
    RangeTooLargeError,
    RequestNotFoundError,
    StorageUnavailableError,
    UnauthorizedError,
)
from hr_records.leave.ledger import (
    ZERO,
    BalanceEvent,
    BalanceSnapshot,
    apply_event,
    authorize,
)
from hr_records.leave.lifecycle import (
    Approval,
    Cancellation,
    Decision,
    Rejection,
    apply_decision,
    clean_reason,
    validate_decision,
)
from hr_records.leave.models import LeaveBalance, LeaveRequest
from hr_records.leave.overlap import find_conflicts
from hr_records.leave.repository import LeaveRepository
from hr_records.leave.schemas import LeaveBalanceOut, LeaveRequestOut, LeaveRequestPage

logger = logging.getLogger(__name__)

T = TypeVar("T")

# PostgreSQL SQLSTATE classes
SERIALIZATION_SQLSTATES = frozenset({"40001", "40P01"})  # serialization_failure, deadlock_detected
TIMEOUT_SQLSTATES = frozenset({"55P03", "57014"})  # lock_not_available, query_canceled


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def translate_storage_error(
    operation: str,
    exc: sa_exc.DBAPIError,
    *,
    timeout: Optional[float] = None,
) -> AppException:
    """Map a driver error to the workflow's retryable error taxonomy."""
    if isinstance(exc, sa_exc.IntegrityError):
        return ConcurrentModificationError(operation)

    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in SERIALIZATION_SQLSTATES:
        return ConcurrentModificationError(operation)
    if sqlstate in TIMEOUT_SQLSTATES:
        return LeaveTimeoutError(operation, timeout)
    if "database is locked" in str(orig):
        return ConcurrentModificationError(operation)
    return StorageUnavailableError(operation)


# ═════════════════════════════════════════════════════════════════════
# LeaveWorkflow
# ═════════════════════════════════════════════════════════════════════


class LeaveWorkflow:
    """Submit, decide and query leave requests against the balance ledger."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        authority: Optional[ApprovalAuthority] = None,
        clock: Callable[[], datetime] = _utcnow,
        timeout: Optional[float] = None,
        repository_factory: Callable[[AsyncSession], LeaveRepository] = LeaveRepository,
        max_span_days: Optional[int] = None,
        reason_max_length: Optional[int] = None,
    ) -> None:
        self._session_factory = session_factory
        self.authority = authority or ReportingLineAuthority()
        self._clock = clock
        self.timeout = (
            timeout if timeout is not None else settings.LEAVE_TRANSACTION_TIMEOUT_SECONDS
        )
        self._repository_factory = repository_factory
        self.max_span_days = max_span_days or settings.LEAVE_MAX_SPAN_DAYS
        self.reason_max_length = reason_max_length or settings.LEAVE_REASON_MAX_LENGTH

    # ─────────────────────────────────────────────────────────────────
    # Unit of work
    # ─────────────────────────────────────────────────────────────────

    async def _run(
        self,
        operation: str,
        work: Callable[[LeaveRepository], Awaitable[T]],
    ) -> T:
        try:
            return await asyncio.wait_for(
                self._transaction(operation, work), timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Leave %s timed out after %ss", operation, self.timeout)
            raise LeaveTimeoutError(operation, self.timeout) from None
        except (ConcurrentModificationError, LeaveTimeoutError, StorageUnavailableError):
            raise
        except LedgerInvariantError as exc:
            logger.error("Leave %s hit corrupt ledger data: %s", operation, exc.detail)
            raise
        except AppException as exc:
            logger.info("Leave %s refused: %s (%s)", operation, exc.kind, exc.detail)
            raise

    async def _transaction(
        self,
        operation: str,
        work: Callable[[LeaveRepository], Awaitable[T]],
    ) -> T:
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    repo = self._repository_factory(session)
                    await repo.apply_lock_timeout(self.timeout)
                    return await work(repo)
            except sa_exc.DBAPIError as exc:
                translated = translate_storage_error(operation, exc, timeout=self.timeout)
                logger.warning(
                    "Leave %s failed in storage (%s): %s",
                    operation, translated.kind, exc.orig,
                )
                raise translated from exc
            except sa_exc.TimeoutError as exc:
                # Connection pool exhausted
                logger.warning("Leave %s could not get a connection: %s", operation, exc)
                raise LeaveTimeoutError(operation, self.timeout) from exc

    def _now(self) -> datetime:
        return self._clock()

    def _today(self) -> date:
        return self._now().date()

    # ─────────────────────────────────────────────────────────────────
    # Submit
    # ─────────────────────────────────────────────────────────────────

    async def submit(
        self,
        employee_id: uuid.UUID,
        category: LeaveCategory,
        start_date: date,
        end_date: date,
        reason: Optional[str] = None,
        *,
        half_day_start: bool = False,
        half_day_end: bool = False,
        backfill: bool = False,
    ) -> LeaveRequestOut:
        """Create a pending request and reserve its days.

        ``backfill`` lets administrators record leave that already started.
        """
        if isinstance(start_date, datetime):
            start_date = start_date.date()
        if isinstance(end_date, datetime):
            end_date = end_date.date()

        # ── Validate input ──────────────────────────────────────────
        span = days_between(start_date, end_date)
        today = self._today()
        if start_date < today and not backfill:
            raise PastDateError(start_date, today)
        if span > self.max_span_days:
            raise RangeTooLargeError(span, self.max_span_days)
        reason = clean_reason(reason, max_length=self.reason_max_length)
        total_days = leave_day_count(
            start_date, end_date,
            half_day_start=half_day_start, half_day_end=half_day_end,
        )

        async def work(repo: LeaveRepository) -> LeaveRequestOut:
            now = self._now()

            employee = await repo.lock_employee(employee_id)
            if employee is None:
                raise NotFoundException("Employee", employee_id)

            conflicts = await find_conflicts(repo, employee_id, start_date, end_date)
            if conflicts:
                raise OverlappingRequestError(
                    start_date, end_date, [c.id for c in conflicts],
                )

            balance = await repo.lock_balance(employee_id, category, start_date.year)
            if balance is None and not category.is_accrual:
                balance = await repo.add_balance(LeaveBalance(
                    employee_id=employee_id,
                    category=category,
                    year=start_date.year,
                    total_days=None,
                    used_days=ZERO,
                    pending_days=ZERO,
                    created_at=now,
                    updated_at=now,
                ))

            snapshot = balance.snapshot() if balance is not None else None
            authorize(category, snapshot, total_days).raise_if_insufficient(category)

            leave_request = await repo.add_request(LeaveRequest(
                employee_id=employee_id,
                category=category,
                start_date=start_date,
                end_date=end_date,
                half_day_start=half_day_start,
                half_day_end=half_day_end,
                total_days=total_days,
                reason=reason,
                status=LeaveStatus.pending,
                is_backfill=backfill,
                created_at=now,
                updated_at=now,
            ))

            balance.apply_snapshot(
                apply_event(snapshot, BalanceEvent.reserve(total_days), category=category),
                at=now,
            )
            await repo.flush()

            await create_audit_entry(
                repo.session,
                action="submit",
                entity_type="leave_request",
                entity_id=leave_request.id,
                actor_id=employee_id,
                new_values={
                    "category": category.value,
                    "start_date": start_date.isoformat(),
                    "end_date": end_date.isoformat(),
                    "total_days": str(total_days),
                    "status": LeaveStatus.pending.value,
                    "is_backfill": backfill,
                },
                created_at=now,
            )
            return LeaveRequestOut.model_validate(leave_request)

        out = await self._run("submission", work)
        logger.info(
            "Leave request %s submitted by %s: %s %s..%s (%s days)",
            out.id, employee_id, category.value, start_date, end_date, total_days,
        )
        return out

    # ─────────────────────────────────────────────────────────────────
    # Decisions
    # ─────────────────────────────────────────────────────────────────

    async def approve(
        self,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
    ) -> LeaveRequestOut:
        """Approve a pending request; its reserved days become used."""
        decision = Approval(approver_id=approver_id, decided_at=self._now())
        return await self._decide("approval", request_id, decision, actor_id=approver_id)

    async def reject(
        self,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        reason: str,
    ) -> LeaveRequestOut:
        """Reject a pending request with a reason; its reserved days are released."""
        reason = clean_reason(
            reason, field="rejection_reason", required=True,
            max_length=self.reason_max_length,
        )
        decision = Rejection(approver_id=approver_id, decided_at=self._now(), reason=reason)
        return await self._decide("rejection", request_id, decision, actor_id=approver_id)

    async def cancel(
        self,
        request_id: uuid.UUID,
        employee_id: uuid.UUID,
    ) -> LeaveRequestOut:
        """Withdraw one's own pending request; its reserved days are released."""
        decision = Cancellation(cancelled_by=employee_id, cancelled_at=self._now())
        return await self._decide("cancellation", request_id, decision, actor_id=employee_id)

    async def _decide(
        self,
        operation: str,
        request_id: uuid.UUID,
        decision: Decision,
        *,
        actor_id: uuid.UUID,
    ) -> LeaveRequestOut:
        async def work(repo: LeaveRepository) -> LeaveRequestOut:
            leave_request = await repo.get_request(request_id)
            if leave_request is None:
                raise RequestNotFoundError(request_id)

            await repo.lock_employee(leave_request.employee_id, active_only=False)
            leave_request = await repo.get_request(request_id, for_update=True)
            if leave_request is None:
                raise RequestNotFoundError(request_id)

            validate_decision(
                leave_request, decision, reason_max_length=self.reason_max_length,
            )
            if not isinstance(decision, Cancellation):
                allowed = await self.authority.can_decide(
                    repo.session, decision.approver_id, leave_request.employee_id,
                )
                if not allowed:
                    raise UnauthorizedError(
                        "You are not authorized to decide on this leave request."
                    )

            balance = await repo.lock_balance(
                leave_request.employee_id,
                leave_request.category,
                leave_request.balance_year,
            )
            if balance is None:
                raise LedgerInvariantError(
                    f"No {leave_request.category.value} balance for "
                    f"{leave_request.employee_id} in {leave_request.balance_year} "
                    f"backing pending request {leave_request.id}"
                )

            old_status = leave_request.status
            event = apply_decision(
                leave_request, decision, reason_max_length=self.reason_max_length,
            )
            balance.apply_snapshot(
                apply_event(balance.snapshot(), event, category=leave_request.category),
                at=leave_request.updated_at,
            )
            await repo.flush()

            new_values: dict[str, object] = {"status": leave_request.status.value}
            if leave_request.rejection_reason is not None:
                new_values["rejection_reason"] = leave_request.rejection_reason
            await create_audit_entry(
                repo.session,
                action=_DECISION_ACTIONS[decision.target],
                entity_type="leave_request",
                entity_id=leave_request.id,
                actor_id=actor_id,
                old_values={"status": old_status.value},
                new_values=new_values,
                created_at=leave_request.updated_at,
            )
            return LeaveRequestOut.model_validate(leave_request)

        out = await self._run(operation, work)
        logger.info("Leave request %s %s by %s", out.id, out.status.value, actor_id)
        return out

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    async def get_request(
        self,
        request_id: uuid.UUID,
        viewer_id: Optional[uuid.UUID] = None,
    ) -> LeaveRequestOut:
        """Fetch one request; a *viewer* must own it or be able to decide on it."""

        async def work(repo: LeaveRepository) -> LeaveRequestOut:
            leave_request = await repo.get_request(request_id)
            if leave_request is None:
                raise RequestNotFoundError(request_id)
            if viewer_id is not None and viewer_id != leave_request.employee_id:
                if not await self.authority.can_decide(
                    repo.session, viewer_id, leave_request.employee_id,
                ):
                    raise UnauthorizedError("You are not allowed to view this leave request.")
            return LeaveRequestOut.model_validate(leave_request)

        return await self._run("lookup", work)

    async def list_for_employee(
        self,
        employee_id: uuid.UUID,
        statuses: Optional[Iterable[LeaveStatus]] = None,
        *,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> LeaveRequestPage:
        """An employee's requests, newest first, one page at a time."""
        status_filter = list(statuses) if statuses is not None else None

        async def work(repo: LeaveRepository) -> LeaveRequestPage:
            rows, total = await repo.page_requests(
                employee_id,
                statuses=status_filter,
                offset=(page - 1) * page_size,
                limit=page_size,
            )
            return LeaveRequestPage(
                data=[LeaveRequestOut.model_validate(r) for r in rows],
                meta=PaginationMeta.build(page=page, page_size=page_size, total=total),
            )

        return await self._run("listing", work)

    async def list_pending_for_approver(
        self,
        approver_id: uuid.UUID,
        *,
        include_all: bool = False,
    ) -> list[LeaveRequestOut]:
        """Pending requests of the approver's direct reports (or of everyone, for HR)."""

        async def work(repo: LeaveRepository) -> list[LeaveRequestOut]:
            rows = await repo.pending_for_approver(approver_id, include_all=include_all)
            return [LeaveRequestOut.model_validate(r) for r in rows]

        return await self._run("approval queue", work)

    async def get_balances(
        self,
        employee_id: uuid.UUID,
        year: Optional[int] = None,
    ) -> list[LeaveBalanceOut]:
        target_year = year or self._today().year

        async def work(repo: LeaveRepository) -> list[LeaveBalanceOut]:
            balances = await repo.list_balances(employee_id, target_year)
            return [_balance_out(b) for b in balances]

        return await self._run("balance lookup", work)


_DECISION_ACTIONS = {
    LeaveStatus.approved: "approve",
    LeaveStatus.rejected: "reject",
    LeaveStatus.cancelled: "cancel",
}


def _balance_out(balance: LeaveBalance) -> LeaveBalanceOut:
    snapshot: BalanceSnapshot = balance.snapshot()
    out = LeaveBalanceOut.model_validate(balance)
    out.total_days = snapshot.total
    out.remaining_days = snapshot.remaining
    return out

"""Leave balance ledger: pure accounting, no I/O.

A balance is a (total, used, pending) triple per employee, category and
year. Accrual categories always have a finite ``total``; non-accrual
categories are unbounded and any stored total is ignored.

Workflow transitions never touch the numbers directly: they produce a
``BalanceEvent`` and the new balance is ``apply_event(old, event)``.

    reserve   (submitted)             pending += days
    commit    (approved)              pending -= days, used += days
    release   (rejected, cancelled)   pending -= days
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from hr_records.common.constants import LeaveCategory
from hr_records.leave.exceptions import InsufficientBalanceError, LedgerInvariantError

ZERO = Decimal("0")


# ═════════════════════════════════════════════════════════════════════
# Snapshot
# ═════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class BalanceSnapshot:
    """Immutable view of one balance row."""

    total: Optional[Decimal]
    used: Decimal = ZERO
    pending: Decimal = ZERO

    @classmethod
    def unbounded(cls, used: Decimal = ZERO, pending: Decimal = ZERO) -> "BalanceSnapshot":
        return cls(total=None, used=used, pending=pending)

    @property
    def is_unbounded(self) -> bool:
        return self.total is None

    @property
    def remaining(self) -> Optional[Decimal]:
        """Days still available for new requests; ``None`` when unbounded."""
        if self.total is None:
            return None
        return self.total - self.used - self.pending

    def violations(self) -> list[str]:
        """Human-readable list of broken invariants (empty when consistent)."""
        problems: list[str] = []
        if self.used < ZERO:
            problems.append(f"used is negative ({self.used})")
        if self.pending < ZERO:
            problems.append(f"pending is negative ({self.pending})")
        if self.total is not None and self.used + self.pending > self.total:
            problems.append(
                f"used + pending ({self.used + self.pending}) exceeds total ({self.total})"
            )
        return problems

    @property
    def is_consistent(self) -> bool:
        return not self.violations()


# ═════════════════════════════════════════════════════════════════════
# Events
# ═════════════════════════════════════════════════════════════════════


class BalanceEventKind(str, enum.Enum):
    reserve = "reserve"
    commit = "commit"
    release = "release"


@dataclass(frozen=True)
class BalanceEvent:
    kind: BalanceEventKind
    days: Decimal

    def __post_init__(self) -> None:
        if self.days <= ZERO:
            raise ValueError(f"Balance events move a positive number of days, got {self.days}")

    @classmethod
    def reserve(cls, days: Decimal) -> "BalanceEvent":
        return cls(BalanceEventKind.reserve, days)

    @classmethod
    def commit(cls, days: Decimal) -> "BalanceEvent":
        return cls(BalanceEventKind.commit, days)

    @classmethod
    def release(cls, days: Decimal) -> "BalanceEvent":
        return cls(BalanceEventKind.release, days)


def apply_event(
    snapshot: BalanceSnapshot,
    event: BalanceEvent,
    *,
    category: LeaveCategory = LeaveCategory.annual,
) -> BalanceSnapshot:
    """Return the balance after *event*; never mutates *snapshot*.

    Raises ``InsufficientBalanceError`` when a reservation exceeds the
    remaining capacity and ``LedgerInvariantError`` when a commit or release
    moves more days than are pending, or when an accrual balance has no total.
    """
    if not category.is_accrual:
        snapshot = BalanceSnapshot.unbounded(used=snapshot.used, pending=snapshot.pending)
    elif snapshot.is_unbounded:
        raise LedgerInvariantError(
            f"{category.value.capitalize()} balance has no total allocation."
        )

    if event.kind is BalanceEventKind.reserve:
        remaining = snapshot.remaining
        if remaining is not None and event.days > remaining:
            raise InsufficientBalanceError(category, event.days, remaining)
        result = BalanceSnapshot(
            total=snapshot.total,
            used=snapshot.used,
            pending=snapshot.pending + event.days,
        )
    elif event.kind is BalanceEventKind.commit:
        _require_pending(snapshot, event)
        result = BalanceSnapshot(
            total=snapshot.total,
            used=snapshot.used + event.days,
            pending=snapshot.pending - event.days,
        )
    elif event.kind is BalanceEventKind.release:
        _require_pending(snapshot, event)
        result = BalanceSnapshot(
            total=snapshot.total,
            used=snapshot.used,
            pending=snapshot.pending - event.days,
        )
    else:
        raise TypeError(f"Unhandled balance event kind: {event.kind!r}")

    problems = result.violations()
    if problems:
        raise LedgerInvariantError("; ".join(problems))
    return result


def _require_pending(snapshot: BalanceSnapshot, event: BalanceEvent) -> None:
    if event.days > snapshot.pending:
        raise LedgerInvariantError(
            f"Cannot {event.kind.value} {event.days} day(s): "
            f"only {snapshot.pending} pending."
        )


# ═════════════════════════════════════════════════════════════════════
# Authorizer
# ═════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Authorization:
    """Outcome of a sufficiency check."""

    sufficient: bool
    requested: Decimal
    remaining: Optional[Decimal]

    def raise_if_insufficient(self, category: LeaveCategory) -> None:
        if not self.sufficient:
            raise InsufficientBalanceError(
                category, self.requested, self.remaining or ZERO,
            )


def authorize(
    category: LeaveCategory,
    snapshot: Optional[BalanceSnapshot],
    requested: Decimal,
) -> Authorization:
    """Decide whether *requested* days fit in the balance.

    Non-accrual categories are always sufficient. For accrual categories a
    missing balance row, or one without a total, counts as a zero allocation.
    """
    if not category.is_accrual:
        return Authorization(sufficient=True, requested=requested, remaining=None)

    if snapshot is None:
        return Authorization(sufficient=False, requested=requested, remaining=ZERO)

    remaining = snapshot.remaining
    if remaining is None:
        return Authorization(sufficient=False, requested=requested, remaining=ZERO)
    return Authorization(
        sufficient=remaining >= requested,
        requested=requested,
        remaining=remaining,
    )

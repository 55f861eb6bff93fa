"""Shared test fixtures: async DB, client, workflow, auth helpers, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL. SQLite
ignores ``FOR UPDATE``; lock ordering itself is exercised on PostgreSQL only.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from hr_records.common.constants import LeaveCategory, UserRole
from hr_records.config import settings
from hr_records.database import Base, get_db
from hr_records.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
import hr_records.auth.models  # noqa: F401
import hr_records.common.audit  # noqa: F401
import hr_records.employees.models  # noqa: F401
import hr_records.leave.models  # noqa: F401

from hr_records.auth.models import RoleAssignment
from hr_records.employees.models import Employee
from hr_records.leave.models import LeaveBalance, LeaveRequest
from hr_records.leave.router import get_leave_workflow
from hr_records.leave.workflow import LeaveWorkflow

# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)

# Fixed "now" for every workflow under test
NOW = datetime(2026, 10, 16, 9, 0, tzinfo=timezone.utc)
TODAY = NOW.date()
YEAR = TODAY.year


def fixed_clock() -> datetime:
    return NOW


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from hr_records.common.rate_limit import limiter

    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def make_workflow(**kwargs) -> LeaveWorkflow:
    """LeaveWorkflow bound to the test database and the fixed clock."""
    kwargs.setdefault("clock", fixed_clock)
    return LeaveWorkflow(TestSessionFactory, **kwargs)


def _override_workflow() -> LeaveWorkflow:
    return make_workflow()


@pytest.fixture
def workflow() -> LeaveWorkflow:
    return make_workflow()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB and workflow dependencies overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    application.dependency_overrides[get_leave_workflow] = _override_workflow
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Model factories ─────────────────────────────────────────────────

def _make_employee(
    *,
    first_name: str = "Test",
    last_name: str = "User",
    reporting_manager_id: Optional[uuid.UUID] = None,
    is_active: bool = True,
) -> dict:
    code = uuid.uuid4().hex[:6].upper()
    return dict(
        id=uuid.uuid4(),
        employee_code=f"EMP-{code}",
        first_name=first_name,
        last_name=last_name,
        email=f"{first_name.lower()}.{code.lower()}@example.com",
        reporting_manager_id=reporting_manager_id,
        is_active=is_active,
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )


async def seed_employee(**kwargs) -> Employee:
    """Insert and commit an employee."""
    employee = Employee(**_make_employee(**kwargs))
    async with TestSessionFactory() as session:
        session.add(employee)
        await session.commit()
    return employee


async def seed_balance(
    employee_id: uuid.UUID,
    category: LeaveCategory = LeaveCategory.annual,
    total: Optional[Decimal | int | str] = 10,
    *,
    used: Decimal | int | str = 0,
    pending: Decimal | int | str = 0,
    year: int = YEAR,
) -> LeaveBalance:
    """Insert and commit a balance row (``total=None`` for unbounded)."""
    balance = LeaveBalance(
        id=uuid.uuid4(),
        employee_id=employee_id,
        category=category,
        year=year,
        total_days=Decimal(str(total)) if total is not None else None,
        used_days=Decimal(str(used)),
        pending_days=Decimal(str(pending)),
    )
    async with TestSessionFactory() as session:
        session.add(balance)
        await session.commit()
    return balance


async def grant_role(employee_id: uuid.UUID, role: UserRole) -> None:
    async with TestSessionFactory() as session:
        session.add(RoleAssignment(employee_id=employee_id, role=role))
        await session.commit()


async def fetch_balance(
    employee_id: uuid.UUID,
    category: LeaveCategory = LeaveCategory.annual,
    year: int = YEAR,
) -> Optional[LeaveBalance]:
    """Read the committed balance row in a fresh session."""
    async with TestSessionFactory() as session:
        result = await session.execute(
            select(LeaveBalance).where(
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.category == category,
                LeaveBalance.year == year,
            )
        )
        return result.scalars().first()


async def corrupt_pending_days(
    employee_id: uuid.UUID,
    category: LeaveCategory = LeaveCategory.annual,
    pending: Decimal | int | str = 0,
    year: int = YEAR,
) -> None:
    """Overwrite a balance's pending days behind the workflow's back."""
    async with TestSessionFactory() as session:
        await session.execute(
            update(LeaveBalance)
            .where(
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.category == category,
                LeaveBalance.year == year,
            )
            .values(pending_days=Decimal(str(pending)))
        )
        await session.commit()


async def fetch_request(request_id: uuid.UUID) -> Optional[LeaveRequest]:
    async with TestSessionFactory() as session:
        return await session.get(LeaveRequest, request_id)


async def count_requests(employee_id: uuid.UUID) -> int:
    async with TestSessionFactory() as session:
        result = await session.execute(
            select(func.count()).select_from(LeaveRequest).where(
                LeaveRequest.employee_id == employee_id,
            )
        )
        return result.scalar_one()


def days_ahead(n: int) -> date:
    return TODAY + timedelta(days=n)


@pytest.fixture
async def manager() -> Employee:
    return await seed_employee(first_name="Maya", last_name="Manager")


@pytest.fixture
async def employee(manager) -> Employee:
    """An active employee reporting to ``manager`` with 10 annual days."""
    emp = await seed_employee(
        first_name="Eli", last_name="Employee", reporting_manager_id=manager.id,
    )
    await seed_balance(emp.id, LeaveCategory.annual, 10)
    return emp


@pytest.fixture
async def outsider() -> Employee:
    """An employee with no reporting relationship to ``employee``."""
    return await seed_employee(first_name="Olga", last_name="Outsider")


@pytest.fixture
async def hr_admin() -> Employee:
    emp = await seed_employee(first_name="Hana", last_name="Hr")
    await grant_role(emp.id, UserRole.hr_admin)
    return emp


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    employee_id: uuid.UUID,
    role: UserRole = UserRole.employee,
    expired: bool = False,
) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRY_HOURS)
    payload = {
        "sub": str(employee_id),
        "role": role.value,
        "type": "access",
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers(employee_id: uuid.UUID, role: UserRole = UserRole.employee) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(employee_id, role)}"}

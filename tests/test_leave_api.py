"""API tests for /api/v1/leave: status codes, RFC 7807 bodies, role checks."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import exc as sa_exc

from hr_records.common.constants import LeaveCategory, UserRole
from hr_records.leave.repository import LeaveRepository
from hr_records.leave.router import get_leave_workflow
from tests.conftest import (
    auth_headers,
    corrupt_pending_days,
    create_access_token,
    fetch_balance,
    make_workflow,
)

BASE = "/api/v1/leave"


def _body(start: date, end: date, category: str = "annual", **extra) -> dict:
    return {
        "category": category,
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        **extra,
    }


async def _submit(client: AsyncClient, employee_id, start, end, role=UserRole.employee, **extra):
    return await client.post(
        f"{BASE}/requests",
        json=_body(start, end, **extra),
        headers=auth_headers(employee_id, role),
    )


class _UnreachableDatabase(LeaveRepository):
    async def lock_employee(self, *args, **kwargs):
        raise sa_exc.OperationalError("SELECT", {}, Exception("could not connect to server"))


# ═════════════════════════════════════════════════════════════════════
# HEALTH / AUTH
# ═════════════════════════════════════════════════════════════════════


class TestHealthAndAuth:

    async def test_health(self, client: AsyncClient):
        resp = await client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    async def test_missing_token(self, client: AsyncClient):
        resp = await client.get(f"{BASE}/my-requests")
        assert resp.status_code == 401

    async def test_expired_token(self, client: AsyncClient, employee):
        token = create_access_token(employee.id, expired=True)
        resp = await client.get(
            f"{BASE}/my-requests", headers={"Authorization": f"Bearer {token}"},
        )
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Token has expired."

    async def test_unknown_employee_token(self, client: AsyncClient):
        resp = await client.get(f"{BASE}/my-requests", headers=auth_headers(uuid.uuid4()))
        assert resp.status_code == 401


# ═════════════════════════════════════════════════════════════════════
# SUBMIT
# ═════════════════════════════════════════════════════════════════════


class TestSubmitEndpoint:

    async def test_submit(self, client: AsyncClient, employee):
        resp = await _submit(
            client, employee.id, date(2026, 11, 2), date(2026, 11, 4), reason="Wedding",
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["status"] == "pending"
        assert data["category"] == "annual"
        assert Decimal(str(data["total_days"])) == Decimal(3)
        assert data["employee_id"] == str(employee.id)

        bal = await fetch_balance(employee.id)
        assert bal.pending_days == Decimal(3)

    async def test_past_date_problem_detail(self, client: AsyncClient, employee):
        resp = await _submit(client, employee.id, date(2026, 10, 1), date(2026, 10, 2))
        assert resp.status_code == 422
        assert resp.headers["content-type"].startswith("application/problem+json")
        data = resp.json()
        assert data["kind"] == "past-date"
        assert data["retryable"] is False
        assert data["type"].endswith("/past-date")
        assert "start_date" in data["errors"]

    async def test_backfill_requires_hr_role(self, client: AsyncClient, employee):
        resp = await _submit(
            client, employee.id, date(2026, 10, 1), date(2026, 10, 2), backfill=True,
        )
        assert resp.status_code == 403
        assert resp.json()["kind"] == "unauthorized"

    async def test_backfill_by_hr(self, client: AsyncClient, hr_admin):
        resp = await _submit(
            client, hr_admin.id, date(2026, 10, 1), date(2026, 10, 2),
            role=UserRole.hr_admin, category="unpaid", backfill=True,
        )
        assert resp.status_code == 201
        assert resp.json()["is_backfill"] is True

    async def test_overlap(self, client: AsyncClient, employee):
        await _submit(client, employee.id, date(2026, 11, 10), date(2026, 11, 14))
        resp = await _submit(client, employee.id, date(2026, 11, 12), date(2026, 11, 16))
        assert resp.status_code == 422
        assert resp.json()["kind"] == "overlapping-request"

    async def test_insufficient_balance(self, client: AsyncClient, employee):
        resp = await _submit(client, employee.id, date(2026, 11, 1), date(2026, 11, 30))
        assert resp.status_code == 422
        assert resp.json()["kind"] == "insufficient-balance"

    async def test_unknown_category(self, client: AsyncClient, employee):
        resp = await _submit(
            client, employee.id, date(2026, 11, 2), date(2026, 11, 2), category="sabbatical",
        )
        assert resp.status_code == 422
        assert resp.json()["kind"] == "validation-error"

    async def test_storage_unavailable(self, app, client: AsyncClient, employee):
        app.dependency_overrides[get_leave_workflow] = lambda: make_workflow(
            repository_factory=_UnreachableDatabase,
        )
        resp = await _submit(client, employee.id, date(2026, 11, 2), date(2026, 11, 2))
        assert resp.status_code == 503
        assert resp.headers["retry-after"] == "1"
        data = resp.json()
        assert data["kind"] == "storage-unavailable"
        assert data["retryable"] is True

    async def test_rate_limited(self, client: AsyncClient, employee):
        # Past dates fail fast without touching balances
        for _ in range(20):
            resp = await _submit(client, employee.id, date(2026, 1, 5), date(2026, 1, 5))
            assert resp.status_code == 422
        resp = await _submit(client, employee.id, date(2026, 1, 5), date(2026, 1, 5))
        assert resp.status_code == 429


# ═════════════════════════════════════════════════════════════════════
# DECISIONS
# ═════════════════════════════════════════════════════════════════════


class TestDecisionEndpoints:

    @pytest.fixture
    async def pending_id(self, client: AsyncClient, employee) -> str:
        resp = await _submit(client, employee.id, date(2026, 11, 2), date(2026, 11, 3))
        return resp.json()["id"]

    async def test_approve(self, client: AsyncClient, employee, manager, pending_id):
        resp = await client.put(
            f"{BASE}/requests/{pending_id}/approve",
            headers=auth_headers(manager.id, UserRole.manager),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "approved"
        assert resp.json()["approver_id"] == str(manager.id)

        bal = await fetch_balance(employee.id)
        assert (bal.used_days, bal.pending_days) == (Decimal(2), Decimal(0))

    async def test_approve_twice(self, client: AsyncClient, manager, pending_id):
        headers = auth_headers(manager.id, UserRole.manager)
        await client.put(f"{BASE}/requests/{pending_id}/approve", headers=headers)
        resp = await client.put(f"{BASE}/requests/{pending_id}/approve", headers=headers)
        assert resp.status_code == 409
        assert resp.json()["kind"] == "invalid-transition"
        assert resp.json()["retryable"] is False

    async def test_employee_role_cannot_approve(self, client: AsyncClient, manager, pending_id):
        resp = await client.put(
            f"{BASE}/requests/{pending_id}/approve",
            headers=auth_headers(manager.id, UserRole.employee),
        )
        assert resp.status_code == 403
        assert resp.json()["kind"] == "forbidden"

    async def test_manager_of_someone_else(self, client: AsyncClient, outsider, pending_id):
        resp = await client.put(
            f"{BASE}/requests/{pending_id}/approve",
            headers=auth_headers(outsider.id, UserRole.manager),
        )
        assert resp.status_code == 403
        assert resp.json()["kind"] == "unauthorized"

    async def test_corrupt_balance_problem(self, client: AsyncClient, employee, manager, pending_id):
        await corrupt_pending_days(employee.id, pending=0)
        resp = await client.put(
            f"{BASE}/requests/{pending_id}/approve",
            headers=auth_headers(manager.id, UserRole.manager),
        )
        assert resp.status_code == 500
        assert resp.headers["content-type"].startswith("application/problem+json")
        assert resp.json()["kind"] == "ledger-invariant"
        assert resp.json()["retryable"] is False
        assert "retry-after" not in resp.headers

    async def test_approve_unknown(self, client: AsyncClient, manager):
        resp = await client.put(
            f"{BASE}/requests/{uuid.uuid4()}/approve",
            headers=auth_headers(manager.id, UserRole.manager),
        )
        assert resp.status_code == 404
        assert resp.json()["kind"] == "request-not-found"

    async def test_reject(self, client: AsyncClient, employee, manager, pending_id):
        resp = await client.put(
            f"{BASE}/requests/{pending_id}/reject",
            json={"reason": "Audit week"},
            headers=auth_headers(manager.id, UserRole.manager),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "rejected"
        assert resp.json()["rejection_reason"] == "Audit week"
        assert (await fetch_balance(employee.id)).pending_days == Decimal(0)

    async def test_reject_blank_reason(self, client: AsyncClient, manager, pending_id):
        resp = await client.put(
            f"{BASE}/requests/{pending_id}/reject",
            json={"reason": "  "},
            headers=auth_headers(manager.id, UserRole.manager),
        )
        assert resp.status_code == 422
        assert resp.json()["kind"] == "invalid-reason"

    async def test_cancel_own(self, client: AsyncClient, employee, pending_id):
        resp = await client.put(
            f"{BASE}/requests/{pending_id}/cancel", headers=auth_headers(employee.id),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"

    async def test_cancel_someone_elses(self, client: AsyncClient, manager, pending_id):
        resp = await client.put(
            f"{BASE}/requests/{pending_id}/cancel",
            headers=auth_headers(manager.id, UserRole.manager),
        )
        assert resp.status_code == 403


# ═════════════════════════════════════════════════════════════════════
# QUERIES
# ═════════════════════════════════════════════════════════════════════


class TestQueryEndpoints:

    async def test_get_request(self, client: AsyncClient, employee, outsider):
        created = (await _submit(client, employee.id, date(2026, 11, 2), date(2026, 11, 3))).json()

        resp = await client.get(
            f"{BASE}/requests/{created['id']}", headers=auth_headers(employee.id),
        )
        assert resp.status_code == 200
        assert resp.json()["id"] == created["id"]

        resp = await client.get(
            f"{BASE}/requests/{created['id']}", headers=auth_headers(outsider.id),
        )
        assert resp.status_code == 403

    async def test_my_requests(self, client: AsyncClient, employee):
        for day in (2, 4, 6):
            await _submit(client, employee.id, date(2026, 11, day), date(2026, 11, day))

        resp = await client.get(
            f"{BASE}/my-requests",
            params={"page": 1, "page_size": 2, "status": "pending"},
            headers=auth_headers(employee.id),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert len(data["data"]) == 2
        assert data["meta"]["total"] == 3
        assert data["meta"]["has_next"] is True

    async def test_team_requests(self, client: AsyncClient, employee, manager):
        created = (await _submit(client, employee.id, date(2026, 11, 2), date(2026, 11, 3))).json()

        resp = await client.get(
            f"{BASE}/team-requests", headers=auth_headers(manager.id, UserRole.manager),
        )
        assert resp.status_code == 200
        assert [r["id"] for r in resp.json()] == [created["id"]]

        resp = await client.get(f"{BASE}/team-requests", headers=auth_headers(employee.id))
        assert resp.status_code == 403

    async def test_balances(self, client: AsyncClient, employee):
        await _submit(client, employee.id, date(2026, 11, 2), date(2026, 11, 3))

        resp = await client.get(
            f"{BASE}/balances", params={"year": 2026}, headers=auth_headers(employee.id),
        )
        assert resp.status_code == 200
        [annual] = resp.json()
        assert annual["category"] == LeaveCategory.annual.value
        assert Decimal(str(annual["remaining_days"])) == Decimal(8)

"""API tests for /api/v1/approvals/rules (ADMIN rule administration).

The session dependency is a MagicMock standing in for the database, and
the caller identity is overridden with a fixed principal.
"""
import uuid
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from httpx import AsyncClient, ASGITransport

from app.core.deps import get_current_principal, get_workflow
from app.db.session import get_session
from app.main import app
from app.models.approval_rule import ApprovalRule as ApprovalRuleRow
from app.models.audit import AuditLog
from app.services.stores import rule_from_row

from fakes import COMPANY_ID, T0, Harness, principal


VALID_RULE = {
    "name": "Travel over 1000",
    "priority": 10,
    "amount_threshold": "1000",
    "categories": ["travel"],
    "approvers": ["U1", "U2"],
    "escalation_chain": ["M1"],
    "time_window_minutes": 1440,
}


def _rule_row(**overrides) -> ApprovalRuleRow:
    values = dict(
        id=uuid.uuid4(),
        company_id=COMPANY_ID,
        name="Over 1000",
        description=None,
        is_active=True,
        priority=10,
        created_by="admin-1",
        amount_threshold=Decimal("1000.00"),
        categories=[],
        vendors=[],
        time_window_minutes=None,
        user_roles=[],
        requires_approval=True,
        auto_approve=False,
        approvers=["U1"],
        escalation_chain=[],
        notify_on_submission=True,
        notify_on_approval=True,
        notify_on_rejection=True,
        reminder_interval_minutes=None,
        created_at=T0,
        updated_at=T0,
    )
    values.update(overrides)
    return ApprovalRuleRow(**values)


def _session(found: ApprovalRuleRow | None = None) -> MagicMock:
    db = MagicMock()

    def add(obj):
        # What flush would fill in
        if getattr(obj, "id", None) is None:
            obj.id = uuid.uuid4()
        if getattr(obj, "created_at", None) is None:
            obj.created_at = T0
        if getattr(obj, "updated_at", None) is None:
            obj.updated_at = T0

    db.add.side_effect = add
    db.execute.return_value.scalars.return_value.first.return_value = found
    db.execute.return_value.scalars.return_value.all.return_value = [found] if found else []
    return db


def _added(db: MagicMock, kind: type) -> list:
    return [c.args[0] for c in db.add.call_args_list if isinstance(c.args[0], kind)]


def _override(db: MagicMock, user_id: str = "admin-1", role: str = "ADMIN"):
    async def _principal():
        return principal(user_id, role=role)

    app.dependency_overrides[get_current_principal] = _principal
    app.dependency_overrides[get_session] = lambda: db


@pytest.fixture(autouse=True)
def clear_overrides():
    yield
    app.dependency_overrides.clear()


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


# ─── Create ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_rule_scopes_to_company_and_audits():
    db = _session()
    _override(db)

    async with _client() as client:
        response = await client.post("/api/v1/approvals/rules", json=VALID_RULE)

    assert response.status_code == 201
    body = response.json()
    assert body["company_id"] == str(COMPANY_ID)
    assert body["created_by"] == "admin-1"
    assert body["approvers"] == ["U1", "U2"]

    [rule] = _added(db, ApprovalRuleRow)
    assert rule.amount_threshold == Decimal("1000")
    [entry] = _added(db, AuditLog)
    assert entry.action == "approval_rule.created"
    assert entry.entity_id == str(rule.id)
    db.commit.assert_called_once()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"approvers": []},
        {"auto_approve": True, "requires_approval": False},
        {"amount_threshold": "-5"},
        {"name": ""},
    ],
)
async def test_create_rule_rejects_invalid_configuration(overrides):
    db = _session()
    _override(db)

    async with _client() as client:
        response = await client.post("/api/v1/approvals/rules", json={**VALID_RULE, **overrides})

    assert response.status_code == 422
    db.add.assert_not_called()
    db.commit.assert_not_called()


@pytest.mark.asyncio
async def test_auto_approve_rule_needs_no_approvers():
    db = _session()
    _override(db)

    async with _client() as client:
        response = await client.post(
            "/api/v1/approvals/rules",
            json={**VALID_RULE, "approvers": [], "auto_approve": True},
        )

    assert response.status_code == 201
    assert response.json()["auto_approve"] is True


# ─── Update ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_update_rule_applies_partial_changes():
    row = _rule_row()
    db = _session(found=row)
    _override(db)

    async with _client() as client:
        response = await client.put(
            f"/api/v1/approvals/rules/{row.id}",
            json={"priority": 5, "escalation_chain": ["M1"]},
        )

    assert response.status_code == 200
    assert response.json()["priority"] == 5
    assert response.json()["escalation_chain"] == ["M1"]
    assert response.json()["approvers"] == ["U1"]
    [entry] = _added(db, AuditLog)
    assert entry.action == "approval_rule.updated"
    db.commit.assert_called_once()


@pytest.mark.asyncio
async def test_update_rule_revalidates_merged_rule_and_rolls_back():
    row = _rule_row()
    db = _session(found=row)
    _override(db)

    async with _client() as client:
        response = await client.put(f"/api/v1/approvals/rules/{row.id}", json={"approvers": []})

    assert response.status_code == 422
    assert "approvers must not be empty" in response.json()["detail"]
    db.rollback.assert_called_once()
    db.commit.assert_not_called()
    assert _added(db, AuditLog) == []


@pytest.mark.asyncio
async def test_update_unknown_rule_is_404():
    db = _session(found=None)
    _override(db)

    async with _client() as client:
        response = await client.put(f"/api/v1/approvals/rules/{uuid.uuid4()}", json={"priority": 1})

    assert response.status_code == 404
    db.commit.assert_not_called()


# ─── Delete ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_deleted_rule_is_deactivated_and_no_longer_matches():
    row = _rule_row()
    db = _session(found=row)
    _override(db)
    # The workflow sees whatever state the row is in at request time
    app.dependency_overrides[get_workflow] = lambda: Harness(rules=[rule_from_row(row)]).service
    submission = {"amount": "1500", "category": "travel"}

    async with _client() as client:
        before = await client.post("/api/v1/approvals/check", json=submission)
        deleted = await client.delete(f"/api/v1/approvals/rules/{row.id}")
        after = await client.post("/api/v1/approvals/check", json=submission)

    assert before.json()["requires_approval"] is True
    assert deleted.status_code == 204
    assert row.is_active is False
    [entry] = _added(db, AuditLog)
    assert entry.action == "approval_rule.deactivated"
    db.commit.assert_called_once()
    assert after.json()["requires_approval"] is False
    assert after.json()["rule_id"] is None


# ─── Listing and roles ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_list_rules():
    row = _rule_row()
    db = _session(found=row)
    _override(db)

    async with _client() as client:
        response = await client.get("/api/v1/approvals/rules", params={"include_inactive": "true"})

    assert response.status_code == 200
    assert [r["id"] for r in response.json()] == [str(row.id)]


@pytest.mark.asyncio
@pytest.mark.parametrize("role", ["EMPLOYEE", "APPROVER", "MANAGER"])
@pytest.mark.parametrize(
    "method, path_suffix, body",
    [
        ("GET", "", None),
        ("POST", "", VALID_RULE),
        ("PUT", "/{id}", {"priority": 1}),
        ("DELETE", "/{id}", None),
    ],
)
async def test_rule_admin_is_admin_only(role, method, path_suffix, body):
    row = _rule_row()
    db = _session(found=row)
    _override(db, "U1", role)

    async with _client() as client:
        response = await client.request(
            method,
            "/api/v1/approvals/rules" + path_suffix.format(id=row.id),
            json=body,
        )

    assert response.status_code == 403
    db.add.assert_not_called()
    db.commit.assert_not_called()
    assert row.is_active is True

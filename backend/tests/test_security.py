"""Security tests: bearer token decoding, role enforcement and tenant isolation."""
from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient, ASGITransport
from jose import jwt

from app.core.config import settings
from app.core.deps import get_current_principal, get_workflow
from app.core.security import create_access_token, decode_token
from app.main import app

from fakes import COMPANY_ID, OTHER_COMPANY_ID, Harness, make_rule


@pytest.fixture(autouse=True)
def clear_overrides():
    yield
    app.dependency_overrides.clear()


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


# ─── Tokens ───────────────────────────────────────────────────────────────────

def test_access_token_round_trip_claims():
    token = create_access_token(subject="U1", company_id=COMPANY_ID, role="APPROVER")
    payload = decode_token(token)
    assert payload["sub"] == "U1"
    assert payload["company_id"] == str(COMPANY_ID)
    assert payload["role"] == "APPROVER"
    assert payload["type"] == "access"


@pytest.mark.asyncio
async def test_get_current_principal_builds_typed_identity():
    token = create_access_token(subject="U1", company_id=COMPANY_ID, role="MANAGER")
    p = await get_current_principal(token)
    assert p.id == "U1"
    assert p.company_id == COMPANY_ID
    assert p.role == "MANAGER"


@pytest.mark.asyncio
async def test_real_token_reaches_workflow():
    """A valid bearer token is decoded into the principal the workflow sees."""
    rule = make_rule(approvers=["U1"])
    h = Harness(rules=[rule])
    h.open_request(rule)
    app.dependency_overrides[get_workflow] = lambda: h.service

    token = create_access_token(subject="U1", company_id=COMPANY_ID, role="APPROVER")
    async with _client() as client:
        response = await client.get(
            "/api/v1/approvals/pending", headers={"Authorization": f"Bearer {token}"}
        )

    assert response.status_code == 200
    assert response.json()["total"] == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "claims",
    [
        {"sub": "U1", "company_id": str(COMPANY_ID), "role": "APPROVER", "type": "refresh"},
        {"sub": "U1", "role": "APPROVER", "type": "access"},
        {"sub": "U1", "company_id": "not-a-uuid", "role": "APPROVER", "type": "access"},
        {
            "sub": "U1", "company_id": str(COMPANY_ID), "role": "APPROVER", "type": "access",
            "exp": datetime.now(timezone.utc) - timedelta(minutes=1),
        },
    ],
)
async def test_bad_tokens_are_401(claims):
    app.dependency_overrides[get_workflow] = lambda: Harness().service
    token = jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

    async with _client() as client:
        response = await client.get(
            "/api/v1/approvals/pending", headers={"Authorization": f"Bearer {token}"}
        )

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_token_signed_with_other_secret_is_401():
    app.dependency_overrides[get_workflow] = lambda: Harness().service
    token = jwt.encode(
        {"sub": "U1", "company_id": str(COMPANY_ID), "role": "ADMIN", "type": "access"},
        "not-the-secret",
        algorithm=settings.JWT_ALGORITHM,
    )
    async with _client() as client:
        response = await client.get(
            "/api/v1/approvals/pending", headers={"Authorization": f"Bearer {token}"}
        )
    assert response.status_code == 401


# ─── Roles & tenancy ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_rule_admin_requires_admin_role():
    token = create_access_token(subject="U1", company_id=COMPANY_ID, role="APPROVER")
    async with _client() as client:
        response = await client.get(
            "/api/v1/approvals/rules", headers={"Authorization": f"Bearer {token}"}
        )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_request_of_other_company_is_404():
    rule = make_rule(approvers=["U1"])
    h = Harness(rules=[rule])
    request = h.open_request(rule)
    app.dependency_overrides[get_workflow] = lambda: h.service

    token = create_access_token(subject="U1", company_id=OTHER_COMPANY_ID, role="APPROVER")
    async with _client() as client:
        response = await client.post(
            f"/api/v1/approvals/requests/{request.id}/action",
            json={"action": "approve"},
            headers={"Authorization": f"Bearer {token}"},
        )

    assert response.status_code == 404
    assert h.requests.get(request.id).status.value == "pending"


@pytest.mark.asyncio
async def test_unknown_route_id_format_is_422():
    token = create_access_token(subject="U1", company_id=COMPANY_ID, role="APPROVER")
    app.dependency_overrides[get_workflow] = lambda: Harness().service
    async with _client() as client:
        response = await client.get(
            "/api/v1/approvals/requests/not-a-uuid", headers={"Authorization": f"Bearer {token}"}
        )
    assert response.status_code == 422

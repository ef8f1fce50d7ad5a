"""
tests/test_registration.py
Tests for agent (DMC) self-registration: validation, the pending account,
and the super-admin alerts.
"""

import uuid

import pytest
from fastapi import HTTPException
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from services.registration.workflow import compose_address, create_identity, register_agent
from shared.models.models import (
    ActivityLog,
    ActivityType,
    Agent,
    AgentStatus,
    AuthIdentity,
    Notification,
    PackageStatus,
    PublishStatus,
    User,
    UserRole,
)
from shared.outbox import Outbox
from shared.schemas.schemas import AgentRegistrationRequest
from tests.conftest import auth_headers, make_package, make_user


def registration_payload(**overrides) -> dict:
    payload = {
        "company_name": "Desert Routes Pvt Ltd",
        "business_type": "DMC",
        "gstin_number": "08ABCDE1234F1Z5",
        "pan_number": "ABCDE1234F",
        "registration_number": "RJ-2019-4411",
        "contact_name": "Meera Rathore",
        "contact_email": "Meera@DesertRoutes.in",
        "contact_phone": "9829012345",
        "business_address": "14 Station Road",
        "city": "Jaipur",
        "state": "Rajasthan",
        "pincode": "302006",
        "password": "desert-routes-2024",
        "agreed_to_terms": True,
        "agreed_to_processing": True,
    }
    payload.update(overrides)
    return payload


async def _count(db: AsyncSession, model) -> int:
    return await db.scalar(select(func.count()).select_from(model))


# ── Validation ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
@pytest.mark.parametrize("overrides", [
    {"contact_email": "not-an-email"},
    {"contact_email": "meera@desertroutes"},
    {"agreed_to_terms": False},
    {"agreed_to_processing": False},
    {"company_name": "   "},
    {"gstin_number": ""},
])
async def test_invalid_registration_returns_422_and_writes_nothing(
    client: AsyncClient, db: AsyncSession, admin_user: User, overrides: dict
):
    response = await client.post("/agents/register", json=registration_payload(**overrides))
    assert response.status_code == 422

    assert await _count(db, Agent) == 0
    assert await _count(db, Notification) == 0
    assert await _count(db, ActivityLog) == 0
    # Only the admin fixture's identity
    assert await _count(db, AuthIdentity) == 1


@pytest.mark.asyncio
async def test_missing_required_field_returns_422(client: AsyncClient):
    payload = registration_payload()
    del payload["pan_number"]
    response = await client.post("/agents/register", json=payload)
    assert response.status_code == 422


# ── Success ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_registration_creates_pending_agent_and_alerts_admins(
    client: AsyncClient, db: AsyncSession, admin_user: User
):
    second_admin = await make_user(db, UserRole.SUPER_ADMIN, "ops@example.com", "Ops Admin")
    await make_user(db, UserRole.CUSTOMER, "bystander@example.com")

    response = await client.post("/agents/register", json=registration_payload())
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending"
    assert data["notified_admins"] == 2

    agents = (await db.scalars(select(Agent))).all()
    assert len(agents) == 1
    agent = agents[0]
    assert str(agent.id) == data["agent_id"]
    assert agent.status == AgentStatus.PENDING
    assert agent.license_number == "08ABCDE1234F1Z5"
    assert agent.company_address == "14 Station Road, Jaipur, Rajasthan - 302006"
    assert agent.documents["pan_number"] == "ABCDE1234F"

    user = await db.scalar(select(User).where(User.id == agent.user_id))
    assert user.role == UserRole.AGENT
    assert user.email == "meera@desertroutes.in"

    notifications = (await db.scalars(select(Notification))).all()
    assert {n.recipient_id for n in notifications} == {admin_user.id, second_admin.id}
    for n in notifications:
        assert n.title == "New Agent Registration"
        assert "Desert Routes Pvt Ltd" in n.message
        assert n.related_type == "agent"
        assert n.related_id == str(agent.id)
        assert n.action_url == "/superadmin/agents/approval"

    logs = (await db.scalars(select(ActivityLog))).all()
    assert len(logs) == 1
    assert logs[0].activity_type == ActivityType.REGISTRATION
    assert logs[0].user_id == user.id
    assert logs[0].entity_id == str(agent.id)


@pytest.mark.asyncio
async def test_registered_agent_can_log_in_and_see_pending_profile(client: AsyncClient):
    await client.post("/agents/register", json=registration_payload())
    login = await client.post("/auth/login", json={
        "email": "meera@desertroutes.in", "password": "desert-routes-2024",
    })
    assert login.status_code == 200
    headers = {"Authorization": f"Bearer {login.json()['access_token']}"}

    profile = await client.get("/agents/me", headers=headers)
    assert profile.status_code == 200
    assert profile.json()["status"] == "pending"

    # Pending agents cannot manage packages yet
    packages = await client.get("/packages/mine", headers=headers)
    assert packages.status_code == 403
    assert packages.json()["detail"]["status"] == "pending"


@pytest.mark.asyncio
async def test_registration_without_admins_notifies_nobody(client: AsyncClient, db: AsyncSession):
    response = await client.post("/agents/register", json=registration_payload())
    assert response.status_code == 201
    assert response.json()["notified_admins"] == 0
    assert await _count(db, Notification) == 0


@pytest.mark.asyncio
async def test_duplicate_email_returns_409(client: AsyncClient, db: AsyncSession, admin_user: User):
    first = await client.post("/agents/register", json=registration_payload())
    assert first.status_code == 201

    again = await client.post(
        "/agents/register",
        json=registration_payload(company_name="Another Co", contact_email="MEERA@desertroutes.in"),
    )
    assert again.status_code == 409
    assert await _count(db, Agent) == 1
    assert await _count(db, Notification) == 1


# ── Helpers ────────────────────────────────────────────────────────────────────

def test_compose_address_skips_missing_parts():
    data = AgentRegistrationRequest(**registration_payload(city=None, state=None, pincode=None))
    assert compose_address(data) == "14 Station Road"

    data = AgentRegistrationRequest(**registration_payload(state=None))
    assert compose_address(data) == "14 Station Road, Jaipur - 302006"


@pytest.mark.asyncio
async def test_failure_after_identity_leaves_no_rows(
    db: AsyncSession, session_factory, admin_user: User, monkeypatch
):
    """A step failing late in the sequence rolls back the identity, user and agent."""
    def unavailable(*args, **kwargs):
        raise RuntimeError("notification store unavailable")

    monkeypatch.setattr(Outbox, "notify", unavailable)
    data = AgentRegistrationRequest(**registration_payload())

    async with session_factory() as session:
        with pytest.raises(RuntimeError):
            await register_agent(session, data, Outbox())
        await session.rollback()

    assert await _count(db, Agent) == 0
    assert await _count(db, AuthIdentity) == 1
    assert await db.scalar(select(func.count(User.id)).where(User.role == UserRole.AGENT)) == 0


@pytest.mark.asyncio
async def test_identity_inserted_concurrently_returns_409(session_factory):
    """The unique index still answers 409 when the existence check missed the other insert."""
    async with session_factory() as session:
        # Pending and unflushed, so the count query cannot see it
        session.add(AuthIdentity(email="race@example.com", password_hash="x"))
        with pytest.raises(HTTPException) as exc:
            await create_identity(session, "race@example.com", "desert-routes-2024")
        assert exc.value.status_code == 409
        await session.rollback()


# ── Agent Profile ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_agent_updates_company_details(client: AsyncClient, agent_user: User, agent: Agent):
    response = await client.put(
        "/agents/me",
        json={"company_name": "Himalayan Trails & Treks", "status": "approved"},
        headers=auth_headers(agent_user),
    )
    assert response.status_code == 200
    data = response.json()
    assert data["company_name"] == "Himalayan Trails & Treks"
    assert data["subscription_plan"] == "trial"


@pytest.mark.asyncio
async def test_customer_has_no_agent_profile(client: AsyncClient, user: User):
    response = await client.get("/agents/me", headers=auth_headers(user))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_public_agent_page_lists_live_packages(client: AsyncClient, db: AsyncSession, agent: Agent):
    live = await make_package(db, agent, title="Rajasthan Forts")
    await make_package(db, agent, title="Draft Trek", status=PackageStatus.DRAFT,
                       publish_status=PublishStatus.DRAFT)
    await make_package(db, agent, title="Hidden Lakes", publish_status=PublishStatus.UNPUBLISHED)

    response = await client.get(f"/agents/{agent.id}")
    assert response.status_code == 200
    data = response.json()
    assert data["company_name"] == "Himalayan Trails"
    assert "documents" not in data
    assert [p["id"] for p in data["packages"]] == [str(live.id)]
    assert data["packages"][0]["agent_name"] == "Himalayan Trails"


@pytest.mark.asyncio
async def test_public_agent_page_hides_unapproved_agents(client: AsyncClient, pending_agent: Agent):
    assert (await client.get(f"/agents/{pending_agent.id}")).status_code == 404
    assert (await client.get(f"/agents/{uuid.uuid4()}")).status_code == 404

"""
services/registration/workflow.py
Turns a validated agent registration into a pending Agent account and
alerts every super-admin.

All rows are written inside the caller's transaction, so a failure at
any step leaves nothing behind.
"""

import logging
from dataclasses import dataclass

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import (
    ActivityType,
    Agent,
    AgentStatus,
    AuthIdentity,
    User,
    UserRole,
)
from shared.outbox import Outbox
from shared.schemas.schemas import AgentRegistrationRequest
from shared.utils.security import generate_temporary_password, hash_password

logger = logging.getLogger(__name__)

APPROVAL_QUEUE_URL = "/superadmin/agents/approval"


def _email_taken() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail="An account with this email already exists",
    )


@dataclass
class RegistrationResult:
    user: User
    agent: Agent
    notified_admins: int


async def create_identity(db: AsyncSession, email: str, password: str) -> AuthIdentity:
    """
    Add a login identity for a lower-cased email, or raise 409 if one exists.
    A concurrent request that wins the race surfaces as a unique violation
    on flush and gets the same 409.
    """
    existing = await db.scalar(
        select(func.count(AuthIdentity.id)).where(func.lower(AuthIdentity.email) == email)
    )
    if existing:
        raise _email_taken()

    identity = AuthIdentity(email=email, password_hash=hash_password(password))
    db.add(identity)
    try:
        await db.flush()
    except IntegrityError:
        logger.info(f"Identity for {email} created concurrently")
        raise _email_taken()
    return identity


def compose_address(data: AgentRegistrationRequest) -> str:
    """'address, city, state - pincode', skipping the parts that were not given."""
    address = ", ".join(p for p in (data.business_address, data.city, data.state) if p)
    if data.pincode:
        address = f"{address} - {data.pincode}"
    return address


async def register_agent(
    db: AsyncSession,
    data: AgentRegistrationRequest,
    outbox: Outbox,
) -> RegistrationResult:
    email = data.contact_email

    # 1. Authentication identity
    identity = await create_identity(db, email, data.password or generate_temporary_password())

    # 2. User
    user = User(
        identity_id=identity.id,
        email=email,
        name=data.contact_name,
        phone=data.contact_phone,
        role=UserRole.AGENT,
    )
    db.add(user)
    await db.flush()

    # 3. Agent, awaiting approval
    agent = Agent(
        user_id=user.id,
        company_name=data.company_name,
        company_address=compose_address(data),
        license_number=data.gstin_number,
        business_type=data.business_type,
        status=AgentStatus.PENDING,
        documents={
            "pan_number": data.pan_number,
            "gstin_number": data.gstin_number,
            "registration_number": data.registration_number,
        },
    )
    db.add(agent)
    await db.flush()

    # 4. Audit trail; from here on the new user is the actor
    outbox.actor_id = user.id
    outbox.log_activity(
        ActivityType.REGISTRATION,
        f"New agent registration: {data.company_name}",
        entity_type="agent",
        entity_id=agent.id,
        metadata={
            "user_type": UserRole.AGENT.value,
            "company_name": data.company_name,
            "business_type": data.business_type,
        },
    )

    # 5. Alert every super-admin
    admin_ids = (
        await db.scalars(select(User.id).where(User.role == UserRole.SUPER_ADMIN))
    ).all()
    for admin_id in admin_ids:
        outbox.notify(
            admin_id,
            "New Agent Registration",
            f"New agent registration from {data.company_name} is pending approval.",
            related_type="agent",
            related_id=agent.id,
            action_url=APPROVAL_QUEUE_URL,
        )

    logger.info(f"Agent registration {agent.id} ({data.company_name}) queued for {len(admin_ids)} admins")
    return RegistrationResult(user=user, agent=agent, notified_admins=len(admin_ids))

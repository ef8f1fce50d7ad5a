"""
services/agent/router.py
Agent self-service (profile and approval status) and the public agency page.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_current_agent
from shared.models.models import Agent, AgentStatus, Package, PackageStatus, PublishStatus
from shared.schemas.schemas import (
    AgentPublicProfile,
    AgentResponse,
    AgentUpdateRequest,
    PackageResponse,
)

router = APIRouter(prefix="/agents", tags=["Agents"])


@router.get("/me", response_model=AgentResponse)
async def get_my_agent_profile(agent: Agent = Depends(get_current_agent)):
    """Own agent profile. Available in every status so pending agents can track approval."""
    return AgentResponse.model_validate(agent)


@router.put("/me", response_model=AgentResponse)
async def update_my_agent_profile(
    data: AgentUpdateRequest,
    agent: Agent = Depends(get_current_agent),
    db: AsyncSession = Depends(get_db),
):
    """Update company details. Status and plan only change through moderation."""
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(agent, field, value)
    await db.commit()
    await db.refresh(agent)
    return AgentResponse.model_validate(agent)


@router.get("/{agent_id}", response_model=AgentPublicProfile)
async def get_agent_profile(agent_id: UUID, db: AsyncSession = Depends(get_db)):
    """Public agency page with its live packages. Only approved agents are listed."""
    agent = await db.scalar(
        select(Agent).where(Agent.id == agent_id, Agent.status == AgentStatus.APPROVED)
    )
    if not agent:
        raise HTTPException(status_code=404, detail="Agent not found")

    result = await db.execute(
        select(Package)
        .where(
            Package.agent_id == agent.id,
            Package.status == PackageStatus.APPROVED,
            Package.publish_status == PublishStatus.PUBLISHED,
        )
        .order_by(Package.created_at.desc())
    )
    packages = []
    for package in result.scalars().all():
        item = PackageResponse.model_validate(package)
        item.agent_name = agent.company_name
        packages.append(item)

    return AgentPublicProfile(
        id=agent.id,
        company_name=agent.company_name,
        company_address=agent.company_address,
        business_type=agent.business_type,
        created_at=agent.created_at,
        packages=packages,
    )

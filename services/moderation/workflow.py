"""
services/moderation/workflow.py
Admin moderation of agents and packages.

Each function validates the requested action against the transition
tables, applies it, and queues the owner notification and audit entry on
the caller's Outbox. Requests that would leave the entity where it already
is come back with changed=False and queue nothing.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config.settings import settings
from services.moderation.transitions import (
    InvalidTransition,
    resolve_agent,
    resolve_package,
    resolve_plan,
)
from shared.models.models import (
    ActivityType,
    Agent,
    AgentStatus,
    Package,
    PackageStatus,
    PublishStatus,
)
from shared.outbox import Outbox
from shared.schemas.schemas import AgentAction, ModerationResult, PackageAction

logger = logging.getLogger(__name__)

AGENT_DASHBOARD_URL = "/agent-dashboard"


def _conflict(e: InvalidTransition) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


def agent_result(agent: Agent, action: AgentAction, changed: bool) -> ModerationResult:
    return ModerationResult(
        id=agent.id,
        entity_type="agent",
        action=AgentAction(action).value,
        changed=changed,
        status=agent.status.value,
        subscription_plan=agent.subscription_plan.value,
    )


def package_result(package: Package, action: PackageAction, changed: bool) -> ModerationResult:
    return ModerationResult(
        id=package.id,
        entity_type="package",
        action=PackageAction(action).value,
        changed=changed,
        status=package.status.value,
        publish_status=package.publish_status.value,
    )


# ── Agents ─────────────────────────────────────────────────────

async def moderate_agent(
    db: AsyncSession,
    agent_id: uuid.UUID,
    action: AgentAction,
    outbox: Outbox,
    reason: Optional[str] = None,
) -> ModerationResult:
    action = AgentAction(action)
    agent = await db.scalar(select(Agent).where(Agent.id == agent_id))
    if not agent:
        raise HTTPException(status_code=404, detail="Agent not found")

    if action in (AgentAction.UPGRADE, AgentAction.DOWNGRADE):
        try:
            new_plan = resolve_plan(action.value, agent.subscription_plan)
        except InvalidTransition as e:
            raise _conflict(e)
        old_plan = agent.subscription_plan
        agent.subscription_plan = new_plan

        outbox.notify(
            agent.user_id,
            "Subscription Plan Updated",
            f"Your subscription plan has been changed from {old_plan.value} to {new_plan.value}.",
            related_type="agent",
            related_id=agent.id,
            action_url=AGENT_DASHBOARD_URL,
        )
        outbox.log_activity(
            ActivityType.AGENT_PLAN_CHANGED,
            f"Agent {agent.company_name} plan changed from {old_plan.value} to {new_plan.value}",
            entity_type="agent",
            entity_id=agent.id,
            metadata={"from": old_plan.value, "to": new_plan.value},
        )
        return agent_result(agent, action, True)

    try:
        target = resolve_agent(action.value, agent.status)
    except InvalidTransition as e:
        raise _conflict(e)
    if target is None:
        return agent_result(agent, action, False)

    previous = agent.status
    agent.status = target

    if target == AgentStatus.APPROVED:
        agent.approved_by = outbox.actor_id
        agent.approved_at = datetime.now(timezone.utc)
        agent.rejection_reason = None
        title = "Agent Registration Approved"
        message = (
            "Congratulations! Your agent registration has been approved. "
            "You can now start creating packages and managing bookings."
        )
        activity = ActivityType.AGENT_APPROVED
    elif target == AgentStatus.REJECTED:
        agent.rejection_reason = reason
        title = "Agent Registration Rejected"
        message = "Your agent registration has been rejected."
        if reason:
            message += f" Reason: {reason}"
        activity = ActivityType.AGENT_REJECTED
    else:
        agent.rejection_reason = reason
        title = "Agent Account Suspended"
        message = "Your agent account has been suspended."
        if reason:
            message += f" Reason: {reason}"
        activity = ActivityType.AGENT_SUSPENDED

    outbox.notify(
        agent.user_id,
        title,
        message,
        related_type="agent",
        related_id=agent.id,
        action_url=AGENT_DASHBOARD_URL,
    )
    outbox.log_activity(
        activity,
        f"Agent {agent.company_name} has been {target.value}",
        entity_type="agent",
        entity_id=agent.id,
        metadata={"from": previous.value, "reason": reason},
    )
    logger.info(f"Agent {agent.id} moved {previous.value} -> {target.value}")
    return agent_result(agent, action, True)


# ── Packages ───────────────────────────────────────────────────

_PACKAGE_MESSAGES = {
    PackageAction.APPROVE: (
        "Package Approved",
        'Your package "{title}" has been approved and is now live for bookings.',
        ActivityType.PACKAGE_APPROVED,
    ),
    PackageAction.REJECT: (
        "Package Rejected",
        'Your package "{title}" has been rejected. Reason: {reason}',
        ActivityType.PACKAGE_REJECTED,
    ),
    PackageAction.UNPUBLISH: (
        "Package Unpublished",
        'Your package "{title}" has been unpublished and is no longer visible to customers.',
        ActivityType.PACKAGE_UNPUBLISHED,
    ),
    PackageAction.PUBLISH: (
        "Package Published",
        'Your package "{title}" is visible to customers again.',
        ActivityType.PACKAGE_PUBLISHED,
    ),
}

_PAST_TENSE = {
    PackageAction.APPROVE: "approved",
    PackageAction.REJECT: "rejected",
    PackageAction.UNPUBLISH: "unpublished",
    PackageAction.PUBLISH: "published",
}


async def moderate_packages(
    db: AsyncSession,
    package_ids: list[uuid.UUID],
    action: PackageAction,
    outbox: Outbox,
    reason: Optional[str] = None,
) -> list[tuple[Package, bool]]:
    """
    Apply one action to every listed package, or to none of them.
    Unknown ids raise 404 and disallowed transitions raise 409 before
    anything is modified.
    """
    action = PackageAction(action)
    ids = list(dict.fromkeys(package_ids))
    result = await db.execute(
        select(Package).options(selectinload(Package.agent)).where(Package.id.in_(ids))
    )
    found = {p.id: p for p in result.scalars().all()}

    missing = [str(i) for i in ids if i not in found]
    if missing:
        raise HTTPException(status_code=404, detail=f"Package not found: {', '.join(missing)}")

    plan: list[tuple[Package, Optional[tuple[PackageStatus, PublishStatus]]]] = []
    for package_id in ids:
        package = found[package_id]
        try:
            target = resolve_package(action.value, package.status, package.publish_status)
        except InvalidTransition as e:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"{e} (package {package.id})",
            )
        plan.append((package, target))

    if action == PackageAction.REJECT:
        reason = reason or settings.PACKAGE_REJECTION_DEFAULT_REASON
    title, template, activity = _PACKAGE_MESSAGES[action]
    now = datetime.now(timezone.utc)

    outcomes: list[tuple[Package, bool]] = []
    for package, target in plan:
        if target is None:
            outcomes.append((package, False))
            continue

        previous = (package.status, package.publish_status)
        package.status, package.publish_status = target
        if action == PackageAction.APPROVE:
            package.approved_by = outbox.actor_id
            package.approved_at = now
            package.rejection_reason = None
        elif action == PackageAction.REJECT:
            package.rejection_reason = reason

        outbox.notify(
            package.agent.user_id,
            title,
            template.format(title=package.title, reason=reason),
            related_type="package",
            related_id=package.id,
            action_url=f"{AGENT_DASHBOARD_URL}/packages/{package.id}",
        )
        outbox.log_activity(
            activity,
            f'Package "{package.title}" has been {_PAST_TENSE[action]}',
            entity_type="package",
            entity_id=package.id,
            metadata={
                "from_status": previous[0].value,
                "from_publish_status": previous[1].value,
                "rejection_reason": reason if action == PackageAction.REJECT else None,
                "bulk": len(ids) > 1,
            },
        )
        outcomes.append((package, True))

    logger.info(
        f"Package moderation {action.value}: "
        f"{sum(1 for _, changed in outcomes if changed)}/{len(outcomes)} changed"
    )
    return outcomes

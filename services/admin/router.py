"""
services/admin/router.py
Super-admin endpoints: agent and package moderation, oversight listings,
platform analytics, activity log, and CSV exports.

Every effective moderation change is written to the activity log and
notifies the owning agent before the response is returned.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, Request
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis, package_cache_key
from config.settings import settings
from services.moderation.workflow import moderate_agent, moderate_packages, package_result
from shared.middleware.auth import require_super_admin
from shared.models.models import (
    ActivityLog,
    ActivityType,
    Agent,
    AgentStatus,
    Booking,
    BookingStatus,
    Package,
    PackageStatus,
    PublishStatus,
    User,
    UserRole,
)
from shared.outbox import Outbox
from shared.schemas.schemas import (
    ActivityLogResponse,
    AdminAnalyticsResponse,
    AgentAction,
    AgentResponse,
    BookingResponse,
    BulkModerationResponse,
    BulkPackageModerationRequest,
    ModerationRequest,
    ModerationResult,
    PackageAction,
    PackageResponse,
    TopAgent,
    UserResponse,
)
from shared.utils.csv_export import (
    AGENT_COLUMNS,
    BOOKING_COLUMNS,
    PACKAGE_COLUMNS,
    csv_response,
)

router = APIRouter(prefix="/admin", tags=["Admin"])

REVENUE_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.COMPLETED)


# ── Query builders (shared by listings and exports) ────────────────────────────

def _agent_query(status_filter: Optional[AgentStatus], q: Optional[str]):
    package_count = (
        select(func.count(Package.id))
        .where(Package.agent_id == Agent.id)
        .correlate(Agent)
        .scalar_subquery()
    )
    booking_count = (
        select(func.count(Booking.id))
        .where(Booking.agent_id == Agent.id)
        .correlate(Agent)
        .scalar_subquery()
    )
    revenue = (
        select(func.coalesce(func.sum(Booking.amount), 0))
        .where(Booking.agent_id == Agent.id, Booking.status.in_(REVENUE_STATUSES))
        .correlate(Agent)
        .scalar_subquery()
    )
    query = (
        select(
            Agent,
            User.name,
            User.email,
            package_count.label("package_count"),
            booking_count.label("booking_count"),
            revenue.label("revenue"),
        )
        .join(User, User.id == Agent.user_id)
    )
    if status_filter:
        query = query.where(Agent.status == status_filter)
    if q:
        pattern = f"%{q}%"
        query = query.where(or_(
            Agent.company_name.ilike(pattern),
            User.name.ilike(pattern),
            User.email.ilike(pattern),
        ))
    return query


def _package_query(
    status_filter: Optional[PackageStatus],
    publish_status: Optional[PublishStatus],
    agent_id: Optional[UUID],
    q: Optional[str],
):
    query = select(Package, Agent.company_name).join(Agent, Agent.id == Package.agent_id)
    if status_filter:
        query = query.where(Package.status == status_filter)
    if publish_status:
        query = query.where(Package.publish_status == publish_status)
    if agent_id:
        query = query.where(Package.agent_id == agent_id)
    if q:
        pattern = f"%{q}%"
        query = query.where(or_(Package.title.ilike(pattern), Package.location.ilike(pattern)))
    return query


def _booking_query(
    status_filter: Optional[BookingStatus],
    agent_id: Optional[UUID],
    customer_id: Optional[UUID],
):
    query = select(Booking, Package.title).join(Package, Package.id == Booking.package_id)
    if status_filter:
        query = query.where(Booking.status == status_filter)
    if agent_id:
        query = query.where(Booking.agent_id == agent_id)
    if customer_id:
        query = query.where(Booking.customer_id == customer_id)
    return query


def _agent_item(row) -> dict:
    agent, name, email, packages, bookings, revenue = row
    return {
        **AgentResponse.model_validate(agent).model_dump(mode="json"),
        "contact_name": name,
        "contact_email": email,
        "package_count": packages or 0,
        "booking_count": bookings or 0,
        "revenue": float(revenue or 0),
    }


async def _invalidate_packages(redis, packages: list[Package]) -> None:
    await RedisCache(redis).delete(*[package_cache_key(p.slug) for p in packages])


# ── Agent Moderation ───────────────────────────────────────────────────────────

@router.get("/agents")
async def list_agents(
    status_filter: Optional[AgentStatus] = Query(None, alias="status"),
    q: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    """All agents with their contact, package, booking and revenue totals."""
    query = _agent_query(status_filter, q)
    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Agent.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    )
    return {
        "items": [_agent_item(row) for row in result.all()],
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": -(-total // page_size),  # ceiling division
    }


@router.get("/agents/pending")
async def get_pending_agents(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    """Agents awaiting approval, oldest first (FIFO queue), with submitted documents."""
    query = _agent_query(AgentStatus.PENDING, None)
    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Agent.created_at.asc()).offset((page - 1) * page_size).limit(page_size)
    )
    return {
        "items": [_agent_item(row) for row in result.all()],
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": -(-total // page_size),
    }


@router.get("/agents/export")
async def export_agents(
    status_filter: Optional[AgentStatus] = Query(None, alias="status"),
    q: Optional[str] = Query(None, max_length=100),
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(_agent_query(status_filter, q).order_by(Agent.created_at.asc()))
    rows = [
        [
            agent.company_name, name, email, agent.status, agent.subscription_plan,
            Decimal(str(revenue or 0)), packages or 0, bookings or 0, agent.created_at,
        ]
        for agent, name, email, packages, bookings, revenue in result.all()
    ]
    return csv_response("agents", AGENT_COLUMNS, rows)


@router.post("/agents/{agent_id}/{action}", response_model=ModerationResult)
async def moderate_agent_action(
    agent_id: UUID,
    action: AgentAction,
    request: Request,
    data: Optional[ModerationRequest] = Body(None),
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    approve | reject | suspend change the agent's status;
    upgrade | downgrade step the subscription plan (trial → growth → pro).
    Repeating an action the agent is already in returns changed=false.
    A status change also drops the cached pages of the agent's packages,
    which are only public while the agent is approved.
    """
    outbox = Outbox.for_request(request, actor_id=current_user.id)
    result = await moderate_agent(db, agent_id, action, outbox, data.reason if data else None)
    await outbox.flush(db)
    await db.commit()
    outbox.publish()
    if result.changed and action not in (AgentAction.UPGRADE, AgentAction.DOWNGRADE):
        packages = (await db.scalars(select(Package).where(Package.agent_id == agent_id))).all()
        await _invalidate_packages(redis, packages)
    return result


# ── Package Moderation ─────────────────────────────────────────────────────────

@router.get("/packages")
async def list_packages(
    status_filter: Optional[PackageStatus] = Query(None, alias="status"),
    publish_status: Optional[PublishStatus] = Query(None),
    agent_id: Optional[UUID] = Query(None),
    q: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    query = _package_query(status_filter, publish_status, agent_id, q)
    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Package.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    )
    items = []
    for package, company in result.all():
        item = PackageResponse.model_validate(package)
        item.agent_name = company
        items.append(item)
    return {
        "items": items,
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": -(-total // page_size),
    }


@router.get("/packages/export")
async def export_packages(
    status_filter: Optional[PackageStatus] = Query(None, alias="status"),
    publish_status: Optional[PublishStatus] = Query(None),
    agent_id: Optional[UUID] = Query(None),
    q: Optional[str] = Query(None, max_length=100),
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        _package_query(status_filter, publish_status, agent_id, q).order_by(Package.created_at.asc())
    )
    rows = [
        [
            package.title, company, package.location, package.price, package.status,
            package.publish_status, package.current_bookings, package.created_at,
        ]
        for package, company in result.all()
    ]
    return csv_response("packages", PACKAGE_COLUMNS, rows)


@router.post("/packages/bulk", response_model=BulkModerationResponse)
async def bulk_moderate_packages(
    data: BulkPackageModerationRequest,
    request: Request,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Apply one action to a set of packages. All-or-nothing: an unknown id
    (404) or a disallowed transition (409) on any package aborts the batch.
    """
    action = PackageAction(data.action)
    outbox = Outbox.for_request(request, actor_id=current_user.id)
    outcomes = await moderate_packages(db, data.package_ids, action, outbox, data.reason)
    await outbox.flush(db)
    await db.commit()
    outbox.publish()
    await _invalidate_packages(redis, [p for p, changed in outcomes if changed])

    results = [package_result(p, action, changed) for p, changed in outcomes]
    return BulkModerationResponse(results=results, changed=sum(r.changed for r in results))


@router.post("/packages/{package_id}/{action}", response_model=ModerationResult)
async def moderate_package_action(
    package_id: UUID,
    action: PackageAction,
    request: Request,
    data: Optional[ModerationRequest] = Body(None),
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    approve (publishes) | reject (default reason applies when none given)
    | unpublish | publish.
    """
    outbox = Outbox.for_request(request, actor_id=current_user.id)
    [(package, changed)] = await moderate_packages(
        db, [package_id], action, outbox, data.reason if data else None
    )
    await outbox.flush(db)
    await db.commit()
    outbox.publish()
    if changed:
        await _invalidate_packages(redis, [package])
    return package_result(package, action, changed)


# ── Booking & User Oversight ───────────────────────────────────────────────────

@router.get("/bookings")
async def list_all_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    agent_id: Optional[UUID] = Query(None),
    customer_id: Optional[UUID] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    """Admin: view all bookings with status, agent, or customer filter."""
    query = _booking_query(status_filter, agent_id, customer_id)
    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Booking.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    )
    return {
        "items": [
            {**BookingResponse.model_validate(b).model_dump(mode="json"), "package_title": title}
            for b, title in result.all()
        ],
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": -(-total // page_size),
    }


@router.get("/bookings/export")
async def export_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    agent_id: Optional[UUID] = Query(None),
    customer_id: Optional[UUID] = Query(None),
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        _booking_query(status_filter, agent_id, customer_id).order_by(Booking.created_at.asc())
    )
    rows = [
        [
            b.booking_id, title, b.customer_name, b.customer_email, b.travel_date,
            b.travelers, b.amount, b.status, b.created_at,
        ]
        for b, title in result.all()
    ]
    return csv_response("bookings", BOOKING_COLUMNS, rows)


@router.get("/users")
async def list_users(
    role: Optional[UserRole] = Query(None),
    q: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    query = select(User)
    if role:
        query = query.where(User.role == role)
    if q:
        pattern = f"%{q}%"
        query = query.where(or_(User.name.ilike(pattern), User.email.ilike(pattern)))

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(User.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    )
    return {
        "items": [UserResponse.model_validate(u) for u in result.scalars().all()],
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": -(-total // page_size),
    }


# ── Analytics ─────────────────────────────────────────────────────────────────

async def _counts_by(db: AsyncSession, column, enum_cls) -> dict[str, int]:
    result = await db.execute(select(column, func.count()).group_by(column))
    counts = {member.value: 0 for member in enum_cls}
    for value, count in result.all():
        counts[getattr(value, "value", value)] = count
    return counts


@router.get("/analytics", response_model=AdminAnalyticsResponse)
async def get_analytics(
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    """Platform-wide metrics dashboard. All queries run against the primary DB."""
    today_start = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)

    total_bookings = await db.scalar(select(func.count(Booking.id)))
    bookings_today = await db.scalar(
        select(func.count(Booking.id)).where(Booking.created_at >= today_start)
    )
    total_revenue = await db.scalar(
        select(func.sum(Booking.amount)).where(Booking.status.in_(REVENUE_STATUSES))
    )

    revenue = func.sum(Booking.amount).label("revenue")
    top = await db.execute(
        select(Agent.id, Agent.company_name, func.count(Booking.id), revenue)
        .join(Booking, Booking.agent_id == Agent.id)
        .where(Booking.status.in_(REVENUE_STATUSES))
        .group_by(Agent.id, Agent.company_name)
        .order_by(revenue.desc())
        .limit(settings.TOP_AGENTS_LIMIT)
    )

    return AdminAnalyticsResponse(
        users_by_role=await _counts_by(db, User.role, UserRole),
        agents_by_status=await _counts_by(db, Agent.status, AgentStatus),
        packages_by_status=await _counts_by(db, Package.status, PackageStatus),
        total_bookings=total_bookings or 0,
        bookings_today=bookings_today or 0,
        total_revenue=Decimal(str(total_revenue or 0)),
        top_agents=[
            TopAgent(
                agent_id=agent_id,
                company_name=company,
                bookings=bookings,
                revenue=Decimal(str(amount or 0)),
            )
            for agent_id, company, bookings, amount in top.all()
        ],
    )


# ── Activity Log ──────────────────────────────────────────────────────────────

@router.get("/activity-logs")
async def get_activity_logs(
    activity_type: Optional[ActivityType] = Query(None),
    entity_type: Optional[str] = Query(None, max_length=50),
    user_id: Optional[UUID] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    """Append-only activity log, newest first."""
    query = select(ActivityLog)
    if activity_type:
        query = query.where(ActivityLog.activity_type == activity_type)
    if entity_type:
        query = query.where(ActivityLog.entity_type == entity_type)
    if user_id:
        query = query.where(ActivityLog.user_id == user_id)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(ActivityLog.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    )
    return {
        "items": [ActivityLogResponse.model_validate(a) for a in result.scalars().all()],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


@router.get("/activity-logs/{entity_type}/{entity_id}")
async def get_entity_trail(
    entity_type: str,
    entity_id: str,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    """Full history of one agent, package, booking or user, oldest first."""
    result = await db.execute(
        select(ActivityLog)
        .where(ActivityLog.entity_type == entity_type, ActivityLog.entity_id == entity_id)
        .order_by(ActivityLog.created_at.asc())
    )
    items = [ActivityLogResponse.model_validate(a) for a in result.scalars().all()]
    return {"items": items, "total": len(items)}

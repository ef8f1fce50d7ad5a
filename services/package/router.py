"""
services/package/router.py
Travel packages: public catalogue plus the owning agent's CRUD and
submission for review.
"""

import re
import secrets
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis, package_cache_key
from services.moderation.transitions import InvalidTransition, resolve_package_owner
from shared.middleware.auth import require_approved_agent
from shared.models.models import (
    ActivityType,
    Agent,
    AgentStatus,
    Package,
    PackageStatus,
    PublishStatus,
    User,
    UserRole,
)
from shared.outbox import Outbox
from shared.schemas.schemas import (
    ModerationResult,
    PackageCreateRequest,
    PackageResponse,
    PackageUpdateRequest,
)

router = APIRouter(prefix="/packages", tags=["Packages"])

EDITABLE_STATUSES = {PackageStatus.DRAFT, PackageStatus.REJECTED}

SORTS = {
    "newest": Package.created_at.desc(),
    "price_asc": Package.price.asc(),
    "price_desc": Package.price.desc(),
    "popularity": Package.current_bookings.desc(),
}


# ── Helpers ───────────────────────────────────────────────────

def slugify(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug[:250] or "package"


async def _unique_slug(title: str, db: AsyncSession) -> str:
    base = slugify(title)
    slug = base
    while await db.scalar(select(func.count(Package.id)).where(Package.slug == slug)):
        slug = f"{base}-{secrets.token_hex(3)}"
    return slug


def _to_response(package: Package, agent_name: Optional[str] = None) -> PackageResponse:
    response = PackageResponse.model_validate(package)
    response.agent_name = agent_name
    return response


async def _get_own_package_or_404(package_id: UUID, agent: Agent, db: AsyncSession) -> Package:
    package = await db.scalar(select(Package).where(Package.id == package_id))
    if not package or package.agent_id != agent.id:
        raise HTTPException(status_code=404, detail="Package not found")
    return package


# ── Public Endpoints ──────────────────────────────────────────

@router.get("")
async def browse_packages(
    q: Optional[str] = Query(None, max_length=100, description="Search title, description, or location"),
    location: Optional[str] = Query(None, max_length=100),
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    min_days: Optional[int] = Query(None, ge=1),
    max_days: Optional[int] = Query(None, ge=1),
    sort: str = Query("newest", pattern="^(newest|price_asc|price_desc|popularity)$"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    """Approved and published packages of approved agents only."""
    query = (
        select(Package, Agent.company_name)
        .join(Agent, Agent.id == Package.agent_id)
        .where(
            Package.status == PackageStatus.APPROVED,
            Package.publish_status == PublishStatus.PUBLISHED,
            Agent.status == AgentStatus.APPROVED,
        )
    )
    if q:
        pattern = f"%{q}%"
        query = query.where(or_(
            Package.title.ilike(pattern),
            Package.description.ilike(pattern),
            Package.location.ilike(pattern),
        ))
    if location:
        query = query.where(Package.location.ilike(f"%{location}%"))
    if min_price is not None:
        query = query.where(Package.price >= min_price)
    if max_price is not None:
        query = query.where(Package.price <= max_price)
    if min_days is not None:
        query = query.where(Package.duration_days >= min_days)
    if max_days is not None:
        query = query.where(Package.duration_days <= max_days)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(SORTS[sort], Package.id).offset((page - 1) * page_size).limit(page_size)
    )

    return {
        "items": [_to_response(pkg, company) for pkg, company in result.all()],
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": -(-total // page_size),
    }


# ── Agent Endpoints ───────────────────────────────────────────

@router.get("/mine")
async def list_my_packages(
    status_filter: Optional[PackageStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    agent: Agent = Depends(require_approved_agent),
    db: AsyncSession = Depends(get_db),
):
    """All of the calling agent's packages, in every status."""
    query = select(Package).where(Package.agent_id == agent.id)
    if status_filter:
        query = query.where(Package.status == status_filter)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Package.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    )
    return {
        "items": [_to_response(p, agent.company_name) for p in result.scalars().all()],
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": -(-total // page_size),
    }


@router.post("", response_model=PackageResponse, status_code=status.HTTP_201_CREATED)
async def create_package(
    data: PackageCreateRequest,
    request: Request,
    agent: Agent = Depends(require_approved_agent),
    db: AsyncSession = Depends(get_db),
):
    """New packages start as drafts; submit them for review to go live."""
    package = Package(
        agent_id=agent.id,
        slug=await _unique_slug(data.title, db),
        status=PackageStatus.DRAFT,
        publish_status=PublishStatus.DRAFT,
        **data.model_dump(),
    )
    db.add(package)
    await db.flush()

    outbox = Outbox.for_request(request, actor_id=agent.user_id)
    outbox.log_activity(
        ActivityType.PACKAGE_CREATED,
        f'Package "{package.title}" created',
        entity_type="package",
        entity_id=package.id,
        metadata={"agent_id": str(agent.id)},
    )
    await outbox.flush(db)
    await db.commit()
    return _to_response(package, agent.company_name)


@router.put("/{package_id}", response_model=PackageResponse)
async def update_package(
    package_id: UUID,
    data: PackageUpdateRequest,
    agent: Agent = Depends(require_approved_agent),
    db: AsyncSession = Depends(get_db),
):
    """Drafts and rejected packages can be edited; anything under review or live cannot."""
    package = await _get_own_package_or_404(package_id, agent, db)
    if package.status not in EDITABLE_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Package in status {package.status.value} cannot be edited",
        )

    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(package, field, value)
    await db.commit()
    await db.refresh(package)
    return _to_response(package, agent.company_name)


@router.post("/{package_id}/submit", response_model=ModerationResult)
async def submit_package(
    package_id: UUID,
    request: Request,
    agent: Agent = Depends(require_approved_agent),
    db: AsyncSession = Depends(get_db),
):
    """Send a draft (or a rejected package after edits) to the admin review queue."""
    package = await _get_own_package_or_404(package_id, agent, db)
    try:
        target = resolve_package_owner("submit", package.status)
    except InvalidTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    result = ModerationResult(
        id=package.id, entity_type="package", action="submit",
        changed=target is not None, status=(target or package.status).value,
        publish_status=package.publish_status.value,
    )
    if target is None:
        return result

    package.status = target
    outbox = Outbox.for_request(request, actor_id=agent.user_id)
    outbox.log_activity(
        ActivityType.PACKAGE_SUBMITTED,
        f'Package "{package.title}" submitted for review',
        entity_type="package",
        entity_id=package.id,
    )
    admin_ids = (
        await db.scalars(select(User.id).where(User.role == UserRole.SUPER_ADMIN))
    ).all()
    for admin_id in admin_ids:
        outbox.notify(
            admin_id,
            "Package Submitted for Review",
            f'{agent.company_name} submitted "{package.title}" for approval.',
            related_type="package",
            related_id=package.id,
            action_url="/superadmin/packages/approval",
        )
    await outbox.flush(db)
    await db.commit()
    outbox.publish()
    return result


@router.post("/{package_id}/archive", response_model=ModerationResult)
async def archive_package(
    package_id: UUID,
    agent: Agent = Depends(require_approved_agent),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Withdraw a package permanently. Existing bookings are unaffected."""
    package = await _get_own_package_or_404(package_id, agent, db)
    try:
        target = resolve_package_owner("archive", package.status)
    except InvalidTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    if target is not None:
        package.status = target
        if package.publish_status == PublishStatus.PUBLISHED:
            package.publish_status = PublishStatus.UNPUBLISHED
        await db.commit()
        await RedisCache(redis).delete(package_cache_key(package.slug))

    return ModerationResult(
        id=package.id, entity_type="package", action="archive",
        changed=target is not None, status=package.status.value,
        publish_status=package.publish_status.value,
    )


# ── Public Detail ─────────────────────────────────────────────
# Declared last so /mine is not captured as a slug.

@router.get("/{slug}", response_model=PackageResponse)
async def get_package(slug: str, db: AsyncSession = Depends(get_db), redis=Depends(get_redis)):
    """Public package page. Cached until the package is next moderated."""
    cache = RedisCache(redis)
    cache_key = package_cache_key(slug)

    cached = await cache.get(cache_key)
    if cached:
        return PackageResponse(**cached)

    result = await db.execute(
        select(Package, Agent.company_name)
        .join(Agent, Agent.id == Package.agent_id)
        .where(
            Package.slug == slug,
            Package.status == PackageStatus.APPROVED,
            Package.publish_status == PublishStatus.PUBLISHED,
            Agent.status == AgentStatus.APPROVED,
        )
    )
    row = result.first()
    if not row:
        raise HTTPException(status_code=404, detail="Package not found")

    response = _to_response(row[0], row[1])
    await cache.set(cache_key, response.model_dump(mode="json"))
    return response

"""
services/booking/router.py
Booking lifecycle management.
States: PENDING → CONFIRMED → COMPLETED, PENDING | CONFIRMED → CANCELLED
"""

import random
import string
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis, package_cache_key
from services.moderation.transitions import InvalidTransition, resolve_booking
from shared.middleware.auth import get_current_user, require_approved_agent, require_customer
from shared.models.models import (
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
    BookingCancelRequest,
    BookingCreateRequest,
    BookingResponse,
)

router = APIRouter(prefix="/bookings", tags=["Bookings"])

MY_TRIPS_URL = "/my-trips"


# ── Helpers ───────────────────────────────────────────────────

def _generate_booking_number() -> str:
    """Generate a human-readable booking number like TRV-2025-X7K9M."""
    year = datetime.now().year
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=5))
    return f"TRV-{year}-{suffix}"


async def _unique_booking_number(db: AsyncSession) -> str:
    number = _generate_booking_number()
    while await db.scalar(select(func.count(Booking.id)).where(Booking.booking_id == number)):
        number = _generate_booking_number()
    return number


async def _get_booking_or_404(booking_id: UUID, db: AsyncSession) -> Booking:
    result = await db.execute(select(Booking).where(Booking.id == booking_id))
    booking = result.scalar_one_or_none()
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    return booking


async def _agent_for(user: User, db: AsyncSession) -> Optional[Agent]:
    return await db.scalar(select(Agent).where(Agent.user_id == user.id))


async def _can_view(booking: Booking, user: User, db: AsyncSession) -> bool:
    if user.role == UserRole.SUPER_ADMIN:
        return True
    if user.role == UserRole.CUSTOMER:
        return booking.customer_id == user.id
    agent = await _agent_for(user, db)
    return agent is not None and booking.agent_id == agent.id


def _transition(booking: Booking, action: str) -> Optional[BookingStatus]:
    try:
        return resolve_booking(action, booking.status)
    except InvalidTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


# ── Booking Creation ──────────────────────────────────────────

@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreateRequest,
    request: Request,
    current_user: User = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Book a package. Steps:
    1. Package must be approved and published by an approved agent
    2. Capacity (max_bookings) must not be exhausted
    3. Create PENDING booking, amount = price × travelers
    4. Notify agent and customer, log the activity
    """
    result = await db.execute(
        select(Package).where(Package.id == data.package_id).with_for_update()
    )
    package = result.scalar_one_or_none()
    if not package:
        raise HTTPException(status_code=404, detail="Package not found")
    if (
        package.status != PackageStatus.APPROVED
        or package.publish_status != PublishStatus.PUBLISHED
    ):
        raise HTTPException(status_code=400, detail="Package is not available for booking")
    if package.max_bookings is not None and package.current_bookings >= package.max_bookings:
        raise HTTPException(status_code=400, detail="Package is fully booked")

    agent = await db.scalar(select(Agent).where(Agent.id == package.agent_id))
    if agent.status != AgentStatus.APPROVED:
        raise HTTPException(status_code=400, detail="Package is not available for booking")

    booking = Booking(
        booking_id=await _unique_booking_number(db),
        package_id=package.id,
        customer_id=current_user.id,
        agent_id=package.agent_id,
        customer_name=data.customer_name or current_user.name,
        customer_email=current_user.email,
        customer_phone=data.customer_phone or current_user.phone,
        travel_date=data.travel_date,
        travelers=data.travelers,
        special_requests=data.special_requests,
        amount=Decimal(package.price) * data.travelers,
        status=BookingStatus.PENDING,
    )
    db.add(booking)
    package.current_bookings += 1
    await db.flush()

    outbox = Outbox.for_request(request, actor_id=current_user.id)
    outbox.notify(
        agent.user_id,
        "New Booking Received",
        f'You have received a new booking for "{package.title}" from {booking.customer_name}.',
        related_type="booking",
        related_id=booking.id,
        action_url=f"/agent-dashboard/bookings/{booking.id}",
    )
    outbox.notify(
        current_user.id,
        "Booking Confirmation",
        f'Your booking for "{package.title}" has been submitted successfully. '
        f"Booking ID: {booking.booking_id}",
        related_type="booking",
        related_id=booking.id,
        action_url=MY_TRIPS_URL,
    )
    outbox.log_activity(
        ActivityType.BOOKING_CREATED,
        f'New booking created for package "{package.title}"',
        entity_type="booking",
        entity_id=booking.id,
        metadata={
            "booking_id": booking.booking_id,
            "package_id": str(package.id),
            "travelers": booking.travelers,
            "amount": str(booking.amount),
        },
    )
    await outbox.flush(db)
    await db.commit()
    outbox.publish()
    await RedisCache(redis).delete(package_cache_key(package.slug))
    return BookingResponse.model_validate(booking)


# ── Listing ───────────────────────────────────────────────────

@router.get("")
async def list_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    agent_id: Optional[UUID] = Query(None, description="Admin only"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Customers see their own trips, agents their agency's bookings, admins everything."""
    query = select(Booking)

    if current_user.role == UserRole.CUSTOMER:
        query = query.where(Booking.customer_id == current_user.id)
    elif current_user.role == UserRole.AGENT:
        agent = await _agent_for(current_user, db)
        if not agent:
            raise HTTPException(status_code=404, detail="Agent profile not found")
        query = query.where(Booking.agent_id == agent.id)
    elif agent_id:
        query = query.where(Booking.agent_id == agent_id)

    if status_filter:
        query = query.where(Booking.status == status_filter)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Booking.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    )

    return {
        "items": [BookingResponse.model_validate(b) for b in result.scalars().all()],
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": -(-total // page_size),
    }


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await _get_booking_or_404(booking_id, db)
    if not await _can_view(booking, current_user, db):
        raise HTTPException(status_code=403, detail="Not authorized to view this booking")
    return BookingResponse.model_validate(booking)


# ── Agent Actions ─────────────────────────────────────────────

@router.post("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: UUID,
    request: Request,
    agent: Agent = Depends(require_approved_agent),
    db: AsyncSession = Depends(get_db),
):
    """Agent confirms a pending booking."""
    booking = await _get_booking_or_404(booking_id, db)
    if booking.agent_id != agent.id:
        raise HTTPException(status_code=403, detail="Not authorized")

    target = _transition(booking, "confirm")
    if target is None:
        return BookingResponse.model_validate(booking)

    booking.status = target
    outbox = Outbox.for_request(request, actor_id=agent.user_id)
    outbox.notify(
        booking.customer_id,
        "Booking Confirmed",
        f"Your booking {booking.booking_id} has been confirmed by {agent.company_name}.",
        related_type="booking",
        related_id=booking.id,
        action_url=MY_TRIPS_URL,
    )
    outbox.log_activity(
        ActivityType.BOOKING_CONFIRMED,
        f"Booking {booking.booking_id} confirmed",
        entity_type="booking",
        entity_id=booking.id,
    )
    await outbox.flush(db)
    await db.commit()
    outbox.publish()
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(
    booking_id: UUID,
    request: Request,
    agent: Agent = Depends(require_approved_agent),
    db: AsyncSession = Depends(get_db),
):
    """Agent marks a confirmed trip as completed."""
    booking = await _get_booking_or_404(booking_id, db)
    if booking.agent_id != agent.id:
        raise HTTPException(status_code=403, detail="Not authorized")

    target = _transition(booking, "complete")
    if target is None:
        return BookingResponse.model_validate(booking)

    booking.status = target
    outbox = Outbox.for_request(request, actor_id=agent.user_id)
    outbox.log_activity(
        ActivityType.BOOKING_COMPLETED,
        f"Booking {booking.booking_id} completed",
        entity_type="booking",
        entity_id=booking.id,
    )
    await outbox.flush(db)
    await db.commit()
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    data: BookingCancelRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Customer, owning agent, or admin cancels a booking.
    The other party is notified and the package's seat is released.
    """
    booking = await _get_booking_or_404(booking_id, db)
    if not await _can_view(booking, current_user, db):
        raise HTTPException(status_code=403, detail="Not authorized")

    target = _transition(booking, "cancel")
    if target is None:
        return BookingResponse.model_validate(booking)

    booking.status = target
    booking.cancellation_reason = data.reason

    package = await db.scalar(select(Package).where(Package.id == booking.package_id))
    if package and package.current_bookings > 0:
        package.current_bookings -= 1

    agent = await db.scalar(select(Agent).where(Agent.id == booking.agent_id))
    outbox = Outbox.for_request(request, actor_id=current_user.id)
    message = f"Booking {booking.booking_id} has been cancelled. Reason: {data.reason}"
    if current_user.id != booking.customer_id:
        outbox.notify(
            booking.customer_id, "Booking Cancelled", message,
            related_type="booking", related_id=booking.id, action_url=MY_TRIPS_URL,
        )
    if agent and current_user.id != agent.user_id:
        outbox.notify(
            agent.user_id, "Booking Cancelled", message,
            related_type="booking", related_id=booking.id,
            action_url=f"/agent-dashboard/bookings/{booking.id}",
        )
    outbox.log_activity(
        ActivityType.BOOKING_CANCELLED,
        f"Booking {booking.booking_id} cancelled by {current_user.role.value}",
        entity_type="booking",
        entity_id=booking.id,
        metadata={"reason": data.reason},
    )
    await outbox.flush(db)
    await db.commit()
    outbox.publish()
    if package:
        await RedisCache(redis).delete(package_cache_key(package.slug))
    return BookingResponse.model_validate(booking)

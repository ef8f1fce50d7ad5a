"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

import re
import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

# Address pattern accepted at registration
REGISTRATION_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


# ── Auth ──────────────────────────────────────────────────────

class SignupRequest(BaseSchema):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    name: str = Field(..., min_length=2, max_length=255)
    phone: Optional[str] = Field(None, pattern=r"^\+?[0-9]{10,15}$")


class LoginRequest(BaseSchema):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class RefreshRequest(BaseSchema):
    refresh_token: str


class LogoutRequest(BaseSchema):
    refresh_token: Optional[str] = None


class AuthResponse(BaseSchema):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: "UserResponse"


# ── User ──────────────────────────────────────────────────────

class UserResponse(BaseSchema):
    id: uuid.UUID
    email: str
    name: str
    phone: Optional[str]
    role: str
    is_active: bool
    created_at: datetime


# ── Agent registration ────────────────────────────────────────

class AgentRegistrationRequest(BaseSchema):
    # Company
    company_name: str = Field(..., max_length=255)
    business_type: str = Field(..., max_length=100)
    gstin_number: str = Field(..., max_length=20)
    pan_number: str = Field(..., max_length=20)
    registration_number: Optional[str] = Field(None, max_length=100)

    # Contact
    contact_name: str = Field(..., max_length=255)
    contact_email: str = Field(..., max_length=255)
    contact_phone: str = Field(..., max_length=20)
    business_address: str = Field(..., max_length=1000)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    pincode: Optional[str] = Field(None, max_length=10)
    password: Optional[str] = Field(None, min_length=8, max_length=128)

    # Legal
    agreed_to_terms: bool
    agreed_to_processing: bool

    @field_validator(
        "company_name", "business_type", "gstin_number", "pan_number",
        "contact_name", "contact_phone", "business_address",
    )
    @classmethod
    def required_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Field is required")
        return v

    @field_validator("registration_number", "city", "state", "pincode")
    @classmethod
    def strip_optional(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None

    @field_validator("contact_email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip()
        if not REGISTRATION_EMAIL_RE.match(v):
            raise ValueError("Please enter a valid email address")
        return v.lower()

    @field_validator("agreed_to_terms", "agreed_to_processing")
    @classmethod
    def must_agree(cls, v: bool) -> bool:
        if not v:
            raise ValueError("Consent is required to register")
        return v


class AgentRegistrationResponse(BaseSchema):
    user_id: uuid.UUID
    agent_id: uuid.UUID
    status: str
    notified_admins: int
    message: str = "Registration submitted. Your account is pending approval."


# ── Agent ─────────────────────────────────────────────────────

class AgentResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    company_name: str
    company_address: Optional[str]
    license_number: Optional[str]
    business_type: Optional[str]
    status: str
    subscription_plan: str
    approved_by: Optional[uuid.UUID]
    approved_at: Optional[datetime]
    rejection_reason: Optional[str]
    documents: Optional[Dict[str, Any]]
    created_at: datetime


class AgentUpdateRequest(BaseSchema):
    company_name: Optional[str] = Field(None, min_length=2, max_length=255)
    company_address: Optional[str] = Field(None, max_length=1000)
    business_type: Optional[str] = Field(None, max_length=100)


# ── Package ───────────────────────────────────────────────────

class PackageCreateRequest(BaseSchema):
    title: str = Field(..., min_length=3, max_length=255)
    description: Optional[str] = Field(None, max_length=10000)
    location: Optional[str] = Field(None, max_length=255)
    price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    duration_days: Optional[int] = Field(None, ge=1, le=365)
    inclusions: Optional[List[str]] = None
    exclusions: Optional[List[str]] = None
    max_bookings: Optional[int] = Field(None, ge=1)


class PackageUpdateRequest(BaseSchema):
    title: Optional[str] = Field(None, min_length=3, max_length=255)
    description: Optional[str] = Field(None, max_length=10000)
    location: Optional[str] = Field(None, max_length=255)
    price: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    duration_days: Optional[int] = Field(None, ge=1, le=365)
    inclusions: Optional[List[str]] = None
    exclusions: Optional[List[str]] = None
    max_bookings: Optional[int] = Field(None, ge=1)


class PackageResponse(BaseSchema):
    id: uuid.UUID
    agent_id: uuid.UUID
    title: str
    slug: str
    description: Optional[str]
    location: Optional[str]
    price: Decimal
    duration_days: Optional[int]
    inclusions: Optional[List[str]]
    exclusions: Optional[List[str]]
    status: str
    publish_status: str
    approved_at: Optional[datetime]
    rejection_reason: Optional[str]
    max_bookings: Optional[int]
    current_bookings: int
    created_at: datetime
    updated_at: datetime
    # Joined
    agent_name: Optional[str] = None


class AgentPublicProfile(BaseSchema):
    """Agency page shown to customers; documents and review notes stay private."""
    id: uuid.UUID
    company_name: str
    company_address: Optional[str]
    business_type: Optional[str]
    created_at: datetime
    packages: List[PackageResponse] = []


# ── Booking ───────────────────────────────────────────────────

class BookingCreateRequest(BaseSchema):
    package_id: uuid.UUID
    travel_date: date
    travelers: int = Field(default=1, ge=1, le=50)
    customer_name: Optional[str] = Field(None, min_length=2, max_length=255)
    customer_phone: Optional[str] = Field(None, max_length=20)
    special_requests: Optional[str] = Field(None, max_length=2000)

    @field_validator("travel_date")
    @classmethod
    def validate_travel_date(cls, v: date) -> date:
        if v < date.today():
            raise ValueError("Travel date cannot be in the past")
        return v


class BookingResponse(BaseSchema):
    id: uuid.UUID
    booking_id: str
    package_id: uuid.UUID
    customer_id: uuid.UUID
    agent_id: uuid.UUID
    customer_name: str
    customer_email: str
    customer_phone: Optional[str]
    travel_date: date
    travelers: int
    special_requests: Optional[str]
    amount: Decimal
    status: str
    cancellation_reason: Optional[str]
    created_at: datetime


class BookingCancelRequest(BaseSchema):
    reason: str = Field(..., min_length=3, max_length=500)


# ── Notification ──────────────────────────────────────────────

class NotificationResponse(BaseSchema):
    id: uuid.UUID
    recipient_id: uuid.UUID
    sender_id: Optional[uuid.UUID]
    title: str
    message: str
    status: str
    related_type: Optional[str]
    related_id: Optional[str]
    action_url: Optional[str]
    read_at: Optional[datetime]
    created_at: datetime


# ── Moderation ────────────────────────────────────────────────

class AgentAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    SUSPEND = "suspend"
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"


class PackageAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    UNPUBLISH = "unpublish"
    PUBLISH = "publish"


class ModerationRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=1000)


class BulkPackageModerationRequest(BaseSchema):
    package_ids: List[uuid.UUID] = Field(..., min_length=1, max_length=200)
    action: PackageAction
    reason: Optional[str] = Field(None, max_length=1000)


class ModerationResult(BaseSchema):
    id: uuid.UUID
    entity_type: str
    action: str
    changed: bool
    status: str
    publish_status: Optional[str] = None
    subscription_plan: Optional[str] = None


class BulkModerationResponse(BaseSchema):
    results: List[ModerationResult]
    changed: int


# ── Activity log ──────────────────────────────────────────────

class ActivityLogResponse(BaseSchema):
    id: uuid.UUID
    user_id: Optional[uuid.UUID]
    activity_type: str
    description: str
    entity_type: Optional[str]
    entity_id: Optional[str]
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="activity_metadata")
    ip_address: Optional[str]
    created_at: datetime


# ── Admin ─────────────────────────────────────────────────────

class TopAgent(BaseSchema):
    agent_id: uuid.UUID
    company_name: str
    bookings: int
    revenue: Decimal


class AdminAnalyticsResponse(BaseSchema):
    users_by_role: Dict[str, int]
    agents_by_status: Dict[str, int]
    packages_by_status: Dict[str, int]
    total_bookings: int
    bookings_today: int
    total_revenue: Decimal
    top_agents: List[TopAgent]


# ── Generic ───────────────────────────────────────────────────

class MessageResponse(BaseSchema):
    message: str
    success: bool = True


AuthResponse.model_rebuild()

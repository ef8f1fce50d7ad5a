"""
services/auth/router.py
Email + password authentication endpoints.
Implements: Signup → Login → JWT issue → Refresh → Logout
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Body, Cookie, Depends, HTTPException, Request, Response, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from config.settings import settings
from services.registration.workflow import create_identity
from shared.middleware.auth import TokenData, get_current_user, get_token_data
from shared.models.models import ActivityType, AuthIdentity, RefreshToken, User, UserRole
from shared.outbox import Outbox
from shared.schemas.schemas import (
    AuthResponse,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    SignupRequest,
    UserResponse,
)
from shared.utils.security import (
    as_utc,
    create_access_token,
    create_refresh_token,
    get_token_remaining_ttl,
    hash_token,
    verify_password,
)

router = APIRouter(prefix="/auth", tags=["Authentication"])


# ── Helper ────────────────────────────────────────────────────

async def _issue_tokens(
    user: User,
    db: AsyncSession,
    response: Response,
    request: Request,
) -> AuthResponse:
    """Issue access + refresh tokens. Store refresh token in DB and set cookie."""
    # Access token
    access_token, _ = create_access_token(
        user_id=str(user.id),
        role=user.role.value,
        email=user.email,
    )

    # Refresh token
    raw_refresh, hashed_refresh = create_refresh_token()
    expires_at = datetime.now(timezone.utc) + timedelta(
        days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS
    )

    db.add(RefreshToken(
        user_id=user.id,
        token_hash=hashed_refresh,
        expires_at=expires_at,
        user_agent=(request.headers.get("user-agent") or "")[:500] or None,
        ip_address=request.client.host if request.client else None,
    ))

    # httpOnly cookie for web clients; mobile clients use the body
    response.set_cookie(
        key="refresh_token",
        value=raw_refresh,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        max_age=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS * 86400,
        path="/auth",
    )

    return AuthResponse(
        access_token=access_token,
        refresh_token=raw_refresh,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserResponse.model_validate(user),
    )


# ── Endpoints ─────────────────────────────────────────────────

@router.post(
    "/signup",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a customer account",
)
async def signup(
    data: SignupRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """
    Customer self-signup. Agents register through POST /agents/register;
    super-admins are created with the create_super_admin.py command.
    """
    email = data.email.lower()
    identity = await create_identity(db, email, data.password)

    user = User(
        identity_id=identity.id,
        email=email,
        name=data.name,
        phone=data.phone,
        role=UserRole.CUSTOMER,
    )
    db.add(user)
    await db.flush()

    outbox = Outbox.for_request(request, actor_id=user.id)
    outbox.log_activity(
        ActivityType.REGISTRATION,
        f"New customer registration: {user.email}",
        entity_type="user",
        entity_id=user.id,
        metadata={"user_type": UserRole.CUSTOMER.value},
    )
    await outbox.flush(db)

    tokens = await _issue_tokens(user, db, response, request)
    await db.commit()
    return tokens


@router.post("/login", response_model=AuthResponse, summary="Login with email and password")
async def login(
    data: LoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(User)
        .join(AuthIdentity, AuthIdentity.id == User.identity_id)
        .where(func.lower(AuthIdentity.email) == data.email.lower())
    )
    user = result.scalar_one_or_none()
    identity = await db.get(AuthIdentity, user.identity_id) if user else None

    if not user or not identity or not verify_password(data.password, identity.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )

    outbox = Outbox.for_request(request, actor_id=user.id)
    outbox.log_activity(
        ActivityType.LOGIN,
        f"User {user.email} logged in",
        entity_type="user",
        entity_id=user.id,
        metadata={"role": user.role.value},
    )
    await outbox.flush(db)

    tokens = await _issue_tokens(user, db, response, request)
    await db.commit()
    return tokens


@router.post("/refresh", response_model=AuthResponse, summary="Refresh access token")
async def refresh_token(
    request: Request,
    response: Response,
    data: Optional[RefreshRequest] = Body(None),
    # Accept from cookie (web) or request body (mobile)
    refresh_token_cookie: Optional[str] = Cookie(None, alias="refresh_token"),
    db: AsyncSession = Depends(get_db),
):
    """
    Issue a new access token using a valid refresh token.
    Implements refresh token rotation: the old token is revoked.
    """
    raw_token = (data.refresh_token if data else None) or refresh_token_cookie
    if not raw_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token required",
        )

    # Find token in DB
    result = await db.execute(
        select(RefreshToken).where(
            RefreshToken.token_hash == hash_token(raw_token),
            RefreshToken.is_revoked == False,  # noqa: E712
        )
    )
    db_token = result.scalar_one_or_none()

    if not db_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or revoked refresh token",
        )

    if as_utc(db_token.expires_at) < datetime.now(timezone.utc):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token expired",
        )

    # Load user
    result = await db.execute(select(User).where(User.id == db_token.user_id))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    # Rotate: revoke old token, issue new ones
    db_token.is_revoked = True

    tokens = await _issue_tokens(user, db, response, request)
    await db.commit()
    return tokens


@router.post("/logout", response_model=MessageResponse, summary="Logout user")
async def logout(
    response: Response,
    data: Optional[LogoutRequest] = Body(None),
    token_data: TokenData = Depends(get_token_data),
    refresh_token_cookie: Optional[str] = Cookie(None, alias="refresh_token"),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Revoke refresh token + add JWT to deny-list in Redis.
    Clears httpOnly cookie.
    """
    ttl = get_token_remaining_ttl(token_data.payload)
    if ttl > 0:
        await RedisCache(redis).revoke_token(token_data.jti, ttl)

    raw_refresh = (data.refresh_token if data else None) or refresh_token_cookie
    if raw_refresh:
        result = await db.execute(
            select(RefreshToken).where(
                RefreshToken.token_hash == hash_token(raw_refresh),
                RefreshToken.user_id == token_data.user_id,
            )
        )
        db_token = result.scalar_one_or_none()
        if db_token:
            db_token.is_revoked = True

    # Clear cookie
    response.delete_cookie(key="refresh_token", path="/auth")
    await db.commit()

    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=UserResponse, summary="Get current user")
async def get_me(current_user: User = Depends(get_current_user)):
    """Returns the authenticated user's profile."""
    return UserResponse.model_validate(current_user)

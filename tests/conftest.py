"""
tests/conftest.py
Shared fixtures: SQLite database per test, fake Redis, HTTP client and
user / agent / package factories.
"""

import os
import tempfile
import uuid
from decimal import Decimal

# Settings are read at import time, so the environment comes first
_TMP = tempfile.mkdtemp(prefix="travel-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP, 'app.db')}"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-key"
os.environ["NOTIFICATION_EMAILS_ENABLED"] = "false"
os.environ["RESEND_API_KEY"] = ""

import fakeredis.aioredis  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from config.database import Base, get_db  # noqa: E402
from config.redis_client import get_redis  # noqa: E402
from main import app  # noqa: E402
from shared.models.models import (  # noqa: E402
    Agent,
    AgentStatus,
    AuthIdentity,
    Package,
    PackageStatus,
    PublishStatus,
    User,
    UserRole,
)
from shared.utils.security import create_access_token, hash_password  # noqa: E402

TEST_PASSWORD = "correct-horse-battery"
TEST_PASSWORD_HASH = hash_password(TEST_PASSWORD)


def auth_headers(user: User) -> dict:
    token, _ = create_access_token(str(user.id), user.role.value, user.email)
    return {"Authorization": f"Bearer {token}"}


# ── Infrastructure ─────────────────────────────────────────────

@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test.db"


@pytest_asyncio.fixture
async def engine(db_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def redis():
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest_asyncio.fixture
async def client(session_factory, redis):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: redis
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ── Factories ──────────────────────────────────────────────────

async def make_user(db: AsyncSession, role: UserRole, email: str = None, name: str = "Test User") -> User:
    email = email or f"{role.value}-{uuid.uuid4().hex[:8]}@example.com"
    identity = AuthIdentity(email=email, password_hash=TEST_PASSWORD_HASH)
    db.add(identity)
    await db.flush()
    user = User(identity_id=identity.id, email=email, name=name, role=role, phone="9876543210")
    db.add(user)
    await db.commit()
    return user


async def make_agent(db: AsyncSession, user: User, status: AgentStatus, company: str = "Himalayan Trails") -> Agent:
    agent = Agent(
        user_id=user.id,
        company_name=company,
        company_address="12 Mall Road, Manali, HP - 175131",
        license_number="22AAAAA0000A1Z5",
        business_type="DMC",
        status=status,
        documents={"pan_number": "AAAAA0000A", "gstin_number": "22AAAAA0000A1Z5"},
    )
    db.add(agent)
    await db.commit()
    return agent


async def make_package(
    db: AsyncSession,
    agent: Agent,
    title: str = "Spiti Valley Explorer",
    status: PackageStatus = PackageStatus.APPROVED,
    publish_status: PublishStatus = PublishStatus.PUBLISHED,
    price: str = "25000.00",
    **kwargs,
) -> Package:
    package = Package(
        agent_id=agent.id,
        title=title,
        slug=f"{title.lower().replace(' ', '-')}-{uuid.uuid4().hex[:6]}",
        description="Seven days across the cold desert.",
        location="Spiti, Himachal Pradesh",
        price=Decimal(price),
        duration_days=7,
        status=status,
        publish_status=publish_status,
        **kwargs,
    )
    db.add(package)
    await db.commit()
    return package


# ── Fixtures ───────────────────────────────────────────────────

@pytest_asyncio.fixture
async def user(db) -> User:
    return await make_user(db, UserRole.CUSTOMER, "customer@example.com", "Asha Customer")


@pytest_asyncio.fixture
async def admin_user(db) -> User:
    return await make_user(db, UserRole.SUPER_ADMIN, "admin@example.com", "Root Admin")


@pytest_asyncio.fixture
async def agent_user(db) -> User:
    return await make_user(db, UserRole.AGENT, "agent@example.com", "Vikram Agent")


@pytest_asyncio.fixture
async def agent(db, agent_user) -> Agent:
    return await make_agent(db, agent_user, AgentStatus.APPROVED)


@pytest_asyncio.fixture
async def pending_agent(db) -> Agent:
    owner = await make_user(db, UserRole.AGENT, "pending@example.com", "Pending Owner")
    return await make_agent(db, owner, AgentStatus.PENDING, company="Coastal Escapes")


@pytest_asyncio.fixture
async def package(db, agent) -> Package:
    return await make_package(db, agent)

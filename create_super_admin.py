"""
create_super_admin.py
Bootstrap a super-admin account. Super-admins cannot sign up through the API.

Usage:
    python create_super_admin.py <email> <name> <password>
"""

import asyncio
import sys

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db_context, init_db
from shared.models.models import AuthIdentity, User, UserRole
from shared.utils.security import hash_password


async def create_super_admin(db: AsyncSession, email: str, name: str, password: str) -> tuple[User, bool]:
    """Returns (user, created). An existing account with this email is left untouched."""
    email = email.strip().lower()
    existing = await db.scalar(select(User).where(func.lower(User.email) == email))
    if existing:
        return existing, False

    identity = AuthIdentity(email=email, password_hash=hash_password(password))
    db.add(identity)
    await db.flush()

    user = User(identity_id=identity.id, email=email, name=name, role=UserRole.SUPER_ADMIN)
    db.add(user)
    await db.flush()
    return user, True


async def run(email: str, name: str, password: str) -> int:
    await init_db()
    async with get_db_context() as db:
        user, created = await create_super_admin(db, email, name, password)

    if not created:
        print(f"User {user.email} already exists (role: {user.role.value})")
        return 1
    print(f"Super admin created: {user.email}")
    return 0


if __name__ == "__main__":
    if len(sys.argv) != 4 or len(sys.argv[3]) < 8:
        print(__doc__.strip())
        print("Password must be at least 8 characters.")
        sys.exit(2)
    sys.exit(asyncio.run(run(*sys.argv[1:4])))

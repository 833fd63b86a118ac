import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User
from app.auth.schemas import LoginRequest, LoginResponse, UserInfo
from app.auth.security import create_access_token, hash_password, verify_password
from app.core.config import settings
from app.core.enums import UserRole
from app.core.exceptions import ServiceError

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_FULL_NAME = "Admissions Admin"


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    """Case-insensitive lookup; emails are stored lowercased."""
    result = await db.execute(select(User).where(func.lower(User.email) == email.strip().lower()))
    return result.scalar_one_or_none()


async def login_user(db: AsyncSession, payload: LoginRequest) -> LoginResponse:
    """Check the password, then the account status. Unknown email and wrong password look the same."""
    user = await get_user_by_email(db, payload.email)
    if not user or not verify_password(payload.password, user.password_hash):
        logger.info("Failed login for %s", payload.email)
        raise ServiceError("Invalid credentials", status.HTTP_401_UNAUTHORIZED)
    if user.status != "ACTIVE":
        raise ServiceError("User is inactive", status.HTTP_403_FORBIDDEN)

    logger.info("User %s logged in", user.id)
    return LoginResponse(
        access_token=create_access_token(user.id, user.role),
        user=UserInfo(id=user.id, name=user.full_name, email=user.email, role=user.role),
        issued_at=datetime.now(timezone.utc),
    )


async def create_user(
    db: AsyncSession,
    email: str,
    password: str,
    full_name: str,
    role: str = UserRole.STAFF.value,
) -> User:
    user = User(
        full_name=full_name,
        email=email.strip().lower(),
        password_hash=hash_password(password),
        role=role,
        status="ACTIVE",
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def seed_admin(db: AsyncSession) -> None:
    """Create the ADMIN user from ADMIN_EMAIL / ADMIN_PASSWORD if it does not exist yet."""
    if not settings.admin_email or not settings.admin_password:
        logger.info("No admin email/password configured; skipping admin seed")
        return
    if await get_user_by_email(db, settings.admin_email):
        return
    await create_user(
        db, settings.admin_email, settings.admin_password, DEFAULT_ADMIN_FULL_NAME, role=UserRole.ADMIN.value
    )
    logger.info("Seeded admin user %s", settings.admin_email)

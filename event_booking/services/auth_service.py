"""
Authentication service handling user registration and login.
"""

import uuid

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from event_booking.models.user import User
from event_booking.schemas.user import UserCreate, UserLogin
from event_booking.core.errors import (
    AuthenticationError, AuthorizationError, ConflictError, translate_db_errors,
)
from event_booking.core.security import hash_password, verify_password, create_access_token
from event_booking.core.logging import get_logger

logger = get_logger(__name__)


@translate_db_errors("Failed to register user")
async def register_user(db: AsyncSession, user_data: UserCreate) -> User:
    """
    Register a new user with hashed password.
    Raises ConflictError if email or username already exists.
    """
    result = await db.execute(
        select(User).where(or_(User.email == user_data.email, User.username == user_data.username))
    )
    existing = result.scalars().first()
    if existing:
        reason = "email_exists" if existing.email == user_data.email else "username_exists"
        logger.warning("registration_failed", reason=reason)
        raise ConflictError(
            "Email already registered" if reason == "email_exists" else "Username already taken"
        )

    user = User(
        email=user_data.email,
        username=user_data.username,
        phone=user_data.phone,
        hashed_password=hash_password(user_data.password),
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)

    logger.info("user_registered", user_id=str(user.id))
    return user


@translate_db_errors("Failed to authenticate user")
async def authenticate_user(db: AsyncSession, login_data: UserLogin) -> str:
    """
    Authenticate user and return JWT access token.
    Raises AuthenticationError if credentials are invalid.
    """
    result = await db.execute(select(User).where(User.email == login_data.email))
    user = result.scalar_one_or_none()

    if not user or not verify_password(login_data.password, user.hashed_password):
        logger.warning("login_failed")
        raise AuthenticationError("Invalid email or password")

    if not user.is_active:
        raise AuthorizationError("Account is deactivated")

    token = create_access_token(data={"sub": str(user.id)})
    logger.info("user_logged_in", user_id=str(user.id))
    return token


@translate_db_errors("Failed to load user")
async def get_active_user(db: AsyncSession, user_id: uuid.UUID) -> User:
    """Resolve a token subject to an active user."""
    user = await db.get(User, user_id)
    if user is None:
        raise AuthenticationError("Invalid authentication token")
    if not user.is_active:
        raise AuthorizationError("Account is deactivated")
    return user

"""
Shared route dependencies.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
import uuid

from event_booking.core.errors import AuthorizationError
from event_booking.core.security import get_current_user_id
from event_booking.db.session import get_db
from event_booking.models.user import User
from event_booking.services.auth_service import get_active_user


async def get_current_user(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> User:
    return await get_active_user(db, user_id)


async def get_current_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise AuthorizationError("Administrator access required")
    return user

"""
Booking endpoints for the authenticated user, plus the payment confirmation hook.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from event_booking.api.deps import get_current_admin, get_current_user
from event_booking.core.errors import NotFoundError
from event_booking.core.security import get_current_user_id
from event_booking.db.session import get_db
from event_booking.models.user import User
from event_booking.schemas.booking import BookingCancelResponse, BookingResponse
from event_booking.services.booking_service import (
    cancel_booking, confirm_booking, get_booking, get_user_bookings,
)
from event_booking.services.cache_service import invalidate_event_cache

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.get("/", response_model=list[BookingResponse])
async def list_user_bookings(
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Get the authenticated user's bookings, newest first."""
    return await get_user_bookings(db, user_id, status=status, limit=limit, offset=offset)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking_endpoint(
    booking_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    booking = await get_booking(db, booking_id)
    if booking.user_id != user_id:
        raise NotFoundError("Booking")
    return booking


@router.delete("/{booking_id}", response_model=BookingCancelResponse)
async def cancel_booking_endpoint(
    booking_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a booking and release its spots back to the event."""
    result = await cancel_booking(db, booking_id, user.id)
    await invalidate_event_cache()
    return BookingCancelResponse(
        success=result.success,
        message="Booking cancelled successfully",
        booking_id=result.booking.id,
        status=result.booking.status,
        refunded_spots=result.refunded_spots,
    )


@router.post("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking_endpoint(
    booking_id: uuid.UUID,
    _admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Called by the checkout flow once payment succeeded: pending -> confirmed."""
    return await confirm_booking(db, booking_id)

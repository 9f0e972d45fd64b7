"""
Administrative endpoints: event management and booking status changes.
"""

import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from event_booking.api.deps import get_current_admin
from event_booking.core.logging import get_logger
from event_booking.db.session import get_db
from event_booking.models.user import User
from event_booking.schemas.booking import BookingResponse, BookingStatusUpdate, EventBookingStats
from event_booking.schemas.event import EventCreate, EventResponse, EventUpdate
from event_booking.services.booking_service import (
    get_event_booking_count, get_event_total_attendees, update_booking_status,
)
from event_booking.services.cache_service import invalidate_event_cache
from event_booking.services.event_service import create_event, get_event, update_event

logger = get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post("/events/", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event_endpoint(
    event_data: EventCreate,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    event = await create_event(db, event_data)
    await invalidate_event_cache()
    logger.info("admin_event_created", admin_id=str(admin.id), event_id=str(event.id))
    return event


@router.patch("/events/{event_id}", response_model=EventResponse)
async def update_event_endpoint(
    event_id: uuid.UUID,
    changes: EventUpdate,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    event = await update_event(db, event_id, changes)
    await invalidate_event_cache()
    return event


@router.get("/events/{event_id}/bookings/stats", response_model=EventBookingStats)
async def event_booking_stats(
    event_id: uuid.UUID,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    event = await get_event(db, event_id)
    return EventBookingStats(
        event_id=event.id,
        booking_count=await get_event_booking_count(db, event_id),
        total_attendees=await get_event_total_attendees(db, event_id),
        available_spots=event.available_spots,
        capacity=event.capacity,
    )


@router.patch("/bookings/{booking_id}/status", response_model=BookingResponse)
async def update_booking_status_endpoint(
    booking_id: uuid.UUID,
    payload: BookingStatusUpdate,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    booking = await update_booking_status(db, booking_id, payload.status)
    await invalidate_event_cache()
    logger.info(
        "admin_booking_status_changed",
        admin_id=str(admin.id),
        booking_id=str(booking_id),
        status=booking.status,
    )
    return booking

"""
Event catalogue endpoints and the booking entry point.

Listings are cached in Redis; single events and capacity checks always
read the live counter.
"""

import uuid
from decimal import ROUND_HALF_UP, Decimal

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from event_booking.core.config import get_settings
from event_booking.core.logging import get_logger
from event_booking.api.deps import get_current_user
from event_booking.db.session import get_db, get_session_factory
from event_booking.models.user import User
from event_booking.schemas.booking import (
    BookingCreate, BookingCreateResponse, BookingResponse, CapacityResponse, PaymentInfo,
)
from event_booking.schemas.event import EventFilters, EventListResponse, EventResponse
from event_booking.services.booking_service import book_event, check_capacity
from event_booking.services.cache_service import (
    get_cached_events, invalidate_event_cache, set_cached_events,
)
from event_booking.services.event_service import get_event, list_events, search_events
from event_booking.services.notification_service import (
    NotificationSender, dispatch_booking_notifications, get_notification_sender,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/events", tags=["Events"])


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@router.get("/", response_model=EventListResponse)
async def list_events_endpoint(
    filters: EventFilters = Depends(),
    db: AsyncSession = Depends(get_db),
):
    """
    List events with filters and pagination.
    Pages are cached in Redis and invalidated on every inventory change.
    """
    cached = await get_cached_events(filters)
    if cached:
        cached["cached"] = True
        return EventListResponse(**cached)

    events, total = await list_events(db, filters)
    response_data = {
        "events": [EventResponse.model_validate(e).model_dump(mode="json") for e in events],
        "total": total,
        "page": filters.page,
        "page_size": filters.page_size,
        "cached": False,
    }
    await set_cached_events(filters, response_data)
    return EventListResponse(**response_data)


@router.get("/search", response_model=list[EventResponse])
async def search_events_endpoint(
    q: str = Query(..., min_length=2, max_length=100),
    db: AsyncSession = Depends(get_db),
):
    """Search published upcoming events by title, description or city."""
    return await search_events(db, q)


@router.post("/book", response_model=BookingCreateResponse, status_code=status.HTTP_201_CREATED)
async def book_event_endpoint(
    booking_data: BookingCreate,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    sender: NotificationSender = Depends(get_notification_sender),
):
    """
    Reserve spots on an event for the authenticated user.

    The booking starts as `pending`; the returned payment block is what the
    checkout flow charges. Confirmation notifications go out after the
    response and never affect it.
    """
    booking = await book_event(db, user.id, booking_data.event_id, booking_data.attendees)
    await invalidate_event_cache()

    background_tasks.add_task(dispatch_booking_notifications, session_factory, sender, booking.id)

    return BookingCreateResponse(
        booking=BookingResponse.model_validate(booking),
        payment=PaymentInfo(
            booking_id=booking.id,
            amount=to_minor_units(booking.total_price),
            currency=get_settings().BOOKING_CURRENCY,
        ),
    )


@router.get("/{event_id}/capacity", response_model=CapacityResponse)
async def check_capacity_endpoint(
    event_id: uuid.UUID,
    attendees: int = Query(1),
    db: AsyncSession = Depends(get_db),
):
    """Advisory availability check; nothing is reserved."""
    result = await check_capacity(db, event_id, attendees)
    return CapacityResponse(
        event_id=event_id,
        requested=attendees,
        available=result.available,
        available_spots=result.available_spots,
        capacity=result.capacity,
    )


@router.get("/{identifier}", response_model=EventResponse)
async def get_event_endpoint(
    identifier: str,
    db: AsyncSession = Depends(get_db),
):
    """Get a single event by id or slug. Not cached (needs live spot counts)."""
    return await get_event(db, identifier)

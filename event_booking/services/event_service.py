"""
Event service: administrative writes and catalogue reads.

Nothing in here touches `available_spots` after creation; the counter
belongs to booking_service.
"""

import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from event_booking.core.errors import ConflictError, NotFoundError, ValidationError, translate_db_errors
from event_booking.core.logging import get_logger
from event_booking.models.event import Event
from event_booking.schemas.event import EventCreate, EventFilters, EventUpdate

logger = get_logger(__name__)

# "limited" availability: fewer than 20% of spots left
LIMITED_AVAILABILITY_RATIO = 5


def as_utc(value: datetime) -> datetime:
    """Normalize to an aware UTC datetime (SQLite hands back naive values)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def slugify(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug or "event"


def parse_event_id(identifier: Union[str, uuid.UUID]) -> Optional[uuid.UUID]:
    if isinstance(identifier, uuid.UUID):
        return identifier
    try:
        return uuid.UUID(str(identifier))
    except ValueError:
        return None


@translate_db_errors("Failed to create event")
async def create_event(db: AsyncSession, event_data: EventCreate) -> Event:
    """Create a new event with its full capacity available."""
    if as_utc(event_data.event_date) <= datetime.now(timezone.utc):
        raise ValidationError("Event date must be in the future")

    slug = event_data.slug or slugify(event_data.title)
    existing = await db.execute(select(Event.id).where(Event.slug == slug))
    if existing.scalar_one_or_none():
        raise ConflictError(f"An event with slug '{slug}' already exists")

    event = Event(
        title=event_data.title,
        slug=slug,
        description=event_data.description,
        price=event_data.price,
        event_date=as_utc(event_data.event_date),
        duration_hours=event_data.duration_hours,
        venue_name=event_data.venue_name,
        venue_address=event_data.venue_address,
        venue_city=event_data.venue_city,
        venue_country=event_data.venue_country,
        capacity=event_data.capacity,
        available_spots=event_data.capacity,  # All spots available initially
        is_published=event_data.is_published,
    )
    db.add(event)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"An event with slug '{slug}' already exists")
    await db.refresh(event)

    logger.info("event_created", event_id=str(event.id), slug=event.slug, capacity=event.capacity)
    return event


@translate_db_errors("Failed to fetch event")
async def get_event(db: AsyncSession, identifier: Union[str, uuid.UUID]) -> Event:
    """Get a single event by UUID or slug."""
    event_id = parse_event_id(identifier)
    criterion = Event.id == event_id if event_id else Event.slug == str(identifier)

    result = await db.execute(
        select(Event).where(criterion).execution_options(populate_existing=True)
    )
    event = result.scalar_one_or_none()
    if not event:
        raise NotFoundError("Event")
    return event


def _time_frame_bounds(time_frame: str, now: datetime) -> tuple[Optional[datetime], Optional[datetime]]:
    if time_frame == "upcoming":
        return now, None
    if time_frame == "this-week":
        return now, now + timedelta(days=7)
    if time_frame == "this-month":
        first_of_next = (now.replace(day=1) + timedelta(days=32)).replace(
            day=1, hour=0, minute=0, second=0, microsecond=0
        )
        return now, first_of_next
    return None, None


@translate_db_errors("Failed to fetch events")
async def list_events(db: AsyncSession, filters: EventFilters) -> tuple[list[Event], int]:
    """
    List events with filters and pagination, soonest first.
    Uses ix_events_event_date for time frames and ix_events_available_date
    for the availability filters.
    """
    query = select(Event)

    if filters.published_only:
        query = query.where(Event.is_published.is_(True))
    if filters.city:
        query = query.where(func.lower(Event.venue_city) == filters.city.lower())
    if filters.country:
        query = query.where(func.lower(Event.venue_country) == filters.country.lower())

    start, end = _time_frame_bounds(filters.time_frame, datetime.now(timezone.utc))
    if start is not None:
        query = query.where(Event.event_date >= start)
    if end is not None:
        query = query.where(Event.event_date < end)

    if filters.min_price is not None:
        query = query.where(Event.price >= filters.min_price)
    if filters.max_price is not None:
        query = query.where(Event.price <= filters.max_price)

    if filters.availability == "available":
        query = query.where(Event.available_spots > 0)
    elif filters.availability == "limited":
        query = query.where(
            Event.available_spots > 0,
            Event.available_spots * LIMITED_AVAILABILITY_RATIO < Event.capacity,
        )

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar()

    events_query = (
        query
        .order_by(Event.event_date.asc(), Event.created_at.desc())
        .offset((filters.page - 1) * filters.page_size)
        .limit(filters.page_size)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(events_query)
    return list(result.scalars().all()), total


@translate_db_errors("Failed to search events")
async def search_events(db: AsyncSession, term: str, limit: int = 50) -> list[Event]:
    """Published upcoming events whose title, description or city matches term."""
    pattern = f"%{term.strip()}%"
    result = await db.execute(
        select(Event)
        .where(
            Event.is_published.is_(True),
            Event.event_date >= datetime.now(timezone.utc),
            or_(
                Event.title.ilike(pattern),
                Event.description.ilike(pattern),
                Event.venue_city.ilike(pattern),
            ),
        )
        .order_by(Event.event_date.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


@translate_db_errors("Failed to update event")
async def update_event(db: AsyncSession, event_id: uuid.UUID, changes: EventUpdate) -> Event:
    """
    Apply administrative edits. Existing bookings keep the total_price they
    were created with even when the price changes here.
    """
    event = await get_event(db, event_id)
    updates = changes.model_dump(exclude_unset=True)

    if "event_date" in updates:
        if updates["event_date"] is None:
            raise ValidationError("Event date cannot be empty")
        updates["event_date"] = as_utc(updates["event_date"])
        if updates["event_date"] <= datetime.now(timezone.utc):
            raise ValidationError("Event date must be in the future")
    for required in ("title", "price", "duration_hours", "is_published"):
        if required in updates and updates[required] is None:
            raise ValidationError(f"{required} cannot be empty")

    for field, value in updates.items():
        setattr(event, field, value)
    await db.flush()
    await db.refresh(event)

    logger.info("event_updated", event_id=str(event.id), fields=sorted(updates))
    return event

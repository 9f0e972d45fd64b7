"""
Booking service with concurrency-safe spot reservation.

CONCURRENCY STRATEGY: Conditional Decrement
===========================================

Problem:
  Two users try to book the last spots simultaneously.
  Both read available_spots=5, both subtract 3, both succeed.
  Result: Overbooking.

Solution:
  The decrement itself carries the capacity check:

    UPDATE events SET available_spots = available_spots - :n
    WHERE id = :event_id AND available_spots >= :n

  The database evaluates the predicate and the write atomically per row,
  so concurrent requests race freely until this statement and exactly the
  ones that still fit succeed. Zero rows affected means "not enough spots"
  and is reported as a conflict. There is no application lock, no version
  column and no retry loop; the CHECK constraints on events are the last
  safety net.

  The decrement and the booking insert share one transaction. If the insert
  fails (e.g. the partial unique index catches a concurrent duplicate) the
  transaction is rolled back and the spots come back with it.

Cancellation is the mirror image: a conditional status flip
(WHERE status <> 'cancelled') followed by an increment clamped to capacity,
again in one transaction, so a booking can only ever be refunded once.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from event_booking.core.config import get_settings
from event_booking.core.errors import (
    AppError, ConflictError, DatabaseError, ErrorCode, NotFoundError, ValidationError,
    translate_db_errors,
)
from event_booking.core.logging import get_logger
from event_booking.core.metrics import (
    booking_latency, record_booking_attempt, record_cancellation, spots_reserved,
)
from event_booking.models.booking import Booking, BookingStatus
from event_booking.models.event import Event
from event_booking.services.event_service import as_utc

logger = get_logger(__name__)

ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.ATTENDED, BookingStatus.CANCELLED},
    BookingStatus.ATTENDED: set(),
    BookingStatus.CANCELLED: set(),
}

# Statuses that hold spots against an event's inventory
ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.ATTENDED)

# Statuses a booking may be created in or cancelled from
INITIAL_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)
CANCELLABLE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)

NOTIFICATION_FIELDS = {"email": "email_notified", "whatsapp": "whatsapp_notified"}

_OUTCOMES = {
    ErrorCode.VALIDATION_ERROR: "validation",
    ErrorCode.NOT_FOUND: "not_found",
    ErrorCode.CONFLICT: "conflict",
}


@dataclass(frozen=True)
class CapacityCheck:
    available: bool
    available_spots: int
    capacity: int


@dataclass(frozen=True)
class CancellationResult:
    success: bool
    refunded_spots: int
    booking: Booking


def _validate_attendees(attendees) -> None:
    max_attendees = get_settings().MAX_ATTENDEES_PER_BOOKING
    if isinstance(attendees, bool) or not isinstance(attendees, int):
        raise ValidationError("Number of attendees must be a whole number")
    if attendees < 1:
        raise ValidationError("Number of attendees must be at least 1")
    if attendees > max_attendees:
        raise ValidationError(f"Maximum {max_attendees} attendees per booking")


def _parse_status(value) -> BookingStatus:
    try:
        return BookingStatus(value)
    except ValueError:
        raise ValidationError(
            f"Invalid booking status '{value}'. "
            f"Expected one of: {', '.join(s.value for s in BookingStatus)}"
        )


def _not_cancellable_message(status: str) -> str:
    if status == BookingStatus.CANCELLED.value:
        return "Booking already cancelled"
    return f"Cannot cancel {status} booking"


async def _has_active_booking(db: AsyncSession, user_id: uuid.UUID, event_id: uuid.UUID) -> bool:
    result = await db.execute(
        select(Booking.id)
        .where(
            Booking.user_id == user_id,
            Booking.event_id == event_id,
            Booking.status != BookingStatus.CANCELLED.value,
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def _load_booking(db: AsyncSession, booking_id: uuid.UUID) -> Booking:
    result = await db.execute(
        select(Booking).where(Booking.id == booking_id).execution_options(populate_existing=True)
    )
    booking = result.scalar_one_or_none()
    if booking is None:
        raise NotFoundError("Booking")
    return booking


@translate_db_errors("Failed to create booking")
async def _reserve(
    db: AsyncSession,
    user_id: uuid.UUID,
    event_id: uuid.UUID,
    attendees: int,
    status: BookingStatus,
) -> Booking:
    if not user_id or not event_id:
        raise ValidationError("User ID and Event ID are required")
    _validate_attendees(attendees)
    status = _parse_status(status)
    if status not in INITIAL_STATUSES:
        raise ValidationError("A new booking must be pending or confirmed")

    result = await db.execute(
        select(Event).where(Event.id == event_id).execution_options(populate_existing=True)
    )
    event = result.scalar_one_or_none()
    if event is None:
        raise NotFoundError("Event")
    if not event.is_published:
        raise ValidationError("Event is not available for booking")
    if as_utc(event.event_date) <= datetime.now(timezone.utc):
        raise ValidationError("Cannot book past events")

    if await _has_active_booking(db, user_id, event_id):
        raise ConflictError("You already have a booking for this event")

    # Frozen now; later price edits never reach this booking
    total_price = Decimal(event.price) * attendees

    try:
        decrement = await db.execute(
            update(Event)
            .where(Event.id == event_id, Event.available_spots >= attendees)
            .values(
                available_spots=Event.available_spots - attendees,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        if decrement.rowcount == 0:
            remaining = (
                await db.execute(select(Event.available_spots).where(Event.id == event_id))
            ).scalar_one()
            await db.rollback()
            logger.warning(
                "booking_failed_capacity",
                event_id=str(event_id),
                requested=attendees,
                available=remaining,
            )
            raise ConflictError(f"Insufficient capacity. Only {remaining} spot(s) available")

        booking = Booking(
            user_id=user_id,
            event_id=event_id,
            attendees=attendees,
            total_price=total_price,
            status=status.value,
        )
        db.add(booking)
        await db.flush()
        await db.refresh(booking)
        await db.commit()
    except IntegrityError as exc:
        # Spots are restored by the rollback
        await db.rollback()
        if "unique" in str(exc.orig).lower():
            logger.info("booking_failed_duplicate", user_id=str(user_id), event_id=str(event_id))
            raise ConflictError("You already have a booking for this event")
        raise DatabaseError("Failed to create booking") from exc
    except SQLAlchemyError:
        await db.rollback()
        raise

    logger.info(
        "booking_created",
        booking_id=str(booking.id),
        user_id=str(user_id),
        event_id=str(event_id),
        attendees=attendees,
        status=status.value,
        total_price=str(total_price),
    )
    return booking


async def book_event(
    db: AsyncSession,
    user_id: uuid.UUID,
    event_id: uuid.UUID,
    attendees: int = 1,
    status: BookingStatus = BookingStatus.PENDING,
) -> Booking:
    """
    Reserve `attendees` spots on an event for a user.

    Raises ValidationError, NotFoundError, ConflictError (capacity exceeded
    or duplicate booking) or DatabaseError. Every precondition is checked
    before the inventory is touched; a failure after the decrement rolls
    the decrement back. The booking is created in `pending`, or in
    `confirmed` when the caller has already taken payment.
    """
    with booking_latency.time():
        try:
            booking = await _reserve(db, user_id, event_id, attendees, status)
        except AppError as exc:
            record_booking_attempt(_OUTCOMES.get(exc.code, "error"))
            raise
    record_booking_attempt("success")
    spots_reserved.inc(attendees)
    return booking


async def _release(db: AsyncSession, booking: Booking) -> int:
    """
    Flip a pending or confirmed booking to cancelled and hand its spots back,
    exactly once. Losing the flip to a concurrent cancel or check-in is a
    ValidationError.
    """
    booking_id, event_id, attendees = booking.id, booking.event_id, booking.attendees

    try:
        flipped = await db.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.status.in_([s.value for s in CANCELLABLE_STATUSES]),
            )
            .values(status=BookingStatus.CANCELLED.value, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        if flipped.rowcount == 0:
            current = (
                await db.execute(select(Booking.status).where(Booking.id == booking_id))
            ).scalar_one()
            await db.rollback()
            raise ValidationError(_not_cancellable_message(current))

        restored = Event.available_spots + attendees
        await db.execute(
            update(Event)
            .where(Event.id == event_id)
            .values(
                available_spots=case((restored > Event.capacity, Event.capacity), else_=restored),
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise

    await db.refresh(booking)
    return attendees


@translate_db_errors("Failed to cancel booking")
async def cancel_booking(
    db: AsyncSession,
    booking_id: uuid.UUID,
    user_id: uuid.UUID,
) -> CancellationResult:
    """
    Cancel a user's booking and release its spots back to the event.

    Cancelling someone else's booking is reported as a ValidationError, as
    is cancelling twice or cancelling an attended booking; none of those
    refunds anything.
    """
    if not booking_id or not user_id:
        raise ValidationError("Booking ID and User ID are required")

    try:
        booking = await _load_booking(db, booking_id)
        if booking.user_id != user_id:
            logger.warning(
                "cancellation_rejected",
                booking_id=str(booking_id),
                user_id=str(user_id),
                reason="not_owner",
            )
            raise ValidationError("You do not have permission to cancel this booking")
        if booking.status not in {s.value for s in CANCELLABLE_STATUSES}:
            raise ValidationError(_not_cancellable_message(booking.status))

        refunded = await _release(db, booking)
    except ValidationError:
        record_cancellation(False)
        raise

    record_cancellation(True, refunded)
    logger.info(
        "booking_cancelled",
        booking_id=str(booking_id),
        user_id=str(user_id),
        event_id=str(booking.event_id),
        spots_refunded=refunded,
    )
    return CancellationResult(success=True, refunded_spots=refunded, booking=booking)


@translate_db_errors("Failed to check event capacity")
async def check_capacity(db: AsyncSession, event_id: uuid.UUID, requested: int) -> CapacityCheck:
    """
    Advisory capacity read for display. Reserves nothing; the conditional
    decrement in book_event is the authoritative check.
    """
    if isinstance(requested, bool) or not isinstance(requested, int) or requested < 1:
        raise ValidationError("Requested spots must be at least 1")

    result = await db.execute(
        select(Event.available_spots, Event.capacity).where(Event.id == event_id)
    )
    row = result.one_or_none()
    if row is None:
        raise NotFoundError("Event")

    return CapacityCheck(
        available=row.available_spots >= requested,
        available_spots=row.available_spots,
        capacity=row.capacity,
    )


@translate_db_errors("Failed to retrieve booking")
async def get_booking(db: AsyncSession, booking_id: uuid.UUID) -> Booking:
    return await _load_booking(db, booking_id)


@translate_db_errors("Failed to retrieve user bookings")
async def get_user_bookings(
    db: AsyncSession,
    user_id: uuid.UUID,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Booking]:
    """Get a user's bookings, newest first."""
    query = select(Booking).where(Booking.user_id == user_id)
    if status is not None:
        query = query.where(Booking.status == _parse_status(status).value)

    result = await db.execute(
        query
        .order_by(Booking.created_at.desc())
        .limit(limit)
        .offset(offset)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


@translate_db_errors("Failed to update booking status")
async def update_booking_status(db: AsyncSession, booking_id: uuid.UUID, new_status: str) -> Booking:
    """
    Administrative / payment-driven status change.

    pending -> confirmed is the payment success hook; confirmed -> attended
    is check-in. Transitions into cancelled refund spots through the same
    path as cancel_booking. Nothing leaves cancelled.
    """
    target = _parse_status(new_status)
    booking = await _load_booking(db, booking_id)
    current = BookingStatus(booking.status)

    if current == BookingStatus.CANCELLED:
        raise ValidationError("Booking already cancelled")
    if target == current:
        raise ValidationError(f"Booking is already {current.value}")
    if target not in ALLOWED_TRANSITIONS[current]:
        raise ValidationError(f"Cannot change booking status from {current.value} to {target.value}")

    if target == BookingStatus.CANCELLED:
        refunded = await _release(db, booking)
        record_cancellation(True, refunded)
        logger.info("booking_cancelled", booking_id=str(booking_id), spots_refunded=refunded, by="admin")
        return booking

    changed = await db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.status == current.value)
        .values(status=target.value, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    if changed.rowcount == 0:
        await db.rollback()
        raise ConflictError("Booking status changed concurrently, please retry")
    await db.commit()
    await db.refresh(booking)

    logger.info(
        "booking_status_changed",
        booking_id=str(booking_id),
        from_status=current.value,
        to_status=target.value,
    )
    return booking


async def confirm_booking(db: AsyncSession, booking_id: uuid.UUID) -> Booking:
    """Payment succeeded: pending -> confirmed."""
    return await update_booking_status(db, booking_id, BookingStatus.CONFIRMED.value)


@translate_db_errors("Failed to update notification status")
async def mark_notification_sent(db: AsyncSession, booking_id: uuid.UUID, channel: str) -> Booking:
    field = NOTIFICATION_FIELDS.get(channel)
    if field is None:
        raise ValidationError('Notification type must be "email" or "whatsapp"')

    result = await db.execute(
        update(Booking)
        .where(Booking.id == booking_id)
        .values({field: True, "updated_at": func.now()})
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise NotFoundError("Booking")
    await db.commit()
    return await _load_booking(db, booking_id)


@translate_db_errors("Failed to count event bookings")
async def get_event_booking_count(
    db: AsyncSession,
    event_id: uuid.UUID,
    status: Optional[str] = None,
) -> int:
    query = select(func.count(Booking.id)).where(Booking.event_id == event_id)
    if status is not None:
        query = query.where(Booking.status == _parse_status(status).value)
    return (await db.execute(query)).scalar_one()


@translate_db_errors("Failed to calculate total attendees")
async def get_event_total_attendees(
    db: AsyncSession,
    event_id: uuid.UUID,
    statuses: Iterable[BookingStatus] = ACTIVE_STATUSES,
) -> int:
    """Sum of attendees across the given statuses (default: all spot-holding ones)."""
    values = [BookingStatus(s).value for s in statuses]
    result = await db.execute(
        select(func.coalesce(func.sum(Booking.attendees), 0)).where(
            Booking.event_id == event_id,
            Booking.status.in_(values),
        )
    )
    return int(result.scalar_one())

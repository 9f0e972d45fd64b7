"""
Service-level tests for spot reservation and release.

These call booking_service directly, so they cover the inventory rules
without the HTTP layer in between.
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from event_booking.core.errors import ConflictError, DatabaseError, NotFoundError, ValidationError
from event_booking.models.booking import BookingStatus
from event_booking.models.event import Event
from event_booking.schemas.event import EventUpdate
from event_booking.services import booking_service
from event_booking.services.event_service import update_event


def failing_flush(message: str):
    async def _flush(self, objects=None):
        raise IntegrityError("INSERT INTO bookings ...", {}, Exception(message))
    return _flush


@pytest.mark.asyncio
async def test_book_event_reserves_spots(db_session, make_user, make_event, load_event):
    user = await make_user()
    event = await make_event(capacity=100, available_spots=50)

    booking = await booking_service.book_event(db_session, user.id, event.id, 3)

    assert booking.status == BookingStatus.PENDING.value
    assert booking.attendees == 3
    assert booking.total_price == Decimal("75.00")
    assert (await load_event(event.id)).available_spots == 47


@pytest.mark.asyncio
async def test_book_event_exactly_remaining(db_session, make_user, make_event, load_event):
    user = await make_user()
    event = await make_event(capacity=10, available_spots=4)

    await booking_service.book_event(db_session, user.id, event.id, 4)

    assert (await load_event(event.id)).available_spots == 0


@pytest.mark.asyncio
async def test_book_event_insufficient_capacity(db_session, make_user, make_event, load_event):
    user = await make_user()
    event = await make_event(capacity=100, available_spots=2)

    with pytest.raises(ConflictError) as exc_info:
        await booking_service.book_event(db_session, user.id, event.id, 5)

    assert exc_info.value.message == "Insufficient capacity. Only 2 spot(s) available"
    assert (await load_event(event.id)).available_spots == 2
    assert await booking_service.get_user_bookings(db_session, user.id) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("attendees,message", [
    (0, "Number of attendees must be at least 1"),
    (-1, "Number of attendees must be at least 1"),
    (11, "Maximum 10 attendees per booking"),
    ("2", "Number of attendees must be a whole number"),
])
async def test_book_event_rejects_bad_attendees(db_session, make_user, make_event, load_event, attendees, message):
    user = await make_user()
    event = await make_event(capacity=100, available_spots=100)

    with pytest.raises(ValidationError) as exc_info:
        await booking_service.book_event(db_session, user.id, event.id, attendees)

    assert exc_info.value.message == message
    assert (await load_event(event.id)).available_spots == 100


@pytest.mark.asyncio
async def test_book_event_missing_ids(db_session, make_user):
    user = await make_user()
    with pytest.raises(ValidationError):
        await booking_service.book_event(db_session, user.id, None, 1)


@pytest.mark.asyncio
async def test_book_event_unknown_event(db_session, make_user):
    user = await make_user()
    with pytest.raises(NotFoundError) as exc_info:
        await booking_service.book_event(db_session, user.id, uuid.uuid4(), 1)
    assert exc_info.value.message == "Event not found"


@pytest.mark.asyncio
async def test_book_event_past_event(db_session, make_user, make_event, load_event):
    user = await make_user()
    event = await make_event(event_date=datetime.now(timezone.utc) - timedelta(days=1))

    with pytest.raises(ValidationError) as exc_info:
        await booking_service.book_event(db_session, user.id, event.id, 1)

    assert exc_info.value.message == "Cannot book past events"
    assert (await load_event(event.id)).available_spots == 20


@pytest.mark.asyncio
async def test_book_event_duplicate(db_session, make_user, make_event, load_event):
    user = await make_user()
    event = await make_event()
    await booking_service.book_event(db_session, user.id, event.id, 2)

    with pytest.raises(ConflictError):
        await booking_service.book_event(db_session, user.id, event.id, 1)

    assert (await load_event(event.id)).available_spots == 18


@pytest.mark.asyncio
async def test_failed_insert_restores_spots(db_session, make_user, make_event, load_event, monkeypatch):
    """A storage failure after the decrement rolls the decrement back."""
    user = await make_user()
    event = await make_event(capacity=10, available_spots=10)
    monkeypatch.setattr(AsyncSession, "flush", failing_flush("FOREIGN KEY constraint failed"))

    with pytest.raises(DatabaseError) as exc_info:
        await booking_service.book_event(db_session, user.id, event.id, 4)

    monkeypatch.undo()
    assert exc_info.value.message == "Failed to create booking"
    assert (await load_event(event.id)).available_spots == 10
    assert await booking_service.get_user_bookings(db_session, user.id) == []


@pytest.mark.asyncio
async def test_unique_violation_on_insert_is_conflict(db_session, make_user, make_event, load_event, monkeypatch):
    user = await make_user()
    event = await make_event(capacity=10, available_spots=10)
    monkeypatch.setattr(
        AsyncSession, "flush",
        failing_flush("UNIQUE constraint failed: bookings.user_id, bookings.event_id"),
    )

    with pytest.raises(ConflictError) as exc_info:
        await booking_service.book_event(db_session, user.id, event.id, 4)

    monkeypatch.undo()
    assert exc_info.value.message == "You already have a booking for this event"
    assert (await load_event(event.id)).available_spots == 10


@pytest.mark.asyncio
async def test_storage_failure_is_database_error(db_session, make_user, make_event, monkeypatch):
    user = await make_user()
    event = await make_event()

    async def broken_execute(self, *args, **kwargs):
        raise OperationalError("SELECT ...", {}, Exception("database is locked"))

    monkeypatch.setattr(AsyncSession, "execute", broken_execute)

    with pytest.raises(DatabaseError):
        await booking_service.book_event(db_session, user.id, event.id, 1)
    with pytest.raises(DatabaseError):
        await booking_service.check_capacity(db_session, event.id, 1)


@pytest.mark.asyncio
async def test_price_edit_does_not_touch_existing_booking(db_session, make_user, make_event):
    user = await make_user()
    event = await make_event(price=Decimal("40.00"))
    booking = await booking_service.book_event(db_session, user.id, event.id, 2)

    await update_event(db_session, event.id, EventUpdate(price=Decimal("99.00")))
    await db_session.commit()

    reloaded = await booking_service.get_booking(db_session, booking.id)
    assert reloaded.total_price == Decimal("80.00")


@pytest.mark.asyncio
async def test_cancel_restores_spots(db_session, make_user, make_event, load_event):
    user = await make_user()
    event = await make_event(capacity=100, available_spots=50)
    booking = await booking_service.book_event(db_session, user.id, event.id, 3)

    result = await booking_service.cancel_booking(db_session, booking.id, user.id)

    assert result.success is True
    assert result.refunded_spots == 3
    assert result.booking.status == BookingStatus.CANCELLED.value
    assert (await load_event(event.id)).available_spots == 50


@pytest.mark.asyncio
async def test_cancel_twice_refunds_once(db_session, make_user, make_event, load_event):
    user = await make_user()
    event = await make_event(capacity=100, available_spots=50)
    booking = await booking_service.book_event(db_session, user.id, event.id, 3)
    await booking_service.cancel_booking(db_session, booking.id, user.id)

    with pytest.raises(ValidationError) as exc_info:
        await booking_service.cancel_booking(db_session, booking.id, user.id)

    assert exc_info.value.message == "Booking already cancelled"
    assert (await load_event(event.id)).available_spots == 50


@pytest.mark.asyncio
async def test_cancel_by_other_user(db_session, make_user, make_event, load_event):
    owner = await make_user()
    stranger = await make_user()
    event = await make_event()
    booking = await booking_service.book_event(db_session, owner.id, event.id, 2)

    with pytest.raises(ValidationError):
        await booking_service.cancel_booking(db_session, booking.id, stranger.id)

    assert (await booking_service.get_booking(db_session, booking.id)).status == BookingStatus.PENDING.value
    assert (await load_event(event.id)).available_spots == 18


@pytest.mark.asyncio
async def test_cancel_unknown_booking(db_session, make_user):
    user = await make_user()
    with pytest.raises(NotFoundError):
        await booking_service.cancel_booking(db_session, uuid.uuid4(), user.id)


@pytest.mark.asyncio
async def test_release_clamps_to_capacity(db_session, make_user, make_event, session_factory, load_event):
    """Restored spots never exceed capacity, even if the counter was adjusted meanwhile."""
    user = await make_user()
    event = await make_event(capacity=10, available_spots=10)
    booking = await booking_service.book_event(db_session, user.id, event.id, 3)

    async with session_factory() as session:
        stored = await session.get(Event, event.id)
        stored.available_spots = 9
        await session.commit()

    await booking_service.cancel_booking(db_session, booking.id, user.id)
    assert (await load_event(event.id)).available_spots == 10


@pytest.mark.asyncio
async def test_spots_are_conserved(db_session, make_user, make_event, load_event):
    """available_spots + attendees held by live bookings == capacity, at every step."""
    event = await make_event(capacity=30, available_spots=30)
    users = [await make_user() for _ in range(4)]

    async def assert_conserved():
        held = await booking_service.get_event_total_attendees(db_session, event.id)
        assert (await load_event(event.id)).available_spots + held == 30

    bookings = []
    for user, attendees in zip(users, (5, 7, 2, 9)):
        bookings.append(await booking_service.book_event(db_session, user.id, event.id, attendees))
        await assert_conserved()

    await booking_service.cancel_booking(db_session, bookings[1].id, users[1].id)
    await assert_conserved()

    await booking_service.update_booking_status(db_session, bookings[0].id, "confirmed")
    await booking_service.update_booking_status(db_session, bookings[0].id, "attended")
    await assert_conserved()

    await booking_service.update_booking_status(db_session, bookings[2].id, "cancelled")
    await assert_conserved()

    with pytest.raises(ConflictError):
        await booking_service.book_event(db_session, users[3].id, event.id, 1)
    await assert_conserved()

    assert (await load_event(event.id)).available_spots == 16


@pytest.mark.asyncio
async def test_rebook_after_cancel(db_session, make_user, make_event, load_event):
    user = await make_user()
    event = await make_event()
    first = await booking_service.book_event(db_session, user.id, event.id, 2)
    await booking_service.cancel_booking(db_session, first.id, user.id)

    second = await booking_service.book_event(db_session, user.id, event.id, 5)

    assert second.id != first.id
    assert (await load_event(event.id)).available_spots == 15


@pytest.mark.asyncio
async def test_check_capacity_is_read_only(db_session, make_event, load_event):
    event = await make_event(capacity=100, available_spots=7)

    fits = await booking_service.check_capacity(db_session, event.id, 7)
    too_many = await booking_service.check_capacity(db_session, event.id, 8)

    assert fits.available is True
    assert too_many.available is False
    assert too_many.available_spots == 7
    assert too_many.capacity == 100
    assert (await load_event(event.id)).available_spots == 7


@pytest.mark.asyncio
async def test_check_capacity_errors(db_session, make_event):
    event = await make_event()
    with pytest.raises(ValidationError):
        await booking_service.check_capacity(db_session, event.id, 0)
    with pytest.raises(NotFoundError):
        await booking_service.check_capacity(db_session, uuid.uuid4(), 1)


@pytest.mark.asyncio
async def test_status_transitions(db_session, make_user, make_event):
    user = await make_user()
    event = await make_event()
    booking = await booking_service.book_event(db_session, user.id, event.id, 1)

    with pytest.raises(ValidationError) as exc_info:
        await booking_service.update_booking_status(db_session, booking.id, "attended")
    assert exc_info.value.message == "Cannot change booking status from pending to attended"

    confirmed = await booking_service.confirm_booking(db_session, booking.id)
    assert confirmed.status == BookingStatus.CONFIRMED.value

    with pytest.raises(ValidationError):
        await booking_service.confirm_booking(db_session, booking.id)

    attended = await booking_service.update_booking_status(db_session, booking.id, "attended")
    assert attended.status == BookingStatus.ATTENDED.value

    with pytest.raises(ValidationError):
        await booking_service.update_booking_status(db_session, booking.id, "cancelled")
    with pytest.raises(ValidationError):
        await booking_service.update_booking_status(db_session, booking.id, "refunded")


@pytest.mark.asyncio
async def test_nothing_leaves_cancelled(db_session, make_user, make_event, load_event):
    user = await make_user()
    event = await make_event()
    booking = await booking_service.book_event(db_session, user.id, event.id, 4)

    cancelled = await booking_service.update_booking_status(db_session, booking.id, "cancelled")
    assert cancelled.status == BookingStatus.CANCELLED.value
    assert (await load_event(event.id)).available_spots == 20

    for target in ("pending", "confirmed", "attended"):
        with pytest.raises(ValidationError) as exc_info:
            await booking_service.update_booking_status(db_session, booking.id, target)
        assert exc_info.value.message == "Booking already cancelled"
    assert (await load_event(event.id)).available_spots == 20


@pytest.mark.asyncio
async def test_mark_notification_sent(db_session, make_user, make_event):
    user = await make_user()
    event = await make_event()
    booking = await booking_service.book_event(db_session, user.id, event.id, 1)

    updated = await booking_service.mark_notification_sent(db_session, booking.id, "whatsapp")
    assert updated.whatsapp_notified is True
    assert updated.email_notified is False

    with pytest.raises(ValidationError):
        await booking_service.mark_notification_sent(db_session, booking.id, "sms")
    with pytest.raises(NotFoundError):
        await booking_service.mark_notification_sent(db_session, uuid.uuid4(), "email")


@pytest.mark.asyncio
async def test_event_booking_stats(db_session, make_user, make_event):
    event = await make_event()
    users = [await make_user() for _ in range(3)]
    bookings = [
        await booking_service.book_event(db_session, user.id, event.id, n)
        for user, n in zip(users, (1, 2, 3))
    ]
    await booking_service.cancel_booking(db_session, bookings[0].id, users[0].id)

    assert await booking_service.get_event_booking_count(db_session, event.id) == 3
    assert await booking_service.get_event_booking_count(db_session, event.id, status="cancelled") == 1
    assert await booking_service.get_event_total_attendees(db_session, event.id) == 5
    assert await booking_service.get_event_total_attendees(
        db_session, event.id, statuses=[BookingStatus.CANCELLED]
    ) == 1


@pytest.mark.asyncio
async def test_user_bookings_newest_first(db_session, make_user, make_event):
    user = await make_user()
    first_event = await make_event()
    second_event = await make_event()
    await booking_service.book_event(db_session, user.id, first_event.id, 1)
    await booking_service.book_event(db_session, user.id, second_event.id, 1)

    bookings = await booking_service.get_user_bookings(db_session, user.id)
    assert len(bookings) == 2
    assert {b.event_id for b in bookings} == {first_event.id, second_event.id}

    with pytest.raises(ValidationError):
        await booking_service.get_user_bookings(db_session, user.id, status="bogus")


@pytest.mark.asyncio
async def test_book_event_confirmed_at_creation(db_session, make_user, make_event, load_event):
    """A booking paid up front starts confirmed and still takes its spots."""
    user = await make_user()
    event = await make_event(capacity=10, available_spots=10)

    booking = await booking_service.book_event(
        db_session, user.id, event.id, 3, status=BookingStatus.CONFIRMED
    )

    assert booking.status == BookingStatus.CONFIRMED.value
    remaining = (await load_event(event.id)).available_spots
    assert remaining == 7
    held = await booking_service.get_event_total_attendees(db_session, event.id)
    assert remaining + held == 10

    result = await booking_service.cancel_booking(db_session, booking.id, user.id)
    assert result.refunded_spots == 3
    assert (await load_event(event.id)).available_spots == 10


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["attended", "cancelled", "bogus"])
async def test_book_event_rejects_non_initial_status(db_session, make_user, make_event, load_event, status):
    user = await make_user()
    event = await make_event()

    with pytest.raises(ValidationError):
        await booking_service.book_event(db_session, user.id, event.id, 2, status=status)

    assert (await load_event(event.id)).available_spots == 20
    assert await booking_service.get_user_bookings(db_session, user.id) == []


@pytest.mark.asyncio
async def test_cannot_cancel_attended_booking(db_session, make_user, make_event, load_event):
    """Checked-in bookings keep their spots; neither the user nor an admin can refund them."""
    user = await make_user()
    event = await make_event(capacity=10, available_spots=10)
    booking = await booking_service.book_event(db_session, user.id, event.id, 3)
    await booking_service.confirm_booking(db_session, booking.id)
    await booking_service.update_booking_status(db_session, booking.id, "attended")

    with pytest.raises(ValidationError):
        await booking_service.update_booking_status(db_session, booking.id, "cancelled")

    with pytest.raises(ValidationError) as exc_info:
        await booking_service.cancel_booking(db_session, booking.id, user.id)

    assert exc_info.value.message == "Cannot cancel attended booking"
    stored = await booking_service.get_booking(db_session, booking.id)
    assert stored.status == BookingStatus.ATTENDED.value
    assert (await load_event(event.id)).available_spots == 7


@pytest.mark.asyncio
async def test_release_loses_to_concurrent_check_in(db_session, make_user, make_event, session_factory, load_event):
    """A check-in that lands between reading and cancelling wins; nothing is refunded."""
    user = await make_user()
    event = await make_event(capacity=10, available_spots=10)
    booking = await booking_service.book_event(db_session, user.id, event.id, 4)

    async with session_factory() as session:
        await booking_service.confirm_booking(session, booking.id)
        await booking_service.update_booking_status(session, booking.id, "attended")

    # `booking` still holds the stale pending status read before the check-in
    with pytest.raises(ValidationError) as exc_info:
        await booking_service._release(db_session, booking)

    assert exc_info.value.message == "Cannot cancel attended booking"
    assert (await load_event(event.id)).available_spots == 6

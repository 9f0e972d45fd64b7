"""
Booking notifications (email, WhatsApp), fire-and-forget.

The booking endpoint schedules dispatch_booking_notifications as a
background task, so the response never waits on delivery. Every failure
in here is logged and counted, never raised: a notification problem must
not turn a successful booking into an error.

Senders are swappable behind NotificationSender:
- LogNotificationSender: writes the message to the log (default, dev/test)
- WebhookNotificationSender: POSTs JSON to a relay that owns delivery
"""

import uuid
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from event_booking.core.config import get_settings
from event_booking.core.logging import get_logger
from event_booking.core.metrics import record_notification
from event_booking.models.user import User
from event_booking.services.booking_service import get_booking, mark_notification_sent
from event_booking.services.event_service import as_utc, get_event

logger = get_logger(__name__)

TEMPLATE_BOOKING_CREATED = "event_booking_created"


class NotificationSender(ABC):
    """Delivers one message on one channel. Raises on failure."""

    @abstractmethod
    async def send(self, channel: str, recipient: str, template: str, data: dict) -> None:
        pass


class LogNotificationSender(NotificationSender):

    async def send(self, channel: str, recipient: str, template: str, data: dict) -> None:
        logger.info(
            "notification_logged",
            channel=channel,
            recipient=recipient,
            template=template,
            booking_id=data.get("booking_id"),
        )


class WebhookNotificationSender(NotificationSender):
    """Hands the message to an HTTP relay; non-2xx responses are failures."""

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not url:
            raise ValueError("NOTIFICATION_WEBHOOK_URL must be set for the webhook backend")
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def send(self, channel: str, recipient: str, template: str, data: dict) -> None:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                self.url,
                json={
                    "channel": channel,
                    "recipient": recipient,
                    "template": template,
                    "data": data,
                },
            )
            response.raise_for_status()


def build_notification_sender() -> NotificationSender:
    """
    Sender selected by NOTIFICATION_BACKEND ("log" or "webhook").
    Unknown values and a webhook backend without a URL fall back to
    logging, so a notification misconfiguration never blocks bookings.
    """
    settings = get_settings()
    if settings.NOTIFICATION_BACKEND == "webhook":
        try:
            return WebhookNotificationSender(
                settings.NOTIFICATION_WEBHOOK_URL,
                timeout=settings.NOTIFICATION_TIMEOUT_SECONDS,
            )
        except ValueError as e:
            logger.error("notification_backend_misconfigured", backend="webhook", error=str(e))
            return LogNotificationSender()
    if settings.NOTIFICATION_BACKEND != "log":
        logger.warning("unknown_notification_backend", backend=settings.NOTIFICATION_BACKEND)
    return LogNotificationSender()


_sender: Optional[NotificationSender] = None


def get_notification_sender() -> NotificationSender:
    """Sender singleton; also used as a FastAPI dependency."""
    global _sender
    if _sender is None:
        _sender = build_notification_sender()
    return _sender


def build_booking_payload(booking, event, user: User) -> dict:
    event_date = as_utc(event.event_date)
    venue = ", ".join(
        part for part in (event.venue_name, event.venue_address, event.venue_city, event.venue_country)
        if part
    )
    return {
        "booking_id": str(booking.id),
        "customer_name": user.username,
        "customer_email": user.email,
        "event_title": event.title,
        "event_date": event_date.isoformat(),
        "event_time": event_date.strftime("%H:%M UTC"),
        "venue": venue,
        "ticket_count": booking.attendees,
        "total_price": str(booking.total_price),
    }


async def _deliver(db, sender: NotificationSender, channel: str, recipient: str, data: dict) -> bool:
    booking_id = uuid.UUID(data["booking_id"])
    try:
        await sender.send(channel, recipient, TEMPLATE_BOOKING_CREATED, data)
    except Exception as e:
        logger.error("notification_failed", channel=channel, booking_id=data["booking_id"], error=str(e))
        record_notification(channel, "failed")
        return False

    await mark_notification_sent(db, booking_id, channel)
    record_notification(channel, "sent")
    logger.info("notification_sent", channel=channel, booking_id=data["booking_id"])
    return True


async def dispatch_booking_notifications(
    session_factory: async_sessionmaker,
    sender: NotificationSender,
    booking_id: uuid.UUID,
) -> None:
    """
    Send the booking confirmation by email (always) and WhatsApp (when the
    user has a phone number), flagging each channel on success.
    Runs outside the request with its own session.
    """
    try:
        async with session_factory() as db:
            booking = await get_booking(db, booking_id)
            event = await get_event(db, booking.event_id)
            user = await db.get(User, booking.user_id)
            if user is None:
                logger.warning("notification_skipped", booking_id=str(booking_id), reason="user_missing")
                return

            data = build_booking_payload(booking, event, user)
            await _deliver(db, sender, "email", user.email, data)

            if user.phone:
                await _deliver(db, sender, "whatsapp", user.phone, data)
            else:
                record_notification("whatsapp", "skipped")
                logger.info("notification_skipped", channel="whatsapp", booking_id=str(booking_id), reason="no_phone")
    except Exception as e:
        logger.error("booking_notifications_failed", booking_id=str(booking_id), error=str(e))

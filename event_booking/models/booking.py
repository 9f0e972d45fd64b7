"""
Booking model representing a user's claim on an event's spots.

Key design decisions:
- Partial unique index on (user_id, event_id) for non-cancelled rows: one
  live booking per user per event, rebooking allowed after cancelling.
  This also catches the race where the same user books twice concurrently.
- Status is kept on the row; cancellation never deletes the record
- total_price is frozen at booking time and never recomputed
"""

import enum
import uuid

from sqlalchemy import (
    Boolean, CheckConstraint, Column, ForeignKey, Index, Integer, Numeric, String, Uuid, text,
)
from sqlalchemy.orm import relationship

from event_booking.db.base import Base, TimestampMixin


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ATTENDED = "attended"
    CANCELLED = "cancelled"


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    event_id = Column(Uuid, ForeignKey("events.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value, index=True)
    attendees = Column(Integer, nullable=False, default=1)
    total_price = Column(Numeric(10, 2), nullable=False)
    email_notified = Column(Boolean, nullable=False, default=False)
    whatsapp_notified = Column(Boolean, nullable=False, default=False)

    user = relationship("User", back_populates="bookings", lazy="raise")
    event = relationship("Event", back_populates="bookings", lazy="raise")

    __table_args__ = (
        Index(
            "uq_bookings_active_user_event",
            "user_id",
            "event_id",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
        CheckConstraint("attendees > 0", name="check_booking_attendees_positive"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'attended', 'cancelled')",
            name="check_booking_status",
        ),
    )

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, user={self.user_id}, event={self.event_id}, status={self.status})>"

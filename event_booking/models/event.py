"""
Event model with spot inventory tracking.

Key design decisions:
- `available_spots` is a denormalized counter owned by the event; it is only
  ever changed by the conditional decrement (booking) and the clamped
  increment (cancellation) in booking_service, never overwritten directly
- CHECK constraints keep 0 <= available_spots <= capacity at the DB level
- Index on `event_date` for range queries (upcoming, this week, this month)
- Composite index on (available_spots, event_date) for "still has room" listings
"""

import uuid

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, Index, Integer, Numeric, String, Text, Uuid,
)
from sqlalchemy.orm import relationship

from event_booking.db.base import Base, TimestampMixin


class Event(Base, TimestampMixin):
    __tablename__ = "events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    event_date = Column(DateTime(timezone=True), nullable=False)
    duration_hours = Column(Integer, nullable=False, default=2)
    venue_name = Column(String(255), nullable=True)
    venue_address = Column(Text, nullable=True)
    venue_city = Column(String(100), nullable=True)
    venue_country = Column(String(100), nullable=True)
    capacity = Column(Integer, nullable=False)
    available_spots = Column(Integer, nullable=False)
    is_published = Column(Boolean, nullable=False, default=False)

    bookings = relationship("Booking", back_populates="event", lazy="raise")

    __table_args__ = (
        CheckConstraint("capacity > 0", name="check_capacity_positive"),
        CheckConstraint("available_spots >= 0", name="check_available_spots_non_negative"),
        CheckConstraint("available_spots <= capacity", name="check_available_lte_capacity"),
        CheckConstraint("price >= 0", name="check_price_non_negative"),
        Index("ix_events_event_date", "event_date"),
        Index("ix_events_venue_city", "venue_city"),
        Index("ix_events_is_published", "is_published"),
        Index("ix_events_available_date", "available_spots", "event_date"),
    )

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, title={self.title}, available={self.available_spots}/{self.capacity})>"

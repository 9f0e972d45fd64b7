"""
Pydantic schemas for booking-related request/response validation.

Attendee bounds are deliberately not enforced here: booking_service owns
that rule so the API reports it with the same error code as every other
booking precondition.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import AliasChoices, BaseModel, Field


class BookingCreate(BaseModel):
    event_id: uuid.UUID = Field(validation_alias=AliasChoices("eventId", "event_id"))
    attendees: int = 1


class BookingResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    event_id: uuid.UUID
    attendees: int
    total_price: Decimal
    status: str
    email_notified: bool = False
    whatsapp_notified: bool = False
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PaymentInfo(BaseModel):
    """Handed to the external checkout flow; amount is in minor units."""
    booking_id: uuid.UUID
    amount: int
    currency: str


class BookingCreateResponse(BaseModel):
    success: bool = True
    booking: BookingResponse
    payment: PaymentInfo


class BookingCancelResponse(BaseModel):
    success: bool
    message: str
    booking_id: uuid.UUID
    status: str
    refunded_spots: int


class BookingStatusUpdate(BaseModel):
    status: str


class CapacityResponse(BaseModel):
    event_id: uuid.UUID
    requested: int
    available: bool
    available_spots: int
    capacity: int


class EventBookingStats(BaseModel):
    event_id: uuid.UUID
    booking_count: int
    total_attendees: int
    available_spots: int
    capacity: int

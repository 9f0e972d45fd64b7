from event_booking.schemas.user import UserCreate, UserResponse, UserLogin, Token
from event_booking.schemas.event import (
    EventCreate, EventUpdate, EventResponse, EventListResponse, EventFilters,
)
from event_booking.schemas.booking import (
    BookingCreate, BookingResponse, BookingCreateResponse, BookingCancelResponse,
    BookingStatusUpdate, CapacityResponse, EventBookingStats, PaymentInfo,
)

__all__ = [
    "UserCreate", "UserResponse", "UserLogin", "Token",
    "EventCreate", "EventUpdate", "EventResponse", "EventListResponse", "EventFilters",
    "BookingCreate", "BookingResponse", "BookingCreateResponse", "BookingCancelResponse",
    "BookingStatusUpdate", "CapacityResponse", "EventBookingStats", "PaymentInfo",
]

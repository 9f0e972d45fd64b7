"""
Pydantic schemas for event-related request/response validation.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional
from pydantic import BaseModel, Field


class EventCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    slug: Optional[str] = Field(None, min_length=1, max_length=255, pattern=r"^[a-z0-9-]+$")
    description: Optional[str] = None
    price: Decimal = Field(Decimal("0"), ge=0, max_digits=10, decimal_places=2)
    event_date: datetime
    duration_hours: int = Field(2, gt=0, le=240)
    venue_name: Optional[str] = Field(None, max_length=255)
    venue_address: Optional[str] = None
    venue_city: Optional[str] = Field(None, max_length=100)
    venue_country: Optional[str] = Field(None, max_length=100)
    capacity: int = Field(..., gt=0, le=100000)
    is_published: bool = False


class EventUpdate(BaseModel):
    """Administrative edits. Capacity and available spots are not editable here."""
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    event_date: Optional[datetime] = None
    duration_hours: Optional[int] = Field(None, gt=0, le=240)
    venue_name: Optional[str] = Field(None, max_length=255)
    venue_address: Optional[str] = None
    venue_city: Optional[str] = Field(None, max_length=100)
    venue_country: Optional[str] = Field(None, max_length=100)
    is_published: Optional[bool] = None

    model_config = {"extra": "forbid"}


class EventResponse(BaseModel):
    id: uuid.UUID
    title: str
    slug: str
    description: Optional[str]
    price: Decimal
    event_date: datetime
    duration_hours: int
    venue_name: Optional[str]
    venue_address: Optional[str]
    venue_city: Optional[str]
    venue_country: Optional[str]
    capacity: int
    available_spots: int
    is_published: bool

    model_config = {"from_attributes": True}


class EventListResponse(BaseModel):
    events: list[EventResponse]
    total: int
    page: int
    page_size: int
    cached: bool = False


TimeFrame = Literal["all", "upcoming", "this-week", "this-month"]
Availability = Literal["all", "available", "limited"]


class EventFilters(BaseModel):
    city: Optional[str] = None
    country: Optional[str] = None
    time_frame: TimeFrame = "upcoming"
    availability: Availability = "all"
    min_price: Optional[Decimal] = Field(None, ge=0)
    max_price: Optional[Decimal] = Field(None, ge=0)
    published_only: bool = True
    page: int = Field(1, ge=1)
    page_size: int = Field(20, ge=1, le=100)

    def cache_key(self) -> str:
        return "&".join(f"{k}={v}" for k, v in sorted(self.model_dump().items()))

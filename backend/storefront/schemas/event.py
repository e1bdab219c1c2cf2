"""
Pydantic schemas for event-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field


class EventCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=1, max_length=255, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    description: Optional[str] = None
    price: Decimal = Field(default=Decimal("0"), ge=0)
    event_date: datetime
    venue_name: Optional[str] = Field(None, max_length=255)
    venue_city: Optional[str] = Field(None, max_length=100)
    capacity: int = Field(..., gt=0, le=100000)
    is_published: bool = True


class EventResponse(BaseModel):
    id: int
    title: str
    slug: str
    description: Optional[str]
    price: Decimal
    event_date: datetime
    venue_name: Optional[str]
    venue_city: Optional[str]
    capacity: int
    available_spots: int
    is_published: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class EventListResponse(BaseModel):
    events: list[EventResponse]
    total: int
    page: int
    page_size: int
    cached: bool = False


class CapacityResponse(BaseModel):
    event_id: int
    available: bool
    available_spots: int
    capacity: int


class CapacityUpdate(BaseModel):
    capacity: int = Field(..., gt=0, le=100000)

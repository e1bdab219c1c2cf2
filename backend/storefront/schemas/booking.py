"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field


class BookingCreate(BaseModel):
    event_id: int
    attendees: int = Field(default=1, gt=0, le=20)


class BookingResponse(BaseModel):
    id: int
    user_id: int
    event_id: int
    attendees: int
    status: str
    total_price: Decimal
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingCancelResponse(BaseModel):
    message: str
    booking_id: int
    status: str

"""
Booking endpoints with concurrency-safe spot reservation.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.db.session import get_db
from storefront.schemas.booking import BookingCreate, BookingResponse, BookingCancelResponse
from storefront.services.booking_service import reserve, cancel, get_booking, get_user_bookings
from storefront.services.cache_service import invalidate_event_cache
from storefront.core.security import get_current_user_id

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Book spots for an event.

    The event row is locked for the duration of the transaction, so
    concurrent requests for the same event are applied one at a time.
    Returns 409 when there are not enough spots or the user already holds
    a booking, and 503 (retryable) if the lock could not be acquired in time.
    """
    booking = await reserve(db, user_id, booking_data.event_id, booking_data.attendees)
    # Invalidate event list cache since available_spots changed
    await invalidate_event_cache()
    return booking


@router.delete("/{booking_id}", response_model=BookingCancelResponse)
async def cancel_booking_endpoint(
    booking_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a booking and release its spots. Cancelling twice is a no-op."""
    booking = await cancel(db, booking_id, user_id)
    await invalidate_event_cache()
    return BookingCancelResponse(
        message="Booking cancelled successfully",
        booking_id=booking.id,
        status=booking.status,
    )


@router.get("/", response_model=list[BookingResponse])
async def list_user_bookings(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Get bookings for the authenticated user."""
    return await get_user_bookings(db, user_id, status=status_filter, limit=limit, offset=offset)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking_endpoint(
    booking_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await get_booking(db, booking_id, user_id)

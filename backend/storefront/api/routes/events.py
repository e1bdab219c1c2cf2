"""
Event endpoints with Redis caching on list operations.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.db.session import get_db
from storefront.schemas.event import (
    EventCreate, EventResponse, EventListResponse, CapacityResponse, CapacityUpdate,
)
from storefront.services.event_service import (
    create_event, get_event, list_events, check_capacity, update_capacity,
)
from storefront.services.cache_service import get_cached_events, set_cached_events, invalidate_event_cache
from storefront.core.security import get_current_user_id
from storefront.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/events", tags=["Events"])


@router.post("/", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event_endpoint(
    event_data: EventCreate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Create a new event. Requires authentication."""
    event = await create_event(db, event_data)
    # Invalidate cache since event list has changed
    await invalidate_event_cache()
    return event


@router.get("/", response_model=EventListResponse)
async def list_events_endpoint(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    upcoming_only: bool = Query(True),
    city: Optional[str] = Query(None, max_length=100),
    db: AsyncSession = Depends(get_db),
):
    """
    List published events with pagination.
    Results are cached in Redis for 5 minutes.
    Cache is invalidated when events change or spots are booked/released.
    """
    cached = await get_cached_events(page, page_size, upcoming_only, city)
    if cached:
        logger.info("events_list_cache_hit", page=page)
        cached["cached"] = True
        return EventListResponse(**cached)

    events, total = await list_events(db, page, page_size, upcoming_only, city)

    response_data = {
        "events": [EventResponse.model_validate(e).model_dump(mode="json") for e in events],
        "total": total,
        "page": page,
        "page_size": page_size,
        "cached": False,
    }

    await set_cached_events(page, page_size, upcoming_only, response_data, city)

    return EventListResponse(**response_data)


@router.get("/{event_id}/capacity", response_model=CapacityResponse)
async def check_capacity_endpoint(
    event_id: int,
    requested: int = Query(1, ge=1),
    db: AsyncSession = Depends(get_db),
):
    """Advisory availability check. The booking endpoint re-checks under lock."""
    return await check_capacity(db, event_id, requested)


@router.patch("/{event_id}/capacity", response_model=EventResponse)
async def update_capacity_endpoint(
    event_id: int,
    data: CapacityUpdate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    event = await update_capacity(db, event_id, data.capacity)
    await invalidate_event_cache()
    return event


@router.get("/{identifier}", response_model=EventResponse)
async def get_event_endpoint(
    identifier: str,
    db: AsyncSession = Depends(get_db),
):
    """Get a single event by ID or slug. Not cached (needs real-time spot counts)."""
    return await get_event(db, identifier)

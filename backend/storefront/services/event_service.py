"""
Event service handling catalogue operations.

Reads here are advisory: check_capacity() is an unlocked snapshot for
display purposes only. Anything that changes available_spots goes through
a row lock (see booking_service for the reservation protocol).
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.event import Event
from storefront.schemas.event import EventCreate
from storefront.core.errors import ValidationError, NotFoundError, ConflictError
from storefront.core.logging import get_logger
from storefront.services.booking_service import apply_lock_timeout, lock_event_row

logger = get_logger(__name__)


async def create_event(db: AsyncSession, event_data: EventCreate) -> Event:
    """Create a new event with every spot available."""
    event_date = event_data.event_date
    if event_date.tzinfo is None:
        event_date = event_date.replace(tzinfo=timezone.utc)
    if event_date <= datetime.now(timezone.utc):
        raise ValidationError("Event date must be in the future")

    existing = await db.scalar(select(Event.id).where(Event.slug == event_data.slug))
    if existing is not None:
        raise ConflictError(f"An event with slug '{event_data.slug}' already exists")

    event = Event(
        title=event_data.title,
        slug=event_data.slug,
        description=event_data.description,
        price=event_data.price,
        event_date=event_date,
        venue_name=event_data.venue_name,
        venue_city=event_data.venue_city,
        capacity=event_data.capacity,
        available_spots=event_data.capacity,  # All spots available initially
        is_published=event_data.is_published,
    )
    db.add(event)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError(f"An event with slug '{event_data.slug}' already exists") from exc
    await db.refresh(event)

    logger.info("event_created", event_id=event.id, slug=event.slug, capacity=event.capacity)
    return event


async def get_event(db: AsyncSession, identifier) -> Event:
    """Get a single event by numeric ID or slug."""
    identifier = str(identifier)
    if identifier.isdigit():
        query = select(Event).where(Event.id == int(identifier))
    else:
        query = select(Event).where(Event.slug == identifier)

    event = await db.scalar(query)
    if event is None:
        raise NotFoundError("Event", identifier=identifier)
    return event


async def list_events(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    upcoming_only: bool = True,
    city: Optional[str] = None,
) -> tuple[list[Event], int]:
    """
    List published events with pagination.
    Uses the ix_events_event_date index for date filtering and ordering.
    """
    query = select(Event).where(Event.is_published.is_(True))

    if upcoming_only:
        query = query.where(Event.event_date >= datetime.now(timezone.utc))
    if city:
        query = query.where(Event.venue_city == city)

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar()

    events_query = (
        query
        .order_by(Event.event_date.asc(), Event.id.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(events_query)
    events = list(result.scalars().all())

    return events, total


async def check_capacity(db: AsyncSession, event_id: int, requested: int = 1) -> dict:
    """Unlocked availability snapshot. Never used to decide a reservation."""
    if requested < 1:
        raise ValidationError("Requested spots must be at least 1")

    row = (
        await db.execute(select(Event.available_spots, Event.capacity).where(Event.id == event_id))
    ).one_or_none()
    if row is None:
        raise NotFoundError("Event", event_id=event_id)

    return {
        "event_id": event_id,
        "available": row.available_spots >= requested,
        "available_spots": row.available_spots,
        "capacity": row.capacity,
    }


async def update_capacity(db: AsyncSession, event_id: int, new_capacity: int) -> Event:
    """
    Change an event's total capacity.

    Spots already consumed by bookings stay consumed; available_spots moves
    by the same delta as capacity. Runs under the same row lock as
    reservations so it cannot interleave with a booking.
    """
    if new_capacity < 1:
        raise ValidationError("Capacity must be at least 1")

    try:
        await apply_lock_timeout(db)
        event = await lock_event_row(db, event_id)
        if event is None:
            raise NotFoundError("Event", event_id=event_id)

        consumed = event.capacity - event.available_spots
        if new_capacity < consumed:
            raise ConflictError(
                f"Capacity cannot be lower than the {consumed} spot(s) already booked",
                event_id=event_id,
            )

        await db.execute(
            update(Event)
            .where(Event.id == event_id)
            .values(
                available_spots=Event.available_spots + (new_capacity - Event.capacity),
                capacity=new_capacity,
            )
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(event)
    logger.info(
        "event_capacity_updated",
        event_id=event_id,
        capacity=event.capacity,
        available_spots=event.available_spots,
    )
    return event

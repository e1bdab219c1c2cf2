"""
Booking service with concurrency-safe spot reservation.

CONCURRENCY STRATEGY: Pessimistic Row Lock + Relative Update
=============================================================

Problem:
  Two users try to book the last spots simultaneously.
  Both read available_spots=3, both book 3, both succeed.
  Result: available_spots=-3, overbooking.

Solution:
  Every reservation runs in one transaction:

  1. SELECT ... FROM events WHERE id = :event_id FOR UPDATE
  2. Re-check available_spots under the lock (earlier reads are discarded)
  3. Reject duplicates (one live booking per user per event)
  4. INSERT the booking
  5. UPDATE events SET available_spots = available_spots - :n WHERE id = :event_id
  6. COMMIT (releases the lock)

  A second transaction on the same event blocks at step 1 until the first
  commits or rolls back, then sees the updated count. Events are locked
  individually, so bookings for different events never wait on each other.

  The new value is always computed by the database from the stored column,
  never from a snapshot held in Python. The CHECK constraint
  (0 <= available_spots <= capacity) and the partial unique index on live
  bookings are the last line of defence; if either fires it is reported as
  the same capacity/duplicate error the explicit checks would have raised.

Lock waits are bounded by BOOKING_LOCK_TIMEOUT_MS on PostgreSQL. A timeout
rolls back and surfaces as a retryable LockTimeoutError. The engine never
retries on its own.

SQLite (used by the test suite by default) has no row locks; FOR UPDATE is
dropped by the dialect and writers are serialized by the database-wide write
lock instead. The CHECK constraint still guarantees no overbooking there.
"""

import time
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import select, update, func, text
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.event import Event
from storefront.models.booking import (
    Booking,
    BOOKING_PENDING,
    BOOKING_CONFIRMED,
    BOOKING_CANCELLED,
    BOOKING_STATUSES,
)
from storefront.core.config import get_settings
from storefront.core.errors import (
    AppError,
    ValidationError,
    NotFoundError,
    InsufficientCapacityError,
    DuplicateReservationError,
    LockTimeoutError,
    TransactionError,
)
from storefront.core.logging import get_logger
from storefront.core.metrics import booking_latency, record_booking_attempt, record_cancellation

logger = get_logger(__name__)
settings = get_settings()

LOCK_NOT_AVAILABLE = "55P03"


def _utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def apply_lock_timeout(db: AsyncSession) -> None:
    """Bound how long this transaction may wait for row locks."""
    if db.bind is not None and db.bind.dialect.name == "postgresql":
        await db.execute(text(f"SET LOCAL lock_timeout = '{int(settings.BOOKING_LOCK_TIMEOUT_MS)}ms'"))


async def lock_event_row(db: AsyncSession, event_id: int) -> Optional[Event]:
    """SELECT ... FOR UPDATE on one event row, overwriting any stale copy in the identity map."""
    result = await db.execute(
        select(Event)
        .where(Event.id == event_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _is_lock_timeout(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code == LOCK_NOT_AVAILABLE:
        return True
    message = str(orig).lower()
    return "lock timeout" in message or "database is locked" in message


def _translate_db_error(exc: DBAPIError, **context) -> AppError:
    """Map storage-level failures onto the domain taxonomy."""
    if isinstance(exc, IntegrityError):
        message = str(exc.orig).lower()
        if "unique" in message or "uq_bookings_user_event_active" in message:
            return DuplicateReservationError(**context)
        if "available_spots" in message or "check" in message:
            return InsufficientCapacityError(**context)
        if "foreign key" in message:
            return NotFoundError("User", **context)
        return TransactionError(str(exc.orig), **context)
    if _is_lock_timeout(exc):
        return LockTimeoutError(str(exc.orig), **context)
    return TransactionError(str(exc.orig), **context)


async def reserve(
    db: AsyncSession,
    user_id: int,
    event_id: int,
    attendees: int = 1,
    status: str = BOOKING_CONFIRMED,
) -> Booking:
    """
    Atomically book `attendees` spots on an event for a user.

    Either the booking row exists and available_spots dropped by exactly
    `attendees`, or nothing was written.
    """
    if attendees < 1:
        raise ValidationError("Number of attendees must be at least 1")
    if status not in (BOOKING_PENDING, BOOKING_CONFIRMED):
        raise ValidationError(f"New bookings must be '{BOOKING_PENDING}' or '{BOOKING_CONFIRMED}'")

    start = time.perf_counter()
    try:
        await apply_lock_timeout(db)

        event = await lock_event_row(db, event_id)
        if event is None:
            raise NotFoundError("Event", event_id=event_id)

        if not event.is_published:
            raise ValidationError("Event is not available for booking")
        if _utc(event.event_date) < datetime.now(timezone.utc):
            raise ValidationError("Cannot book past events")

        if event.available_spots < attendees:
            raise InsufficientCapacityError(
                available=event.available_spots,
                requested=attendees,
                event_id=event_id,
            )

        existing = await db.scalar(
            select(Booking.id).where(
                Booking.user_id == user_id,
                Booking.event_id == event_id,
                Booking.status != BOOKING_CANCELLED,
            )
        )
        if existing is not None:
            raise DuplicateReservationError(event_id=event_id, booking_id=existing)

        booking = Booking(
            user_id=user_id,
            event_id=event_id,
            attendees=attendees,
            status=status,
            total_price=event.price * attendees,
        )
        db.add(booking)
        await db.flush()

        await db.execute(
            update(Event)
            .where(Event.id == event_id)
            .values(available_spots=Event.available_spots - attendees)
        )
        await db.commit()

    except AppError as exc:
        await db.rollback()
        record_booking_attempt(exc.code)
        logger.warning(
            "booking_rejected",
            **{
                "reason": exc.code,
                "event_id": event_id,
                "user_id": user_id,
                "requested": attendees,
                **exc.context,
            },
        )
        raise
    except DBAPIError as exc:
        await db.rollback()
        error = _translate_db_error(exc, event_id=event_id)
        record_booking_attempt(error.code)
        logger.error(
            "booking_failed",
            reason=error.code,
            event_id=event_id,
            user_id=user_id,
            error=str(exc.orig),
        )
        raise error from exc
    finally:
        booking_latency.observe(time.perf_counter() - start)

    await db.refresh(booking)
    record_booking_attempt("success")
    logger.info(
        "booking_created",
        booking_id=booking.id,
        user_id=user_id,
        event_id=event_id,
        attendees=attendees,
        status=booking.status,
    )
    return booking


async def cancel(
    db: AsyncSession,
    booking_id: int,
    user_id: Optional[int] = None,
) -> Booking:
    """
    Cancel a booking and give its spots back to the event.

    Idempotent: cancelling an already-cancelled booking changes nothing.
    When `user_id` is given, bookings owned by someone else are reported
    as not found.
    """
    already_cancelled = False
    try:
        await apply_lock_timeout(db)

        booking = await db.scalar(select(Booking).where(Booking.id == booking_id))
        if booking is None or (user_id is not None and booking.user_id != user_id):
            raise NotFoundError("Booking", booking_id=booking_id)

        # Same lock order as reserve(): event row first, then the booking.
        await lock_event_row(db, booking.event_id)
        booking = (
            await db.execute(
                select(Booking)
                .where(Booking.id == booking_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one()

        if booking.status == BOOKING_CANCELLED:
            already_cancelled = True
            await db.rollback()
        else:
            booking.status = BOOKING_CANCELLED
            await db.execute(
                update(Event)
                .where(Event.id == booking.event_id)
                .values(available_spots=Event.available_spots + booking.attendees)
            )
            await db.commit()

    except AppError:
        await db.rollback()
        raise
    except DBAPIError as exc:
        await db.rollback()
        error = _translate_db_error(exc, booking_id=booking_id)
        logger.error("booking_cancel_failed", reason=error.code, booking_id=booking_id, error=str(exc.orig))
        raise error from exc

    await db.refresh(booking)
    record_cancellation(already_cancelled)
    logger.info(
        "booking_cancelled",
        booking_id=booking.id,
        event_id=booking.event_id,
        spots_restored=0 if already_cancelled else booking.attendees,
        already_cancelled=already_cancelled,
    )
    return booking


async def confirm_booking(db: AsyncSession, booking_id: int) -> Booking:
    """Promote a pending booking to confirmed once payment clears upstream."""
    booking = await db.scalar(
        select(Booking).where(Booking.id == booking_id).with_for_update()
    )
    if booking is None:
        await db.rollback()
        raise NotFoundError("Booking", booking_id=booking_id)

    if booking.status == BOOKING_CANCELLED:
        await db.rollback()
        raise ValidationError("Cannot confirm a cancelled booking")

    if booking.status == BOOKING_PENDING:
        booking.status = BOOKING_CONFIRMED
        await db.commit()
        await db.refresh(booking)
        logger.info("booking_confirmed", booking_id=booking_id)
    else:
        await db.rollback()
    return booking


async def get_booking(db: AsyncSession, booking_id: int, user_id: Optional[int] = None) -> Booking:
    query = select(Booking).where(Booking.id == booking_id)
    if user_id is not None:
        query = query.where(Booking.user_id == user_id)
    booking = await db.scalar(query)
    if booking is None:
        raise NotFoundError("Booking", booking_id=booking_id)
    return booking


async def get_user_bookings(
    db: AsyncSession,
    user_id: int,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Booking]:
    """Get bookings for a user, newest first."""
    if status is not None and status not in BOOKING_STATUSES:
        raise ValidationError("Invalid booking status")

    query = select(Booking).where(Booking.user_id == user_id)
    if status is not None:
        query = query.where(Booking.status == status)
    result = await db.execute(
        query.order_by(Booking.created_at.desc(), Booking.id.desc()).offset(offset).limit(limit)
    )
    return list(result.scalars().all())


async def get_event_booking_count(db: AsyncSession, event_id: int, status: Optional[str] = None) -> int:
    query = select(func.count(Booking.id)).where(Booking.event_id == event_id)
    if status is not None:
        query = query.where(Booking.status == status)
    return (await db.scalar(query)) or 0


async def get_event_total_attendees(
    db: AsyncSession,
    event_id: int,
    statuses: Iterable[str] = (BOOKING_PENDING, BOOKING_CONFIRMED),
) -> int:
    """Sum of attendees across bookings in the given statuses."""
    total = await db.scalar(
        select(func.coalesce(func.sum(Booking.attendees), 0)).where(
            Booking.event_id == event_id,
            Booking.status.in_(list(statuses)),
        )
    )
    return int(total or 0)

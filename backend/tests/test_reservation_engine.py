"""
Service-level tests for the reservation engine: capacity accounting,
duplicate prevention, idempotent cancellation, and concurrent reservations
racing for the same spots.
"""

import asyncio
from datetime import datetime, timezone, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.orm.attributes import set_committed_value

from storefront.models import User, Event, Booking
from storefront.services import booking_service
from storefront.services.booking_service import (
    reserve,
    cancel,
    confirm_booking,
    get_booking,
    get_user_bookings,
    get_event_booking_count,
    get_event_total_attendees,
)
from storefront.core.errors import (
    AppError,
    ValidationError,
    NotFoundError,
    InsufficientCapacityError,
    DuplicateReservationError,
    LockTimeoutError,
)
from factories import make_event, add_all


async def _spots(session_factory, event_id: int) -> tuple[int, int]:
    async with session_factory() as session:
        row = (
            await session.execute(select(Event.available_spots, Event.capacity).where(Event.id == event_id))
        ).one()
    return row.available_spots, row.capacity


async def _live_attendees(session_factory, event_id: int) -> int:
    async with session_factory() as session:
        return await get_event_total_attendees(session, event_id)


@pytest.mark.asyncio
async def test_reserve_decrements_spots(db_session, session_factory, test_user, test_event):
    booking = await reserve(db_session, test_user.id, test_event.id, attendees=3)

    assert booking.id is not None
    assert booking.status == "confirmed"
    assert booking.attendees == 3
    assert booking.total_price == test_event.price * 3
    assert await _spots(session_factory, test_event.id) == (97, 100)


@pytest.mark.asyncio
async def test_reserve_exactly_remaining_spots(db_session, session_factory, test_user):
    event = make_event(slug="small-room", capacity=5, available_spots=2)
    await add_all(db_session, event)

    await reserve(db_session, test_user.id, event.id, attendees=2)

    assert await _spots(session_factory, event.id) == (0, 5)


@pytest.mark.asyncio
async def test_reserve_one_more_than_remaining(db_session, session_factory, test_user):
    event = make_event(slug="small-room", capacity=5, available_spots=2)
    await add_all(db_session, event)

    with pytest.raises(InsufficientCapacityError) as exc_info:
        await reserve(db_session, test_user.id, event.id, attendees=3)

    assert "Only 2 spot(s) available" in exc_info.value.message
    assert await _spots(session_factory, event.id) == (2, 5)
    assert await get_event_booking_count(db_session, event.id) == 0


@pytest.mark.asyncio
async def test_reserve_sold_out(db_session, test_user, sold_out_event):
    with pytest.raises(InsufficientCapacityError):
        await reserve(db_session, test_user.id, sold_out_event.id)


@pytest.mark.asyncio
@pytest.mark.parametrize("attendees", [0, -1])
async def test_reserve_rejects_non_positive_attendees(db_session, test_user, test_event, attendees):
    with pytest.raises(ValidationError):
        await reserve(db_session, test_user.id, test_event.id, attendees=attendees)


@pytest.mark.asyncio
async def test_reserve_missing_event(db_session, test_user):
    with pytest.raises(NotFoundError):
        await reserve(db_session, test_user.id, 999999)


@pytest.mark.asyncio
async def test_reserve_unpublished_event(db_session, test_user):
    event = make_event(slug="draft", is_published=False)
    await add_all(db_session, event)

    with pytest.raises(ValidationError):
        await reserve(db_session, test_user.id, event.id)


@pytest.mark.asyncio
async def test_reserve_past_event(db_session, test_user):
    event = make_event(slug="last-year", event_date=datetime.now(timezone.utc) - timedelta(days=1))
    await add_all(db_session, event)

    with pytest.raises(ValidationError):
        await reserve(db_session, test_user.id, event.id)


@pytest.mark.asyncio
async def test_duplicate_reservation_rejected(db_session, session_factory, test_user, test_event):
    await reserve(db_session, test_user.id, test_event.id, attendees=2)

    with pytest.raises(DuplicateReservationError):
        await reserve(db_session, test_user.id, test_event.id, attendees=1)

    assert await _spots(session_factory, test_event.id) == (98, 100)


@pytest.mark.asyncio
async def test_rebook_after_cancel(db_session, session_factory, test_user, test_event):
    first = await reserve(db_session, test_user.id, test_event.id, attendees=2)
    await cancel(db_session, first.id)

    second = await reserve(db_session, test_user.id, test_event.id, attendees=1)

    assert second.id != first.id
    assert await _spots(session_factory, test_event.id) == (99, 100)


@pytest.mark.asyncio
async def test_cancel_restores_spots(db_session, session_factory, test_user, test_event):
    booking = await reserve(db_session, test_user.id, test_event.id, attendees=4)

    cancelled = await cancel(db_session, booking.id, user_id=test_user.id)

    assert cancelled.status == "cancelled"
    assert await _spots(session_factory, test_event.id) == (100, 100)


@pytest.mark.asyncio
async def test_cancel_twice_restores_once(db_session, session_factory, test_user, test_event):
    """The second cancel is a no-op and leaves the counter alone."""
    booking = await reserve(db_session, test_user.id, test_event.id, attendees=4)

    await cancel(db_session, booking.id)
    again = await cancel(db_session, booking.id)

    assert again.status == "cancelled"
    assert await _spots(session_factory, test_event.id) == (100, 100)


@pytest.mark.asyncio
async def test_cancel_hides_other_users_bookings(db_session, session_factory, test_user, other_user, test_event):
    booking = await reserve(db_session, test_user.id, test_event.id, attendees=2)

    with pytest.raises(NotFoundError):
        await cancel(db_session, booking.id, user_id=other_user.id)

    assert await _spots(session_factory, test_event.id) == (98, 100)


@pytest.mark.asyncio
async def test_cancel_missing_booking(db_session):
    with pytest.raises(NotFoundError):
        await cancel(db_session, 424242)


@pytest.mark.asyncio
async def test_confirm_pending_booking(db_session, test_user, test_event):
    booking = await reserve(db_session, test_user.id, test_event.id, status="pending")
    assert booking.status == "pending"

    confirmed = await confirm_booking(db_session, booking.id)

    assert confirmed.status == "confirmed"


@pytest.mark.asyncio
async def test_confirm_cancelled_booking_rejected(db_session, test_user, test_event):
    booking = await reserve(db_session, test_user.id, test_event.id, status="pending")
    await cancel(db_session, booking.id)

    with pytest.raises(ValidationError):
        await confirm_booking(db_session, booking.id)


@pytest.mark.asyncio
async def test_reserve_rejects_cancelled_initial_status(db_session, test_user, test_event):
    with pytest.raises(ValidationError):
        await reserve(db_session, test_user.id, test_event.id, status="cancelled")


@pytest.mark.asyncio
async def test_get_booking_scoped_to_owner(db_session, test_user, other_user, test_event):
    booking = await reserve(db_session, test_user.id, test_event.id)

    assert (await get_booking(db_session, booking.id, test_user.id)).id == booking.id
    with pytest.raises(NotFoundError):
        await get_booking(db_session, booking.id, other_user.id)


@pytest.mark.asyncio
async def test_user_bookings_filtered_by_status(db_session, test_user, test_event):
    other_event = make_event(slug="second-show")
    await add_all(db_session, other_event)

    kept = await reserve(db_session, test_user.id, test_event.id)
    dropped = await reserve(db_session, test_user.id, other_event.id)
    await cancel(db_session, dropped.id)

    everything = await get_user_bookings(db_session, test_user.id)
    active = await get_user_bookings(db_session, test_user.id, status="confirmed")

    assert {b.id for b in everything} == {kept.id, dropped.id}
    assert [b.id for b in active] == [kept.id]

    with pytest.raises(ValidationError):
        await get_user_bookings(db_session, test_user.id, status="bogus")


@pytest.mark.asyncio
async def test_counter_matches_live_bookings(db_session, session_factory, test_user, other_user, test_event):
    """capacity - available_spots always equals the attendees held by live bookings."""
    a = await reserve(db_session, test_user.id, test_event.id, attendees=5)
    await reserve(db_session, other_user.id, test_event.id, attendees=7)
    await cancel(db_session, a.id)

    available, capacity = await _spots(session_factory, test_event.id)
    assert capacity - available == await _live_attendees(session_factory, test_event.id) == 7
    assert await get_event_booking_count(db_session, test_event.id) == 2
    assert await get_event_booking_count(db_session, test_event.id, status="cancelled") == 1


@pytest.mark.asyncio
async def test_concurrent_reservations_for_last_spot(session_factory, test_user, other_user, last_spot_event):
    """Two clients race for the one remaining spot: exactly one wins."""

    async def attempt(user_id):
        async with session_factory() as session:
            return await reserve(session, user_id, last_spot_event.id, attendees=1)

    results = await asyncio.gather(
        attempt(test_user.id),
        attempt(other_user.id),
        return_exceptions=True,
    )

    successes = [r for r in results if isinstance(r, Booking)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], (InsufficientCapacityError, LockTimeoutError))

    assert await _spots(session_factory, last_spot_event.id) == (0, 1)
    assert await _live_attendees(session_factory, last_spot_event.id) == 1


@pytest.mark.asyncio
async def test_many_concurrent_reservations_never_overbook(db_session, session_factory):
    """Twenty clients, eight spots: the counter never goes negative."""
    event = make_event(slug="contested", capacity=8)
    await add_all(db_session, event)

    users = [User(email=f"racer{i}@example.com", username=f"racer{i}") for i in range(20)]
    await add_all(db_session, *users)

    async def attempt(user_id):
        async with session_factory() as session:
            return await reserve(session, user_id, event.id, attendees=1)

    results = await asyncio.gather(*(attempt(u.id) for u in users), return_exceptions=True)

    successes = [r for r in results if isinstance(r, Booking)]
    for failure in (r for r in results if isinstance(r, Exception)):
        assert isinstance(failure, AppError)

    available, capacity = await _spots(session_factory, event.id)
    assert available >= 0
    assert len(successes) <= capacity
    assert capacity - available == len(successes)
    assert await _live_attendees(session_factory, event.id) == len(successes)


@pytest.mark.asyncio
async def test_lock_timeout_is_retryable(db_session, test_user, test_event, monkeypatch):
    """A lock wait timeout rolls back and surfaces as a retryable error."""
    from sqlalchemy.exc import OperationalError

    async def timed_out(db, event_id):
        raise OperationalError("SELECT ... FOR UPDATE", {}, Exception("canceling statement due to lock timeout"))

    monkeypatch.setattr(booking_service, "lock_event_row", timed_out)

    with pytest.raises(LockTimeoutError) as exc_info:
        await reserve(db_session, test_user.id, test_event.id)

    assert exc_info.value.retryable
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_two_full_party_bookings_race_for_three_spots(db_session, session_factory, test_user, other_user):
    """Capacity 3, two users each asking for 3 at once: one booking, zero spots left."""
    event = make_event(slug="trio", capacity=3)
    await add_all(db_session, event)

    async def attempt(user_id):
        async with session_factory() as session:
            return await reserve(session, user_id, event.id, attendees=3)

    results = await asyncio.gather(attempt(test_user.id), attempt(other_user.id), return_exceptions=True)

    successes = [r for r in results if isinstance(r, Booking)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], (InsufficientCapacityError, LockTimeoutError))
    assert await _spots(session_factory, event.id) == (0, 3)
    assert await get_event_booking_count(db_session, event.id) == 1


@pytest.mark.asyncio
async def test_cancel_twice_from_one_spot_left(db_session, session_factory, test_user):
    """Capacity 5 with 1 spot left: cancelling the 4-spot booking twice restores it once."""
    event = make_event(slug="five-seats", capacity=5)
    await add_all(db_session, event)
    booking = await reserve(db_session, test_user.id, event.id, attendees=4)
    assert await _spots(session_factory, event.id) == (1, 5)

    await cancel(db_session, booking.id)
    await cancel(db_session, booking.id)

    assert await _spots(session_factory, event.id) == (5, 5)


@pytest.mark.asyncio
async def test_check_constraint_reported_as_insufficient_capacity(
    db_session, session_factory, test_user, sold_out_event, monkeypatch
):
    """A stale in-memory count that slips past the explicit check is stopped by the CHECK constraint."""
    real_lock = booking_service.lock_event_row

    async def stale_lock(db, event_id):
        event = await real_lock(db, event_id)
        set_committed_value(event, "available_spots", 5)
        return event

    monkeypatch.setattr(booking_service, "lock_event_row", stale_lock)

    with pytest.raises(InsufficientCapacityError):
        await reserve(db_session, test_user.id, sold_out_event.id, attendees=1)

    assert await _spots(session_factory, sold_out_event.id) == (0, 50)
    assert await get_event_booking_count(db_session, sold_out_event.id) == 0


@pytest.mark.asyncio
async def test_unique_index_reported_as_duplicate(db_session, session_factory, test_user, test_event, monkeypatch):
    """With the duplicate lookup skipped, the partial unique index still rejects a second live booking."""
    await reserve(db_session, test_user.id, test_event.id, attendees=2)

    real_scalar = db_session.scalar

    async def skip_duplicate_lookup(statement, *args, **kwargs):
        description = statement.column_descriptions[0]
        if description.get("entity") is Booking and description["name"] == "id":
            return None
        return await real_scalar(statement, *args, **kwargs)

    monkeypatch.setattr(db_session, "scalar", skip_duplicate_lookup)

    with pytest.raises(DuplicateReservationError):
        await reserve(db_session, test_user.id, test_event.id, attendees=1)

    assert await _spots(session_factory, test_event.id) == (98, 100)
    assert await get_event_booking_count(db_session, test_event.id) == 1

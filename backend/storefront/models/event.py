"""
Event model with spot inventory tracking.

Key design decisions:
- `available_spots` is denormalized (avoids SUM over bookings on every read)
  and is only ever changed by relative UPDATEs issued under a row lock
- The CHECK constraint bounds `available_spots` to [0, capacity] so a bug in
  the reservation path surfaces as an IntegrityError instead of overbooking
- Index on `event_date` for "upcoming events" listings
"""

from sqlalchemy import Column, Integer, String, Text, Numeric, Boolean, DateTime, Index, CheckConstraint
from sqlalchemy.orm import relationship

from storefront.db.base import Base, TimestampMixin


class Event(Base, TimestampMixin):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    event_date = Column(DateTime(timezone=True), nullable=False)
    venue_name = Column(String(255), nullable=True)
    venue_city = Column(String(100), nullable=True)
    capacity = Column(Integer, nullable=False)
    available_spots = Column(Integer, nullable=False)
    is_published = Column(Boolean, nullable=False, default=True)

    bookings = relationship("Booking", back_populates="event")

    __table_args__ = (
        CheckConstraint(
            "available_spots >= 0 AND available_spots <= capacity",
            name="check_available_spots",
        ),
        CheckConstraint("capacity > 0", name="check_capacity_positive"),
        CheckConstraint("price >= 0", name="check_event_price_non_negative"),
        Index("ix_events_event_date", "event_date"),
        Index("ix_events_venue_city", "venue_city"),
    )

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, title={self.title}, available={self.available_spots}/{self.capacity})>"

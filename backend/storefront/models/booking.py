"""
Booking model representing a user's reservation for an event.

Key design decisions:
- Partial unique index on (user_id, event_id) for non-cancelled rows: a user
  holds at most one live booking per event but may book again after cancelling
- Status field allows cancellation without deleting records
- attendees is the number of spots consumed from the event
"""

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, Index, CheckConstraint, text
from sqlalchemy.orm import relationship

from storefront.db.base import Base, TimestampMixin

BOOKING_PENDING = "pending"
BOOKING_CONFIRMED = "confirmed"
BOOKING_CANCELLED = "cancelled"
BOOKING_STATUSES = (BOOKING_PENDING, BOOKING_CONFIRMED, BOOKING_CANCELLED)


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    attendees = Column(Integer, nullable=False, default=1)
    status = Column(String(20), nullable=False, default=BOOKING_CONFIRMED)
    total_price = Column(Numeric(10, 2), nullable=False)

    # Relationships
    user = relationship("User", back_populates="bookings")
    event = relationship("Event", back_populates="bookings")

    __table_args__ = (
        Index(
            "uq_bookings_user_event_active",
            "user_id",
            "event_id",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
        CheckConstraint("attendees > 0", name="check_booking_attendees_positive"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled')",
            name="check_booking_status",
        ),
        Index("ix_bookings_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, user={self.user_id}, event={self.event_id}, status={self.status})>"

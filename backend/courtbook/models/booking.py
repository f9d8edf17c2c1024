"""
Booking tables: the interval store.

Key design decisions:
- `bookings` keeps one row per scheduled event, including cancelled ones
- `booking_slots` holds one row per (booking, court) while the booking is
  scheduled; this is what the slot index is rebuilt from
- Times are stored as minutes after midnight so overlap tests are integer
  comparisons; bookings never cross midnight
- On PostgreSQL the migration adds an exclusion constraint on booking_slots
  so two overlapping intervals on the same court can never both be committed
"""

from datetime import time

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from courtbook.db.base import Base, TimestampMixin
from courtbook.scheduling.intervals import from_minute

BOOKING_KINDS = ("training", "match", "tournament", "practice", "tryout", "camp", "social", "other")
BOOKING_STATUSES = ("scheduled", "cancelled")


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    resources = Column(JSON, nullable=False)  # sorted list of court names
    date = Column(Date, nullable=False)
    start_minute = Column(Integer, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    kind = Column(String(20), nullable=False, default="training")
    title = Column(String(255), nullable=False)
    coach = Column(String(255), nullable=True)
    participants = Column(JSON, nullable=False, default=list)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="scheduled")
    created_by = Column(String(100), nullable=True)

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="check_booking_duration_positive"),
        CheckConstraint(
            "start_minute >= 0 AND start_minute + duration_minutes <= 1440",
            name="check_booking_within_day",
        ),
        CheckConstraint("status IN ('scheduled', 'cancelled')", name="check_booking_status"),
        Index("ix_bookings_date_start", "date", "start_minute"),
    )

    @property
    def end_minute(self) -> int:
        return self.start_minute + self.duration_minutes

    @property
    def start_time(self) -> time:
        return from_minute(self.start_minute)

    @property
    def end_time(self) -> time:
        return from_minute(self.end_minute)

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, resources={self.resources}, date={self.date}, "
            f"start={self.start_time:%H:%M}, minutes={self.duration_minutes}, status={self.status})>"
        )


class BookingSlot(Base):
    """One court occupied by a scheduled booking."""

    __tablename__ = "booking_slots"

    id = Column(Integer, primary_key=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    resource = Column(String(100), nullable=False)
    date = Column(Date, nullable=False)
    start_minute = Column(Integer, nullable=False)
    end_minute = Column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("booking_id", "resource", name="uq_booking_slot_resource"),
        CheckConstraint("end_minute > start_minute", name="check_slot_interval"),
        # Overlap lookups are always "this court, this day, ordered by start"
        Index("ix_booking_slots_resource_date_start", "resource", "date", "start_minute"),
    )

    def __repr__(self) -> str:
        return f"<BookingSlot(booking={self.booking_id}, resource={self.resource}, date={self.date})>"

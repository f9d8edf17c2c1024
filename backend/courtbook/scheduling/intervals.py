"""
Value types shared by the slot index, the conflict detector and the
scheduling service.

Intervals are half-open ``[start, end)`` in minutes after midnight, so a
booking ending at 11:00 and one starting at 11:00 do not overlap.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Iterable, Optional

MINUTES_PER_DAY = 24 * 60


def to_minute(value: time) -> int:
    return value.hour * 60 + value.minute


def from_minute(minute: int) -> time:
    return time(minute // 60, minute % 60)


def overlaps(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    return a_start < b_end and b_start < a_end


def normalize_resources(resources: Iterable[str]) -> tuple[str, ...]:
    """De-duplicated, sorted court names."""
    return tuple(sorted({r.strip() for r in resources if r and r.strip()}))


@dataclass(frozen=True)
class Candidate:
    """An interval someone wants to occupy."""

    resources: tuple[str, ...]
    date: date
    start: int
    end: int


@dataclass(frozen=True)
class BookingSnapshot:
    """
    Read-only copy of a scheduled booking as held by the slot index.

    The ORM row stays the source of truth; snapshots are rebuilt from it.
    """

    id: int
    resources: tuple[str, ...]
    date: date
    start: int
    end: int
    kind: str = "other"
    title: str = ""
    coach: Optional[str] = None
    updated_at: Optional[datetime] = field(default=None, compare=False)

    @property
    def start_time(self) -> time:
        return from_minute(self.start)

    @property
    def end_time(self) -> time:
        return from_minute(self.end)

    @property
    def duration_minutes(self) -> int:
        return self.end - self.start

    @classmethod
    def from_booking(cls, booking) -> "BookingSnapshot":
        return cls(
            id=booking.id,
            resources=normalize_resources(booking.resources),
            date=booking.date,
            start=booking.start_minute,
            end=booking.start_minute + booking.duration_minutes,
            kind=booking.kind,
            title=booking.title,
            coach=booking.coach,
            updated_at=booking.updated_at,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "resources": list(self.resources),
            "date": self.date.isoformat(),
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
            "duration_minutes": self.duration_minutes,
            "kind": self.kind,
            "title": self.title,
        }

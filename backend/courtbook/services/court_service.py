"""
Court views derived from the slot index: which courts exist, whether a court
is occupied at a given moment, and where the free gaps are on a day.

These are reads. They never take court locks; each call works on the index
content as it is between two writes.
"""

from datetime import date, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from courtbook.core.errors import ValidationError
from courtbook.scheduling.intervals import BookingSnapshot, from_minute, to_minute
from courtbook.services.booking_service import SchedulingService


def list_courts(service: SchedulingService) -> list[dict]:
    settings = service.settings
    return [
        {"name": court, "opening_time": settings.OPENING_TIME, "closing_time": settings.CLOSING_TIME}
        for court in settings.COURTS
    ]


def _ensure_court(service: SchedulingService, court: str) -> None:
    if court not in service.settings.COURTS:
        raise ValidationError("court", f"unknown court {court!r}")


async def court_status(service: SchedulingService, db: AsyncSession, court: str, at: datetime) -> dict:
    _ensure_court(service, court)
    index = await service.snapshot_index(db)
    booking = index.booking_at(court, at.date(), to_minute(at.time()))
    return {
        "court": court,
        "at": at,
        "booked": booking is not None,
        "booking": booking.to_dict() if booking else None,
    }


async def court_availability(service: SchedulingService, db: AsyncSession, court: str, day: date) -> dict:
    _ensure_court(service, court)
    settings = service.settings
    index = await service.snapshot_index(db)
    windows = index.free_windows(court, day, settings.opening_minute, settings.closing_minute)
    booked: list[BookingSnapshot] = index.bookings_on(court, day)
    return {
        "court": court,
        "date": day,
        "free": [
            {"start_time": from_minute(start), "end_time": from_minute(end), "duration_minutes": end - start}
            for start, end in windows
        ],
        "booked": [b.to_dict() for b in booked],
    }

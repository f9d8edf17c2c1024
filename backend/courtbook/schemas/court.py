"""
Pydantic schemas for court views.
"""

from datetime import date as Date, datetime, time
from typing import Optional

from pydantic import BaseModel

from courtbook.schemas.booking import ConflictingBooking


class CourtResponse(BaseModel):
    name: str
    opening_time: time
    closing_time: time


class CourtStatusResponse(BaseModel):
    court: str
    at: datetime
    booked: bool
    booking: Optional[ConflictingBooking] = None


class FreeWindow(BaseModel):
    start_time: time
    end_time: time
    duration_minutes: int


class CourtAvailabilityResponse(BaseModel):
    court: str
    date: Date
    free: list[FreeWindow]
    booked: list[ConflictingBooking]

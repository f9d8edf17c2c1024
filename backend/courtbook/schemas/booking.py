"""
Pydantic schemas for booking request/response validation.
"""

from datetime import date as Date, datetime, time
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator

from courtbook.core.config import get_settings

BookingKind = Literal["training", "match", "tournament", "practice", "tryout", "camp", "social", "other"]
BookingStatus = Literal["scheduled", "cancelled"]


class BookingCreate(BaseModel):
    resources: list[str] = Field(..., min_length=1, max_length=20)
    date: Date
    start_time: time
    duration_minutes: int = Field(
        default_factory=lambda: get_settings().DEFAULT_DURATION_MINUTES, gt=0, le=24 * 60
    )
    kind: BookingKind = "training"
    title: Optional[str] = Field(None, max_length=255)
    coach: Optional[str] = Field(None, max_length=255)
    participants: list[str] = Field(default_factory=list)
    description: Optional[str] = Field(None, max_length=2000)


class BookingReschedule(BaseModel):
    """
    New position for an existing booking. Either give the grid fields
    (omitted ones keep their value) or a start/end timestamp pair, which is
    what the drag-and-drop grid sends.
    """

    resources: Optional[list[str]] = Field(None, min_length=1, max_length=20)
    date: Optional[Date] = None
    start_time: Optional[time] = None
    duration_minutes: Optional[int] = Field(None, gt=0, le=24 * 60)
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _timestamps_to_grid(self) -> "BookingReschedule":
        if self.starts_at is None and self.ends_at is None:
            return self
        if self.starts_at is None or self.ends_at is None:
            raise ValueError("starts_at and ends_at must be given together")
        if self.start_time is not None or self.duration_minutes is not None or self.date is not None:
            raise ValueError("use either starts_at/ends_at or date/start_time/duration_minutes")
        if self.ends_at <= self.starts_at:
            raise ValueError("ends_at must be after starts_at")
        if self.ends_at.date() != self.starts_at.date():
            raise ValueError("bookings cannot span midnight")
        self.date = self.starts_at.date()
        self.start_time = self.starts_at.time().replace(tzinfo=None)
        self.duration_minutes = int((self.ends_at - self.starts_at).total_seconds() // 60)
        return self


class BookingResponse(BaseModel):
    id: int
    resources: list[str]
    date: Date
    start_time: time
    end_time: time
    duration_minutes: int
    kind: str
    title: str
    coach: Optional[str]
    participants: list[str]
    description: Optional[str]
    status: str
    created_by: Optional[str]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ConflictingBooking(BaseModel):
    id: int
    resources: list[str]
    date: Date
    start_time: time
    end_time: time
    duration_minutes: int
    kind: str
    title: str


class ConflictResponse(BaseModel):
    error: Literal["conflict"] = "conflict"
    message: str
    conflicting_bookings: list[ConflictingBooking]


class ErrorResponse(BaseModel):
    error: str
    message: Optional[str] = None
    field: Optional[str] = None
    reason: Optional[str] = None

from courtbook.schemas.booking import (
    BookingCreate, BookingReschedule, BookingResponse, ConflictResponse, ConflictingBooking, ErrorResponse,
)
from courtbook.schemas.court import CourtResponse, CourtStatusResponse, CourtAvailabilityResponse, FreeWindow

__all__ = [
    "BookingCreate", "BookingReschedule", "BookingResponse",
    "ConflictResponse", "ConflictingBooking", "ErrorResponse",
    "CourtResponse", "CourtStatusResponse", "CourtAvailabilityResponse", "FreeWindow",
]

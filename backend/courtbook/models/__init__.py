from courtbook.models.booking import Booking, BookingSlot, BOOKING_KINDS, BOOKING_STATUSES

__all__ = ["Booking", "BookingSlot", "BOOKING_KINDS", "BOOKING_STATUSES"]

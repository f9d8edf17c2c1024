"""
Scheduling error taxonomy.

Services raise these; the API layer turns them into JSON bodies with a stable
``error`` code (see ``courtbook.api.errors``). None of them is retried by the
service that raises it.
"""

from typing import Optional, Sequence


class SchedulingError(Exception):
    """Base class for all booking errors."""

    code = "error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class ValidationError(SchedulingError):
    """Malformed or missing input. Raised before any store access."""

    code = "validation"
    status_code = 422

    def __init__(self, field: str, reason: str):
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason

    def to_dict(self) -> dict:
        return {"error": self.code, "field": self.field, "reason": self.reason}


class ConflictError(SchedulingError):
    """Candidate interval overlaps scheduled bookings on a shared court."""

    code = "conflict"
    status_code = 409

    def __init__(self, conflicting_bookings: Sequence, message: Optional[str] = None):
        self.conflicting_bookings = list(conflicting_bookings)
        if message is None:
            message = "; ".join(
                f"{b.title or b.kind} on {', '.join(b.resources)} "
                f"{b.date.isoformat()} {b.start_time:%H:%M}-{b.end_time:%H:%M} (#{b.id})"
                for b in self.conflicting_bookings
            )
            message = f"Conflicts with {message}" if message else "Scheduling conflict"
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "conflicting_bookings": [b.to_dict() for b in self.conflicting_bookings],
        }


class NotFoundError(SchedulingError):
    """Booking id does not exist or is already cancelled."""

    code = "not_found"
    status_code = 404

    def __init__(self, booking_id: int):
        super().__init__(f"Booking {booking_id} not found")
        self.booking_id = booking_id


class AuthorizationError(SchedulingError):
    """Caller's role may not perform the requested action."""

    code = "forbidden"
    status_code = 403

    def __init__(self, action: str, role: Optional[str]):
        super().__init__(f"Role {role!r} is not allowed to {action} bookings")
        self.action = action
        self.role = role


class ConcurrencyError(SchedulingError):
    """
    Slot index diverged from the interval store, or the store rejected a write
    another writer raced us to. The whole request must be retried by the caller
    against fresh state.
    """

    code = "concurrency"
    status_code = 409


class MoveInProgressError(SchedulingError):
    """A second gesture arrived for a booking whose move is still pending."""

    code = "move_in_progress"
    status_code = 409

    def __init__(self, booking_id: int):
        super().__init__(f"Booking {booking_id} already has a move in progress")
        self.booking_id = booking_id

"""
Booking interval math: value types, the per-court slot index and the
conflict detector. No I/O happens in this package.
"""

from .intervals import BookingSnapshot, Candidate, normalize_resources, overlaps
from .slot_index import SlotIndex
from .conflicts import ConflictDetector, ConflictResult

__all__ = [
    "BookingSnapshot", "Candidate", "normalize_resources", "overlaps",
    "SlotIndex", "ConflictDetector", "ConflictResult",
]

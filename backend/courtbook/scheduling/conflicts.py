"""
Conflict detection over the slot index.

A pure query: same candidate against the same index content always gives the
same answer, in the same order (court name, then start, then id).
"""

from dataclasses import dataclass, field
from typing import Optional

from courtbook.scheduling.intervals import BookingSnapshot, Candidate
from courtbook.scheduling.slot_index import SlotIndex


@dataclass(frozen=True)
class ConflictResult:
    conflicting_bookings: tuple[BookingSnapshot, ...] = field(default_factory=tuple)

    @property
    def conflict(self) -> bool:
        return bool(self.conflicting_bookings)


class ConflictDetector:
    def __init__(self, index: SlotIndex):
        self.index = index

    def detect(self, candidate: Candidate, exclude_id: Optional[int] = None) -> ConflictResult:
        seen: set[int] = set()
        hits: list[BookingSnapshot] = []
        for resource in sorted(set(candidate.resources)):
            overlapping = self.index.overlapping(
                resource, candidate.date, candidate.start, candidate.end, exclude_id=exclude_id
            )
            # Bucket order is (start, end, id); ties on start resolve by id
            for booking in sorted(overlapping, key=lambda b: (b.start, b.id)):
                if booking.id not in seen:
                    seen.add(booking.id)
                    hits.append(booking)
        return ConflictResult(conflicting_bookings=tuple(hits))

    def is_free(self, candidate: Candidate, exclude_id: Optional[int] = None) -> bool:
        return not any(
            self.index.overlaps_any(r, candidate.date, candidate.start, candidate.end, exclude_id)
            for r in candidate.resources
        )

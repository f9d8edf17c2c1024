"""
In-memory slot index: per-court, per-day interval lists kept sorted by start.

LOOKUP STRATEGY
===============

Each ``(resource, date)`` bucket is a list of ``(start, end, booking_id)``
tuples sorted by start. For a query window ``[start, end)``:

  - bisect for the first interval starting at or after ``end``; nothing from
    there on can overlap, so the scan stops there
  - intervals that start before ``start - longest`` (``longest`` being the
    longest interval ever stored in the bucket) end before ``start`` and are
    skipped by a second bisect

With one booking per court at a time the scan visits at most a couple of
intervals, so a conflict check costs O(log n) per court instead of a scan of
every booking.

All methods are synchronous. The service calls them from the event loop
without awaiting in between, so a ``replace`` is never observed half done.
"""

from bisect import bisect_left, insort
from collections import defaultdict
from datetime import date
from typing import Iterable, Optional

from courtbook.scheduling.intervals import BookingSnapshot

Interval = tuple[int, int, int]  # (start, end, booking_id)
BucketKey = tuple[str, date]


class SlotIndex:
    def __init__(self, bookings: Iterable[BookingSnapshot] = ()):
        self._buckets: dict[BucketKey, list[Interval]] = defaultdict(list)
        self._longest: dict[BucketKey, int] = defaultdict(int)
        self._bookings: dict[int, BookingSnapshot] = {}
        self.load(bookings)

    def __len__(self) -> int:
        return len(self._bookings)

    def __contains__(self, booking_id: int) -> bool:
        return booking_id in self._bookings

    def get(self, booking_id: int) -> Optional[BookingSnapshot]:
        return self._bookings.get(booking_id)

    def load(self, bookings: Iterable[BookingSnapshot]) -> None:
        """Replace the whole content, e.g. after a rebuild from the store."""
        self._buckets = defaultdict(list)
        self._longest = defaultdict(int)
        self._bookings = {}
        for booking in bookings:
            self.insert(booking)

    def insert(self, booking: BookingSnapshot) -> None:
        if booking.id in self._bookings:
            self.remove(booking.id)
        self._bookings[booking.id] = booking
        length = booking.end - booking.start
        for resource in booking.resources:
            key = (resource, booking.date)
            insort(self._buckets[key], (booking.start, booking.end, booking.id))
            if length > self._longest[key]:
                self._longest[key] = length

    def remove(self, booking_id: int) -> Optional[BookingSnapshot]:
        booking = self._bookings.pop(booking_id, None)
        if booking is None:
            return None
        entry = (booking.start, booking.end, booking.id)
        for resource in booking.resources:
            key = (resource, booking.date)
            bucket = self._buckets.get(key)
            if not bucket:
                continue
            pos = bisect_left(bucket, entry)
            if pos < len(bucket) and bucket[pos] == entry:
                del bucket[pos]
            if not bucket:
                del self._buckets[key]
                self._longest.pop(key, None)
        return booking

    def replace(self, booking: BookingSnapshot) -> None:
        self.remove(booking.id)
        self.insert(booking)

    def query(self, resource: str, day: date) -> list[Interval]:
        """Intervals on one court for one day, sorted by start."""
        return list(self._buckets.get((resource, day), ()))

    def bookings_on(self, resource: str, day: date) -> list[BookingSnapshot]:
        return [self._bookings[booking_id] for _, _, booking_id in self.query(resource, day)]

    def entries_for(self, resource: str, day: date) -> set[Interval]:
        return set(self._buckets.get((resource, day), ()))

    def _scan(self, resource: str, day: date, start: int, end: int):
        key = (resource, day)
        bucket = self._buckets.get(key)
        if not bucket:
            return
        hi = bisect_left(bucket, (end,))
        lo = bisect_left(bucket, (start - self._longest[key],), 0, hi)
        for pos in range(lo, hi):
            iv_start, iv_end, booking_id = bucket[pos]
            if iv_end > start:
                yield iv_start, iv_end, booking_id

    def overlapping(
        self,
        resource: str,
        day: date,
        start: int,
        end: int,
        exclude_id: Optional[int] = None,
    ) -> list[BookingSnapshot]:
        """Bookings on this court and day whose interval overlaps [start, end), by start."""
        return [
            self._bookings[booking_id]
            for _, _, booking_id in self._scan(resource, day, start, end)
            if booking_id != exclude_id
        ]

    def overlaps_any(
        self,
        resource: str,
        day: date,
        start: int,
        end: int,
        exclude_id: Optional[int] = None,
    ) -> bool:
        for _, _, booking_id in self._scan(resource, day, start, end):
            if booking_id != exclude_id:
                return True
        return False

    def booking_at(self, resource: str, day: date, minute: int) -> Optional[BookingSnapshot]:
        """The booking occupying the court at that minute, if any."""
        hits = self.overlapping(resource, day, minute, minute + 1)
        return hits[0] if hits else None

    def free_windows(self, resource: str, day: date, opening: int, closing: int) -> list[tuple[int, int]]:
        """Gaps between bookings inside [opening, closing)."""
        windows = []
        cursor = opening
        for iv_start, iv_end, _ in self.query(resource, day):
            if iv_end <= cursor:
                continue
            if iv_start >= closing:
                break
            if iv_start > cursor:
                windows.append((cursor, iv_start))
            cursor = max(cursor, iv_end)
        if cursor < closing:
            windows.append((cursor, closing))
        return windows

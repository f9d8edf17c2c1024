"""
Scheduling service: the only component that creates, moves or cancels
bookings.

CONCURRENCY STRATEGY: Per-Court Serialization
=============================================

Problem:
  Two coaches book Court 1 for overlapping slots at the same moment.
  Both conflict checks read the slot index before either insert lands,
  both pass, both insert. Result: a double-booked court.

Solution:
  Every write holds the lock of each court it touches for the whole
  check-then-act sequence:

  1. Acquire court locks in sorted order (no deadlocks between writers
     whose court sets overlap)
  2. Compare the slot index buckets we are about to consult with the
     interval store; a mismatch means the index is stale, so rebuild it and
     reject with ConcurrencyError
  3. Run the conflict detector against the index
  4. Write booking + slot rows and commit
  5. Update the slot index (synchronously, no await in between)
  6. Release the locks

  Writers on different courts never wait for each other. Reads never lock.

  Safety nets:
  - On PostgreSQL, an exclusion constraint on booking_slots rejects an
    overlapping insert that slipped past the locks (e.g. a second worker
    running with LOCK_STRATEGY=local). The IntegrityError surfaces as
    ConcurrencyError and forces an index rebuild.

Errors (ValidationError, ConflictError, NotFoundError, ConcurrencyError) are
terminal for the request. This service never retries a rejected write.
"""

import time as clock
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import date, time
from typing import Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from courtbook.core.config import Settings, get_settings
from courtbook.core.errors import (
    ConcurrencyError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from courtbook.core.logging import get_logger
from courtbook.core.metrics import (
    booking_latency,
    conflicts_detected,
    record_booking_operation,
    slot_index_rebuilds,
    slot_index_size,
)
from courtbook.models.booking import BOOKING_KINDS, Booking, BookingSlot
from courtbook.scheduling.conflicts import ConflictDetector, ConflictResult
from courtbook.scheduling.intervals import BookingSnapshot, Candidate, from_minute, normalize_resources, to_minute
from courtbook.scheduling.slot_index import SlotIndex
from courtbook.schemas.booking import BookingCreate
from courtbook.services.interfaces.resource_lock import ResourceLockStrategy

logger = get_logger(__name__)

MAX_LOCK_ATTEMPTS = 3

_OUTCOMES = {
    ValidationError: "invalid",
    ConflictError: "conflict",
    NotFoundError: "not_found",
    ConcurrencyError: "concurrency",
}


class SchedulingService:
    def __init__(
        self,
        locks: ResourceLockStrategy,
        settings: Optional[Settings] = None,
        index: Optional[SlotIndex] = None,
    ):
        self.settings = settings or get_settings()
        self.locks = locks
        self.index = index if index is not None else SlotIndex()
        self.detector = ConflictDetector(self.index)
        self._index_ready = False

    @property
    def index_ready(self) -> bool:
        return self._index_ready

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, db: AsyncSession, data: BookingCreate, created_by: Optional[str] = None) -> Booking:
        """Book courts for a new event, or raise ConflictError listing who is in the way."""
        async with self._instrumented("create"):
            if data.kind not in BOOKING_KINDS:
                raise ValidationError("kind", f"must be one of {', '.join(BOOKING_KINDS)}")
            candidate = self._candidate(data.resources, data.date, data.start_time, data.duration_minutes)

            async with self.locks.hold(candidate.resources):
                await self._ensure_index(db)
                await self._verify_buckets(db, candidate.resources, candidate.date)
                self._raise_on_conflict("create", candidate, self.detector.detect(candidate))

                booking = Booking(
                    resources=list(candidate.resources),
                    date=candidate.date,
                    start_minute=candidate.start,
                    duration_minutes=candidate.end - candidate.start,
                    kind=data.kind,
                    title=data.title or f"{data.kind.capitalize()} - {', '.join(candidate.resources)}",
                    coach=data.coach,
                    participants=list(data.participants),
                    description=data.description,
                    status="scheduled",
                    created_by=created_by,
                )
                db.add(booking)
                await db.flush()
                db.add_all(self._slots_for(booking.id, candidate))
                await self._commit(db)
                await db.refresh(booking)
                self.index.insert(BookingSnapshot.from_booking(booking))
                slot_index_size.set(len(self.index))

        logger.info(
            "booking_created",
            booking_id=booking.id,
            resources=booking.resources,
            date=str(booking.date),
            start=f"{booking.start_time:%H:%M}",
            minutes=booking.duration_minutes,
            created_by=created_by,
        )
        return booking

    async def reschedule(
        self,
        db: AsyncSession,
        booking_id: int,
        resources: Optional[Iterable[str]] = None,
        start_time: Optional[time] = None,
        duration_minutes: Optional[int] = None,
        day: Optional[date] = None,
    ) -> Booking:
        """
        Move and/or resize a booking. Omitted fields keep their value.

        All or nothing: on any error the stored booking and the slot index
        are exactly as they were.
        """
        async with self._instrumented("reschedule"):
            booking = await self._load_scheduled(db, booking_id)

            for attempt in range(1, MAX_LOCK_ATTEMPTS + 1):
                target = self._reschedule_target(booking, resources, start_time, duration_minutes, day)
                needed = set(booking.resources) | set(target.resources)

                async with self.locks.hold(needed):
                    # Re-read under the lock: another writer may have moved it
                    booking = await self._load_scheduled(db, booking_id)
                    target = self._reschedule_target(booking, resources, start_time, duration_minutes, day)
                    if not (set(booking.resources) | set(target.resources)) <= needed:
                        logger.info("reschedule_retry", booking_id=booking_id, attempt=attempt, reason="courts_changed")
                        continue

                    await self._ensure_index(db)
                    await self._verify_buckets(db, target.resources, target.date)
                    self._raise_on_conflict(
                        "reschedule", target, self.detector.detect(target, exclude_id=booking_id)
                    )

                    previous = BookingSnapshot.from_booking(booking)
                    booking.resources = list(target.resources)
                    booking.date = target.date
                    booking.start_minute = target.start
                    booking.duration_minutes = target.end - target.start
                    await db.execute(delete(BookingSlot).where(BookingSlot.booking_id == booking_id))
                    db.add_all(self._slots_for(booking_id, target))
                    await self._commit(db)
                    await db.refresh(booking)
                    self.index.replace(BookingSnapshot.from_booking(booking))

                logger.info(
                    "booking_rescheduled",
                    booking_id=booking_id,
                    from_resources=list(previous.resources),
                    from_date=str(previous.date),
                    from_start=f"{previous.start_time:%H:%M}",
                    to_resources=booking.resources,
                    to_date=str(booking.date),
                    to_start=f"{booking.start_time:%H:%M}",
                    minutes=booking.duration_minutes,
                    attempt=attempt,
                )
                return booking

            raise ConcurrencyError(f"Booking {booking_id} kept changing courts; retry with fresh state")

    async def delete(self, db: AsyncSession, booking_id: int) -> Optional[Booking]:
        """
        Cancel a booking and free its courts.

        Idempotent: unknown or already cancelled ids return None without
        touching anything.
        """
        async with self._instrumented("delete"):
            booking = await self._get(db, booking_id)
            if booking is None or booking.status == "cancelled":
                logger.info("booking_delete_noop", booking_id=booking_id)
                return None

            for attempt in range(1, MAX_LOCK_ATTEMPTS + 1):
                needed = set(booking.resources)

                async with self.locks.hold(needed):
                    booking = await self._get(db, booking_id)
                    if booking is None or booking.status == "cancelled":
                        logger.info("booking_delete_noop", booking_id=booking_id)
                        return None
                    # A reschedule may have moved it while we waited
                    if not set(booking.resources) <= needed:
                        logger.info("delete_retry", booking_id=booking_id, attempt=attempt, reason="courts_changed")
                        continue

                    booking.status = "cancelled"
                    await db.execute(delete(BookingSlot).where(BookingSlot.booking_id == booking_id))
                    await self._commit(db)
                    await db.refresh(booking)
                    self.index.remove(booking_id)
                    slot_index_size.set(len(self.index))

                logger.info(
                    "booking_cancelled",
                    booking_id=booking_id,
                    resources=booking.resources,
                    date=str(booking.date),
                    attempt=attempt,
                )
                return booking

            raise ConcurrencyError(f"Booking {booking_id} kept changing courts; retry with fresh state")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, db: AsyncSession, booking_id: int) -> Booking:
        booking = await self._get(db, booking_id)
        if booking is None:
            raise NotFoundError(booking_id)
        return booking

    async def query(
        self,
        db: AsyncSession,
        day: Optional[date] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        resource: Optional[str] = None,
        kind: Optional[str] = None,
        status: Optional[str] = "scheduled",
    ) -> list[Booking]:
        """Bookings matching the filters, ordered by date, start time, id."""
        stmt = select(Booking)
        if resource and status == "scheduled":
            # Slot rows only exist for scheduled bookings; use the court index
            stmt = stmt.join(BookingSlot, BookingSlot.booking_id == Booking.id).where(
                BookingSlot.resource == resource
            )
        if day is not None:
            stmt = stmt.where(Booking.date == day)
        if date_from is not None:
            stmt = stmt.where(Booking.date >= date_from)
        if date_to is not None:
            stmt = stmt.where(Booking.date <= date_to)
        if kind:
            stmt = stmt.where(Booking.kind == kind)
        if status:
            stmt = stmt.where(Booking.status == status)
        stmt = stmt.order_by(Booking.date.asc(), Booking.start_minute.asc(), Booking.id.asc())

        result = await db.execute(stmt)
        bookings = list(result.scalars().all())
        if resource and status != "scheduled":
            bookings = [b for b in bookings if resource in b.resources]
        return bookings

    async def snapshot_index(self, db: AsyncSession) -> SlotIndex:
        """The slot index, loaded from the store on first use."""
        await self._ensure_index(db)
        return self.index

    # ------------------------------------------------------------------
    # Slot index maintenance
    # ------------------------------------------------------------------

    async def rebuild_index(self, db: AsyncSession, reason: str = "manual") -> int:
        """Reload the slot index from booking_slots. Returns the booking count."""
        result = await db.execute(
            select(BookingSlot, Booking)
            .join(Booking, Booking.id == BookingSlot.booking_id)
            .where(Booking.status == "scheduled")
        )
        courts: dict[int, list[str]] = defaultdict(list)
        rows: dict[int, tuple[BookingSlot, Booking]] = {}
        for slot, booking in result.all():
            courts[booking.id].append(slot.resource)
            rows[booking.id] = (slot, booking)

        snapshots = [
            BookingSnapshot(
                id=booking_id,
                resources=normalize_resources(courts[booking_id]),
                date=slot.date,
                start=slot.start_minute,
                end=slot.end_minute,
                kind=booking.kind,
                title=booking.title,
                coach=booking.coach,
                updated_at=booking.updated_at,
            )
            for booking_id, (slot, booking) in rows.items()
        ]
        self.index.load(snapshots)
        self._index_ready = True
        slot_index_rebuilds.labels(reason=reason).inc()
        slot_index_size.set(len(self.index))
        logger.info("slot_index_rebuilt", reason=reason, bookings=len(snapshots))
        return len(snapshots)

    async def _ensure_index(self, db: AsyncSession) -> None:
        if not self._index_ready:
            await self.rebuild_index(db, reason="lazy")

    async def _verify_buckets(self, db: AsyncSession, resources: Iterable[str], day: date) -> None:
        resources = list(resources)
        result = await db.execute(
            select(BookingSlot.resource, BookingSlot.start_minute, BookingSlot.end_minute, BookingSlot.booking_id)
            .where(BookingSlot.date == day, BookingSlot.resource.in_(resources))
        )
        stored: dict[str, set] = defaultdict(set)
        for resource, start, end, booking_id in result.all():
            stored[resource].add((start, end, booking_id))

        for resource in resources:
            indexed = self.index.entries_for(resource, day)
            if stored[resource] != indexed:
                logger.error(
                    "slot_index_divergence",
                    resource=resource,
                    date=str(day),
                    missing_from_index=sorted(i[2] for i in stored[resource] - indexed),
                    missing_from_store=sorted(i[2] for i in indexed - stored[resource]),
                )
                await self.rebuild_index(db, reason="divergence")
                raise ConcurrencyError(
                    f"Schedule for {resource} on {day.isoformat()} changed underneath this request; retry"
                )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _candidate(self, resources, day, start_time, duration_minutes) -> Candidate:
        """Validate raw booking fields and turn them into an interval."""
        settings = self.settings
        courts = normalize_resources(resources or ())
        if not courts:
            raise ValidationError("resources", "at least one court is required")
        unknown = [c for c in courts if c not in settings.COURTS]
        if unknown:
            raise ValidationError("resources", f"unknown court(s): {', '.join(unknown)}")
        if day is None:
            raise ValidationError("date", "is required")
        if start_time is None:
            raise ValidationError("start_time", "is required")
        if start_time.second or start_time.microsecond:
            raise ValidationError("start_time", "must be on a whole minute")
        if duration_minutes is None or duration_minutes <= 0:
            raise ValidationError("duration_minutes", "must be a positive number of minutes")

        start = to_minute(start_time)
        opening, closing = settings.opening_minute, settings.closing_minute
        if start < opening or start >= closing:
            raise ValidationError(
                "start_time",
                f"must be between {from_minute(opening):%H:%M} and {from_minute(closing):%H:%M}",
            )
        end = start + duration_minutes
        if end > closing:
            raise ValidationError("duration_minutes", f"booking must end by {from_minute(closing):%H:%M}")
        return Candidate(resources=courts, date=day, start=start, end=end)

    def _reschedule_target(self, booking: Booking, resources, start_time, duration_minutes, day) -> Candidate:
        return self._candidate(
            resources if resources is not None else booking.resources,
            day or booking.date,
            start_time if start_time is not None else booking.start_time,
            duration_minutes if duration_minutes is not None else booking.duration_minutes,
        )

    def _raise_on_conflict(self, operation: str, candidate: Candidate, result: ConflictResult) -> None:
        if not result.conflict:
            return
        conflicts_detected.inc()
        logger.warning(
            "booking_conflict",
            operation=operation,
            resources=list(candidate.resources),
            date=str(candidate.date),
            start=f"{from_minute(candidate.start):%H:%M}",
            end=f"{from_minute(candidate.end):%H:%M}",
            conflicting_ids=[b.id for b in result.conflicting_bookings],
        )
        raise ConflictError(result.conflicting_bookings)

    @staticmethod
    def _slots_for(booking_id: int, candidate: Candidate) -> list[BookingSlot]:
        return [
            BookingSlot(
                booking_id=booking_id,
                resource=resource,
                date=candidate.date,
                start_minute=candidate.start,
                end_minute=candidate.end,
            )
            for resource in candidate.resources
        ]

    async def _commit(self, db: AsyncSession) -> None:
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.error("interval_store_rejected_write", error=str(e.orig))
            await self.rebuild_index(db, reason="integrity")
            raise ConcurrencyError(
                "Another booking for the same court was committed concurrently; retry with fresh state"
            ) from e

    async def _get(self, db: AsyncSession, booking_id: int) -> Optional[Booking]:
        result = await db.execute(
            select(Booking).where(Booking.id == booking_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _load_scheduled(self, db: AsyncSession, booking_id: int) -> Booking:
        booking = await self._get(db, booking_id)
        if booking is None or booking.status != "scheduled":
            raise NotFoundError(booking_id)
        return booking

    @asynccontextmanager
    async def _instrumented(self, operation: str):
        started = clock.perf_counter()
        try:
            yield
        except Exception as e:
            record_booking_operation(operation, _OUTCOMES.get(type(e), "error"))
            raise
        else:
            record_booking_operation(operation, "success")
        finally:
            booking_latency.labels(operation=operation).observe(clock.perf_counter() - started)

"""
Tests for the scheduling service: conflict rejection, atomic reschedules,
idempotent cancellation and the per-court locking under concurrency.
"""

import asyncio
import random
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import date, time

import pytest
from sqlalchemy import select

from courtbook.core.errors import (
    ConcurrencyError,
    ConflictError,
    NotFoundError,
    SchedulingError,
    ValidationError,
)
from courtbook.models import Booking, BookingSlot
from courtbook.services.booking_service import SchedulingService
from courtbook.services.interfaces.local_lock import LocalResourceLock
from courtbook.services.interfaces.resource_lock import ResourceLockStrategy

from conftest import DAY, booking_data


async def stored_slots(db) -> set:
    result = await db.execute(select(BookingSlot))
    return {(s.resource, s.date, s.start_minute, s.end_minute, s.booking_id) for s in result.scalars().all()}


def indexed_slots(service: SchedulingService, days) -> set:
    return {
        (court, day, start, end, booking_id)
        for court in service.settings.COURTS
        for day in days
        for start, end, booking_id in service.index.query(court, day)
    }


def assert_no_overlaps(slots: set) -> None:
    by_court = defaultdict(list)
    for resource, day, start, end, booking_id in slots:
        by_court[(resource, day)].append((start, end, booking_id))
    for key, intervals in by_court.items():
        intervals.sort()
        for (_, end, first), (start, _, second) in zip(intervals, intervals[1:]):
            assert end <= start, f"{first} and {second} overlap on {key}"


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_writes_booking_slots_and_index(service, db_session):
    booking = await service.create(
        db_session, booking_data(["Court 2", "Court 1"], "09:00", 90, kind="match"), created_by="alice"
    )

    assert booking.id is not None
    assert booking.resources == ["Court 1", "Court 2"]
    assert booking.start_time == time(9, 0)
    assert booking.end_time == time(10, 30)
    assert booking.title == "Match - Court 1, Court 2"
    assert booking.created_by == "alice"
    assert await stored_slots(db_session) == {
        ("Court 1", DAY, 540, 630, booking.id),
        ("Court 2", DAY, 540, 630, booking.id),
    }
    assert booking.id in service.index


@pytest.mark.asyncio
async def test_create_overlapping_booking_raises_conflict(service, db_session):
    first = await service.create(db_session, booking_data(["Court 1"], "09:00", 120, title="Team A"))

    with pytest.raises(ConflictError) as exc_info:
        await service.create(db_session, booking_data(["Court 1"], "10:00", 60))

    conflicts = exc_info.value.conflicting_bookings
    assert [b.id for b in conflicts] == [first.id]
    assert "Team A" in exc_info.value.message
    assert len(await service.query(db_session)) == 1


@pytest.mark.asyncio
async def test_back_to_back_bookings_are_allowed(service, db_session):
    await service.create(db_session, booking_data(["Court 1"], "09:00", 120))
    second = await service.create(db_session, booking_data(["Court 1"], "11:00", 60))

    assert second.start_time == time(11, 0)


@pytest.mark.asyncio
async def test_multi_court_conflict_lists_every_blocker(service, db_session):
    one = await service.create(db_session, booking_data(["Court 1"], "09:00", 60))
    two = await service.create(db_session, booking_data(["Court 2"], "09:30", 60))
    await service.create(db_session, booking_data(["Court 3"], "09:00", 60))

    with pytest.raises(ConflictError) as exc_info:
        await service.create(db_session, booking_data(["Court 1", "Court 2"], "09:00", 120))

    assert [b.id for b in exc_info.value.conflicting_bookings] == [one.id, two.id]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "data, field",
    [
        (booking_data(["Court 99"], "09:00"), "resources"),
        (booking_data(["Court 1"], "06:30"), "start_time"),
        (booking_data(["Court 1"], "22:00", 30), "start_time"),
        (booking_data(["Court 1"], "21:00", 90), "duration_minutes"),
        (booking_data(["  "], "09:00"), "resources"),
    ],
)
async def test_create_rejects_invalid_requests(service, db_session, data, field):
    with pytest.raises(ValidationError) as exc_info:
        await service.create(db_session, data)

    assert exc_info.value.field == field
    assert await stored_slots(db_session) == set()


@pytest.mark.asyncio
async def test_create_rejects_start_with_seconds(service, db_session):
    data = booking_data(["Court 1"], "09:00")
    data.start_time = time(9, 0, 30)

    with pytest.raises(ValidationError) as exc_info:
        await service.create(db_session, data)

    assert exc_info.value.field == "start_time"


# ---------------------------------------------------------------------------
# Reschedule
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_reschedule_moves_booking_and_index(service, db_session):
    booking = await service.create(db_session, booking_data(["Court 1"], "09:00", 60))

    moved = await service.reschedule(db_session, booking.id, resources=["Court 4"], start_time=time(14, 0))

    assert moved.resources == ["Court 4"]
    assert moved.start_time == time(14, 0)
    assert moved.duration_minutes == 60
    assert service.index.query("Court 1", DAY) == []
    assert service.index.query("Court 4", DAY) == [(840, 900, booking.id)]
    assert await stored_slots(db_session) == {("Court 4", DAY, 840, 900, booking.id)}


@pytest.mark.asyncio
async def test_reschedule_can_overlap_its_own_old_position(service, db_session):
    booking = await service.create(db_session, booking_data(["Court 1"], "09:00", 60))

    resized = await service.reschedule(db_session, booking.id, start_time=time(9, 30), duration_minutes=90)

    assert (resized.start_minute, resized.end_minute) == (570, 660)


@pytest.mark.asyncio
async def test_rejected_reschedule_leaves_everything_unchanged(service, db_session):
    blocker = await service.create(db_session, booking_data(["Court 2"], "10:00", 60))
    booking = await service.create(db_session, booking_data(["Court 1"], "09:00", 60))
    before_store = await stored_slots(db_session)
    before_index = indexed_slots(service, [DAY])

    with pytest.raises(ConflictError) as exc_info:
        await service.reschedule(db_session, booking.id, resources=["Court 2"], start_time=time(10, 30))

    assert [b.id for b in exc_info.value.conflicting_bookings] == [blocker.id]
    assert await stored_slots(db_session) == before_store
    assert indexed_slots(service, [DAY]) == before_index
    unchanged = await service.get(db_session, booking.id)
    assert (unchanged.resources, unchanged.start_minute) == (["Court 1"], 540)


@pytest.mark.asyncio
async def test_reschedule_unknown_or_cancelled_booking_is_not_found(service, db_session):
    booking = await service.create(db_session, booking_data(["Court 1"], "09:00", 60))
    await service.delete(db_session, booking.id)

    with pytest.raises(NotFoundError):
        await service.reschedule(db_session, booking.id, start_time=time(12, 0))
    with pytest.raises(NotFoundError):
        await service.reschedule(db_session, 999, start_time=time(12, 0))


@pytest.mark.asyncio
async def test_reschedule_validates_new_position(service, db_session):
    booking = await service.create(db_session, booking_data(["Court 1"], "09:00", 60))

    with pytest.raises(ValidationError) as exc_info:
        await service.reschedule(db_session, booking.id, duration_minutes=0)

    assert exc_info.value.field == "duration_minutes"


@pytest.mark.asyncio
async def test_reschedule_to_another_day(service, db_session):
    booking = await service.create(db_session, booking_data(["Court 1"], "09:00", 60))
    other_day = date(2026, 3, 15)

    await service.reschedule(db_session, booking.id, day=other_day)

    assert service.index.query("Court 1", DAY) == []
    assert service.index.query("Court 1", other_day) == [(540, 600, booking.id)]


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_delete_frees_the_court_and_is_idempotent(service, db_session):
    booking = await service.create(db_session, booking_data(["Court 1"], "09:00", 60))

    cancelled = await service.delete(db_session, booking.id)
    again = await service.delete(db_session, booking.id)
    unknown = await service.delete(db_session, 999)

    assert cancelled.status == "cancelled"
    assert again is None
    assert unknown is None
    assert booking.id not in service.index
    assert await stored_slots(db_session) == set()
    # The freed slot can be booked again
    await service.create(db_session, booking_data(["Court 1"], "09:00", 60))


# ---------------------------------------------------------------------------
# Query
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_query_filters_and_orders(service, db_session):
    late = await service.create(db_session, booking_data(["Court 1"], "15:00", 60, kind="match"))
    early = await service.create(db_session, booking_data(["Court 2"], "08:00", 60))
    tomorrow = await service.create(db_session, booking_data(["Court 1"], "08:00", 60, day=date(2026, 3, 15)))
    gone = await service.create(db_session, booking_data(["Court 3"], "08:00", 60))
    await service.delete(db_session, gone.id)

    assert [b.id for b in await service.query(db_session)] == [early.id, late.id, tomorrow.id]
    assert [b.id for b in await service.query(db_session, day=DAY)] == [early.id, late.id]
    assert [b.id for b in await service.query(db_session, resource="Court 1")] == [late.id, tomorrow.id]
    assert [b.id for b in await service.query(db_session, kind="match")] == [late.id]
    assert [b.id for b in await service.query(db_session, date_from=date(2026, 3, 15))] == [tomorrow.id]
    assert [b.id for b in await service.query(db_session, status="cancelled", resource="Court 3")] == [gone.id]


@pytest.mark.asyncio
async def test_get_unknown_booking_raises_not_found(service, db_session):
    with pytest.raises(NotFoundError):
        await service.get(db_session, 42)


# ---------------------------------------------------------------------------
# Slot index consistency
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_index_is_loaded_lazily_from_the_store(service, session_factory):
    async with session_factory() as db:
        booking = await service.create(db, booking_data(["Court 1"], "09:00", 60))

    fresh = SchedulingService(locks=LocalResourceLock())
    async with session_factory() as db:
        with pytest.raises(ConflictError):
            await fresh.create(db, booking_data(["Court 1"], "09:30", 60))

    assert fresh.index_ready
    assert booking.id in fresh.index


@pytest.mark.asyncio
async def test_stale_index_is_rebuilt_and_write_rejected(service, db_session):
    await service.create(db_session, booking_data(["Court 1"], "07:00", 60))

    # Another worker writes straight to the store
    foreign = Booking(
        resources=["Court 1"], date=DAY, start_minute=600, duration_minutes=60,
        kind="training", title="Other worker", participants=[], status="scheduled",
    )
    db_session.add(foreign)
    await db_session.flush()
    db_session.add(BookingSlot(booking_id=foreign.id, resource="Court 1", date=DAY, start_minute=600, end_minute=660))
    await db_session.commit()

    with pytest.raises(ConcurrencyError):
        await service.create(db_session, booking_data(["Court 1"], "10:30", 60))

    assert foreign.id in service.index
    with pytest.raises(ConflictError) as exc_info:
        await service.create(db_session, booking_data(["Court 1"], "10:30", 60))
    assert [b.id for b in exc_info.value.conflicting_bookings] == [foreign.id]


@pytest.mark.asyncio
async def test_rebuild_index_matches_incremental_updates(service, db_session):
    a = await service.create(db_session, booking_data(["Court 1", "Court 2"], "09:00", 60))
    b = await service.create(db_session, booking_data(["Court 3"], "09:00", 60))
    await service.reschedule(db_session, a.id, resources=["Court 2"], start_time=time(12, 0))
    await service.delete(db_session, b.id)
    incremental = indexed_slots(service, [DAY])

    loaded = await service.rebuild_index(db_session, reason="test")

    assert loaded == 1
    assert indexed_slots(service, [DAY]) == incremental == await stored_slots(db_session)


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_concurrent_overlapping_creates_admit_exactly_one(service, session_factory):
    """Ten coaches grab Court 1 at 18:00 at the same moment."""

    async def attempt(i):
        async with session_factory() as db:
            start = f"18:{i:02d}"
            return await service.create(db, booking_data(["Court 1"], start, 60, title=f"Coach {i}"))

    results = await asyncio.gather(*(attempt(i) for i in range(10)), return_exceptions=True)

    created = [r for r in results if not isinstance(r, BaseException)]
    rejected = [r for r in results if isinstance(r, BaseException)]
    assert len(created) == 1
    assert all(isinstance(r, ConflictError) for r in rejected)
    async with session_factory() as db:
        assert len(await service.query(db, resource="Court 1")) == 1


@pytest.mark.asyncio
async def test_concurrent_creates_on_different_courts_all_succeed(service, session_factory):
    async def attempt(court):
        async with session_factory() as db:
            return await service.create(db, booking_data([court], "18:00", 60))

    courts = ["Court 1", "Court 2", "Court 3", "Court 4"]
    results = await asyncio.gather(*(attempt(c) for c in courts))

    assert sorted(r.resources[0] for r in results) == courts


@pytest.mark.asyncio
async def test_concurrent_move_and_create_into_same_slot(service, session_factory):
    async with session_factory() as db:
        mover = await service.create(db, booking_data(["Court 1"], "09:00", 60))

    async def move():
        async with session_factory() as db:
            return await service.reschedule(db, mover.id, resources=["Court 2"], start_time=time(12, 0))

    async def create():
        async with session_factory() as db:
            return await service.create(db, booking_data(["Court 2"], "12:30", 60))

    results = await asyncio.gather(move(), create(), return_exceptions=True)

    assert sum(isinstance(r, ConflictError) for r in results) == 1
    async with session_factory() as db:
        slots = await stored_slots(db)
    assert_no_overlaps(slots)
    assert indexed_slots(service, [DAY]) == slots


@pytest.mark.asyncio
async def test_random_operation_sequence_never_double_books(service, session_factory):
    rng = random.Random(20260314)
    courts = ["Court 1", "Court 2", "Court 3"]
    days = [DAY, date(2026, 3, 15)]
    ids: list[int] = []

    async def step():
        async with session_factory() as db:
            roll = rng.random()
            if roll < 0.5 or not ids:
                data = booking_data(
                    rng.sample(courts, rng.randint(1, 2)),
                    f"{rng.randint(7, 19):02d}:{rng.choice([0, 15, 30, 45]):02d}",
                    rng.choice([30, 60, 90, 120]),
                    day=rng.choice(days),
                )
                booking = await service.create(db, data)
                ids.append(booking.id)
            elif roll < 0.85:
                await service.reschedule(
                    db,
                    rng.choice(ids),
                    resources=rng.sample(courts, rng.randint(1, 2)),
                    start_time=time(rng.randint(7, 19), rng.choice([0, 30])),
                    day=rng.choice(days),
                )
            else:
                await service.delete(db, rng.choice(ids))

    for _ in range(15):
        results = await asyncio.gather(*(step() for _ in range(4)), return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                assert isinstance(result, SchedulingError), repr(result)

        async with session_factory() as db:
            slots = await stored_slots(db)
        assert_no_overlaps(slots)
        assert indexed_slots(service, days) == slots


class InterleavingLock(ResourceLockStrategy):
    """Local locks that run ``before_next_hold`` once, before the next acquisition."""

    name = "interleaving"

    def __init__(self):
        self.inner = LocalResourceLock(blocking_timeout=2)
        self.held: list[list[str]] = []
        self.before_next_hold = None

    @asynccontextmanager
    async def hold(self, resources):
        hook, self.before_next_hold = self.before_next_hold, None
        if hook is not None:
            await hook()
        async with self.inner.hold(resources) as ordered:
            self.held.append(ordered)
            yield ordered


@pytest.mark.asyncio
async def test_delete_follows_booking_moved_before_lock(session_factory):
    locks = InterleavingLock()
    service = SchedulingService(locks=locks)
    async with session_factory() as db:
        booking = await service.create(db, booking_data(["Court 1"], "09:00", 60))
    locks.held.clear()

    async def move_to_court_two():
        async with session_factory() as db:
            await service.reschedule(db, booking.id, resources=["Court 2"])

    # Delete reads Court 1, then the booking moves before delete gets its lock
    locks.before_next_hold = move_to_court_two
    async with session_factory() as db:
        cancelled = await service.delete(db, booking.id)

    assert cancelled.status == "cancelled"
    assert cancelled.resources == ["Court 2"]
    assert locks.held == [["Court 1", "Court 2"], ["Court 1"], ["Court 2"]]
    assert booking.id not in service.index
    assert service.index.query("Court 2", DAY) == []
    async with session_factory() as db:
        assert await stored_slots(db) == set()

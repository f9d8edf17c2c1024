"""
Reschedule coordinator: the client half of drag-to-move and resize.

MOVE STATE MACHINE
==================

    Idle --begin()--> PendingMove --settle() ok-----> Committed  (back to Idle)
                           |        settle() error--> RolledBack (back to Idle)
                           +------- cancel() -------> RolledBack (back to Idle)

- begin() checks the caller's role first. A rejected caller never changes
  the board and never reaches the server.
- While a move is pending, the board shows the optimistic position.
- Exactly one reschedule call is made per move. A second gesture on the same
  booking while one is pending is rejected with MoveInProgressError.
- Committed: the position returned by the server becomes the board's.
- RolledBack: the board goes back to the pre-move position. Conflicts,
  missing bookings, authorization failures, transport errors and timeouts
  all end here; the error is kept on the move for display.
- cancel() restores the pre-move position at once. When the server answer
  arrives later it is discarded. Until that answer arrives a new begin() on
  the same booking is rejected, so the server never sees two moves of one
  booking racing each other.
- settle() gives up after RESCHEDULE_TIMEOUT_SECONDS unless the coordinator
  was built with another timeout.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import date, time
from enum import Enum
from typing import Iterable, Optional

from courtbook.core.config import Settings, get_settings
from courtbook.core.errors import AuthorizationError, MoveInProgressError, NotFoundError
from courtbook.core.logging import get_logger
from courtbook.core.metrics import record_move
from courtbook.core.security import Identity
from courtbook.services.interfaces.authorization import AuthorizationPolicy
from courtbook.services.interfaces.gateway import RescheduleGateway

logger = get_logger(__name__)


class MoveState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass(frozen=True)
class Placement:
    """Where the board draws a booking."""

    resources: tuple[str, ...]
    date: date
    start_time: time
    duration_minutes: int

    @classmethod
    def from_booking(cls, booking) -> "Placement":
        return cls(
            resources=tuple(sorted(booking.resources)),
            date=booking.date,
            start_time=booking.start_time,
            duration_minutes=booking.duration_minutes,
        )

    @classmethod
    def from_dict(cls, data: dict) -> "Placement":
        return cls(
            resources=tuple(sorted(data["resources"])),
            date=date.fromisoformat(data["date"]),
            start_time=time.fromisoformat(data["start_time"]),
            duration_minutes=int(data["duration_minutes"]),
        )


@dataclass(frozen=True)
class MoveTarget:
    """What the gesture asks for. None means "keep the current value"."""

    resources: Optional[tuple[str, ...]] = None
    date: Optional[date] = None
    start_time: Optional[time] = None
    duration_minutes: Optional[int] = None

    def apply(self, placement: Placement) -> Placement:
        return Placement(
            resources=tuple(sorted(self.resources)) if self.resources is not None else placement.resources,
            date=self.date or placement.date,
            start_time=self.start_time or placement.start_time,
            duration_minutes=self.duration_minutes or placement.duration_minutes,
        )

    def to_payload(self) -> dict:
        payload = {}
        if self.resources is not None:
            payload["resources"] = list(self.resources)
        if self.date is not None:
            payload["date"] = self.date.isoformat()
        if self.start_time is not None:
            payload["start_time"] = self.start_time.strftime("%H:%M")
        if self.duration_minutes is not None:
            payload["duration_minutes"] = self.duration_minutes
        return payload


@dataclass
class PendingMove:
    booking_id: int
    identity: Identity
    target: MoveTarget
    original: Placement
    optimistic: Placement
    state: MoveState = MoveState.PENDING
    cancelled: bool = False
    result: Optional[Placement] = None
    error: Optional[BaseException] = field(default=None, repr=False)

    @property
    def settled(self) -> bool:
        return self.state in (MoveState.COMMITTED, MoveState.ROLLED_BACK)


class ScheduleBoard:
    """The positions a client currently displays, keyed by booking id."""

    def __init__(self, placements: Optional[dict[int, Placement]] = None):
        self._placements: dict[int, Placement] = dict(placements or {})

    @classmethod
    def from_bookings(cls, bookings: Iterable) -> "ScheduleBoard":
        return cls({b.id: Placement.from_booking(b) for b in bookings})

    def __contains__(self, booking_id: int) -> bool:
        return booking_id in self._placements

    def placement(self, booking_id: int) -> Placement:
        try:
            return self._placements[booking_id]
        except KeyError:
            raise NotFoundError(booking_id) from None

    def place(self, booking_id: int, placement: Placement) -> None:
        self._placements[booking_id] = placement


class RescheduleCoordinator:
    def __init__(
        self,
        gateway: RescheduleGateway,
        authorization: AuthorizationPolicy,
        board: Optional[ScheduleBoard] = None,
        timeout: Optional[float] = None,
        settings: Optional[Settings] = None,
    ):
        self.gateway = gateway
        self.authorization = authorization
        self.board = board if board is not None else ScheduleBoard()
        # A move never stays pending longer than this
        self.timeout = timeout if timeout is not None else (settings or get_settings()).RESCHEDULE_TIMEOUT_SECONDS
        self._pending: dict[int, PendingMove] = {}
        # Server calls not yet answered, cancelled moves included
        self._in_flight: dict[int, PendingMove] = {}

    def state(self, booking_id: int) -> MoveState:
        return MoveState.PENDING if booking_id in self._pending else MoveState.IDLE

    def pending(self, booking_id: int) -> Optional[PendingMove]:
        return self._pending.get(booking_id)

    def begin(self, identity: Identity, booking_id: int, target: MoveTarget) -> PendingMove:
        """Drop/resize-end: relocate optimistically and enter PendingMove."""
        if not self.authorization.allowed(identity.role, "reschedule"):
            record_move("rejected")
            logger.warning("move_unauthorized", booking_id=booking_id, role=identity.role)
            raise AuthorizationError("reschedule", identity.role)
        if booking_id in self._pending or booking_id in self._in_flight:
            record_move("rejected")
            logger.info("move_rejected_in_progress", booking_id=booking_id)
            raise MoveInProgressError(booking_id)

        original = self.board.placement(booking_id)
        move = PendingMove(
            booking_id=booking_id,
            identity=identity,
            target=target,
            original=original,
            optimistic=target.apply(original),
        )
        self._pending[booking_id] = move
        self.board.place(booking_id, move.optimistic)
        logger.info("move_pending", booking_id=booking_id, target=target.to_payload())
        return move

    async def settle(self, move: PendingMove) -> PendingMove:
        """Make the single server call for ``move`` and reconcile the board."""
        if move.settled:
            return move
        self._in_flight[move.booking_id] = move
        try:
            call = self.gateway.reschedule(move.identity, move.booking_id, move.target)
            confirmed = await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.CancelledError:
            # The caller abandoned the request itself
            self.cancel(move.booking_id)
            raise
        except Exception as e:
            if move.cancelled:
                logger.info("late_result_discarded", booking_id=move.booking_id, error=str(e))
                return move
            self._roll_back(move, e)
            return move
        finally:
            if self._in_flight.get(move.booking_id) is move:
                del self._in_flight[move.booking_id]

        if move.cancelled:
            logger.info("late_result_discarded", booking_id=move.booking_id)
            return move

        move.result = confirmed
        move.state = MoveState.COMMITTED
        self.board.place(move.booking_id, confirmed)
        self._release(move)
        record_move("committed")
        logger.info("move_committed", booking_id=move.booking_id)
        return move

    def cancel(self, booking_id: int) -> Optional[PendingMove]:
        """Abandon the pending move, if any, and restore the pre-move position now."""
        move = self._pending.get(booking_id)
        if move is None:
            return None
        move.cancelled = True
        move.state = MoveState.ROLLED_BACK
        self.board.place(booking_id, move.original)
        self._release(move)
        record_move("cancelled")
        logger.info("move_cancelled", booking_id=booking_id)
        return move

    async def move(self, identity: Identity, booking_id: int, target: MoveTarget) -> PendingMove:
        return await self.settle(self.begin(identity, booking_id, target))

    def _roll_back(self, move: PendingMove, error: BaseException) -> None:
        move.error = error
        move.state = MoveState.ROLLED_BACK
        self.board.place(move.booking_id, move.original)
        self._release(move)
        record_move("rolled_back")
        logger.warning(
            "move_rolled_back",
            booking_id=move.booking_id,
            reason=getattr(error, "code", type(error).__name__),
            error=str(error),
        )

    def _release(self, move: PendingMove) -> None:
        # A newer move may already own the slot after a cancel
        if self._pending.get(move.booking_id) is move:
            del self._pending[move.booking_id]

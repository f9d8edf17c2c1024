"""
Reschedule gateway interface.

The coordinator does not care whether the scheduling service runs in the same
process or behind HTTP; it needs one call that either confirms the new
position or raises.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from courtbook.core.security import Identity
    from courtbook.services.reschedule_coordinator import MoveTarget, Placement


class RescheduleGateway(ABC):
    """
    Implementations:
    - ServiceGateway: calls SchedulingService.reschedule in-process
    - HttpGateway: PUT /api/v1/bookings/{id}/reschedule
    """

    @abstractmethod
    async def reschedule(self, identity: "Identity", booking_id: int, target: "MoveTarget") -> "Placement":
        """
        Apply ``target`` to the booking atomically.

        Returns:
            The position the server committed

        Raises:
            ConflictError, NotFoundError, AuthorizationError, ValidationError,
            ConcurrencyError, or a transport error
        """
        pass

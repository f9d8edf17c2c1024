"""
Gateways the reschedule coordinator uses to reach the scheduling service.
"""

from datetime import date, time
from typing import Callable, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from courtbook.core.errors import (
    AuthorizationError,
    ConcurrencyError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from courtbook.core.security import Identity
from courtbook.scheduling.intervals import BookingSnapshot, to_minute
from courtbook.services.booking_service import SchedulingService
from courtbook.services.interfaces.authorization import AuthorizationPolicy
from courtbook.services.interfaces.gateway import RescheduleGateway
from courtbook.services.reschedule_coordinator import MoveTarget, Placement


class ServiceGateway(RescheduleGateway):
    """Same-process gateway: one session per call, role checked like the API does."""

    def __init__(
        self,
        service: SchedulingService,
        session_factory: async_sessionmaker[AsyncSession],
        authorization: AuthorizationPolicy,
    ):
        self.service = service
        self.session_factory = session_factory
        self.authorization = authorization

    async def reschedule(self, identity: Identity, booking_id: int, target: MoveTarget) -> Placement:
        self.authorization.ensure(identity.role, "reschedule")
        async with self.session_factory() as db:
            booking = await self.service.reschedule(
                db,
                booking_id,
                resources=target.resources,
                start_time=target.start_time,
                duration_minutes=target.duration_minutes,
                day=target.date,
            )
            return Placement.from_booking(booking)


def _snapshot_from_payload(data: dict) -> BookingSnapshot:
    start = to_minute(time.fromisoformat(data["start_time"]))
    return BookingSnapshot(
        id=data["id"],
        resources=tuple(data["resources"]),
        date=date.fromisoformat(data["date"]),
        start=start,
        end=start + int(data["duration_minutes"]),
        kind=data.get("kind", "other"),
        title=data.get("title", ""),
    )


class HttpGateway(RescheduleGateway):
    """
    Talks to the booking API. Error bodies are turned back into the same
    exceptions the service raises, so the coordinator treats both gateways
    alike.
    """

    def __init__(self, client: httpx.AsyncClient, token_for: Callable[[Identity], str], prefix: str = "/api/v1"):
        self.client = client
        self.token_for = token_for
        self.prefix = prefix

    async def reschedule(self, identity: Identity, booking_id: int, target: MoveTarget) -> Placement:
        response = await self.client.put(
            f"{self.prefix}/bookings/{booking_id}/reschedule",
            json=target.to_payload(),
            headers={"Authorization": f"Bearer {self.token_for(identity)}"},
        )
        if response.status_code == 200:
            return Placement.from_dict(response.json())
        raise self._error_for(response, booking_id, identity)

    @staticmethod
    def _error_for(response: httpx.Response, booking_id: int, identity: Identity) -> Exception:
        body: Optional[dict] = None
        try:
            body = response.json()
        except ValueError:
            body = None
        code = body.get("error") if isinstance(body, dict) else None

        if code == "conflict":
            return ConflictError(
                [_snapshot_from_payload(item) for item in body.get("conflicting_bookings", [])],
                message=body.get("message"),
            )
        if code == "concurrency":
            return ConcurrencyError(body.get("message") or "Concurrent update")
        if code == "validation":
            return ValidationError(body.get("field") or "body", body.get("reason") or "invalid")
        if response.status_code == 404:
            return NotFoundError(booking_id)
        if response.status_code in (401, 403):
            return AuthorizationError("reschedule", identity.role)
        return httpx.HTTPStatusError(
            f"Unexpected {response.status_code} from reschedule",
            request=response.request,
            response=response,
        )

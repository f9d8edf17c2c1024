"""
Booking endpoints: create, reschedule, cancel, list.

Writes go through the scheduling service, which serializes them per court.
Successful writes drop the cached listings.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from courtbook.core.logging import get_logger
from courtbook.core.security import Identity, get_current_identity
from courtbook.db.session import get_db
from courtbook.schemas.booking import (
    BookingCreate,
    BookingKind,
    BookingReschedule,
    BookingResponse,
    BookingStatus,
    ConflictResponse,
    ErrorResponse,
)
from courtbook.services.booking_service import SchedulingService
from courtbook.services.cache_service import (
    get_cached_bookings,
    invalidate_booking_cache,
    set_cached_bookings,
)
from courtbook.services.interfaces.authorization import AuthorizationPolicy
from courtbook.services.strategy_factory import get_authorization, get_scheduling_service

logger = get_logger(__name__)
router = APIRouter(prefix="/bookings", tags=["Bookings"])

WRITE_ERRORS = {
    403: {"model": ErrorResponse},
    409: {"model": ConflictResponse},
    422: {"model": ErrorResponse},
}


@router.post(
    "/",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
    responses=WRITE_ERRORS,
)
async def create_booking(
    booking_data: BookingCreate,
    identity: Identity = Depends(get_current_identity),
    authorization: AuthorizationPolicy = Depends(get_authorization),
    service: SchedulingService = Depends(get_scheduling_service),
    db: AsyncSession = Depends(get_db),
):
    """
    Book one or more courts.

    Returns 409 with every conflicting booking when any requested court is
    already taken for an overlapping interval.
    """
    authorization.ensure(identity.role, "create")
    booking = await service.create(db, booking_data, created_by=identity.subject)
    await invalidate_booking_cache()
    return booking


@router.put(
    "/{booking_id}/reschedule",
    response_model=BookingResponse,
    responses={**WRITE_ERRORS, 404: {"model": ErrorResponse}},
)
async def reschedule_booking(
    booking_id: int,
    move: BookingReschedule,
    identity: Identity = Depends(get_current_identity),
    authorization: AuthorizationPolicy = Depends(get_authorization),
    service: SchedulingService = Depends(get_scheduling_service),
    db: AsyncSession = Depends(get_db),
):
    """
    Move or resize a booking. All or nothing: a rejected move leaves the
    booking exactly as it was.
    """
    authorization.ensure(identity.role, "reschedule")
    booking = await service.reschedule(
        db,
        booking_id,
        resources=move.resources,
        start_time=move.start_time,
        duration_minutes=move.duration_minutes,
        day=move.date,
    )
    await invalidate_booking_cache()
    return booking


@router.delete("/{booking_id}", status_code=status.HTTP_204_NO_CONTENT, responses={403: {"model": ErrorResponse}})
async def cancel_booking(
    booking_id: int,
    identity: Identity = Depends(get_current_identity),
    authorization: AuthorizationPolicy = Depends(get_authorization),
    service: SchedulingService = Depends(get_scheduling_service),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a booking and free its courts. Cancelling twice is fine."""
    authorization.ensure(identity.role, "delete")
    cancelled = await service.delete(db, booking_id)
    if cancelled is not None:
        await invalidate_booking_cache()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/", response_model=list[BookingResponse])
async def list_bookings(
    on: Optional[date] = Query(None, alias="date"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    resource: Optional[str] = Query(None),
    kind: Optional[BookingKind] = Query(None),
    booking_status: BookingStatus = Query("scheduled", alias="status"),
    identity: Identity = Depends(get_current_identity),
    service: SchedulingService = Depends(get_scheduling_service),
    db: AsyncSession = Depends(get_db),
):
    """
    List bookings sorted by date, then start time.
    Cached in Redis until the next write.
    """
    filters = {
        "date": on, "from": date_from, "to": date_to,
        "resource": resource, "kind": kind, "status": booking_status,
    }
    cached = await get_cached_bookings(filters)
    if cached is not None:
        return cached

    bookings = await service.query(
        db,
        day=on,
        date_from=date_from,
        date_to=date_to,
        resource=resource,
        kind=kind,
        status=booking_status,
    )
    payload = [BookingResponse.model_validate(b).model_dump(mode="json") for b in bookings]
    await set_cached_bookings(filters, payload)
    return payload


@router.get("/{booking_id}", response_model=BookingResponse, responses={404: {"model": ErrorResponse}})
async def get_booking(
    booking_id: int,
    identity: Identity = Depends(get_current_identity),
    service: SchedulingService = Depends(get_scheduling_service),
    db: AsyncSession = Depends(get_db),
):
    """Get a single booking, cancelled ones included."""
    return await service.get(db, booking_id)

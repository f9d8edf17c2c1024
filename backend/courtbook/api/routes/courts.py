"""
Court endpoints: the court list, live status and free windows.
Answers come from the slot index, not from a scan of every booking.
"""

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from courtbook.core.security import Identity, get_current_identity
from courtbook.db.session import get_db
from courtbook.schemas.court import CourtAvailabilityResponse, CourtResponse, CourtStatusResponse
from courtbook.services.booking_service import SchedulingService
from courtbook.services.court_service import court_availability, court_status, list_courts
from courtbook.services.strategy_factory import get_scheduling_service

router = APIRouter(prefix="/courts", tags=["Courts"])


@router.get("/", response_model=list[CourtResponse])
async def list_courts_endpoint(service: SchedulingService = Depends(get_scheduling_service)):
    return list_courts(service)


@router.get("/{court}/status", response_model=CourtStatusResponse)
async def court_status_endpoint(
    court: str,
    at: Optional[datetime] = Query(None, description="Defaults to now (server local time)"),
    identity: Identity = Depends(get_current_identity),
    service: SchedulingService = Depends(get_scheduling_service),
    db: AsyncSession = Depends(get_db),
):
    """Is the court occupied at ``at``, and by which booking."""
    return await court_status(service, db, court, at or datetime.now())


@router.get("/{court}/availability", response_model=CourtAvailabilityResponse)
async def court_availability_endpoint(
    court: str,
    on: date = Query(..., alias="date"),
    identity: Identity = Depends(get_current_identity),
    service: SchedulingService = Depends(get_scheduling_service),
    db: AsyncSession = Depends(get_db),
):
    """Free windows inside operating hours, plus the bookings between them."""
    return await court_availability(service, db, court, on)

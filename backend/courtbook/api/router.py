"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from courtbook.api.routes import bookings, courts

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(bookings.router)
api_router.include_router(courts.router)

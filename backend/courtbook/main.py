"""
Court Booking API - Main Application Entry Point

Books courts for trainings, matches and tournaments without ever letting two
bookings overlap on the same court:
- Per-court locks around every write, with an optional Redis lock for
  several workers
- An in-memory slot index for conflict checks and court status
- Redis caching of booking listings with invalidation on write
- Structured logging with request correlation
"""

from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from courtbook.core.config import get_settings
from courtbook.core.logging import setup_logging, get_logger
from courtbook.core.metrics import metrics_endpoint
from courtbook.api.errors import register_error_handlers
from courtbook.api.router import api_router
from courtbook.api.middleware import RequestLoggingMiddleware
from courtbook.db.session import SessionLocal
from courtbook.services.cache_service import get_redis, close_redis, get_cache_stats
from courtbook.services.booking_service import SchedulingService
from courtbook.services.strategy_factory import get_scheduling_service

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        lock_strategy=settings.LOCK_STRATEGY,
    )

    redis_client = await get_redis()
    if redis_client:
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Running without cache")

    async with SessionLocal() as db:
        loaded = await get_scheduling_service().rebuild_index(db, reason="startup")
    logger.info("slot_index_ready", bookings=loaded)

    yield

    await close_redis()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Court booking API with conflict-free scheduling",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

register_error_handlers(app)
app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check(service: SchedulingService = Depends(get_scheduling_service)):
    """Health check endpoint for Docker and load balancers."""
    cache_stats = await get_cache_stats()
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "slot_index": {"bookings": len(service.index), "ready": service.index_ready},
        "cache": cache_stats,
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
async def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }

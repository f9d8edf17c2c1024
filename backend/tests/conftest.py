"""
Pytest fixtures for test database, client, and authentication.

Each test gets its own SQLite file (aiosqlite) with freshly created tables
and its own scheduling service, so slot indexes never leak between tests.
Redis is disabled; the cache helpers turn into no-ops.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./courtbook_test.db")
os.environ["REDIS_ENABLED"] = "false"
os.environ["LOCK_STRATEGY"] = "local"

from datetime import date, time
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from courtbook.main import app
from courtbook.db.base import Base
from courtbook.db.session import get_db
from courtbook.core.security import create_access_token
from courtbook.schemas.booking import BookingCreate
from courtbook.services.booking_service import SchedulingService
from courtbook.services.interfaces.local_lock import LocalResourceLock
from courtbook.services.strategy_factory import get_scheduling_service

DAY = date(2026, 3, 14)


@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Create tables in a per-test SQLite file, then drop them."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'courtbook.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def service() -> SchedulingService:
    """A scheduling service with an empty slot index."""
    return SchedulingService(locks=LocalResourceLock(blocking_timeout=2))


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, service) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client wired to the test database and the test service."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_scheduling_service] = lambda: service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def _headers(role: str, subject: str) -> dict:
    token = create_access_token(data={"sub": subject, "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers() -> dict:
    return _headers("admin", "alice")


@pytest.fixture
def manager_headers() -> dict:
    return _headers("manager", "mo")


@pytest.fixture
def coach_headers() -> dict:
    return _headers("coach", "casey")


@pytest.fixture
def member_headers() -> dict:
    return _headers("member", "max")


def booking_data(resources, start, minutes=120, day=DAY, **extra) -> BookingCreate:
    """Build a BookingCreate from terse arguments: start is "HH:MM"."""
    hour, minute = (int(part) for part in start.split(":"))
    return BookingCreate(
        resources=list(resources),
        date=day,
        start_time=time(hour, minute),
        duration_minutes=minutes,
        **extra,
    )


def booking_json(resources, start, minutes=120, day=DAY, **extra) -> dict:
    return {
        "resources": list(resources),
        "date": day.isoformat(),
        "start_time": start,
        "duration_minutes": minutes,
        **extra,
    }

"""
In-process lock strategy: one asyncio.Lock per court.
Sufficient when a single worker process serves all writes.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Iterable, Optional

from courtbook.core.errors import ConcurrencyError
from courtbook.core.logging import get_logger
from courtbook.core.metrics import lock_failures, lock_wait
from courtbook.services.interfaces.resource_lock import ResourceLockStrategy

logger = get_logger(__name__)


class LocalResourceLock(ResourceLockStrategy):
    """
    Serializes writers per court inside this process.

    Use when:
    - one uvicorn worker
    - tests and local development
    """

    name = "local"

    def __init__(self, blocking_timeout: Optional[float] = None):
        self.blocking_timeout = blocking_timeout
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, resource: str) -> asyncio.Lock:
        lock = self._locks.get(resource)
        if lock is None:
            lock = self._locks[resource] = asyncio.Lock()
        return lock

    def locked(self, resource: str) -> bool:
        lock = self._locks.get(resource)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, resources: Iterable[str]):
        ordered = sorted(set(resources))
        acquired: list[asyncio.Lock] = []
        started = time.perf_counter()
        try:
            for resource in ordered:
                lock = self._lock_for(resource)
                try:
                    await asyncio.wait_for(lock.acquire(), timeout=self.blocking_timeout)
                except asyncio.TimeoutError:
                    lock_failures.labels(strategy=self.name).inc()
                    logger.warning("court_lock_timeout", resource=resource, timeout=self.blocking_timeout)
                    raise ConcurrencyError(f"Timed out waiting for the write lock on {resource}")
                acquired.append(lock)
            lock_wait.labels(strategy=self.name).observe(time.perf_counter() - started)
            yield ordered
        finally:
            for lock in reversed(acquired):
                lock.release()

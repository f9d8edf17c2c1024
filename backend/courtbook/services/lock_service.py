"""
Redis-backed court locks for deployments with several API workers.
Implements ResourceLockStrategy on top of the in-process locks.

Circuit Breaker Pattern:
  If Redis cannot be reached the strategy "fails open" to the local locks.
  This keeps bookings working during a Redis outage.
  The database stays authoritative: on PostgreSQL the exclusion constraint
  on booking_slots rejects an overlapping insert from another worker, and the
  scheduling service reports that as a ConcurrencyError.

  A lock that Redis answers but cannot grant within the blocking timeout is
  NOT failed open: that means another worker is writing the same court.
"""

from contextlib import asynccontextmanager
from typing import Iterable

from redis.exceptions import LockError, RedisError

from courtbook.core.errors import ConcurrencyError
from courtbook.core.logging import get_logger
from courtbook.core.metrics import lock_failures, redis_connection_errors
from courtbook.services.cache_service import get_redis
from courtbook.services.interfaces.local_lock import LocalResourceLock
from courtbook.services.interfaces.resource_lock import ResourceLockStrategy

logger = get_logger(__name__)

LOCK_KEY_PREFIX = "booking-lock"


class RedisResourceLock(ResourceLockStrategy):
    """
    Local lock first (cheap, orders coroutines in this worker), then one
    Redis lock per court (orders workers).

    Use when:
    - more than one uvicorn worker or API replica
    """

    name = "redis"

    def __init__(self, local: LocalResourceLock, timeout: float, blocking_timeout: float, client_factory=get_redis):
        self.local = local
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout
        self._client_factory = client_factory

    @asynccontextmanager
    async def hold(self, resources: Iterable[str]):
        async with self.local.hold(resources) as ordered:
            client = await self._client_factory()
            held = []
            try:
                if client is not None:
                    for resource in ordered:
                        lock = client.lock(
                            f"{LOCK_KEY_PREFIX}:{resource}",
                            timeout=self.timeout,
                            blocking_timeout=self.blocking_timeout,
                        )
                        try:
                            acquired = await lock.acquire()
                        except RedisError as e:
                            redis_connection_errors.inc()
                            logger.warning("redis_lock_unavailable", resource=resource, error=str(e))
                            break
                        if not acquired:
                            lock_failures.labels(strategy=self.name).inc()
                            logger.warning("redis_lock_timeout", resource=resource)
                            raise ConcurrencyError(f"Court {resource} is being updated by another worker")
                        held.append((resource, lock))
                yield ordered
            finally:
                for resource, lock in reversed(held):
                    try:
                        await lock.release()
                    except (LockError, RedisError) as e:
                        # Expired under us: the write already finished or the
                        # exclusion constraint caught the overlap
                        logger.warning("redis_lock_release_failed", resource=resource, error=str(e))

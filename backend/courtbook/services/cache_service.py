"""
Redis caching service for booking listings.

CACHING STRATEGY
================

What we cache:
  - GET /bookings responses (JSON-serialized), keyed by the filter
  - Key pattern: "bookings:list:date=..&from=..&to=..&resource=..&kind=..&status=.."

Why:
  - The court grid and the TV display poll the same day listing constantly
  - Listings change only when the scheduling service writes

Invalidation strategy:
  - Every successful create / reschedule / delete deletes all list keys
  - TTL-based expiry as safety net (5 minutes)
  - Keys share the "bookings:list:" prefix so SCAN can find them

What is NOT cached:
  - Conflict checks. They read the slot index under the court lock and must
    never see stale data.
"""

import json
from typing import Optional

import redis.asyncio as redis
from courtbook.core.config import get_settings
from courtbook.core.logging import get_logger
from courtbook.core.metrics import record_cache_operation, redis_connection_errors

logger = get_logger(__name__)
settings = get_settings()

LIST_KEY_PREFIX = "bookings:list:"

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get or create Redis connection. Returns None if Redis is disabled or down."""
    global _redis_client

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        try:
            _redis_client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            await _redis_client.ping()
            logger.info("redis_connected", url=settings.REDIS_URL)
        except Exception as e:
            redis_connection_errors.inc()
            logger.error("redis_connection_failed", error=str(e))
            _redis_client = None
            return None

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def make_list_key(filters: dict) -> str:
    parts = "&".join(f"{name}={filters[name] if filters[name] is not None else ''}" for name in sorted(filters))
    return f"{LIST_KEY_PREFIX}{parts}"


async def get_cached_bookings(filters: dict) -> Optional[list]:
    client = await get_redis()
    if not client:
        return None

    key = make_list_key(filters)
    try:
        data = await client.get(key)
        record_cache_operation("get", hit=data is not None)
        if data:
            logger.debug("cache_hit", key=key)
            return json.loads(data)
        logger.debug("cache_miss", key=key)
    except Exception as e:
        redis_connection_errors.inc()
        logger.error("cache_get_error", key=key, error=str(e))

    return None


async def set_cached_bookings(filters: dict, data: list) -> None:
    client = await get_redis()
    if not client:
        return

    key = make_list_key(filters)
    try:
        await client.setex(key, settings.REDIS_CACHE_TTL, json.dumps(data, default=str))
        logger.debug("cache_set", key=key, ttl=settings.REDIS_CACHE_TTL)
    except Exception as e:
        redis_connection_errors.inc()
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_booking_cache() -> None:
    """Drop every cached listing. Called after each successful write."""
    client = await get_redis()
    if not client:
        return

    try:
        deleted = 0
        async for key in client.scan_iter(match=f"{LIST_KEY_PREFIX}*", count=100):
            await client.delete(key)
            deleted += 1
        logger.info("cache_invalidated", keys_deleted=deleted)
    except Exception as e:
        redis_connection_errors.inc()
        logger.error("cache_invalidation_error", error=str(e))


async def get_cache_stats() -> dict:
    """Get Redis cache statistics for monitoring."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "status": "connected",
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
        }
    except Exception as e:
        return {"status": "error", "error": str(e)}

"""
Service factory.
Wires the configured lock strategy and authorization policy into the
process-wide scheduling service.
"""

from typing import Optional

from courtbook.core.config import Settings, get_settings
from courtbook.services.authorization_service import RoleAuthorization
from courtbook.services.booking_service import SchedulingService
from courtbook.services.interfaces.authorization import AuthorizationPolicy
from courtbook.services.interfaces.local_lock import LocalResourceLock
from courtbook.services.interfaces.resource_lock import ResourceLockStrategy
from courtbook.services.lock_service import RedisResourceLock


def get_lock_strategy(settings: Optional[Settings] = None) -> ResourceLockStrategy:
    """
    Get configured court lock strategy.

    Strategy selection:
    - "local": LocalResourceLock (single worker, default)
    - "redis": RedisResourceLock (several workers sharing one database)

    Set via the LOCK_STRATEGY env var.
    """
    settings = settings or get_settings()
    local = LocalResourceLock(blocking_timeout=settings.LOCK_BLOCKING_TIMEOUT_SECONDS)

    if settings.LOCK_STRATEGY == "redis":
        return RedisResourceLock(
            local,
            timeout=settings.LOCK_TIMEOUT_SECONDS,
            blocking_timeout=settings.LOCK_BLOCKING_TIMEOUT_SECONDS,
        )
    return local


# Singleton instances
_service: Optional[SchedulingService] = None
_authorization: Optional[AuthorizationPolicy] = None


def get_scheduling_service() -> SchedulingService:
    """Get the scheduling service singleton (owns the slot index)."""
    global _service
    if _service is None:
        _service = SchedulingService(locks=get_lock_strategy())
    return _service


def get_authorization() -> AuthorizationPolicy:
    """Get the authorization policy singleton."""
    global _authorization
    if _authorization is None:
        _authorization = RoleAuthorization.from_settings(get_settings())
    return _authorization

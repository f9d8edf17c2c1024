"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .authorization import AuthorizationPolicy
from .local_lock import LocalResourceLock
from .resource_lock import ResourceLockStrategy

__all__ = ["AuthorizationPolicy", "LocalResourceLock", "ResourceLockStrategy"]

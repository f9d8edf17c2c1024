"""
Per-court write serialization strategy interface.
Allows swapping between single-process and distributed locking.
"""

from abc import ABC, abstractmethod
from typing import AsyncContextManager, Iterable


class ResourceLockStrategy(ABC):
    """
    Interface for per-court mutual exclusion.

    Implementations:
    - LocalResourceLock: one asyncio.Lock per court, single worker process
    - RedisResourceLock: Redis locks on top of the local ones, many workers
    """

    name: str = "abstract"

    @abstractmethod
    def hold(self, resources: Iterable[str]) -> AsyncContextManager[list[str]]:
        """
        Hold the locks of every court in ``resources`` for the body of an
        ``async with`` block.

        Locks are taken in sorted court order so two writers touching
        overlapping court sets can never deadlock. Yields the sorted courts.

        Raises:
            ConcurrencyError: a lock could not be obtained in time
        """
        pass

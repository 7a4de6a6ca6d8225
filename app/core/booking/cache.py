"""
Tenant-scoped cache.

Owned by the engine and invalidated explicitly when the underlying data
changes. Entries also expire after a TTL.
"""

import logging
import time
from typing import Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TenantCache(Generic[T]):
    """Per-business values with TTL and explicit invalidation."""

    def __init__(
        self,
        name: str,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize cache.

        Args:
            name: Label used in log messages
            ttl_seconds: Entry lifetime; 0 disables caching
            clock: Monotonic time source
        """
        self.name = name
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, T]] = {}

    def get(self, business_id: str) -> Optional[T]:
        entry = self._entries.get(business_id)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            del self._entries[business_id]
            return None
        return value

    def put(self, business_id: str, value: T) -> None:
        if self.ttl_seconds <= 0:
            return
        self._entries[business_id] = (self._clock(), value)

    def invalidate(self, business_id: Optional[str] = None) -> None:
        """Drop one business's entry, or everything when no id is given."""
        if business_id is None:
            self._entries.clear()
            logger.debug(f"{self.name} cache cleared")
        else:
            self._entries.pop(business_id, None)
            logger.debug(f"{self.name} cache invalidated for {business_id}")

    def __len__(self) -> int:
        return len(self._entries)

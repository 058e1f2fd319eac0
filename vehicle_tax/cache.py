"""
Read-through cache for jurisdiction and state-rule reference data.

Reference data changes rarely, so lookups can be served from memory for a
bounded time. The cache is an explicit object handed to the resolver and
rule table; nothing is cached at module level.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Hashable, Optional

from vehicle_tax.logging_config import get_logger

logger = get_logger(__name__)

_MISSING = object()


class ReferenceCache:
    """
    Bounded TTL cache.

    Entries expire ``ttl_seconds`` after being stored. When ``max_entries``
    is reached the least recently used entry is evicted. A ``ttl_seconds``
    of zero disables storage entirely.
    """

    def __init__(
        self,
        ttl_seconds: float = 3600,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[Hashable, tuple[float, Any]] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return default
            stored_at, value = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                self.misses += 1
                return default
            self._entries.move_to_end(key)
            self.hits += 1
            return value

    def set(self, key: Hashable, value: Any) -> None:
        if self.ttl_seconds <= 0:
            return
        with self._lock:
            self._entries[key] = (self._clock(), value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def get_or_load(self, key: Hashable, loader: Callable[[], Any]) -> Any:
        value = self.get(key, _MISSING)
        if value is _MISSING:
            logger.debug("reference cache miss: %s", key)
            value = loader()
            self.set(key, value)
        return value

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


def cache_from_settings(settings: Any) -> Optional[ReferenceCache]:
    """Build a cache from engine settings, or None when caching is disabled."""
    if settings.reference_cache_ttl_seconds <= 0:
        return None
    return ReferenceCache(
        ttl_seconds=settings.reference_cache_ttl_seconds,
        max_entries=settings.reference_cache_max_entries,
    )

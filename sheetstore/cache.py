"""Short lived cache for full-table reads.

Listing a table downloads every row of the tab, so repeated reads within a
few seconds are served from memory.  Any write to a table invalidates the
entries of that table.

Every invalidation also bumps a generation counter.  A reader that started
before a write passes the generation it saw to :meth:`TTLCache.set`, and
its rows are dropped instead of cached once the counter has moved on.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


def generate_cache_key(prefix: str, **params: Any) -> str:
    """Build a stable key such as ``"todos:status=open:user_id=3"``."""

    parts = [prefix]
    for name in sorted(params):
        value = params[name]
        if value is None:
            continue
        parts.append(f"{name}={value}")
    return ":".join(parts)


class TTLCache:
    """Thread safe mapping whose entries expire ``ttl_seconds`` after insert."""

    def __init__(self, ttl_seconds: float = 30, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._generation = 0
        self._lock = threading.Lock()

    def generation(self) -> int:
        with self._lock:
            return self._generation

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            logger.debug("Cache hit for %s", key)
            return value

    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[float] = None,
        *,
        generation: Optional[int] = None,
    ) -> bool:
        """Store ``value``; skipped when ``generation`` is stale or the TTL is zero."""

        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            return False
        with self._lock:
            if generation is not None and generation != self._generation:
                logger.debug("Not caching %s: invalidated during the read", key)
                return False
            self._entries[key] = (self._clock() + ttl, value)
        return True

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._generation += 1
            self._entries.pop(key, None)

    def invalidate_pattern(self, pattern: str) -> int:
        """Drop every key matching the regular expression ``pattern``."""

        regex = re.compile(pattern)
        with self._lock:
            self._generation += 1
            doomed = [key for key in self._entries if regex.search(key)]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.debug("Invalidated %d cache entries matching %s", len(doomed), pattern)
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._generation += 1
            self._entries.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["TTLCache", "generate_cache_key"]

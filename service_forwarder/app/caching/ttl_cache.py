"""
In-memory TTL cache for upstream response bodies.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple

from shared.logging import get_logger


DEFAULT_TTL_SECONDS = 60.0


@dataclass(frozen=True)
class CacheEntry:
    """A stored upstream body."""

    key: str
    body: bytes
    stored_at: float
    headers: Tuple[Tuple[str, str], ...] = ()

    @property
    def content_type(self) -> Optional[str]:
        for name, value in self.headers:
            if name.lower() == "content-type":
                return value
        return None


class TTLCache:
    """Response cache keyed by the inbound path and query string.

    Every operation holds the table lock, so concurrent handlers see each
    get/put/delete as a single atomic step. Expired entries are evicted
    when they are read.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self.logger = get_logger("forwarder.cache")

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry for ``key`` or None, evicting it if stale."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            if self._clock() - entry.stored_at >= self.ttl_seconds:
                del self._entries[key]
                self.logger.debug("Cache entry expired", key=key)
                return None

            return entry

    def put(self, key: str, body: bytes, headers: Iterable[Tuple[str, str]] = ()) -> CacheEntry:
        """Create or overwrite the entry for ``key`` stamped with the current time."""
        entry = CacheEntry(key=key, body=body, stored_at=self._clock(), headers=tuple(headers))
        with self._lock:
            self._entries[key] = entry
        self.logger.debug("Cached response", key=key, size=len(body))
        return entry

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        """Drop every entry; returns how many were removed."""
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
        return removed

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

"""
Backoff policy and per-key retry bookkeeping.
"""

import asyncio
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 1.0,
                 max_delay: float = 60.0,
                 exponential_base: float = 2.0):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay before retry number ``attempt`` (1-based)."""
    delay = config.base_delay * (config.exponential_base ** (attempt - 1))

    # Apply max delay cap
    return max(0.0, min(delay, config.max_delay))


class RetryStateTable:
    """Attempt counters keyed by request key.

    Each operation on the counter map is atomic. Scheduled retries for the
    same key are serialized through :meth:`pending_retry`, so a key never has
    more than one backoff delay in flight.
    """

    def __init__(self):
        self._attempts: Dict[str, int] = {}
        self._timers: Dict[str, asyncio.Lock] = {}
        self._timer_users: Dict[str, int] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> int:
        """Current attempt count for ``key`` (0 when absent)."""
        with self._lock:
            return self._attempts.get(key, 0)

    def increment(self, key: str, limit: Optional[int] = None) -> Optional[int]:
        """Bump the attempt count for ``key`` and return the new value.

        When ``limit`` is given and the count already reached it, nothing
        changes and None is returned.
        """
        with self._lock:
            attempts = self._attempts.get(key, 0)
            if limit is not None and attempts >= limit:
                return None
            attempts += 1
            self._attempts[key] = attempts
            return attempts

    def clear(self, key: str) -> Optional[int]:
        """Forget ``key``; returns the attempt count it had, if any."""
        with self._lock:
            return self._attempts.pop(key, None)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._attempts

    def size(self) -> int:
        with self._lock:
            return len(self._attempts)

    @asynccontextmanager
    async def pending_retry(self, key: str) -> AsyncIterator[None]:
        """Hold the single retry slot for ``key`` while a backoff delay runs."""
        with self._lock:
            timer = self._timers.get(key)
            if timer is None:
                timer = self._timers[key] = asyncio.Lock()
            self._timer_users[key] = self._timer_users.get(key, 0) + 1
        try:
            async with timer:
                yield
        finally:
            with self._lock:
                users = self._timer_users[key] - 1
                if users:
                    self._timer_users[key] = users
                else:
                    del self._timer_users[key]
                    del self._timers[key]

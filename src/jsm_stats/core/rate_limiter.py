"""Process-wide throttle shared by every request of one client."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Awaitable, Callable

from jsm_stats.core.errors import RateLimitedError

logger = logging.getLogger(__name__)

MAX_THROTTLES = 5
MAX_DELAY = 60.0  # seconds


class RateLimiter:
    """Serialises throttle decisions across all concurrent request paths.

    A 429 on any request pushes ``retry_after_at`` into the future; every
    other request then parks in :meth:`wait_if_needed` until it passes.
    State is guarded by a mutex and never held across an ``await``.
    """

    def __init__(
        self,
        max_retries: int = MAX_THROTTLES,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_retries = max_retries
        self._sleep = sleep
        self._clock = clock
        self._lock = threading.Lock()
        self._retry_after_at: float | None = None
        self._consecutive_throttles = 0

    @property
    def retry_after_at(self) -> float | None:
        with self._lock:
            return self._retry_after_at

    @property
    def consecutive_throttles(self) -> int:
        with self._lock:
            return self._consecutive_throttles

    async def wait_if_needed(self) -> None:
        """Suspend until a pending throttle window has passed."""
        with self._lock:
            deadline = self._retry_after_at
        if deadline is None:
            return
        remaining = deadline - self._clock()
        if remaining > 0:
            logger.debug("Throttled, waiting %.1fs before next request", remaining)
            await self._sleep(remaining)
        with self._lock:
            if self._retry_after_at is not None and self._retry_after_at <= self._clock():
                self._retry_after_at = None

    async def handle_rate_limited(self, retry_after: float) -> None:
        """Record a 429 and back off; raise once the budget is spent."""
        with self._lock:
            self._consecutive_throttles += 1
            attempt = self._consecutive_throttles
            if attempt > self.max_retries:
                raise RateLimitedError(retry_after)
            delay = min(max(retry_after, 1.0) * 2 ** (attempt - 1), MAX_DELAY)
            self._retry_after_at = self._clock() + delay

        logger.warning(
            "Rate limited (%d/%d), backing off %.1fs", attempt, self.max_retries, delay
        )
        await self._sleep(delay)

    def record_success(self) -> None:
        with self._lock:
            self._consecutive_throttles = 0
            self._retry_after_at = None

# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Process-wide sliding-window rate limiter.

At most ``limit`` sends are admitted in any window of ``interval``
seconds. A caller over the limit waits until the oldest send in the window
expires instead of failing. One limiter instance is shared by every send in
the process.

The sliding window approach ensures fair distribution of sends over time
rather than allowing burst behavior at window boundaries.

Example:
    Using the rate limiter::

        limiter = RateLimiter(limit=5, interval=1.0)
        await limiter.acquire()
        await smtp.send_message(message)
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

from .config_loader import TransportConfig
from .logger import get_logger

logger = get_logger("RateLimiter")


class RateLimiter:
    """Sliding-window limiter with waiting admission.

    Attributes:
        limit: Maximum admissions per window.
        interval: Window length in seconds.
    """

    def __init__(
        self,
        limit: int,
        interval: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.limit = max(1, int(limit))
        self.interval = float(interval)
        self._clock = clock
        self._sleep = sleep
        self._admitted: deque[float] = deque()
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: TransportConfig, **kwargs) -> RateLimiter:
        return cls(config.rate_limit_per_interval, config.rate_interval_ms / 1000.0, **kwargs)

    def _prune(self, now: float) -> None:
        while self._admitted and now - self._admitted[0] >= self.interval:
            self._admitted.popleft()

    def plan(self) -> float:
        """Seconds until a new admission would be allowed (0 when free)."""
        now = self._clock()
        self._prune(now)
        if len(self._admitted) < self.limit:
            return 0.0
        return max(0.0, self._admitted[0] + self.interval - now)

    async def acquire(self) -> float:
        """Wait for a free slot and take it.

        Returns:
            Total seconds spent waiting.
        """
        waited = 0.0
        while True:
            async with self._lock:
                delay = self.plan()
                if delay <= 0:
                    self._admitted.append(self._clock())
                    if waited:
                        logger.debug("Rate limit slot acquired after %.3fs", waited)
                    return waited
            logger.debug("Rate limit reached (%d per %.3fs), waiting %.3fs", self.limit, self.interval, delay)
            await self._sleep(delay)
            waited += delay

    @property
    def in_window(self) -> int:
        """Admissions counted in the current window."""
        self._prune(self._clock())
        return len(self._admitted)

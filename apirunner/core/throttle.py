"""Bound on the number of simultaneously in-flight network calls."""

import asyncio
from typing import Optional

from apirunner.config import settings
from apirunner.logger import get_logger

logger = get_logger(__name__)


class Throttle:
    """
    Shared counter of in-flight calls, bounded by ``limit``.

    ``acquire`` polls every ``poll_interval`` seconds until a slot is free,
    so slot reuse is not FIFO. Use as an async context manager to guarantee
    one ``release`` per ``acquire``:

        async with throttle:
            await transport.send(...)
    """

    def __init__(self, limit: Optional[int] = None, poll_interval: Optional[float] = None):
        self.limit = limit or settings.max_parallel_executors
        self.poll_interval = poll_interval or settings.throttle_poll_interval
        self._active = 0
        self._peak = 0
        self._lock = asyncio.Lock()

    @property
    def active(self) -> int:
        return self._active

    @property
    def peak(self) -> int:
        """Highest number of slots held at the same time."""
        return self._peak

    async def acquire(self) -> None:
        while True:
            async with self._lock:
                if self._active < self.limit:
                    self._active += 1
                    self._peak = max(self._peak, self._active)
                    return
            await asyncio.sleep(self.poll_interval)

    async def release(self) -> None:
        async with self._lock:
            if self._active == 0:
                logger.warning("Throttle released more often than acquired")
                return
            self._active -= 1

    async def __aenter__(self) -> "Throttle":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.release()

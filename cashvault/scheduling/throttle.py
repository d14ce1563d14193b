"""
Per-Key Throttling

Recurring firings for one user all touch that user's account balances.
KeyedThrottle bounds how hard one user can be hit within a job run:

- at most `limit` units may start per `period` seconds for a key
  (sliding window), and
- at most `max_in_flight` units may run at once for a key.

Different keys never wait on each other.
"""

import asyncio
import time
from collections import deque
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Hashable, Optional


class KeyedThrottle:

    def __init__(
        self,
        limit: int,
        period: float,
        max_in_flight: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if period < 0:
            raise ValueError("period cannot be negative")
        if max_in_flight is not None and max_in_flight < 1:
            raise ValueError("max_in_flight must be at least 1")

        self.limit = limit
        self.period = period
        self.max_in_flight = max_in_flight
        self._clock = clock
        self._sleep = sleep
        # Only keys with a start inside the window, and only keys with a unit
        # waiting or running, are kept
        self._starts: dict[Hashable, deque[float]] = {}
        self._semaphores: dict[Hashable, asyncio.Semaphore] = {}
        self._holders: dict[Hashable, int] = {}

    def tracked_keys(self) -> set[Hashable]:
        """Keys the throttle still holds state for."""
        return set(self._starts) | set(self._semaphores)

    def _acquire_semaphore(self, key: Hashable) -> asyncio.Semaphore:
        if key not in self._semaphores:
            self._semaphores[key] = asyncio.Semaphore(self.max_in_flight)
        self._holders[key] = self._holders.get(key, 0) + 1
        return self._semaphores[key]

    def _release_semaphore(self, key: Hashable):
        self._holders[key] -= 1
        if self._holders[key] == 0:
            del self._holders[key]
            del self._semaphores[key]

    def _prune(self, now: float):
        stale = [key for key, starts in self._starts.items() if now - starts[-1] >= self.period]
        for key in stale:
            del self._starts[key]

    async def _reserve(self, key: Hashable):
        # No await between the check and the append, so reservations are atomic
        while True:
            now = self._clock()
            self._prune(now)
            starts = self._starts.setdefault(key, deque())
            while starts and now - starts[0] >= self.period:
                starts.popleft()
            if len(starts) < self.limit:
                starts.append(now)
                return
            await self._sleep(self.period - (now - starts[0]))

    @asynccontextmanager
    async def slot(self, key: Hashable) -> AsyncIterator[None]:
        """Wait for a slot for key, then hold it for the body of the block."""
        if self.max_in_flight is None:
            await self._reserve(key)
            yield
            return

        semaphore = self._acquire_semaphore(key)
        try:
            async with semaphore:
                await self._reserve(key)
                yield
        finally:
            self._release_semaphore(key)

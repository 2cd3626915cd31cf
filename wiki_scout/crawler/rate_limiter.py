# wiki_scout/crawler/rate_limiter.py
"""
Aggregate request throttling shared by all fetch workers.
"""
from __future__ import annotations

import asyncio
import random
import time
from typing import Callable


def backoff_delay(attempt: int, base: float, *, cap: float = 60.0, jitter: bool = True) -> float:
    """Exponential backoff: ``base * 2**attempt`` plus up to 30% jitter, capped at *cap*."""
    delay = base * (2 ** attempt)
    if jitter:
        delay += random.uniform(0.0, 0.3) * delay
    return min(delay, cap)


class RateLimiter:
    """Caps requests per second across every worker that shares the instance.

    Each :meth:`acquire` reserves the next free slot synchronously and then
    sleeps until that slot, so no lock is held while waiting.
    """

    def __init__(self, rate: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        if rate <= 0:
            raise ValueError("rate must be > 0")
        self.interval = 1.0 / rate
        self._clock = clock
        self._next_slot = 0.0

    def reserve(self) -> float:
        """Claim the next slot; return how long the caller has to wait for it."""
        now = self._clock()
        slot = max(now, self._next_slot)
        self._next_slot = slot + self.interval
        return slot - now

    async def acquire(self) -> None:
        wait = self.reserve()
        if wait > 0:
            await asyncio.sleep(wait)

"""
Per-minute and daily call quota for external reputation services.

The limiter only answers "may I call now?". Callers that get a refusal are
expected to fail open.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable


class CallQuota:
    """Tracks per-minute and per-day call counts behind an asyncio lock.

    Args:
        per_minute: Calls allowed in any rolling 60 second window start.
        per_day: Calls allowed per 24 hour window.
        clock: Monotonic clock, overridable in tests.
    """

    def __init__(self, per_minute: int, per_day: int, clock: Callable[[], float] = time.monotonic):
        self.per_minute = per_minute
        self.per_day = per_day
        self._clock = clock
        self._minute_count = 0
        self._minute_start = clock()
        self._day_count = 0
        self._day_start = clock()
        self._lock = asyncio.Lock()

    def _roll_windows(self, now: float) -> None:
        if now - self._minute_start >= 60:
            self._minute_count = 0
            self._minute_start = now
        if now - self._day_start >= 86400:
            self._day_count = 0
            self._day_start = now

    async def try_acquire(self) -> tuple[bool, str]:
        """Reserve one call if both windows have room. Returns (allowed, reason)."""
        async with self._lock:
            now = self._clock()
            self._roll_windows(now)
            if self._day_count >= self.per_day:
                return False, f"daily limit ({self.per_day}) reached"
            if self._minute_count >= self.per_minute:
                wait = int(60 - (now - self._minute_start))
                return False, f"per-minute limit ({self.per_minute}) reached, retry in {wait}s"
            self._minute_count += 1
            self._day_count += 1
            return True, "ok"

    async def usage(self) -> dict:
        async with self._lock:
            self._roll_windows(self._clock())
            return {
                "minute_used": self._minute_count,
                "minute_limit": self.per_minute,
                "day_used": self._day_count,
                "day_limit": self.per_day,
            }

"""Generic runner for a coroutine that must execute on a fixed interval.

Handles lifecycle (start/shutdown) and keeps one failed run from stopping the
loop.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from modguard.util.logger import get_logger

logger = get_logger("periodic_task")


class PeriodicTask:
    """
    Runs ``job()`` every ``interval`` seconds until shut down.

    Args:
        name: Human-readable name for logging (e.g., "RECONCILER").
        job: Zero-argument coroutine function executed each tick.
        get_interval: Callable returning the interval in seconds (read at start).
    """

    def __init__(self, name: str, job: Callable[[], Awaitable[Any]], get_interval: Callable[[], float]) -> None:
        self._name = name
        self._job = job
        self._get_interval = get_interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run_loop(self, interval: float) -> None:
        """Infinite loop: run the job, sleep, repeat."""
        logger.info("[%s] Starting periodic task (interval=%.1fs)", self._name, interval)
        try:
            while True:
                try:
                    await self._job()
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    logger.error("[%s] Unexpected error during run: %s", self._name, exc, exc_info=True)
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("[%s] Periodic task cancelled", self._name)
            raise

    def start(self) -> None:
        """Start the background task if not already running."""
        if self.running:
            logger.warning("[%s] Task already running", self._name)
            return
        interval = self._get_interval()
        self._task = asyncio.create_task(self._run_loop(interval), name=f"modguard-{self._name.lower()}")

    async def shutdown(self) -> None:
        """Cancel the task and wait for it to finish."""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("[%s] Shutdown complete", self._name)

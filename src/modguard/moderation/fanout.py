"""
Bounded, independent per-community fan-out.

Every community call runs in its own task with its own timeout; the whole batch
is bounded by an overall deadline and can be abandoned through a cancel event.
Failures are collected per community and never affect the other calls.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, List, Tuple

from modguard.datatypes.identifiers import GuildID


class DeadlineExceeded(Exception):
    """The call was still running when the overall deadline passed."""


@dataclass(slots=True)
class FanOutResult:
    succeeded: List[GuildID] = field(default_factory=list)
    failed: List[Tuple[GuildID, BaseException]] = field(default_factory=list)
    cancelled: bool = False

    @property
    def targeted(self) -> int:
        return len(self.succeeded) + len(self.failed)

    @property
    def first_error(self) -> BaseException | None:
        return self.failed[0][1] if self.failed else None


async def fan_out(
    targets: Iterable[GuildID],
    call: Callable[[GuildID], Awaitable[None]],
    concurrency: int = 5,
    call_timeout: float = 10.0,
    deadline: float = 60.0,
    cancel_event: asyncio.Event | None = None,
) -> FanOutResult:
    """
    Run ``call(guild_id)`` for every target concurrently.

    Args:
        targets: Communities to act in.
        call: Coroutine factory performing the action in one community.
        concurrency: Maximum calls in flight.
        call_timeout: Timeout of each call, in seconds.
        deadline: Overall budget for the batch, in seconds.
        cancel_event: When set, unfinished calls are cancelled and the result
            is flagged as cancelled.

    Returns:
        FanOutResult: Successes and failures, both in target order.
    """
    targets = list(dict.fromkeys(targets))
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def run_one(guild_id: GuildID) -> None:
        async with semaphore:
            await asyncio.wait_for(call(guild_id), timeout=call_timeout)

    tasks = {asyncio.create_task(run_one(guild_id)): guild_id for guild_id in targets}
    cancel_waiter = asyncio.create_task(cancel_event.wait()) if cancel_event is not None else None

    result = FanOutResult()
    loop = asyncio.get_running_loop()
    stop_at = loop.time() + deadline
    pending = set(tasks)
    try:
        while pending:
            remaining = stop_at - loop.time()
            if remaining <= 0:
                break
            waiting = pending | ({cancel_waiter} if cancel_waiter else set())
            done, _ = await asyncio.wait(waiting, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
            if cancel_waiter is not None and cancel_waiter in done:
                result.cancelled = True
                pending -= done
                break
            pending -= done
    finally:
        leftovers = list(pending)
        if cancel_waiter is not None:
            leftovers.append(cancel_waiter)
        for task in leftovers:
            task.cancel()
        if leftovers:
            await asyncio.gather(*leftovers, return_exceptions=True)

    for task, guild_id in tasks.items():
        if task in pending:
            if not result.cancelled:
                result.failed.append((guild_id, DeadlineExceeded(f"deadline of {deadline}s exceeded")))
            continue
        exc = task.exception() if not task.cancelled() else asyncio.CancelledError()
        if exc is None:
            result.succeeded.append(guild_id)
        else:
            result.failed.append((guild_id, exc))
    return result

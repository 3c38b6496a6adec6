"""Periodic job scheduling on the asyncio event loop."""
from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[None]]


@dataclass(frozen=True)
class TimerHandle:
    timer_id: int
    name: str


class Scheduler(Protocol):
    def every(self, name: str, interval: float, job: Job) -> TimerHandle: ...

    def cancel(self, handle: TimerHandle) -> None: ...

    def cancel_all(self) -> None: ...

    def outstanding(self) -> int: ...


class AsyncioScheduler:
    """One task per periodic job.

    Each cycle is awaited before the next sleep starts, so a job never
    overlaps itself; a slow cycle only delays the next one.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._tasks: dict[TimerHandle, asyncio.Task[None]] = {}

    def every(self, name: str, interval: float, job: Job) -> TimerHandle:
        handle = TimerHandle(next(self._ids), name)
        self._tasks[handle] = asyncio.create_task(self._loop(handle, interval, job), name=name)
        logger.debug("Scheduled %s every %.0fs", name, interval)
        return handle

    async def _loop(self, handle: TimerHandle, interval: float, job: Job) -> None:
        while handle in self._tasks:
            await asyncio.sleep(interval)
            if handle not in self._tasks:
                break
            try:
                await job()
            except Exception as e:
                logger.error("Error in scheduled job %s: %s", handle.name, e)

    def cancel(self, handle: TimerHandle) -> None:
        task = self._tasks.pop(handle, None)
        if task is None:
            return
        # A job cancelling its own timer finishes the current cycle; the loop
        # then sees the handle is gone.
        if task is not asyncio.current_task():
            task.cancel()
        logger.debug("Cancelled %s", handle.name)

    def cancel_all(self) -> None:
        for handle in list(self._tasks):
            self.cancel(handle)

    def outstanding(self) -> int:
        return len(self._tasks)

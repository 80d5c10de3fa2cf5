"""
HypeBot — Precision Scheduler.

An in-memory, time-ordered queue of one-shot tasks. A single dispatcher
coroutine sleeps until the earliest task is due (or until something earlier
is scheduled), then hands every due task to its own asyncio task so a slow
delivery never holds up the next reminder. A semaphore bounds how many
actions run at once.

Nothing here is persisted. Tasks lost on restart are picked up by the sweep.
"""

from __future__ import annotations

import asyncio
import contextlib
import heapq
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[Any]]

# Upper bound on one sleep, so a wall-clock jump is noticed within this many seconds
MAX_SLEEP_SECONDS = 30.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(order=True)
class ScheduledTask:
    fire_at: datetime
    seq: int
    action: Action = field(compare=False)
    name: str = field(default="", compare=False)


class PrecisionScheduler:
    """Runs each scheduled action exactly once, at or after its time.

    Must be used from the event loop thread. Failed actions are logged and
    dropped; there is no retry and no cancellation.
    """

    def __init__(
        self,
        workers: int = 4,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._heap: list[ScheduledTask] = []
        self._seq = itertools.count()
        self._clock = clock
        self._workers = asyncio.Semaphore(workers)
        self._wakeup = asyncio.Event()
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._inflight: set[asyncio.Task[None]] = set()

    # -- public API ------------------------------------------------------------

    def schedule(self, fire_at: datetime, action: Action, name: str = "") -> ScheduledTask:
        """Queue ``action`` for ``fire_at``. A time in the past runs on the next cycle."""
        task = ScheduledTask(fire_at=fire_at, seq=next(self._seq), action=action, name=name)
        heapq.heappush(self._heap, task)
        self._wakeup.set()
        logger.debug("Scheduled %s at %s", name or "task", fire_at.isoformat())
        return task

    def pending(self) -> int:
        """Number of tasks not yet fired."""
        return len(self._heap)

    def next_fire_at(self) -> datetime | None:
        return self._heap[0].fire_at if self._heap else None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Precision scheduler started (%d pending)", len(self._heap))

    async def stop(self, timeout: float = 5.0) -> None:
        """Stop dispatching and give in-flight actions ``timeout`` seconds to finish."""
        self._running = False
        self._wakeup.set()
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self._inflight:
            _, unfinished = await asyncio.wait(set(self._inflight), timeout=timeout)
            for task in unfinished:
                task.cancel()
            if unfinished:
                logger.warning(
                    "Cancelled %d scheduled task(s) still running at stop", len(unfinished),
                )
                await asyncio.gather(*unfinished, return_exceptions=True)
        logger.info("Precision scheduler stopped (%d pending)", len(self._heap))

    async def run_due(self, now: datetime | None = None) -> int:
        """Fire everything due at ``now`` and wait for it (useful in tests)."""
        due = self._pop_due(now or self._clock())
        if due:
            await asyncio.gather(*(self._dispatch(t) for t in due))
        return len(due)

    # -- internals -------------------------------------------------------------

    def _pop_due(self, now: datetime) -> list[ScheduledTask]:
        due: list[ScheduledTask] = []
        while self._heap and self._heap[0].fire_at <= now:
            due.append(heapq.heappop(self._heap))
        return due

    def _dispatch(self, task: ScheduledTask) -> asyncio.Task[None]:
        running = asyncio.create_task(self._execute(task))
        self._inflight.add(running)
        running.add_done_callback(self._inflight.discard)
        return running

    async def _execute(self, task: ScheduledTask) -> None:
        async with self._workers:
            try:
                await task.action()
            except Exception:
                logger.exception("Scheduled task %s failed", task.name or task.seq)

    def _sleep_seconds(self, now: datetime) -> float | None:
        if not self._heap:
            return None
        delay = (self._heap[0].fire_at - now).total_seconds()
        return min(max(delay, 0.0), MAX_SLEEP_SECONDS)

    async def _run_loop(self) -> None:
        while self._running:
            self._wakeup.clear()
            now = self._clock()
            for task in self._pop_due(now):
                self._dispatch(task)
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._wakeup.wait(), timeout=self._sleep_seconds(now))

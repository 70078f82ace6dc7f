"""Cancellable, observable timer handles built on asyncio tasks."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta

from quoteflow.core.logging import get_logger

logger = get_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]
ClockFn = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class ScheduledTask:
    """Runs ``callback`` once after ``delay`` seconds unless cancelled first."""

    def __init__(
        self,
        delay: float,
        callback: Callable[[], Awaitable[object]],
        *,
        name: str,
        sleep: SleepFn = asyncio.sleep,
        clock: ClockFn = utc_now,
    ) -> None:
        self.delay = max(0.0, delay)
        self.name = name
        self._callback = callback
        self._sleep = sleep
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self.due_at: datetime | None = None
        self.fired = False

    def start(self) -> ScheduledTask:
        if self._task is not None:
            return self
        self.due_at = self._clock() + timedelta(seconds=self.delay)
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)
        return self

    async def _run(self) -> None:
        await self._sleep(self.delay)
        self.fired = True
        try:
            await self._callback()
        except Exception as exc:
            logger.exception(f"Timer {self.name} callback failed: {exc}")

    @property
    def pending(self) -> bool:
        """True while the timer is waiting and has not fired."""

        return self._task is not None and not self._task.done() and not self.fired

    @property
    def cancelled(self) -> bool:
        return self._task is not None and self._task.cancelled()

    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def cancel(self) -> bool:
        """Cancel the timer. Returns False when it already fired or finished."""

        if self._task is None or self._task.done() or self.fired:
            return False
        self._task.cancel()
        return True

    async def wait(self) -> None:
        """Wait until the timer (and its callback) has finished or been cancelled."""

        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise


class PeriodicTask:
    """Invokes ``callback`` every ``interval`` seconds until cancelled.

    Ticks follow fixed deadlines on the loop clock and each callback runs as
    its own task, so a slow callback never delays the next tick. Overlap
    control is the callback's job. The first call happens after one full
    interval; callers that want an eager run invoke the callback themselves
    before :meth:`start`.
    """

    def __init__(
        self,
        interval: float,
        callback: Callable[[], Awaitable[object]],
        *,
        name: str,
        sleep: SleepFn = asyncio.sleep,
        monotonic: Callable[[], float] | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self.name = name
        self._callback = callback
        self._sleep = sleep
        self._monotonic = monotonic
        self._task: asyncio.Task[None] | None = None
        self._fired: set[asyncio.Task[object]] = set()
        self.ticks = 0

    def start(self) -> PeriodicTask:
        if self._task is None:
            loop = asyncio.get_running_loop()
            if self._monotonic is None:
                self._monotonic = loop.time
            self._task = loop.create_task(self._run(), name=self.name)
        return self

    async def _run(self) -> None:
        deadline = self._monotonic()
        while True:
            deadline += self.interval
            await self._sleep(max(0.0, deadline - self._monotonic()))
            self.ticks += 1
            self._fire()

    def _fire(self) -> None:
        task = asyncio.ensure_future(self._callback())
        self._fired.add(task)
        task.add_done_callback(self._on_callback_done)

    def _on_callback_done(self, task: asyncio.Task[object]) -> None:
        self._fired.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error(f"Periodic task {self.name} failed: {exc}")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def in_flight(self) -> int:
        """Callbacks started by a tick that have not finished yet."""

        return len(self._fired)

    def cancel(self) -> bool:
        if self._task is None or self._task.done():
            return False
        self._task.cancel()
        for task in list(self._fired):
            task.cancel()
        return True

    async def wait(self) -> None:
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise
        if self._fired:
            await asyncio.gather(*self._fired, return_exceptions=True)

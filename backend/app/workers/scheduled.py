"""Background periodic runner for the smart home poller."""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Awaits ``func`` every ``interval_seconds`` until stopped.

    A failing tick is logged and the loop keeps going; the interval is
    measured from the end of one tick to the start of the next, so slow
    ticks never overlap.
    """

    def __init__(self, interval_seconds: float, func: Callable[[], Awaitable], name: Optional[str] = None):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.interval_seconds = interval_seconds
        self.func = func
        self.name = name or getattr(func, "__qualname__", repr(func))
        self.ticks = 0
        self.failures = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _loop(self) -> None:
        while True:
            self.ticks += 1
            try:
                await self.func()
            except Exception as e:
                self.failures += 1
                logger.error(f"Periodic task {self.name} failed (tick {self.ticks}): {e}", exc_info=True)
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task
        self._task = asyncio.create_task(self._loop(), name=f"periodic:{self.name}")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        await stop_scheduler(self._task)
        logger.info(f"Periodic task {self.name} stopped after {self.ticks} tick(s), {self.failures} failure(s)")
        self._task = None


def start_scheduler(interval_seconds: float, coro: Callable[[], Awaitable]) -> asyncio.Task:
    """Run ``coro`` periodically in the background; returns the task to pass to stop_scheduler."""
    return PeriodicTask(interval_seconds, coro).start()


async def stop_scheduler(task: asyncio.Task) -> None:
    if task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass

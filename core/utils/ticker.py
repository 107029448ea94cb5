import asyncio
from typing import Awaitable, Callable, Optional

from core.logging import get_logger

logger = get_logger("core.utils.ticker", component="scheduler")


class PeriodicTicker:
    """Fixed-rate async scheduler.

    Ticks are spaced ``interval`` seconds apart measured from their planned
    start, not their end. A tick never overlaps the previous one; when a tick
    overruns, the next starts right away and the schedule is re-anchored.
    An exception from a tick is logged and the next tick proceeds.
    """

    def __init__(self, interval: float, callback: Callable[[], Awaitable[None]],
                 name: str = "ticker", initial_delay: float = 0.0):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.interval = interval
        self.callback = callback
        self.name = name
        self.initial_delay = initial_delay
        self.tick_count = 0
        self.error_count = 0
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=f"ticker:{self.name}")
        logger.info("Ticker started", ticker=self.name, interval_seconds=self.interval)

    async def stop(self) -> None:
        """Stop scheduling; an in-flight tick is allowed to finish."""
        if not self._task:
            return
        self._stop_event.set()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None
        logger.info("Ticker stopped", ticker=self.name, ticks=self.tick_count, errors=self.error_count)

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_run = loop.time() + self.initial_delay
        while not self._stop_event.is_set():
            delay = next_run - loop.time()
            if delay > 0 and await self._wait_for_stop(delay):
                break

            await self._tick()

            next_run += self.interval
            now = loop.time()
            if next_run < now - self.interval:
                next_run = now

    async def _wait_for_stop(self, delay: float) -> bool:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    async def _tick(self) -> None:
        self.tick_count += 1
        try:
            await self.callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.error_count += 1
            logger.error("Scheduled tick failed", ticker=self.name, tick=self.tick_count,
                         error_type=type(e).__name__, error=str(e))

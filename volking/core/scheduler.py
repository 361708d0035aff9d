"""
Recurring timers for the round engine

Each RecurringTask runs one callback per interval. The next tick is not
scheduled until the previous one has finished, and stopping a task never
cancels a tick that is already running.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from volking.core.logger import get_logger
from volking.core.metrics import get_metrics


logger = get_logger(__name__)
metrics = get_metrics()


class RecurringTask:
    """
    Usage:
        task = RecurringTask("fee_claim", 60.0, orchestrator.claim_tick)
        task.start()
        ...
        await task.stop()
    """

    def __init__(self, name: str, interval_s: float, callback: Callable[[], Awaitable[None]]):
        self.name = name
        self.interval_s = interval_s
        self.callback = callback
        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._current: Optional[asyncio.Future] = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> bool:
        return self._current is not None and not self._current.done()

    def start(self) -> None:
        if self._running:
            return

        self._running = True
        self._loop_task = asyncio.create_task(self._run_loop(), name=f"timer:{self.name}")
        logger.info("timer_started", timer=self.name, interval_s=self.interval_s)

    async def stop(self) -> None:
        """Stop scheduling ticks; a running tick is left to finish"""
        if not self._running:
            return

        self._running = False
        task, self._loop_task = self._loop_task, None
        if task and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        logger.info("timer_stopped", timer=self.name, tick_in_flight=self.in_flight)

    async def wait_idle(self) -> None:
        """Wait for an in-flight tick, if any"""
        if self._current is not None:
            await asyncio.wait({self._current})

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_s)
                self._current = asyncio.ensure_future(self._tick())
                # Shielded so stop() cannot interrupt the tick itself
                await asyncio.shield(self._current)

            except asyncio.CancelledError:
                break

    async def _tick(self) -> None:
        metrics.increment_counter(f"timer_{self.name}_ticks")
        try:
            await self.callback()
        except Exception as e:
            metrics.increment_counter(f"timer_{self.name}_errors")
            logger.error("timer_tick_failed", timer=self.name, error=str(e), exc_info=True)

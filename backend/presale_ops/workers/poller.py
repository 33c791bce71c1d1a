"""
Repeating refresh task.

Calls a refresh coroutine on a fixed interval until stopped. A caller can
also request an immediate run; the interval restarts after it. Stopping is
always explicit, the task is never tied to the lifetime of a consumer.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class RepeatingTask:
    """Cancellable fixed-interval timer around an async refresh function."""

    def __init__(
        self,
        refresh: Callable[[], Awaitable[object]],
        interval: float,
        name: str = "poller",
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._refresh = refresh
        self._interval = interval
        self._name = name
        self._task: Optional[asyncio.Task] = None
        self._wake = asyncio.Event()
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._wake = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name=self._name)
        logger.info(f"{self._name}: started, interval {self._interval:g}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"{self._name}: stopped")

    def trigger(self) -> None:
        """Run the refresh now instead of waiting for the next tick."""
        self._wake.set()

    async def run_once(self) -> None:
        try:
            result = await self._refresh()
        except Exception as e:
            # Polling is the only built-in recovery: log and keep ticking
            logger.error(f"{self._name}: refresh failed: {e}")
            return
        finally:
            self.runs += 1
        if result:
            logger.warning(f"{self._name}: refresh completed with errors: {result}")

    async def _loop(self) -> None:
        while True:
            await self.run_once()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()

"""Periodic scheduler with an explicit start/stop lifecycle."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)


class PeriodicScheduler:
    """Run ``job`` every ``interval_seconds`` until stopped.

    The first run happens one interval after ``start()``. A failing job is
    logged and the loop carries on. ``stop()`` only stops new cycles from
    being scheduled; a cycle already running is allowed to finish.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        job: Callable[[], Awaitable[Any]],
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.name = name
        self.interval_seconds = interval_seconds
        self._job = job
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()
        self._cycle_lock = asyncio.Lock()
        self.cycles = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Any:
        """Execute one cycle now (used by the loop and manual triggers)."""
        async with self._cycle_lock:
            try:
                return await self._job()
            except Exception:
                logger.exception("%s cycle failed", self.name)
                return None
            finally:
                self.cycles += 1

    async def _loop(self) -> None:
        logger.info("%s scheduled: every %ss", self.name, self.interval_seconds)
        while not self._stopping.is_set():
            await self._sleep(self.interval_seconds)
            if self._stopping.is_set():
                break
            await self.run_once()
        logger.info("%s stopped after %d cycles", self.name, self.cycles)

    def start(self) -> None:
        if self.is_running:
            logger.warning("%s already running", self.name)
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._loop(), name=self.name)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        async with self._cycle_lock:
            # No cycle in flight past this point.
            self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

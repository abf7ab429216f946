"""
Interval poller base class.

Each background worker is an explicit object with ``start()`` / ``stop()``
running one asyncio task on the current event loop:
- the first tick runs immediately on start
- ticks never overlap within one poller
- a failing tick is logged and the next one still runs
- ``stop()`` lets an in-flight tick finish and prevents the next one
"""

import asyncio
import logging
from typing import Any

logger = logging.getLogger(__name__)


class IntervalPoller:
    name = "poller"

    def __init__(self, interval_seconds: float):
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None
        self._stopping: asyncio.Event | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Any:
        """One tick of work. Subclasses override."""
        raise NotImplementedError

    def start(self) -> None:
        """Schedule the polling loop on the running event loop (no-op if already running)."""
        if self.running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name=f"{self.name}-poller")
        logger.info(
            f"{self.name} started: every {self.interval_seconds}s",
            extra={"worker": self.name},
        )

    async def stop(self) -> None:
        """Stop scheduling ticks and wait for an in-flight tick to finish."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None
        logger.info(f"{self.name} stopped", extra={"worker": self.name})

    async def _loop(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(
                    f"{self.name} tick failed: {e}",
                    extra={"worker": self.name},
                    exc_info=True,
                )

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

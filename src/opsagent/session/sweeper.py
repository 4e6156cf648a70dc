"""
Periodic session cleanup.

Runs ``SessionStore.cleanup`` on a fixed interval in its own task,
independent of request lifetimes. A failed sweep is logged and the next
one runs on schedule.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..domain.ports import SessionStore

logger = logging.getLogger(__name__)


class SessionSweeper:
    """Background task that evicts idle sessions.

    Usage:
        sweeper = SessionSweeper(store, max_age=1800, interval=1800)
        await sweeper.start()
        ...
        await sweeper.stop()
    """

    def __init__(self, store: SessionStore, max_age: float, interval: Optional[float] = None):
        """Initialize the sweeper.

        Args:
            store: Session store to sweep
            max_age: Idle time in seconds after which a session is evicted
            interval: Seconds between sweeps (defaults to max_age)
        """
        self.store = store
        self.max_age = max_age
        self.interval = interval if interval is not None else max_age
        self._task: Optional[asyncio.Task] = None
        self.sweeps_completed = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep_once(self) -> int:
        try:
            evicted = await self.store.cleanup(self.max_age)
        except Exception as e:
            logger.error(f"Session sweep failed: {e}")
            return 0
        self.sweeps_completed += 1
        return evicted

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.sweep_once()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"Session sweeper started (interval={self.interval}s, max_age={self.max_age}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("Session sweeper stopped")

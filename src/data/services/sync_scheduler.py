"""Coalescing push timer and periodic pull loop."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Callable, Optional

from config.settings import Settings
from data.services.sync_types import SchedulerPhase

SyncCallback = Callable[[], Awaitable[Any]]


class SyncScheduler:
    """
    Decide when pushes and pulls run.

    Writes call ``schedule_push``; the first call arms a single timer and later
    calls ride along until it fires. A write that lands while a push is running
    marks the cycle dirty and one more push is armed when it ends. Push and pull
    share one ``syncing`` flag: a request arriving while it is set is dropped.
    """

    def __init__(
        self,
        push_callback: SyncCallback,
        pull_callback: SyncCallback,
        push_delay: float = Settings.PUSH_DELAY_SECONDS,
        pull_interval: float = Settings.PULL_INTERVAL_SECONDS,
        logger_obj: Optional[logging.Logger] = None,
    ):
        self._push_callback = push_callback
        self._pull_callback = pull_callback
        self.push_delay = push_delay
        self.pull_interval = pull_interval
        self.logger = logger_obj or logging.getLogger(__name__)

        self.phase = SchedulerPhase.IDLE
        self.syncing = False
        self._dirty = False
        self._timer: Optional[asyncio.Task] = None
        self._pull_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._pull_task is not None and not self._pull_task.done()

    def schedule_push(self) -> None:
        """Arm the push timer unless one is already armed."""
        if self.phase is SchedulerPhase.PUSHING:
            self._dirty = True
            return
        if self.phase is SchedulerPhase.SCHEDULED:
            return
        self.phase = SchedulerPhase.SCHEDULED
        self._timer = asyncio.get_running_loop().create_task(self._delayed_push())

    async def _delayed_push(self) -> None:
        await asyncio.sleep(self.push_delay)
        await self._run_push()

    async def _run_push(self) -> bool:
        if self.syncing:
            self.logger.debug("Sync already in progress, dropping push request")
            if self.phase is SchedulerPhase.SCHEDULED:
                self.phase = SchedulerPhase.IDLE
            return False

        self.phase = SchedulerPhase.PUSHING
        self.syncing = True
        try:
            await self._push_callback()
        except Exception as e:
            self.logger.error(f"Push cycle failed: {e}", exc_info=True)
        finally:
            self.syncing = False
            self.phase = SchedulerPhase.IDLE

        if self._dirty:
            self._dirty = False
            self.schedule_push()
        return True

    async def push_now(self) -> bool:
        """Push immediately, replacing an armed timer. Returns False if dropped."""
        if self.phase is SchedulerPhase.SCHEDULED and self._timer is not None and not self._timer.done():
            self._timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._timer
            self.phase = SchedulerPhase.IDLE
        return await self._run_push()

    async def pull_now(self) -> bool:
        """Pull immediately. Returns False if another sync was in progress."""
        if self.syncing:
            self.logger.debug("Sync already in progress, dropping pull request")
            return False

        self.syncing = True
        try:
            await self._pull_callback()
        except Exception as e:
            self.logger.error(f"Pull cycle failed: {e}", exc_info=True)
        finally:
            self.syncing = False
        return True

    async def _periodic_pull(self) -> None:
        while True:
            await asyncio.sleep(self.pull_interval)
            await self.pull_now()

    def start(self) -> None:
        """Start the periodic pull loop on the running event loop."""
        if self.is_running:
            return
        self._pull_task = asyncio.get_running_loop().create_task(self._periodic_pull())
        self.logger.debug(f"Periodic pull every {self.pull_interval}s started")

    async def stop(self) -> None:
        """Cancel the periodic pull and let an already armed push finish."""
        if self._pull_task is not None:
            self._pull_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._pull_task
            self._pull_task = None

        while self._timer is not None and not self._timer.done():
            await self._timer
        self.logger.debug("Sync scheduler stopped")

"""Interval scheduler for single-pass maintenance jobs."""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from coin_ledger.utils import lock_client
from coin_ledger.utils.lock_client import LockClient

logger = logging.getLogger(__name__)


class RecurringTask:
    """Run ``job`` every ``interval_seconds`` until :meth:`stop` is called.

    Each pass runs under a named lock, so when several workers share a Redis
    instance only one of them sweeps at a time. Errors in a pass are logged and
    the loop carries on with the next interval.
    """

    def __init__(
        self,
        name: str,
        job: Callable[[], Awaitable[object]],
        interval_seconds: float,
        initial_delay_seconds: float | None = None,
        locks: Optional[LockClient] = None,
        lock_timeout_seconds: int = 600,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.name = name
        self.job = job
        self.interval_seconds = interval_seconds
        self.initial_delay_seconds = interval_seconds if initial_delay_seconds is None else initial_delay_seconds
        self.locks = locks or lock_client
        self.lock_timeout_seconds = lock_timeout_seconds
        self.runs = 0
        self.skipped = 0
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self.is_running:
            return self._task
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name=f"recurring:{self.name}")
        logger.info(f"Started recurring task {self.name} (interval: {self.interval_seconds}s)")
        return self._task

    async def stop(self, timeout: float = 2.0) -> None:
        """Signal the loop to end and wait for the current pass to finish."""
        self._stop_event.set()
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Recurring task {self.name} did not stop in {timeout}s, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info(f"Stopped recurring task {self.name}")

    async def run_once(self) -> bool:
        """Run one pass if nobody else holds the lock. Returns whether it ran."""
        with self.locks.single_flight(f"task:{self.name}", timeout=self.lock_timeout_seconds) as acquired:
            if not acquired:
                self.skipped += 1
                logger.debug(f"Recurring task {self.name} already running elsewhere, skipping")
                return False
            try:
                await self.job()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in recurring task {self.name}: {e}", exc_info=True)
            self.runs += 1
            return True

    async def _wait(self, seconds: float) -> bool:
        """Sleep for ``seconds`` or until stopped. Returns True when stopped."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _loop(self) -> None:
        if self.initial_delay_seconds > 0 and await self._wait(self.initial_delay_seconds):
            return
        while not self._stop_event.is_set():
            await self.run_once()
            if await self._wait(self.interval_seconds):
                return

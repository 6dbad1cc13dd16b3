from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Callable


logger = logging.getLogger(__name__)

MIN_INTERVAL_MINUTES = 1
MAX_INTERVAL_MINUTES = 60


class SyncScheduler:
    """Owns the single recurring timer that drives the sync job.

    ``reschedule`` cancels the running timer before starting the new one under
    one lock, so two timers never coexist. Cancelling a timer never aborts a run
    already in flight: runs execute in their own task and hold the run lock, so
    the next timer waits for them. A failing run is logged and the next tick
    still fires.
    """

    def __init__(
        self,
        job: Callable[[], Awaitable[Any]],
        *,
        seconds_per_minute: float = 60.0,
    ) -> None:
        self._job = job
        self._seconds_per_minute = seconds_per_minute
        self._task: asyncio.Task | None = None
        self._inflight: asyncio.Task | None = None
        self._interval: int | None = None
        self._lock = asyncio.Lock()
        self._run_lock = asyncio.Lock()

    @property
    def interval_minutes(self) -> int | None:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @staticmethod
    def _validate(interval_minutes: int) -> int:
        interval = int(interval_minutes)
        if not MIN_INTERVAL_MINUTES <= interval <= MAX_INTERVAL_MINUTES:
            raise ValueError(
                f"Sync interval must be between {MIN_INTERVAL_MINUTES} and {MAX_INTERVAL_MINUTES} minutes"
            )
        return interval

    async def start(self, interval_minutes: int, *, initial_delay: float | None = None) -> None:
        """Start (or restart) the timer; ``initial_delay`` seconds triggers an early first run."""
        interval = self._validate(interval_minutes)
        async with self._lock:
            await self._cancel()
            self._interval = interval
            self._task = asyncio.create_task(self._loop(interval, initial_delay), name="sync-scheduler")
        logger.info("Sync scheduler started: every %s minutes", interval)

    async def reschedule(self, interval_minutes: int) -> None:
        interval = self._validate(interval_minutes)
        async with self._lock:
            if self.is_running and self._interval == interval:
                return
            await self._cancel()
            self._interval = interval
            self._task = asyncio.create_task(self._loop(interval, None), name="sync-scheduler")
        logger.info("Sync scheduler rescheduled: every %s minutes", interval)

    async def stop(self) -> None:
        async with self._lock:
            await self._cancel()
            self._interval = None
        inflight, self._inflight = self._inflight, None
        if inflight is not None and not inflight.done():
            await inflight
        logger.info("Sync scheduler stopped")

    async def trigger(self) -> Any:
        """Run the job now; waits for an in-flight scheduled run to finish first."""
        async with self._run_lock:
            return await self._job()

    async def _cancel(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _loop(self, interval: int, initial_delay: float | None) -> None:
        if initial_delay is not None:
            await asyncio.sleep(initial_delay)
            await self._run_safely()
        while True:
            await asyncio.sleep(interval * self._seconds_per_minute)
            await self._run_safely()

    async def _run_safely(self) -> None:
        run = asyncio.create_task(self._guarded_run(), name="sync-run")
        self._inflight = run
        await asyncio.shield(run)

    async def _guarded_run(self) -> None:
        try:
            await self.trigger()
        except Exception:
            logger.exception("Scheduled sync run failed")

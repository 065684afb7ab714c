"""Periodic driver for :meth:`ReminderScheduler.tick`.

Runs as an ``asyncio`` background task in the same event loop as the
FastAPI application, ticking every ``interval_seconds`` (at most 60).
Deployments that prefer an external cron can disable the loop and call
the ``/api/v1/reminders/tick`` endpoint instead, which goes through
:meth:`ReminderEngine.run_once`.

Shutdown is graceful: :meth:`ReminderEngine.stop` stops new ticks from
starting and waits for an in-flight tick to finish before returning.
"""

from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime
from typing import TYPE_CHECKING

import structlog

from src.services.clock import Clock, SystemClock

if TYPE_CHECKING:
    from src.models.reminder import FiredReminder
    from src.services.reminders import ReminderScheduler

logger = structlog.get_logger(__name__)


class ReminderEngine:
    """Background tick loop for appointment reminders.

    Parameters
    ----------
    scheduler:
        The :class:`ReminderScheduler` whose ``tick`` is driven.
    interval_seconds:
        Seconds between ticks.
    clock:
        Time source stamped as ``last_tick_at`` when a tick runs without
        an explicit instant.  Pass the scheduler's clock.
    """

    def __init__(
        self,
        scheduler: ReminderScheduler,
        interval_seconds: float = 60.0,
        clock: Clock | None = None,
    ) -> None:
        if not 0 < interval_seconds <= 60:
            raise ValueError("interval_seconds must be in (0, 60]")
        self._scheduler = scheduler
        self._interval = interval_seconds
        self._clock = clock or SystemClock()
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._stop_event = asyncio.Event()
        self._tick_lock = asyncio.Lock()
        self._last_tick_at: datetime | None = None
        self._ticks = 0

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        """Whether the background loop is currently active."""
        return self._task is not None and not self._task.done()

    @property
    def last_tick_at(self) -> datetime | None:
        return self._last_tick_at

    @property
    def tick_count(self) -> int:
        return self._ticks

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the loop.  Returns immediately; a second call is a no-op."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="reminder-engine")
        logger.info("reminder_engine.started", interval_seconds=self._interval)

    async def stop(self) -> None:
        """Stop ticking and wait for any in-flight tick to complete."""
        if self._task is None:
            return
        self._stop_event.set()
        # the loop only exits between ticks, so awaiting it drains the current one
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("reminder_engine.stopped", ticks=self._ticks)

    async def _run(self) -> None:
        try:
            while not self._stop_event.is_set():
                await self._safe_tick()
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
        except asyncio.CancelledError:
            logger.info("reminder_engine.cancelled")
            raise

    async def _safe_tick(self) -> None:
        """Run one tick, logging instead of crashing the loop on failure."""
        try:
            await self.run_once()
        except Exception:
            logger.error("reminder_engine.tick_failed", exc_info=True)

    # ------------------------------------------------------------------
    # On-demand execution
    # ------------------------------------------------------------------

    async def run_once(self, now: datetime | None = None) -> list[FiredReminder]:
        """Run a single tick.  Ticks never overlap."""
        async with self._tick_lock:
            now = now or self._clock.now()
            fired = await self._scheduler.tick(now)
            self._ticks += 1
            self._last_tick_at = now
            if fired:
                logger.info("reminder_engine.tick_complete", fired=len(fired))
            return fired

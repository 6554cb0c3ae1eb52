"""Startup, interval and manual triggering of ping cycles."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from apscheduler.events import EVENT_JOB_MAX_INSTANCES, EVENT_JOB_MISSED, JobEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from keepalive.models import CycleSummary
from keepalive.orchestrator import PingCycle


logger = structlog.get_logger(__name__)

STARTUP_JOB_ID = "startup_ping"
INTERVAL_JOB_ID = "scheduled_ping"


class PingScheduler:
    """Runs the first cycle after a grace delay, then one per interval.

    At most one cycle runs at a time: triggers that arrive while a cycle is
    in progress (scheduled or manual) are skipped.
    """

    def __init__(self, cycle: PingCycle):
        self.cycle = cycle
        self.settings = cycle.settings
        self.scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self.running = False
        self._lock = asyncio.Lock()
        self._manual_task: Optional[asyncio.Task] = None
        self._cycle_task: Optional[asyncio.Task] = None

    async def start(self):
        """Start the job scheduler."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        first_run = datetime.now(timezone.utc) + timedelta(seconds=self.settings.startup_delay_seconds)
        self.scheduler.add_job(
            func=self.run_guarded,
            trigger=DateTrigger(run_date=first_run),
            id=STARTUP_JOB_ID,
            kwargs={"trigger": "startup"},
            name="Initial ping after startup grace delay",
            misfire_grace_time=None,
        )
        self.scheduler.add_job(
            func=self.run_guarded,
            trigger=IntervalTrigger(seconds=self.settings.interval_seconds),
            id=INTERVAL_JOB_ID,
            kwargs={"trigger": "interval"},
            name="Scheduled ping",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=None,
        )
        self.scheduler.add_listener(self._on_job_event, EVENT_JOB_MISSED | EVENT_JOB_MAX_INSTANCES)
        self.scheduler.start()
        self.running = True

        logger.info(
            "Ping scheduler started",
            first_run=first_run.isoformat(),
            interval_minutes=self.settings.interval_minutes,
        )

    async def stop(self):
        """Stop the scheduler and cancel any cycle still in flight."""
        if not self.running:
            return

        self.scheduler.shutdown(wait=False)
        self.running = False

        current = asyncio.current_task()
        pending = {
            task
            for task in (self._manual_task, self._cycle_task)
            if task is not None and task is not current and not task.done()
        }
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Ping scheduler stopped")

    @property
    def busy(self) -> bool:
        if self._lock.locked():
            return True
        return self._manual_task is not None and not self._manual_task.done()

    async def run_guarded(self, trigger: str = "manual") -> Optional[CycleSummary]:
        """Run one cycle unless another one is in progress."""
        if self._lock.locked():
            logger.warning("Ping cycle already in progress; skipping trigger", trigger=trigger)
            return None

        async with self._lock:
            logger.info("Ping cycle triggered", trigger=trigger)
            self._cycle_task = asyncio.current_task()
            try:
                return await self.cycle.run()
            except Exception:
                logger.exception("Ping cycle crashed", trigger=trigger)
                return None
            finally:
                self._cycle_task = None

    def trigger_now(self) -> bool:
        """Start one cycle in the background; returns False when one is already running."""
        if self.busy:
            logger.warning("Ping cycle already in progress; manual trigger skipped")
            return False

        self._manual_task = asyncio.create_task(self.run_guarded(trigger="manual"))
        return True

    async def wait_idle(self) -> None:
        task = self._manual_task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        async with self._lock:
            pass

    def _on_job_event(self, event: JobEvent) -> None:
        if event.code == EVENT_JOB_MISSED:
            logger.warning("Scheduled ping missed its run time", job_id=event.job_id)
        elif event.code == EVENT_JOB_MAX_INSTANCES:
            logger.warning("Scheduled ping skipped; previous run still active", job_id=event.job_id)

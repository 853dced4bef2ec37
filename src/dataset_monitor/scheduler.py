"""
Interval scheduler for the dataset monitor.

Runs named async jobs every fixed interval ("fetch every 30 days", "probe
every 7 days"). Every job runs once as soon as the scheduler starts. A failing
job is logged and rescheduled; it never stops the loop.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from .audit_logger import AuditLogger
from .models import utc_now


@dataclass
class ScheduledJob:
    """A job registered with the scheduler."""

    name: str
    interval: timedelta
    callback: Callable[[], Awaitable[None]]
    enabled: bool = True
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None  # None means due immediately
    run_count: int = 0
    failure_count: int = 0

    def is_due(self, now: datetime) -> bool:
        return self.enabled and (self.next_run is None or self.next_run <= now)


class Scheduler:
    """Async interval scheduler."""

    COMPONENT = "scheduler"

    def __init__(
        self,
        check_interval_seconds: float = 60.0,
        clock: Callable[[], datetime] = utc_now,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            check_interval_seconds: How often the loop looks for due jobs
            clock: Returns the current aware UTC time
            logger: Optional audit logger
        """
        self._jobs: dict[str, ScheduledJob] = {}
        self._check_interval_seconds = check_interval_seconds
        self._clock = clock
        self._logger = logger
        self._running = False
        self._wakeup: Optional[asyncio.Event] = None

    def every(
        self,
        name: str,
        interval: timedelta,
        callback: Callable[[], Awaitable[None]],
    ) -> ScheduledJob:
        """
        Register a job that runs every `interval`.

        Raises:
            ValueError: If the name is taken or the interval is not positive
        """
        if name in self._jobs:
            raise ValueError(f"Job '{name}' already exists")
        if interval <= timedelta(0):
            raise ValueError(f"Interval of job '{name}' must be positive")

        job = ScheduledJob(name=name, interval=interval, callback=callback)
        self._jobs[name] = job
        return job

    def unschedule(self, name: str) -> bool:
        return self._jobs.pop(name, None) is not None

    def get_job(self, name: str) -> Optional[ScheduledJob]:
        return self._jobs.get(name)

    def list_jobs(self) -> list[ScheduledJob]:
        return list(self._jobs.values())

    async def run_pending(self) -> list[str]:
        """
        Run every job that is due now, in registration order.

        Returns:
            Names of the jobs that ran
        """
        ran = []
        for job in list(self._jobs.values()):
            now = self._clock()
            if not job.is_due(now):
                continue

            job.last_run = now
            job.next_run = now + job.interval
            job.run_count += 1
            ran.append(job.name)
            if self._logger:
                self._logger.info(self.COMPONENT, f"Running job {job.name}", {
                    "job": job.name,
                    "next_run": job.next_run.isoformat(),
                })
            try:
                await job.callback()
            except Exception as e:
                job.failure_count += 1
                if self._logger:
                    self._logger.error(self.COMPONENT, f"Job {job.name} failed", e, {
                        "job": job.name,
                        "failures": job.failure_count,
                    })
        return ran

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """
        Run the scheduler loop until stop() is called or stop_event is set.

        Args:
            stop_event: Optional event to signal the scheduler to stop
        """
        self._running = True
        self._wakeup = stop_event or asyncio.Event()

        while self._running:
            await self.run_pending()

            if self._wakeup.is_set() or not self._running:
                break
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self._check_interval_seconds)
            except asyncio.TimeoutError:
                continue
            break

        self._running = False

    def stop(self) -> None:
        """Signal the scheduler to stop after the current job."""
        self._running = False
        if self._wakeup is not None:
            self._wakeup.set()

    def is_running(self) -> bool:
        return self._running

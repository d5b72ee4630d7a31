# Hey future me - this replaces the external cron that used to poke the job endpoints!
#
# Every job gets its own asyncio task: sleep until due, run through the JobRunner,
# repeat. Interval jobs are "every N seconds"; the database maintenance job is "every
# day at HH:00 UTC" and computes its next wake-up from the wall clock every time, so
# a slow run or a sleep that overshoots doesn't make it drift.
#
# SINGLE-FLIGHT: a job name is never running twice at the same time. If the loop and
# a manual trigger() collide, the second one gets a "already running" result instead
# of a second concurrent run hammering the same rows.
"""Interval and daily job scheduling with an authenticated manual trigger."""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from setlistsync.application.workers.job_runner import JobFn, JobResult, JobRunner
from setlistsync.domain.entities import utc_now
from setlistsync.domain.exceptions import AuthorizationError, EntityNotFoundException
from setlistsync.infrastructure.observability import log_worker_health
from setlistsync.infrastructure.retry import SleepFn

logger = logging.getLogger(__name__)


def seconds_until_next_run(now: datetime, hour_utc: int) -> float:
    """Seconds from ``now`` until the next HH:00:00 UTC (tomorrow if already past)."""
    target = now.replace(hour=hour_utc, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


@dataclass
class ScheduledJob:
    """One schedulable job.

    Exactly one of ``interval_seconds`` / ``daily_hour_utc`` is set.
    """

    name: str
    fn: JobFn
    interval_seconds: float | None = None
    daily_hour_utc: int | None = None
    run_immediately: bool = False

    def __post_init__(self) -> None:
        if (self.interval_seconds is None) == (self.daily_hour_utc is None):
            raise ValueError(f"Job {self.name!r} needs either an interval or a daily hour")


class JobScheduler:
    """Drives every ScheduledJob through the JobRunner.

    Lifecycle:
    - start() spawns one loop task per job
    - stop() cancels them and waits
    - trigger() runs a job on demand (shared secret, constant-time compare)
    """

    def __init__(
        self,
        runner: JobRunner,
        jobs: list[ScheduledJob],
        trigger_secret: str = "",
        health_log_every_cycles: int = 10,
        sleep: SleepFn = asyncio.sleep,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.runner = runner
        self._jobs = {job.name: job for job in jobs}
        self._trigger_secret = trigger_secret
        self._health_every = health_log_every_cycles
        self._sleep = sleep
        self._now = now

        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._in_flight: set[str] = set()
        self._last_results: dict[str, JobResult] = {}
        self._running = False
        self._cycles = 0
        self._errors = 0
        self._started_at = time.monotonic()

    @property
    def job_names(self) -> list[str]:
        return list(self._jobs)

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._started_at = time.monotonic()
        for name, job in self._jobs.items():
            self._tasks[name] = asyncio.create_task(self._loop(job), name=f"job:{name}")
        logger.info("JobScheduler started with jobs: %s", ", ".join(self._jobs))

    async def stop(self) -> None:
        self._running = False
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        # Cancelled loops raise CancelledError, gather collects it instead of raising
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("JobScheduler stopped")

    async def wait(self) -> None:
        """Block until every loop has ended (i.e. until stop() from elsewhere)."""
        await asyncio.gather(*self._tasks.values(), return_exceptions=True)

    def next_delay(self, job: ScheduledJob) -> float:
        if job.daily_hour_utc is not None:
            return seconds_until_next_run(self._now(), job.daily_hour_utc)
        if job.interval_seconds is None:
            raise ValueError(f"Job {job.name!r} has neither an interval nor a daily hour")
        return job.interval_seconds

    async def _loop(self, job: ScheduledJob) -> None:
        first = True
        while self._running:
            if not (first and job.run_immediately):
                await self._sleep(self.next_delay(job))
            first = False
            if not self._running:
                break
            await self.run_job(job.name)

    async def run_job(self, job_name: str) -> JobResult:
        """Run a job now unless it is already in flight."""
        job = self._jobs.get(job_name)
        if job is None:
            raise EntityNotFoundException("Job", job_name)

        if job_name in self._in_flight:
            logger.info("Job %s already running, skipping", job_name)
            return JobResult(
                success=False,
                message=f"{job_name} is already running",
                processing_time_ms=0.0,
            )

        self._in_flight.add(job_name)
        try:
            result = await self.runner.run_with_retry(job_name, job.fn)
        finally:
            self._in_flight.discard(job_name)

        self._last_results[job_name] = result
        self._cycles += 1
        if not result.success:
            self._errors += 1
        if self._cycles % self._health_every == 0:
            log_worker_health(
                logger,
                "job_scheduler",
                self._cycles,
                self._errors,
                time.monotonic() - self._started_at,
                {"in_flight": len(self._in_flight)},
            )
        return result

    async def trigger(self, job_name: str, secret: str) -> JobResult:
        """Run a job on demand. Wrong (or unset) secret raises AuthorizationError."""
        if not self._trigger_secret or not secrets.compare_digest(
            secret.encode(), self._trigger_secret.encode()
        ):
            logger.warning("Rejected trigger for job %s: bad secret", job_name)
            raise AuthorizationError("Invalid trigger secret")
        return await self.run_job(job_name)

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "jobs": {
                name: {
                    "in_flight": name in self._in_flight,
                    "interval_seconds": job.interval_seconds,
                    "daily_hour_utc": job.daily_hour_utc,
                    "last_result": (
                        self._last_results[name].to_dict()
                        if name in self._last_results
                        else None
                    ),
                }
                for name, job in self._jobs.items()
            },
            "cycles_completed": self._cycles,
            "errors_total": self._errors,
            "metrics": self.runner.get_metrics(),
        }

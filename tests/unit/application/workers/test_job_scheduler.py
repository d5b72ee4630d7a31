"""Tests for JobScheduler."""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

import pytest

from conftest import FakeClock
from setlistsync.application.workers import (
    JobReport,
    JobRunner,
    JobScheduler,
    ScheduledJob,
    seconds_until_next_run,
)
from setlistsync.domain.exceptions import AuthorizationError, EntityNotFoundException

NOW = datetime(2030, 1, 1, 1, 30, tzinfo=UTC)


async def noop() -> JobReport:
    return JobReport(records_processed=1)


def make_scheduler(
    fake_clock: FakeClock, jobs: list[ScheduledJob], secret: str = "s3cret", **kwargs: Any
) -> JobScheduler:
    runner = JobRunner(max_retries=1, sleep=fake_clock.sleep, clock=fake_clock)
    return JobScheduler(runner, jobs, trigger_secret=secret, now=lambda: NOW, **kwargs)


class TestSecondsUntilNextRun:
    @pytest.mark.parametrize(
        ("now", "hour", "expected"),
        [
            (NOW, 2, 1800.0),
            (NOW, 1, 84600.0),
            (datetime(2030, 1, 1, 2, 0, tzinfo=UTC), 2, 86400.0),
            (datetime(2030, 12, 31, 23, 0, tzinfo=UTC), 0, 3600.0),
        ],
    )
    def test_next_run(self, now: datetime, hour: int, expected: float) -> None:
        assert seconds_until_next_run(now, hour) == expected


class TestScheduledJob:
    def test_needs_interval_or_daily_hour(self) -> None:
        with pytest.raises(ValueError):
            ScheduledJob(name="broken", fn=noop)

    def test_rejects_both(self) -> None:
        with pytest.raises(ValueError):
            ScheduledJob(name="broken", fn=noop, interval_seconds=60, daily_hour_utc=3)

    def test_next_delay(self, fake_clock: FakeClock) -> None:
        interval = ScheduledJob(name="trending", fn=noop, interval_seconds=3600)
        daily = ScheduledJob(name="db_maintenance", fn=noop, daily_hour_utc=3)
        scheduler = make_scheduler(fake_clock, [interval, daily])

        assert scheduler.next_delay(interval) == 3600
        assert scheduler.next_delay(daily) == 5400.0

    def test_next_delay_rejects_job_without_schedule(self, fake_clock: FakeClock) -> None:
        job = ScheduledJob(name="trending", fn=noop, interval_seconds=3600)
        scheduler = make_scheduler(fake_clock, [job])
        # Cleared after construction, so __post_init__ never saw it
        job.interval_seconds = None

        with pytest.raises(ValueError, match="trending"):
            scheduler.next_delay(job)


class TestRunJob:
    """run_job / trigger"""

    @pytest.mark.asyncio
    async def test_unknown_job(self, fake_clock: FakeClock) -> None:
        scheduler = make_scheduler(fake_clock, [])

        with pytest.raises(EntityNotFoundException):
            await scheduler.run_job("nope")

    @pytest.mark.asyncio
    async def test_single_flight(self, fake_clock: FakeClock) -> None:
        release = asyncio.Event()
        started = asyncio.Event()

        async def slow() -> JobReport:
            started.set()
            await release.wait()
            return JobReport(records_processed=7)

        scheduler = make_scheduler(
            fake_clock, [ScheduledJob(name="show_sync", fn=slow, interval_seconds=60)]
        )

        first = asyncio.create_task(scheduler.run_job("show_sync"))
        await started.wait()
        second = await scheduler.run_job("show_sync")
        assert scheduler.get_status()["jobs"]["show_sync"]["in_flight"]
        release.set()
        first_result = await first

        assert not second.success
        assert second.message == "show_sync is already running"
        assert first_result.success
        assert first_result.records_processed == 7
        assert not scheduler.get_status()["jobs"]["show_sync"]["in_flight"]

    @pytest.mark.asyncio
    async def test_trigger_with_secret(self, fake_clock: FakeClock) -> None:
        scheduler = make_scheduler(
            fake_clock, [ScheduledJob(name="trending", fn=noop, interval_seconds=60)]
        )

        result = await scheduler.trigger("trending", "s3cret")

        assert result.success

    @pytest.mark.asyncio
    async def test_trigger_rejects_wrong_secret(self, fake_clock: FakeClock) -> None:
        calls = 0

        async def job() -> JobReport:
            nonlocal calls
            calls += 1
            return JobReport()

        scheduler = make_scheduler(
            fake_clock, [ScheduledJob(name="trending", fn=job, interval_seconds=60)]
        )

        with pytest.raises(AuthorizationError):
            await scheduler.trigger("trending", "guess")
        assert calls == 0

    @pytest.mark.asyncio
    async def test_trigger_disabled_without_secret(self, fake_clock: FakeClock) -> None:
        scheduler = make_scheduler(
            fake_clock, [ScheduledJob(name="trending", fn=noop, interval_seconds=60)], secret=""
        )

        with pytest.raises(AuthorizationError):
            await scheduler.trigger("trending", "")

    @pytest.mark.asyncio
    async def test_status_after_run(self, fake_clock: FakeClock) -> None:
        scheduler = make_scheduler(
            fake_clock,
            [
                ScheduledJob(name="trending", fn=noop, interval_seconds=60),
                ScheduledJob(name="db_maintenance", fn=noop, daily_hour_utc=3),
            ],
        )

        await scheduler.run_job("trending")
        status = scheduler.get_status()

        assert status["running"] is False
        assert status["cycles_completed"] == 1
        assert status["errors_total"] == 0
        assert status["jobs"]["trending"]["last_result"]["recordsProcessed"] == 1
        assert status["jobs"]["db_maintenance"]["last_result"] is None
        assert status["jobs"]["db_maintenance"]["daily_hour_utc"] == 3
        assert status["metrics"]["total_jobs"] == 1

    @pytest.mark.asyncio
    async def test_health_logged_every_n_cycles(
        self, fake_clock: FakeClock, caplog: pytest.LogCaptureFixture
    ) -> None:
        scheduler = make_scheduler(
            fake_clock,
            [ScheduledJob(name="trending", fn=noop, interval_seconds=60)],
            health_log_every_cycles=2,
        )

        with caplog.at_level(logging.INFO):
            await scheduler.run_job("trending")
            assert "worker.health" not in caplog.messages
            await scheduler.run_job("trending")

        assert "worker.health" in caplog.messages


class TestLoop:
    @pytest.mark.asyncio
    async def test_interval_loop_runs_until_stopped(self, fake_clock: FakeClock) -> None:
        delays: list[float] = []
        runs = 0
        forever = asyncio.Event()

        async def sleep(seconds: float) -> None:
            delays.append(seconds)
            if len(delays) > 1:
                await forever.wait()

        async def job() -> JobReport:
            nonlocal runs
            runs += 1
            return JobReport()

        runner = JobRunner(max_retries=1, sleep=fake_clock.sleep, clock=fake_clock)
        scheduler = JobScheduler(
            runner, [ScheduledJob(name="trending", fn=job, interval_seconds=60)], sleep=sleep
        )

        await scheduler.start()
        assert scheduler.is_running
        for _ in range(20):
            await asyncio.sleep(0)
        await scheduler.stop()

        assert runs == 1
        assert delays == [60, 60]
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_run_immediately_skips_first_sleep(self, fake_clock: FakeClock) -> None:
        delays: list[float] = []
        ran = asyncio.Event()
        forever = asyncio.Event()

        async def sleep(seconds: float) -> None:
            delays.append(seconds)
            await forever.wait()

        async def job() -> JobReport:
            ran.set()
            return JobReport()

        runner = JobRunner(max_retries=1, sleep=fake_clock.sleep, clock=fake_clock)
        scheduler = JobScheduler(
            runner,
            [ScheduledJob(name="health_check", fn=job, interval_seconds=900, run_immediately=True)],
            sleep=sleep,
        )

        await scheduler.start()
        await asyncio.wait_for(ran.wait(), timeout=1)
        await scheduler.stop()

        assert delays in ([], [900])

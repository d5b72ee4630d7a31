# Hey future me - this is the ONE place where a sync job gets executed!
#
# The scheduler (interval loops) and the manual trigger both end up here. The runner
# doesn't know what a job does; it runs an async callable, retries it with
# exponential backoff when it blows up, and keeps counters so the health check can
# tell us which job is sick.
#
# RETRY RULES:
# - base_delay * 2^(attempt-1) between attempts, no jitter (same RetryPolicy the
#   RateLimiter uses, different numbers)
# - Backpressure (queue full / queue timeout) and missing config are NOT retried,
#   hammering a saturated limiter or a missing API key again won't help
# - Per-item failures inside the job are the job's business; as long as job_fn
#   returns, the run is a success and the errors show up in the JobReport
"""Job execution with retry and metrics."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from setlistsync.domain.entities import utc_now
from setlistsync.domain.exceptions import (
    ConfigurationError,
    QueueFullError,
    QueueTimeoutError,
)
from setlistsync.infrastructure.observability import set_correlation_id
from setlistsync.infrastructure.retry import RetryPolicy, SleepFn, retry_async

logger = logging.getLogger(__name__)

NON_RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    QueueFullError,
    QueueTimeoutError,
    ConfigurationError,
)


@dataclass
class JobReport:
    """What a job function hands back to the runner."""

    records_processed: int = 0
    errors: int = 0
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class JobResult:
    success: bool
    message: str
    processing_time_ms: float
    records_processed: int | None = None
    error_details: str | None = None
    retry_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Wire shape returned by the trigger surface."""
        data: dict[str, Any] = {
            "success": self.success,
            "message": self.message,
            "processingTimeMs": round(self.processing_time_ms, 2),
            "retryCount": self.retry_count,
        }
        if self.records_processed is not None:
            data["recordsProcessed"] = self.records_processed
        if self.error_details is not None:
            data["errorDetails"] = self.error_details
        return data


@dataclass
class JobMetrics:
    total_jobs: int = 0
    successful_jobs: int = 0
    failed_jobs: int = 0
    average_processing_time_ms: float = 0.0
    last_run_times: dict[str, datetime] = field(default_factory=dict)
    error_counts: dict[str, int] = field(default_factory=dict)

    def record(self, job_name: str, success: bool, duration_ms: float, when: datetime) -> None:
        self.total_jobs += 1
        if success:
            self.successful_jobs += 1
        else:
            self.failed_jobs += 1
            self.error_counts[job_name] = self.error_counts.get(job_name, 0) + 1
        # Running mean, no need to keep every duration around
        self.average_processing_time_ms += (
            duration_ms - self.average_processing_time_ms
        ) / self.total_jobs
        self.last_run_times[job_name] = when

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_jobs": self.total_jobs,
            "successful_jobs": self.successful_jobs,
            "failed_jobs": self.failed_jobs,
            "average_processing_time_ms": round(self.average_processing_time_ms, 2),
            "last_run_times": {k: v.isoformat() for k, v in self.last_run_times.items()},
            "error_counts": dict(self.error_counts),
        }


JobFn = Callable[[], Awaitable[JobReport | None]]


class JobRunner:
    """Runs named jobs with bounded retries.

    Args:
        max_retries: Total executions allowed per run (first try included)
        base_delay: Seconds before the second attempt, doubled afterwards
        sleep: Injectable for tests
        clock: Monotonic clock used for processing time
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.policy = RetryPolicy(
            max_attempts=max_retries,
            base_delay=base_delay,
            multiplier=2.0,
            jitter=0.0,
            retryable=(Exception,),
            non_retryable=NON_RETRYABLE_ERRORS,
        )
        self._sleep = sleep
        self._clock = clock
        self._metrics = JobMetrics()

    async def run_with_retry(self, job_name: str, job_fn: JobFn) -> JobResult:
        correlation_id = set_correlation_id()
        started = self._clock()
        retries = 0

        def _on_retry(attempt: int, exc: BaseException, delay: float) -> None:
            nonlocal retries
            retries = attempt
            logger.warning(
                "Job %s attempt %d/%d failed: %s (retrying in %.1fs)",
                job_name,
                attempt,
                self.policy.max_attempts,
                exc,
                delay,
                extra={"job": job_name, "correlation_id": correlation_id},
            )

        logger.info("job.started", extra={"job": job_name})
        try:
            outcome = await retry_async(job_fn, self.policy, sleep=self._sleep, on_retry=_on_retry)
        except Exception as e:
            duration_ms = (self._clock() - started) * 1000
            self._metrics.record(job_name, False, duration_ms, utc_now())
            logger.error(
                "job.failed",
                extra={
                    "job": job_name,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "retry_count": retries,
                    "duration_ms": round(duration_ms, 2),
                },
            )
            return JobResult(
                success=False,
                message=f"{job_name} failed: {e}",
                processing_time_ms=duration_ms,
                error_details=f"{type(e).__name__}: {e}",
                retry_count=retries,
            )

        duration_ms = (self._clock() - started) * 1000
        self._metrics.record(job_name, True, duration_ms, utc_now())
        report = outcome.value or JobReport()
        logger.info(
            "job.completed",
            extra={
                "job": job_name,
                "records_processed": report.records_processed,
                "item_errors": report.errors,
                "retry_count": outcome.attempts - 1,
                "duration_ms": round(duration_ms, 2),
                **report.details,
            },
        )
        message = f"{job_name} completed"
        if report.errors:
            message += f" with {report.errors} item errors"
        return JobResult(
            success=True,
            message=message,
            processing_time_ms=duration_ms,
            records_processed=report.records_processed,
            retry_count=outcome.attempts - 1,
        )

    def get_metrics(self) -> dict[str, Any]:
        return self._metrics.to_dict()

    def reset_metrics(self) -> None:
        self._metrics = JobMetrics()

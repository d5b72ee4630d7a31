"""Background jobs: runner, scheduler and the sync jobs themselves."""

from setlistsync.application.workers.job_runner import (
    JobMetrics,
    JobReport,
    JobResult,
    JobRunner,
)
from setlistsync.application.workers.job_scheduler import (
    JobScheduler,
    ScheduledJob,
    seconds_until_next_run,
)
from setlistsync.application.workers.sync_jobs import JOB_NAMES, SyncJobs

__all__ = [
    "JOB_NAMES",
    "JobMetrics",
    "JobReport",
    "JobResult",
    "JobRunner",
    "JobScheduler",
    "ScheduledJob",
    "SyncJobs",
    "seconds_until_next_run",
]

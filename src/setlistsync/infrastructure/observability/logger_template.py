"""Shared logging helpers for timed operations and worker health.

USAGE:
    logger = logging.getLogger(__name__)

    async with log_operation(logger, "catalog_import", artist_id="abc"):
        await importer.import_artist_catalog(artist)

    log_worker_health(logger, "job_scheduler", cycles_completed=10, errors_total=2,
                      uptime_seconds=3600)
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any


# Yo, this logs {operation}.started / .completed / .failed with duration_ms. Extra
# kwargs end up as structured fields in the JSON formatter. On failure it logs with
# exc_info and RE-RAISES - it never decides what an error means.
@asynccontextmanager
async def log_operation(
    logger: logging.Logger,
    operation: str,
    level: int = logging.INFO,
    **context: Any,
) -> AsyncIterator[dict[str, Any]]:
    """Log operation start/end with automatic timing.

    The yielded dict is merged into the completion log, so callers can attach
    results (``fields["songs_imported"] = 12``).
    """
    start = time.monotonic()
    result_fields: dict[str, Any] = {}
    logger.log(level, f"{operation}.started", extra=context)
    try:
        yield result_fields
    except Exception as e:
        duration_ms = int((time.monotonic() - start) * 1000)
        logger.error(
            f"{operation}.failed",
            extra={
                **context,
                "duration_ms": duration_ms,
                "error": str(e),
                "error_type": type(e).__name__,
            },
            exc_info=True,
        )
        raise
    duration_ms = int((time.monotonic() - start) * 1000)
    logger.log(
        level,
        f"{operation}.completed",
        extra={**context, **result_fields, "duration_ms": duration_ms},
    )


def log_worker_health(
    logger: logging.Logger,
    worker_name: str,
    cycles_completed: int,
    errors_total: int,
    uptime_seconds: float,
    extra_stats: dict[str, Any] | None = None,
) -> None:
    """Log worker health status in consistent format."""
    log_data = {
        "worker": worker_name,
        "cycles_completed": cycles_completed,
        "errors_total": errors_total,
        "uptime_seconds": int(uptime_seconds),
    }
    if extra_stats:
        log_data.update(extra_stats)
    logger.info("worker.health", extra=log_data)

"""
Per-upstream Rate Limiter with request queue and multi-window quotas.

Hey future me - this is THE gate every upstream HTTP call goes through!
One instance per upstream (catalog, ticketing, setlist history), built in the
composition root and handed to the client. NO module-level singletons - tests
build their own with a fake clock.

ALGORITHM: sliding-log quota windows + FIFO queue
- Three windows: 1 second, 60 seconds, 86400 seconds, each with its own ceiling
- Each window keeps the timestamps of requests it has let through
- A request runs only when EVERY window is below its ceiling
- Otherwise we sleep max(wait of each violated window, 0.1s) and look again
- No sleep runs past the oldest entry's queue deadline, so a full day window
  turns into QueueTimeoutError after queue_timeout instead of a 24h hang

WARUM sliding log statt fixed counters?
Fixed counters reset at window boundaries, so you can fire 2x the ceiling around
a boundary (end of minute N + start of minute N+1). The log holds the invariant
"never more than C requests in ANY trailing W seconds" exactly.

429 HANDLING:
- Request returns a 429 httpx.Response or raises UpstreamRateLimited
- Request goes back into the queue, not runnable before now + delay
- delay = Retry-After (capped at max_delay) or base * multiplier^(n-1) + jitter
- After max_retries re-queues: caller gets RateLimitExceededError

BACKPRESSURE:
- Queue full on enqueue -> QueueFullError immediately (no waiting)
- Waited longer than queue_timeout -> QueueTimeoutError, entry evicted

Every other exception from the request goes straight back to the caller. The
limiter does NOT retry network errors - that's the JobRunner's job.

USAGE:
    limiter = RateLimiter("spotify", RateLimiterConfig.from_settings(settings.rate_limits.spotify))
    response = await limiter.enqueue(lambda: http.get("/artists/123"))
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx

from setlistsync.domain.exceptions import (
    QueueFullError,
    QueueTimeoutError,
    RateLimitExceededError,
    UpstreamRateLimited,
)
from setlistsync.infrastructure.retry import RetryPolicy

if TYPE_CHECKING:
    from setlistsync.config import RateLimitSettings

logger = logging.getLogger(__name__)

RequestFactory = Callable[[], Awaitable[Any]]

MIN_WAIT_SECONDS = 0.1
SECOND = 1.0
MINUTE = 60.0
DAY = 86400.0


@dataclass
class RateLimiterConfig:
    """Configuration for one upstream's limiter.

    Defaults match the catalog upstream: 10/s, 180/min, 10000/day.
    """

    requests_per_second: int = 10
    requests_per_minute: int = 180
    requests_per_day: int = 10000
    max_retries: int = 3
    base_delay_seconds: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay_seconds: float = 60.0
    jitter_seconds: float = 0.5
    queue_timeout_seconds: float = 300.0
    max_queue_size: int = 1000

    @classmethod
    def from_settings(cls, settings: RateLimitSettings) -> RateLimiterConfig:
        return cls(
            requests_per_second=settings.requests_per_second,
            requests_per_minute=settings.requests_per_minute,
            requests_per_day=settings.requests_per_day,
            max_retries=settings.max_retries,
            base_delay_seconds=settings.base_delay_seconds,
            backoff_multiplier=settings.backoff_multiplier,
            max_delay_seconds=settings.max_delay_seconds,
            jitter_seconds=settings.jitter_seconds,
            queue_timeout_seconds=settings.queue_timeout_seconds,
            max_queue_size=settings.max_queue_size,
        )


@dataclass
class QuotaWindow:
    """Sliding log of execution timestamps for one window length."""

    length: float
    ceiling: int
    stamps: deque[float] = field(default_factory=deque)

    def prune(self, now: float) -> None:
        while self.stamps and now - self.stamps[0] >= self.length:
            self.stamps.popleft()

    def has_room(self, now: float) -> bool:
        self.prune(now)
        return len(self.stamps) < self.ceiling

    def wait_time(self, now: float) -> float:
        """Seconds until one slot frees up (0 if there is room already)."""
        if self.has_room(now):
            return 0.0
        return self.stamps[0] + self.length - now

    def record(self, now: float) -> None:
        self.stamps.append(now)

    def count(self, now: float) -> int:
        self.prune(now)
        return len(self.stamps)


@dataclass(eq=False)
class QueuedRequest:
    request: RequestFactory
    future: asyncio.Future[Any]
    enqueued_at: float
    retries: int = 0
    not_before: float = 0.0


@dataclass
class RateLimiterStats:
    processed: int = 0
    failed: int = 0
    rate_limited: int = 0
    retried: int = 0
    exhausted: int = 0
    evicted: int = 0
    rejected_full: int = 0
    quota_waits: int = 0


class RateLimiter:
    """FIFO request scheduler enforcing second/minute/day quotas for one upstream."""

    def __init__(
        self,
        name: str,
        config: RateLimiterConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.name = name
        self.config = config or RateLimiterConfig()
        self._clock = clock
        self._sleep = sleep
        self._windows = (
            QuotaWindow(SECOND, self.config.requests_per_second),
            QuotaWindow(MINUTE, self.config.requests_per_minute),
            QuotaWindow(DAY, self.config.requests_per_day),
        )
        self._policy = RetryPolicy(
            max_attempts=self.config.max_retries + 1,
            base_delay=self.config.base_delay_seconds,
            multiplier=self.config.backoff_multiplier,
            max_delay=self.config.max_delay_seconds,
            jitter=self.config.jitter_seconds,
            retryable=(UpstreamRateLimited,),
            rng=rng or random.Random(),
        )
        self._queue: deque[QueuedRequest] = deque()
        self._processing = False
        self._drain_task: asyncio.Task[None] | None = None
        self._stats = RateLimiterStats()

    @classmethod
    def from_settings(cls, name: str, settings: RateLimitSettings) -> RateLimiter:
        return cls(name, RateLimiterConfig.from_settings(settings))

    # =========================================================================
    # Public API
    # =========================================================================

    async def enqueue(self, request: RequestFactory) -> Any:
        """Queue a request and wait for its result.

        Args:
            request: Zero-arg callable returning a fresh awaitable each call
                (it is called again on every retry)

        Raises:
            QueueFullError: Queue already holds max_queue_size requests
            QueueTimeoutError: Request waited longer than queue_timeout
            RateLimitExceededError: Upstream kept answering 429
            Exception: Whatever the request itself raised
        """
        if len(self._queue) >= self.config.max_queue_size:
            self._stats.rejected_full += 1
            logger.warning(
                "RateLimiter[%s]: queue full (%d), rejecting request",
                self.name,
                len(self._queue),
            )
            raise QueueFullError(self.name, self.config.max_queue_size)

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        now = self._clock()
        self._queue.append(QueuedRequest(request=request, future=future, enqueued_at=now))
        self._start_processing()
        return await future

    def evict_stale(self) -> int:
        """Fail every queued request older than queue_timeout. Returns how many."""
        now = self._clock()
        keep: deque[QueuedRequest] = deque()
        evicted = 0
        for item in self._queue:
            waited = now - item.enqueued_at
            if waited > self.config.queue_timeout_seconds:
                if not item.future.done():
                    item.future.set_exception(QueueTimeoutError(self.name, waited))
                evicted += 1
            else:
                keep.append(item)
        self._queue = keep
        if evicted:
            self._stats.evicted += evicted
            logger.warning("RateLimiter[%s]: evicted %d stale requests", self.name, evicted)
        return evicted

    def get_stats(self) -> dict[str, Any]:
        now = self._clock()
        second, minute, day = self._windows
        return {
            "name": self.name,
            "queue_size": len(self._queue),
            "processing": self._processing,
            "window_second": second.count(now),
            "window_minute": minute.count(now),
            "window_day": day.count(now),
            "processed": self._stats.processed,
            "failed": self._stats.failed,
            "rate_limited": self._stats.rate_limited,
            "retried": self._stats.retried,
            "exhausted": self._stats.exhausted,
            "evicted": self._stats.evicted,
            "rejected_full": self._stats.rejected_full,
            "quota_waits": self._stats.quota_waits,
        }

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    async def aclose(self) -> None:
        """Stop draining and cancel everything still waiting."""
        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
        for item in self._queue:
            if not item.future.done():
                item.future.cancel()
        self._queue.clear()
        self._processing = False

    # =========================================================================
    # Drain loop
    # =========================================================================

    def _start_processing(self) -> None:
        # Flag guard: the drain loop must never run twice at the same time
        if self._processing:
            return
        self._processing = True
        self._drain_task = asyncio.create_task(
            self._drain(), name=f"rate-limiter-{self.name}"
        )

    async def _drain(self) -> None:
        try:
            while self._queue:
                await self._process_next()
        finally:
            self._processing = False

    async def _process_next(self) -> None:
        self.evict_stale()
        if not self._queue:
            return

        now = self._clock()
        item = self._next_ready(now)
        if item is None:
            # Everything left is backing off after a 429
            earliest = min(q.not_before for q in self._queue)
            await self._sleep(self._cap_to_deadline(now, max(earliest - now, MIN_WAIT_SECONDS)))
            return

        wait = self._quota_wait(now)
        if wait > 0:
            self._stats.quota_waits += 1
            wait = self._cap_to_deadline(now, wait)
            logger.debug("RateLimiter[%s]: quota reached, waiting %.2fs", self.name, wait)
            await self._sleep(wait)
            return

        self._queue.remove(item)
        if item.future.done():
            # Caller went away (cancelled) while we were waiting
            return

        for window in self._windows:
            window.record(now)
        await self._execute(item)

    def _next_ready(self, now: float) -> QueuedRequest | None:
        for item in self._queue:
            if item.not_before <= now:
                return item
        return None

    def _quota_wait(self, now: float) -> float:
        waits = [w.wait_time(now) for w in self._windows]
        violated = [w for w in waits if w > 0]
        if not violated:
            return 0.0
        return max(max(violated), MIN_WAIT_SECONDS)

    def _cap_to_deadline(self, now: float, wait: float) -> float:
        # Wake just past the oldest entry's deadline so evict_stale() sees it as stale
        oldest = min(item.enqueued_at for item in self._queue)
        until_deadline = oldest + self.config.queue_timeout_seconds - now
        return max(min(wait, until_deadline + MIN_WAIT_SECONDS), MIN_WAIT_SECONDS)

    async def _execute(self, item: QueuedRequest) -> None:
        try:
            result = await item.request()
        except UpstreamRateLimited as e:
            self._handle_rate_limited(item, e.retry_after)
            return
        except Exception as e:
            self._stats.failed += 1
            if not item.future.done():
                item.future.set_exception(e)
            return

        if isinstance(result, httpx.Response) and result.status_code == 429:
            self._handle_rate_limited(item, parse_retry_after(result.headers.get("Retry-After")))
            return

        self._stats.processed += 1
        if not item.future.done():
            item.future.set_result(result)

    def _handle_rate_limited(self, item: QueuedRequest, retry_after: float | None) -> None:
        self._stats.rate_limited += 1
        if item.retries >= self.config.max_retries:
            self._stats.exhausted += 1
            logger.error(
                "RateLimiter[%s]: still rate limited after %d retries, giving up",
                self.name,
                item.retries,
            )
            if not item.future.done():
                item.future.set_exception(
                    RateLimitExceededError(self.name, item.retries + 1)
                )
            return

        item.retries += 1
        if retry_after is not None:
            delay = min(retry_after, self.config.max_delay_seconds)
        else:
            delay = self._policy.delay_for(item.retries)
        item.not_before = self._clock() + delay
        self._stats.retried += 1
        logger.warning(
            "RateLimiter[%s]: 429 received, retry %d/%d in %.1fs",
            self.name,
            item.retries,
            self.config.max_retries,
            delay,
        )
        self._queue.append(item)


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given in seconds. HTTP-date form is ignored."""
    if value is None:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return max(seconds, 0.0)


__all__ = [
    "QuotaWindow",
    "RateLimiter",
    "RateLimiterConfig",
    "parse_retry_after",
]

# Hey future me - this is the ONE backoff formula in the whole code base!
#
# Both the RateLimiter (re-queueing after a 429) and the JobRunner (re-running a
# failed job) need "wait a growing amount of time, then try again, but not forever".
# They used to each have their own copy with subtly different math. Now both build a
# RetryPolicy with their own numbers and call delay_for() / retry_async().
#
#   RateLimiter: base=1s, multiplier=2, max_delay=60s, jitter=0.5s
#   JobRunner:   base=1s, multiplier=2, no cap,        no jitter
#
# USAGE:
#   policy = RetryPolicy(max_attempts=3, base_delay=1.0, retryable=(UpstreamUnavailableError,))
#   result = await retry_async(lambda: client.fetch(), policy)
"""Shared retry policy and async retry combinator."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how long to back off.

    Attributes:
        max_attempts: Total executions allowed (first try included)
        base_delay: Delay before the 2nd attempt, in seconds
        multiplier: Growth factor per attempt
        max_delay: Upper bound on one delay (None = unbounded)
        jitter: Max random seconds added to each delay (0 = deterministic)
        retryable: Exception types worth retrying; everything else propagates
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float | None = None
    jitter: float = 0.0
    retryable: tuple[type[BaseException], ...] = (Exception,)
    non_retryable: tuple[type[BaseException], ...] = ()
    rng: random.Random = field(default_factory=random.Random, compare=False)

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based).

        ``min(base * multiplier^(attempt-1) + uniform(0, jitter), max_delay)``
        """
        delay = self.base_delay * (self.multiplier ** max(attempt - 1, 0))
        if self.jitter > 0:
            delay += self.rng.uniform(0, self.jitter)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay

    def total_backoff(self) -> float:
        """Upper bound of all sleeps a full run can do (jitter at max)."""
        total = 0.0
        for attempt in range(1, self.max_attempts):
            delay = self.base_delay * (self.multiplier ** (attempt - 1)) + self.jitter
            if self.max_delay is not None:
                delay = min(delay, self.max_delay)
            total += delay
        return total

    def is_retryable(self, exc: BaseException) -> bool:
        if self.non_retryable and isinstance(exc, self.non_retryable):
            return False
        return isinstance(exc, self.retryable)


@dataclass
class RetryOutcome(Generic[T]):
    """Result of retry_async when the caller wants to know how many retries it took."""

    value: T
    attempts: int


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    sleep: SleepFn = asyncio.sleep,
    on_retry: Callable[[int, BaseException, float], None] | None = None,
) -> RetryOutcome[T]:
    """Run ``operation`` until it succeeds or the policy gives up.

    The last exception is re-raised unchanged when attempts run out or when it is
    not retryable. ``on_retry(attempt, exc, delay)`` fires before each sleep.

    Returns:
        RetryOutcome with the value and the number of attempts used
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            value = await operation()
            return RetryOutcome(value=value, attempts=attempt)
        except Exception as e:
            if not policy.is_retryable(e) or attempt >= policy.max_attempts:
                raise
            delay = policy.delay_for(attempt)
            if on_retry is not None:
                on_retry(attempt, e, delay)
            else:
                logger.warning(
                    "Attempt %d/%d failed (%s), retrying in %.1fs",
                    attempt,
                    policy.max_attempts,
                    e,
                    delay,
                )
            await sleep(delay)

"""Domain exceptions."""

from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, message is stored as an attribute so job reports can copy it
    # without parsing str(exc). Never raise this directly, use a subclass so the
    # JobRunner can decide retryable vs. not by type.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class EntityNotFoundException(DomainException):
    """Raised when a lookup that must succeed finds nothing."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class ValidationError(DomainException):
    """Raised when an upstream payload does not have the shape we consume.

    The offending item is skipped, logged and counted. It never aborts a batch.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class ConfigurationError(DomainException):
    """Raised when required configuration (credentials, secrets) is missing.

    Not retryable - waiting won't make the API key appear.
    """

    pass


class AuthorizationError(DomainException):
    """Raised when an external trigger presents the wrong shared secret."""

    pass


class ExternalServiceError(DomainException):
    """Base for failures talking to an upstream API."""

    def __init__(self, service: str, message: str) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service


class UpstreamUnavailableError(ExternalServiceError):
    """Network error or 5xx from an upstream. Retried by the JobRunner."""

    def __init__(
        self, service: str, message: str, status_code: int | None = None
    ) -> None:
        super().__init__(service, message)
        self.status_code = status_code


class UpstreamRateLimited(ExternalServiceError):
    """Raised by a request callable when the upstream answered "too many requests".

    Only the RateLimiter catches this. It re-queues the request with backoff and
    turns it into RateLimitExceededError once retries run out.
    """

    def __init__(self, service: str, retry_after: float | None = None) -> None:
        super().__init__(service, "too many requests")
        self.retry_after = retry_after


class RateLimitExceededError(ExternalServiceError):
    """Upstream quota still exceeded after the limiter used all its retries."""

    def __init__(self, service: str, attempts: int) -> None:
        super().__init__(service, f"rate limit exceeded after {attempts} attempts")
        self.attempts = attempts


class BackpressureError(DomainException):
    """Base for limiter queue pressure errors. Never retried by the JobRunner."""

    pass


class QueueFullError(BackpressureError):
    """Enqueue attempted while the limiter queue is at capacity."""

    def __init__(self, limiter: str, max_size: int) -> None:
        super().__init__(f"{limiter}: request queue full ({max_size} pending)")
        self.limiter = limiter
        self.max_size = max_size


class QueueTimeoutError(BackpressureError):
    """Request waited in the limiter queue longer than the queue timeout."""

    def __init__(self, limiter: str, waited_seconds: float) -> None:
        super().__init__(
            f"{limiter}: request evicted after waiting {waited_seconds:.1f}s"
        )
        self.limiter = limiter
        self.waited_seconds = waited_seconds


__all__ = [
    "AuthorizationError",
    "BackpressureError",
    "ConfigurationError",
    "DomainException",
    "EntityNotFoundException",
    "ExternalServiceError",
    "QueueFullError",
    "QueueTimeoutError",
    "RateLimitExceededError",
    "UpstreamRateLimited",
    "UpstreamUnavailableError",
    "ValidationError",
]

"""Shared plumbing for the upstream HTTP clients.

Hey future me - every upstream client inherits from this so they all fail the SAME
way. The request callable we hand to the RateLimiter maps HTTP outcomes onto our
exception hierarchy:

    429                   -> UpstreamRateLimited (limiter re-queues with backoff)
    5xx / network errors  -> UpstreamUnavailableError (JobRunner retries the job)
    other 4xx             -> httpx.HTTPStatusError (bug or bad input, no retry)
    2xx                   -> response (bodies must be JSON objects, else ValidationError)

The httpx.AsyncClient is created lazily (asyncio loop issues otherwise) and closed
in close(). Tests pass ``transport=httpx.MockTransport(handler)``.
"""

import logging
from collections.abc import Mapping
from typing import Any

import httpx

from setlistsync.domain.exceptions import (
    UpstreamRateLimited,
    UpstreamUnavailableError,
    ValidationError,
)
from setlistsync.infrastructure.rate_limiter import RateLimiter, parse_retry_after

logger = logging.getLogger(__name__)


class UpstreamHttpClient:
    """Base class: lazy httpx client + rate-limited request helper."""

    service_name = "upstream"

    def __init__(
        self,
        base_url: str,
        rate_limiter: RateLimiter,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.rate_limiter = rate_limiter
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self._timeout,
                transport=self._transport,
                limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _default_headers(self) -> dict[str, str]:
        """Headers added to every request (auth lives here in subclasses)."""
        return {}

    async def _send(
        self,
        method: str,
        path: str,
        params: Mapping[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> httpx.Response | None:
        """Send one request through the rate limiter.

        Returns None for a 404 when ``allow_not_found`` is set.
        """

        async def request() -> httpx.Response | None:
            client = await self._get_client()
            headers = await self._default_headers()
            try:
                response = await client.request(
                    method,
                    path,
                    params={k: v for k, v in (params or {}).items() if v is not None},
                    headers=headers,
                )
            except httpx.TransportError as e:
                raise UpstreamUnavailableError(
                    self.service_name, f"{type(e).__name__}: {e}"
                ) from e
            return self._check_response(response, allow_not_found)

        return await self.rate_limiter.enqueue(request)

    def _check_response(
        self, response: httpx.Response, allow_not_found: bool
    ) -> httpx.Response | None:
        status = response.status_code
        if status == 429:
            raise UpstreamRateLimited(
                self.service_name, parse_retry_after(response.headers.get("Retry-After"))
            )
        if status >= 500:
            raise UpstreamUnavailableError(
                self.service_name,
                f"{response.request.method} {response.request.url.path} -> {status}",
                status_code=status,
            )
        if status == 404 and allow_not_found:
            return None
        response.raise_for_status()
        return response

    def _json(self, response: httpx.Response) -> dict[str, Any]:
        """Decode a body that must be a JSON object.

        Raises:
            UpstreamUnavailableError: Body is not JSON at all
            ValidationError: Body is JSON but not an object (``[]``, ``null``, ...)
        """
        try:
            payload = response.json()
        except ValueError as e:
            # A 200 with an HTML error page happens during upstream maintenance
            raise UpstreamUnavailableError(self.service_name, f"invalid JSON body: {e}") from e
        if not isinstance(payload, dict):
            raise ValidationError(
                f"{self.service_name}: expected a JSON object from "
                f"{response.request.url.path}, got {type(payload).__name__}"
            )
        return payload

    def _section(self, payload: dict[str, Any], key: str) -> dict[str, Any]:
        """Nested object under ``key``; missing or null means empty."""
        value = payload.get(key)
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ValidationError(
                f"{self.service_name}: '{key}' should be an object, got {type(value).__name__}",
                field=key,
            )
        return value

    def _items(self, payload: dict[str, Any], key: str) -> list[Any]:
        """List under ``key``; missing or null means empty."""
        value = payload.get(key)
        if value is None:
            return []
        if not isinstance(value, list):
            raise ValidationError(
                f"{self.service_name}: '{key}' should be a list, got {type(value).__name__}",
                field=key,
            )
        return value

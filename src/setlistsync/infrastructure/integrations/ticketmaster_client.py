"""Ticketmaster Discovery v2 client (ticketing upstream)."""

import logging
from datetime import UTC, datetime

import httpx

from setlistsync.config import TicketmasterSettings
from setlistsync.domain.dtos import EventPage, TicketingEventDTO
from setlistsync.domain.exceptions import ConfigurationError, ValidationError
from setlistsync.domain.ports import ITicketingClient
from setlistsync.infrastructure.integrations.base_client import UpstreamHttpClient
from setlistsync.infrastructure.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def _format_datetime(value: datetime) -> str:
    # Discovery API wants "YYYY-MM-DDTHH:MM:SSZ", no microseconds and no offset
    if value.tzinfo is not None:
        value = value.astimezone(UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


class TicketmasterClient(UpstreamHttpClient, ITicketingClient):
    """Event search against the Discovery API."""

    service_name = "ticketmaster"

    def __init__(
        self,
        settings: TicketmasterSettings,
        rate_limiter: RateLimiter,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(
            settings.api_base_url,
            rate_limiter,
            timeout=settings.timeout_seconds,
            transport=transport,
        )
        self.settings = settings

    async def search_events(
        self,
        keyword: str | None = None,
        attraction_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        page: int = 0,
        size: int = 100,
        sort: str = "date,asc",
    ) -> EventPage:
        if not self.settings.is_configured:
            raise ConfigurationError("Ticketmaster api_key not configured")

        response = await self._send(
            "GET",
            "/events.json",
            params={
                "apikey": self.settings.api_key,
                "classificationName": "music",
                "keyword": keyword,
                "attractionId": attraction_id,
                "startDateTime": _format_datetime(start) if start else None,
                "endDateTime": _format_datetime(end) if end else None,
                "page": page,
                "size": min(size, MAX_PAGE_SIZE),
                "sort": sort,
            },
        )
        payload = self._json(response)
        # No "_embedded" at all when the search has zero hits
        raw_events = self._items(self._section(payload, "_embedded"), "events")
        page_info = self._section(payload, "page")

        events: list[TicketingEventDTO] = []
        invalid = 0
        for raw in raw_events:
            try:
                events.append(TicketingEventDTO.from_api(raw))
            except ValidationError as e:
                invalid += 1
                logger.warning("Skipping malformed Ticketmaster event: %s", e.message)

        return EventPage(
            events=events,
            page_number=int(page_info.get("number", page)),
            total_pages=int(page_info.get("totalPages", 0)),
            invalid=invalid,
        )

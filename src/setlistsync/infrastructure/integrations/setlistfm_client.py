"""setlist.fm REST 1.0 client (setlist history upstream)."""

import logging
from datetime import date

import httpx

from setlistsync.config import SetlistFmSettings
from setlistsync.domain.dtos import SetlistRecordDTO
from setlistsync.domain.exceptions import ConfigurationError, ValidationError
from setlistsync.domain.ports import ISetlistHistoryClient
from setlistsync.infrastructure.integrations.base_client import UpstreamHttpClient
from setlistsync.infrastructure.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class SetlistFmClient(UpstreamHttpClient, ISetlistHistoryClient):
    """Setlist search. setlist.fm answers 404 (not an empty list) for no results."""

    service_name = "setlistfm"

    def __init__(
        self,
        settings: SetlistFmSettings,
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

    async def _default_headers(self) -> dict[str, str]:
        if not self.settings.is_configured:
            raise ConfigurationError("setlist.fm api_key not configured")
        return {"x-api-key": self.settings.api_key, "Accept": "application/json"}

    async def search_setlists(
        self, artist_name: str, event_date: date, venue_name: str | None = None
    ) -> list[SetlistRecordDTO]:
        response = await self._send(
            "GET",
            "/search/setlists",
            params={
                "artistName": artist_name,
                "date": event_date.strftime("%d-%m-%Y"),
                "venueName": venue_name,
            },
            allow_not_found=True,
        )
        if response is None:
            return []

        records: list[SetlistRecordDTO] = []
        for raw in self._items(self._json(response), "setlist"):
            try:
                records.append(SetlistRecordDTO.from_api(raw))
            except ValidationError as e:
                logger.warning("Skipping malformed setlist.fm record: %s", e.message)
        return records

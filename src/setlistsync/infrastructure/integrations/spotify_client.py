"""Spotify Web API client (music catalog upstream), client-credentials flow."""

import asyncio
import logging
import time
from typing import Any

import httpx

from setlistsync.config import SpotifySettings
from setlistsync.domain.dtos import (
    CatalogAlbumDTO,
    CatalogArtistDTO,
    CatalogTrackDTO,
    Page,
)
from setlistsync.domain.exceptions import (
    ConfigurationError,
    UpstreamUnavailableError,
    ValidationError,
)
from setlistsync.domain.ports import IMusicCatalogClient
from setlistsync.infrastructure.integrations.base_client import UpstreamHttpClient
from setlistsync.infrastructure.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

# Refresh this many seconds before the token actually expires
TOKEN_EXPIRY_MARGIN_SECONDS = 60


class SpotifyClient(UpstreamHttpClient, IMusicCatalogClient):
    """HTTP client for the Spotify catalog endpoints we consume."""

    service_name = "spotify"

    def __init__(
        self,
        settings: SpotifySettings,
        rate_limiter: RateLimiter,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Any = time.monotonic,
    ) -> None:
        super().__init__(
            settings.api_base_url,
            rate_limiter,
            timeout=settings.timeout_seconds,
            transport=transport,
        )
        self.settings = settings
        self._clock = clock
        self._access_token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    # =========================================================================
    # Auth
    # =========================================================================

    # Hey future me, client credentials tokens live ~1h. We cache until 60s before
    # expiry; the lock stops five queued requests from fetching five tokens at once.
    async def _get_access_token(self) -> str:
        async with self._token_lock:
            if self._access_token and self._clock() < self._token_expires_at:
                return self._access_token
            if not self.settings.is_configured:
                raise ConfigurationError("Spotify client_id/client_secret not configured")

            client = await self._get_client()
            try:
                response = await client.post(
                    self.settings.token_url,
                    data={"grant_type": "client_credentials"},
                    auth=(self.settings.client_id, self.settings.client_secret),
                )
            except httpx.TransportError as e:
                raise UpstreamUnavailableError(
                    self.service_name, f"token request failed: {e}"
                ) from e
            if response.status_code >= 500:
                raise UpstreamUnavailableError(
                    self.service_name, "token endpoint unavailable", response.status_code
                )
            if response.status_code in (400, 401):
                raise ConfigurationError("Spotify rejected the client credentials")
            response.raise_for_status()

            payload = self._json(response)
            token = payload.get("access_token")
            if not token:
                raise UpstreamUnavailableError(
                    self.service_name, "token response without access_token"
                )
            expires_in = int(payload.get("expires_in", 3600))
            self._access_token = token
            self._token_expires_at = self._clock() + expires_in - TOKEN_EXPIRY_MARGIN_SECONDS
            logger.debug("Spotify token refreshed, valid for %ds", expires_in)
            return token

    def invalidate_token(self) -> None:
        self._access_token = None
        self._token_expires_at = 0.0

    async def _default_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {await self._get_access_token()}"}

    def _check_response(
        self, response: httpx.Response, allow_not_found: bool
    ) -> httpx.Response | None:
        if response.status_code == 401:
            # Token revoked early; next attempt fetches a fresh one
            self.invalidate_token()
            raise UpstreamUnavailableError(self.service_name, "access token rejected", 401)
        return super()._check_response(response, allow_not_found)

    # =========================================================================
    # Catalog endpoints
    # =========================================================================

    async def search_artists(self, name: str, limit: int = 10) -> list[CatalogArtistDTO]:
        response = await self._send(
            "GET", "/search", params={"q": name, "type": "artist", "limit": limit}
        )
        payload = self._json(response)
        items = self._items(self._section(payload, "artists"), "items")
        return self._parse_many(items, CatalogArtistDTO.from_api, "artist")

    async def get_artist(self, external_id: str) -> CatalogArtistDTO | None:
        response = await self._send("GET", f"/artists/{external_id}", allow_not_found=True)
        if response is None:
            return None
        return CatalogArtistDTO.from_api(self._json(response))

    async def get_artist_top_tracks(self, external_id: str) -> list[CatalogTrackDTO]:
        response = await self._send(
            "GET",
            f"/artists/{external_id}/top-tracks",
            params={"market": self.settings.market},
            allow_not_found=True,
        )
        if response is None:
            return []
        tracks = self._items(self._json(response), "tracks")
        return self._parse_many(tracks, CatalogTrackDTO.from_api, "top track")

    async def get_artist_albums(
        self, external_id: str, limit: int = 50, offset: int = 0
    ) -> Page:
        response = await self._send(
            "GET",
            f"/artists/{external_id}/albums",
            params={
                "include_groups": "album,single,compilation",
                "limit": limit,
                "offset": offset,
                "market": self.settings.market,
            },
            allow_not_found=True,
        )
        if response is None:
            return Page(items=[])
        payload = self._json(response)
        raw_items = self._items(payload, "items")
        albums = self._parse_many(raw_items, CatalogAlbumDTO.from_api, "album")
        return Page(
            items=albums,
            total=payload.get("total"),
            has_next=bool(payload.get("next")) and len(raw_items) >= limit,
            skipped=len(raw_items) - len(albums),
        )

    async def get_album_tracks(
        self, album: CatalogAlbumDTO, limit: int = 50, offset: int = 0
    ) -> Page:
        response = await self._send(
            "GET",
            f"/albums/{album.external_id}/tracks",
            params={"limit": limit, "offset": offset, "market": self.settings.market},
            allow_not_found=True,
        )
        if response is None:
            return Page(items=[])
        payload = self._json(response)
        raw_items = self._items(payload, "items")
        tracks = self._parse_many(
            raw_items, lambda item: CatalogTrackDTO.from_api(item, album=album), "track"
        )
        return Page(
            items=tracks,
            total=payload.get("total"),
            has_next=bool(payload.get("next")) and len(raw_items) >= limit,
            skipped=len(raw_items) - len(tracks),
        )

    @staticmethod
    def _parse_many(items: list[Any], parse: Any, what: str) -> list[Any]:
        parsed = []
        for item in items:
            try:
                parsed.append(parse(item))
            except ValidationError as e:
                logger.warning("Skipping malformed Spotify %s: %s", what, e.message)
        return parsed

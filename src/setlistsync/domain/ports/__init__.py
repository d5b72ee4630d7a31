"""Domain ports (interfaces) for the three upstreams.

Services depend on these, never on the httpx clients directly, so tests can hand
in AsyncMock(spec=IMusicCatalogClient) and the pipeline doesn't care which
catalog or ticketing provider sits behind them.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime

from setlistsync.domain.dtos import (
    CatalogAlbumDTO,
    CatalogArtistDTO,
    CatalogTrackDTO,
    EventPage,
    Page,
    SetlistRecordDTO,
)


class IMusicCatalogClient(ABC):
    """Music catalog upstream (artist / album / track metadata)."""

    @abstractmethod
    async def search_artists(self, name: str, limit: int = 10) -> list[CatalogArtistDTO]:
        """Search artists by name, best matches first."""
        pass

    @abstractmethod
    async def get_artist(self, external_id: str) -> CatalogArtistDTO | None:
        """Get one artist, None if the catalog doesn't know the ID."""
        pass

    @abstractmethod
    async def get_artist_top_tracks(self, external_id: str) -> list[CatalogTrackDTO]:
        """Get an artist's most popular tracks (with popularity)."""
        pass

    @abstractmethod
    async def get_artist_albums(
        self, external_id: str, limit: int = 50, offset: int = 0
    ) -> Page:
        """Get one page of an artist's albums. ``Page.items`` are CatalogAlbumDTO."""
        pass

    @abstractmethod
    async def get_album_tracks(
        self, album: CatalogAlbumDTO, limit: int = 50, offset: int = 0
    ) -> Page:
        """Get one page of an album's tracks. ``Page.items`` are CatalogTrackDTO."""
        pass


class ITicketingClient(ABC):
    """Ticketing upstream (events, venues, attractions)."""

    @abstractmethod
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
        """Search music events. ``size`` is capped at 100 by the upstream."""
        pass


class ISetlistHistoryClient(ABC):
    """Setlist history upstream (what was actually played)."""

    @abstractmethod
    async def search_setlists(
        self, artist_name: str, event_date: date, venue_name: str | None = None
    ) -> list[SetlistRecordDTO]:
        """Find performed setlists for an artist on a date. Empty list if none."""
        pass


__all__ = ["IMusicCatalogClient", "ISetlistHistoryClient", "ITicketingClient"]

"""Shared fixtures.

Hey future me - nothing in here talks to a real upstream or a real database file.
``db`` is a fresh in-memory SQLite per test, ``fake_clock`` replaces both the
monotonic clock and asyncio.sleep so rate limiter / backoff tests run instantly.
"""

import asyncio
import logging
import random
from collections.abc import AsyncGenerator, Iterator
from datetime import date

import pytest
import pytest_asyncio

from setlistsync.application.services import (
    ArtistMatcher,
    CatalogImporter,
    CatalogSearchCache,
    EntityReconciler,
    SetlistSeeder,
)
from setlistsync.config import CatalogSettings, Settings
from setlistsync.domain.dtos import (
    CatalogAlbumDTO,
    CatalogArtistDTO,
    CatalogTrackDTO,
    Page,
    TicketingAttractionDTO,
    TicketingEventDTO,
    TicketingVenueDTO,
)
from setlistsync.domain.entities import Artist, Show, ShowStatus, Song, Venue
from setlistsync.domain.ports import IMusicCatalogClient
from setlistsync.domain.value_objects import normalize_name, normalize_title
from setlistsync.infrastructure.persistence import (
    ArtistRepository,
    Database,
    ShowRepository,
    SongRepository,
    VenueRepository,
)


class FakeClock:
    """Monotonic clock whose sleep() advances time instead of waiting."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        # Let other tasks (the limiter drain loop, waiting callers) run
        await asyncio.sleep(0)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def restore_root_logger() -> Iterator[None]:
    """configure_logging replaces root handlers; put pytest's back afterwards."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def settings() -> Settings:
    """Test settings: in-memory DB, dummy credentials, no inter-item delays."""
    return Settings(
        app_env="test",
        database={"url": "sqlite+aiosqlite:///:memory:"},
        spotify={"client_id": "test-client", "client_secret": "test-secret"},
        ticketmaster={"api_key": "test-tm-key"},
        setlistfm={"api_key": "test-sfm-key"},
        jobs={"item_delay_seconds": 0, "trigger_secret": "s3cret"},
        catalog={"album_batch_delay_seconds": 0},
    )


@pytest_asyncio.fixture
async def db(settings: Settings) -> AsyncGenerator[Database, None]:
    database = Database(settings)
    await database.create_tables()
    yield database
    await database.close()


async def add_artist_with_songs(db: Database, artist: Artist, titles: list[str]) -> Artist:
    """Store an artist plus one song per title (popularity descending)."""
    async with db.session_scope() as session:
        stored = await ArtistRepository(session).add(artist)
        await SongRepository(session).insert_ignore_many(
            [
                Song(
                    artist_id=stored.id,
                    external_id=f"{stored.id[:8]}-track-{i}",
                    title=title,
                    album="Greatest Hits",
                    normalized_title=normalize_title(title),
                    normalized_album=normalize_title("Greatest Hits"),
                    popularity=100 - i,
                )
                for i, title in enumerate(titles)
            ]
        )
    return stored


def make_event(
    event_id: str = "tm-event-1",
    artist_name: str = "The Weeknd",
    attraction_id: str = "tm-attr-1",
    venue_id: str = "tm-venue-1",
    venue_name: str = "Madison Square Garden",
    local_date: date = date(2030, 7, 15),
    status_code: str | None = "onsale",
) -> TicketingEventDTO:
    return TicketingEventDTO(
        external_id=event_id,
        name=f"{artist_name} Live",
        local_date=local_date,
        local_time="20:00:00",
        status_code=status_code,
        url=f"https://tickets.example/{event_id}",
        attraction=TicketingAttractionDTO(external_id=attraction_id, name=artist_name),
        venue=TicketingVenueDTO(
            external_id=venue_id, name=venue_name, city="New York", country="US"
        ),
    )


async def add_show(
    db: Database,
    artist: Artist,
    show_date: date,
    external_id: str | None = "tm-1",
    venue_external_id: str = "venue-1",
    status: ShowStatus = ShowStatus.SCHEDULED,
) -> Show:
    """Store a venue (reused by external ID) and a show of ``artist`` there."""
    async with db.session_scope() as session:
        venue = await VenueRepository(session).add(
            Venue(name="Madison Square Garden", external_id=venue_external_id)
        )
        show, _ = await ShowRepository(session).add(
            Show(
                artist_id=artist.id,
                venue_id=venue.id,
                name=f"{artist.name} Live",
                date=show_date,
                external_id=external_id,
                status=status,
            )
        )
    return show


class FakeCatalog(IMusicCatalogClient):
    """In-memory music catalog. One album per artist, paginated like the real one.

    ``search_artists`` returns every registered artist (the matcher decides), unless
    ``search_results`` has an explicit answer for the normalized query.
    """

    def __init__(self) -> None:
        self.artists: dict[str, CatalogArtistDTO] = {}
        self.albums: dict[str, list[CatalogAlbumDTO]] = {}
        self.tracks: dict[str, list[CatalogTrackDTO]] = {}
        self.top_tracks: dict[str, list[CatalogTrackDTO]] = {}
        self.search_results: dict[str, list[CatalogArtistDTO]] = {}
        self.calls: list[str] = []

    def add_artist(
        self,
        external_id: str,
        name: str,
        titles: list[str],
        popularity: int = 80,
        album: str = "Greatest Hits",
    ) -> CatalogArtistDTO:
        dto = CatalogArtistDTO(external_id=external_id, name=name, popularity=popularity)
        album_dto = CatalogAlbumDTO(external_id=f"{external_id}-album", name=album)
        self.artists[external_id] = dto
        self.albums[external_id] = [album_dto]
        self.tracks[album_dto.external_id] = [
            CatalogTrackDTO(external_id=f"{external_id}-t{i}", title=title, album=album)
            for i, title in enumerate(titles)
        ]
        self.top_tracks[external_id] = [
            CatalogTrackDTO(
                external_id=f"{external_id}-t{i}", title=title, album=album, popularity=100 - i
            )
            for i, title in enumerate(titles[:10])
        ]
        return dto

    async def search_artists(self, name: str, limit: int = 10) -> list[CatalogArtistDTO]:
        self.calls.append(f"search_artists:{name}")
        key = normalize_name(name)
        if key in self.search_results:
            return self.search_results[key][:limit]
        return list(self.artists.values())[:limit]

    async def get_artist(self, external_id: str) -> CatalogArtistDTO | None:
        self.calls.append(f"get_artist:{external_id}")
        return self.artists.get(external_id)

    async def get_artist_top_tracks(self, external_id: str) -> list[CatalogTrackDTO]:
        self.calls.append(f"get_artist_top_tracks:{external_id}")
        return self.top_tracks.get(external_id, [])

    async def get_artist_albums(
        self, external_id: str, limit: int = 50, offset: int = 0
    ) -> Page:
        self.calls.append(f"get_artist_albums:{external_id}")
        albums = self.albums.get(external_id, [])
        return Page(
            items=albums[offset : offset + limit],
            total=len(albums),
            has_next=offset + limit < len(albums),
        )

    async def get_album_tracks(
        self, album: CatalogAlbumDTO, limit: int = 50, offset: int = 0
    ) -> Page:
        self.calls.append(f"get_album_tracks:{album.external_id}")
        tracks = self.tracks.get(album.external_id, [])
        return Page(
            items=tracks[offset : offset + limit],
            total=len(tracks),
            has_next=offset + limit < len(tracks),
        )

    def count(self, prefix: str) -> int:
        return sum(1 for call in self.calls if call.startswith(prefix))


@pytest.fixture
def fake_catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def reconciler(db: Database, fake_catalog: FakeCatalog) -> EntityReconciler:
    """Reconciler over ``fake_catalog`` with a seeded RNG and no album batch pauses."""
    catalog_settings = CatalogSettings(album_batch_delay_seconds=0)
    importer = CatalogImporter(db, fake_catalog, catalog_settings)
    return EntityReconciler(
        db=db,
        catalog=fake_catalog,
        search_cache=CatalogSearchCache(fake_catalog),
        matcher=ArtistMatcher(),
        importer=importer,
        seeder=SetlistSeeder(db, importer, catalog_settings, rng=random.Random(7)),
    )

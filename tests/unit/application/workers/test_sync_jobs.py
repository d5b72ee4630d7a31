"""Tests for the scheduled sync jobs against an in-memory database."""

from datetime import timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FakeCatalog, add_artist_with_songs, add_show, make_event
from setlistsync.application.services import (
    EntityReconciler,
    SetlistImporter,
    TrendingService,
)
from setlistsync.application.workers import JOB_NAMES, SyncJobs
from setlistsync.config import JobSettings
from setlistsync.domain.dtos import EventPage, SetlistRecordDTO
from setlistsync.domain.entities import Artist, ShowStatus, utc_now
from setlistsync.domain.exceptions import QueueFullError, UpstreamUnavailableError
from setlistsync.domain.ports import ISetlistHistoryClient, ITicketingClient
from setlistsync.infrastructure.persistence import (
    ArtistRepository,
    Database,
    PlayedSetlistRepository,
    ShowRepository,
    SongRepository,
)
from setlistsync.infrastructure.rate_limiter import RateLimiter

# Hey future me - every job here runs for real against SQLite; only the upstreams are
# fakes. Dates are relative to today because the jobs read the wall clock.

TODAY = utc_now().date()


@pytest.fixture
def ticketing() -> AsyncMock:
    client = AsyncMock(spec=ITicketingClient)
    client.search_events.return_value = EventPage(events=[])
    return client


@pytest.fixture
def history() -> AsyncMock:
    return AsyncMock(spec=ISetlistHistoryClient)


@pytest.fixture
def limiter() -> MagicMock:
    limiter = MagicMock(spec=RateLimiter)
    limiter.evict_stale.return_value = 2
    limiter.get_stats.return_value = {"queue_size": 3, "processed": 10, "rate_limited": 1}
    return limiter


@pytest.fixture
def jobs(
    db: Database,
    fake_catalog: FakeCatalog,
    reconciler: EntityReconciler,
    ticketing: AsyncMock,
    history: AsyncMock,
    limiter: MagicMock,
) -> SyncJobs:
    return SyncJobs(
        db=db,
        reconciler=reconciler,
        catalog=fake_catalog,
        ticketing=ticketing,
        setlist_importer=SetlistImporter(db, history),
        trending=TrendingService(db),
        search_cache=reconciler.search_cache,
        limiters={"spotify": limiter},
        job_settings=JobSettings(item_delay_seconds=0),
    )


async def add_weeknd(db: Database) -> Artist:
    return await add_artist_with_songs(
        db,
        Artist(
            name="The Weeknd",
            primary_external_id="sp-weeknd",
            secondary_external_id="tm-attr-1",
            popularity=90,
        ),
        ["Blinding Lights", "Save Your Tears", "Starboy", "The Hills", "Die For You"],
    )


def test_every_job_is_registered(jobs: SyncJobs) -> None:
    assert tuple(jobs.as_dict()) == JOB_NAMES


class TestShowSync:
    """show_sync"""

    @pytest.mark.asyncio
    async def test_pages_artist_events_and_dedups_popular(
        self,
        db: Database,
        fake_catalog: FakeCatalog,
        jobs: SyncJobs,
        ticketing: AsyncMock,
    ) -> None:
        await add_weeknd(db)
        fake_catalog.add_artist("sp-dua", "Dua Lipa", ["Levitating", "Houdini"])
        first = make_event("tm-e1", local_date=TODAY + timedelta(days=10))
        second = make_event("tm-e2", local_date=TODAY + timedelta(days=20))
        other = make_event(
            "tm-e3",
            artist_name="Dua Lipa",
            attraction_id="tm-attr-2",
            venue_id="tm-venue-2",
            local_date=TODAY + timedelta(days=30),
        )

        async def search_events(**kwargs: Any) -> EventPage:
            if kwargs.get("attraction_id") == "tm-attr-1":
                if kwargs["page"] == 0:
                    return EventPage(events=[first], page_number=0, total_pages=2, invalid=1)
                return EventPage(events=[second], page_number=1, total_pages=2)
            return EventPage(events=[first, other])

        ticketing.search_events.side_effect = search_events

        report = await jobs.show_sync()

        assert report.records_processed == 3
        assert report.errors == 0
        assert report.details["shows_created"] == 3
        assert report.details["invalid_events"] == 1
        assert ticketing.search_events.await_count == 3
        assert ticketing.search_events.await_args.kwargs["sort"] == "relevance,desc"
        async with db.session_scope() as session:
            assert await ShowRepository(session).count() == 3
            assert await ArtistRepository(session).count() == 2

    @pytest.mark.asyncio
    async def test_artist_search_failure_is_counted(
        self, db: Database, jobs: SyncJobs, ticketing: AsyncMock
    ) -> None:
        await add_weeknd(db)
        popular = make_event("tm-e1", local_date=TODAY + timedelta(days=5))

        async def search_events(**kwargs: Any) -> EventPage:
            if kwargs.get("attraction_id"):
                raise UpstreamUnavailableError("ticketmaster", "bad gateway", 502)
            return EventPage(events=[popular])

        ticketing.search_events.side_effect = search_events

        report = await jobs.show_sync()

        assert report.errors == 1
        assert report.records_processed == 1

    @pytest.mark.asyncio
    async def test_backpressure_ends_the_run(
        self, db: Database, jobs: SyncJobs, ticketing: AsyncMock
    ) -> None:
        await add_weeknd(db)
        ticketing.search_events.side_effect = QueueFullError("ticketmaster", 10)

        with pytest.raises(QueueFullError):
            await jobs.show_sync()


class TestArtistSync:
    """artist_sync"""

    @pytest.mark.asyncio
    async def test_refreshes_linked_and_backfills_stubs(
        self, db: Database, fake_catalog: FakeCatalog, jobs: SyncJobs
    ) -> None:
        fake_catalog.add_artist("sp-weeknd", "The Weeknd", ["Blinding Lights"], popularity=95)
        fake_catalog.add_artist("sp-ed", "Ed Sheeran", ["Shape of You", "Perfect"])
        async with db.session_scope() as session:
            repo = ArtistRepository(session)
            linked = await repo.add(Artist(name="The Weeknd", primary_external_id="sp-weeknd"))
            stub = await repo.add(
                Artist(name="Ed Sheeran", secondary_external_id="tm-ed", needs_backfill=True)
            )

        report = await jobs.artist_sync()

        assert report.records_processed == 2
        assert report.errors == 0
        assert report.details["stubs_linked"] == 1
        async with db.session_scope() as session:
            repo = ArtistRepository(session)
            refreshed = await repo.get(linked.id)
            backfilled = await repo.get(stub.id)
            weeknd_songs = await SongRepository(session).count_for_artist(linked.id)
        assert refreshed is not None and refreshed.popularity == 95
        assert refreshed.last_synced_at is not None
        assert weeknd_songs == 1
        assert backfilled is not None and backfilled.primary_external_id == "sp-ed"

    @pytest.mark.asyncio
    async def test_unlinked_artist_never_refreshes_from_catalog(
        self, db: Database, fake_catalog: FakeCatalog, jobs: SyncJobs
    ) -> None:
        fake_catalog.get_artist = AsyncMock()  # type: ignore[method-assign]
        async with db.session_scope() as session:
            await ArtistRepository(session).add(
                Artist(name="Nobody Knows", secondary_external_id="tm-x", needs_backfill=True)
            )

        report = await jobs.artist_sync()

        assert report.records_processed == 1
        assert report.errors == 0
        assert report.details["stubs_linked"] == 0
        fake_catalog.get_artist.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_catalog_failure_is_counted(
        self, db: Database, fake_catalog: FakeCatalog, jobs: SyncJobs
    ) -> None:
        fake_catalog.get_artist = AsyncMock(  # type: ignore[method-assign]
            side_effect=UpstreamUnavailableError("spotify", "unavailable", 503)
        )
        async with db.session_scope() as session:
            await ArtistRepository(session).add(
                Artist(name="The Weeknd", primary_external_id="sp-weeknd")
            )

        report = await jobs.artist_sync()

        assert report.errors == 1
        assert report.records_processed == 0


class TestSetlistImport:
    @pytest.mark.asyncio
    async def test_imports_recent_shows(
        self, db: Database, jobs: SyncJobs, history: AsyncMock
    ) -> None:
        artist = await add_weeknd(db)
        show_date = TODAY - timedelta(days=2)
        show = await add_show(db, artist, show_date)
        await add_show(db, artist, TODAY - timedelta(days=30), external_id="tm-old")
        history.search_setlists.return_value = [
            SetlistRecordDTO(
                external_id="sfm-1",
                event_date=show_date,
                artist_name="The Weeknd",
                songs=["Starboy", "Blinding Lights"],
            )
        ]

        report = await jobs.setlist_import()

        assert report.details == {"shows_checked": 1, "setlists_imported": 1}
        async with db.session_scope() as session:
            played = await PlayedSetlistRepository(session).get_by_show(show.id)
        assert played is not None
        assert [s.title for s in played.songs] == ["Starboy", "Blinding Lights"]


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_trending_recompute(self, db: Database, jobs: SyncJobs) -> None:
        artist = await add_weeknd(db)
        await add_show(db, artist, TODAY + timedelta(days=3))

        report = await jobs.trending_recompute()

        assert report.records_processed == 1

    @pytest.mark.asyncio
    async def test_cache_maintenance(self, jobs: SyncJobs, limiter: MagicMock) -> None:
        report = await jobs.cache_maintenance()

        assert report.records_processed == 2
        assert report.details == {"cache_purged": 0, "requests_evicted": 2}
        limiter.evict_stale.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_db_maintenance(self, db: Database, jobs: SyncJobs) -> None:
        artist = await add_weeknd(db)
        recent = await add_show(db, artist, TODAY - timedelta(days=2), external_id="tm-recent")
        await add_show(
            db,
            artist,
            TODAY - timedelta(days=400),
            external_id="tm-ancient",
            status=ShowStatus.CANCELED,
        )
        async with db.session_scope() as session:
            await ArtistRepository(session).add(
                Artist(
                    name="Forgotten Opener",
                    needs_backfill=True,
                    created_at=utc_now() - timedelta(days=400),
                )
            )

        report = await jobs.db_maintenance()

        assert report.details == {"shows_completed": 1, "shows_deleted": 1, "stubs_deleted": 1}
        async with db.session_scope() as session:
            kept = await ShowRepository(session).get(recent.id)
            assert await ShowRepository(session).count() == 1
        assert kept is not None and kept.status is ShowStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_health_check(self, jobs: SyncJobs) -> None:
        report = await jobs.health_check()

        assert report.details["database"] == {"pool_type": "sqlite"}
        assert report.details["limiters"]["spotify"]["queue_size"] == 3
        assert report.details["search_cache"]["entries"] == 0

# Hey future me - these are the actual jobs the scheduler runs!
#
# Every job follows the same shape:
#   1. pick a batch of work from the DB (short session)
#   2. loop the items, each in its own try/except so ONE broken artist/event doesn't
#      kill the whole batch (that's what JobReport.errors is for)
#   3. return a JobReport; the JobRunner handles logging, retries and metrics
#
# Backpressure (limiter queue full / timed out) is the one per-item error we let
# escape: if the limiter is drowning, hammering it with the next 49 items won't help,
# better to end the run and let the next cycle try again.
"""Scheduled sync jobs."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime, timedelta

import httpx

from setlistsync.application.services.catalog_search_cache import CatalogSearchCache
from setlistsync.application.services.entity_reconciler import EntityReconciler
from setlistsync.application.services.setlist_importer import SetlistImporter
from setlistsync.application.services.trending_service import TrendingService
from setlistsync.application.workers.job_runner import JobFn, JobReport
from setlistsync.config.settings import JobSettings, TicketmasterSettings
from setlistsync.domain.dtos import TicketingEventDTO
from setlistsync.domain.entities import Artist, utc_now
from setlistsync.domain.exceptions import BackpressureError, DomainException
from setlistsync.domain.ports import IMusicCatalogClient, ITicketingClient
from setlistsync.infrastructure.persistence import (
    ArtistRepository,
    Database,
    ShowRepository,
)
from setlistsync.infrastructure.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

# Per-item errors that are counted instead of failing the job
ITEM_ERRORS: tuple[type[Exception], ...] = (DomainException, httpx.HTTPError)

JOB_NAMES = (
    "artist_sync",
    "show_sync",
    "setlist_import",
    "trending_recompute",
    "cache_maintenance",
    "db_maintenance",
    "health_check",
)


class SyncJobs:
    """Holds every job function; ``as_dict()`` feeds the scheduler."""

    def __init__(
        self,
        db: Database,
        reconciler: EntityReconciler,
        catalog: IMusicCatalogClient,
        ticketing: ITicketingClient,
        setlist_importer: SetlistImporter,
        trending: TrendingService,
        search_cache: CatalogSearchCache,
        limiters: Mapping[str, RateLimiter],
        job_settings: JobSettings | None = None,
        ticketing_settings: TicketmasterSettings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.db = db
        self.reconciler = reconciler
        self.catalog = catalog
        self.ticketing = ticketing
        self.setlist_importer = setlist_importer
        self.trending = trending
        self.search_cache = search_cache
        self.limiters = dict(limiters)
        self.settings = job_settings or JobSettings()
        self.ticketing_settings = ticketing_settings or TicketmasterSettings()
        self._sleep = sleep

    def as_dict(self) -> dict[str, JobFn]:
        return {
            "artist_sync": self.artist_sync,
            "show_sync": self.show_sync,
            "setlist_import": self.setlist_import,
            "trending_recompute": self.trending_recompute,
            "cache_maintenance": self.cache_maintenance,
            "db_maintenance": self.db_maintenance,
            "health_check": self.health_check,
        }

    async def _pause(self, index: int) -> None:
        # Be polite between items; the limiter enforces quotas, this just spreads load
        if index and self.settings.item_delay_seconds:
            await self._sleep(self.settings.item_delay_seconds)

    # =========================================================================
    # Artist sync
    # =========================================================================

    async def artist_sync(self) -> JobReport:
        """Refresh stale artists: metadata, catalog import, stub backfill."""
        stale_before = utc_now() - timedelta(days=self.settings.artist_stale_days)
        async with self.db.session_scope() as session:
            artists = await ArtistRepository(session).list_sync_candidates(
                stale_before, self.settings.artist_sync_batch
            )

        report = JobReport(details={"candidates": len(artists), "stubs_linked": 0})
        for index, artist in enumerate(artists):
            await self._pause(index)
            external_id = artist.primary_external_id
            try:
                if external_id is None:
                    if await self.reconciler.backfill_stub_artist(artist):
                        report.details["stubs_linked"] += 1
                else:
                    await self._refresh_linked_artist(artist, external_id)
                report.records_processed += 1
            except BackpressureError:
                raise
            except ITEM_ERRORS as e:
                report.errors += 1
                logger.warning("Artist sync failed for %s (%s): %s", artist.name, artist.id, e)
        return report

    async def _refresh_linked_artist(self, artist: Artist, external_id: str) -> None:
        dto = await self.catalog.get_artist(external_id)
        if dto is not None:
            artist.image_url = dto.image_url or artist.image_url
            artist.popularity = dto.popularity
            artist.genres = list(dto.genres) or artist.genres
            artist.last_synced_at = utc_now()
            async with self.db.session_scope() as session:
                await ArtistRepository(session).update(artist)
        else:
            logger.warning(
                "Catalog artist %s for %s no longer exists",
                external_id,
                artist.name,
            )
            async with self.db.session_scope() as session:
                await ArtistRepository(session).mark_synced(artist.id)

        await self.reconciler.importer.import_artist_catalog(artist)
        await self.reconciler.seed_missing_setlists(artist)

    # =========================================================================
    # Show sync
    # =========================================================================

    async def show_sync(self) -> JobReport:
        """Pull upcoming events for tracked artists plus the popular events page."""
        now = utc_now()
        end = now + timedelta(days=self.ticketing_settings.lookahead_days)
        async with self.db.session_scope() as session:
            artists = await ArtistRepository(session).list_with_secondary_id(
                self.settings.show_sync_batch
            )

        report = JobReport(
            details={"artists": len(artists), "shows_created": 0, "invalid_events": 0}
        )
        seen: set[str] = set()

        for index, artist in enumerate(artists):
            await self._pause(index)
            try:
                events = await self._artist_events(
                    artist.secondary_external_id or "", now, end, report
                )
            except BackpressureError:
                raise
            except ITEM_ERRORS as e:
                report.errors += 1
                logger.warning("Event search failed for %s: %s", artist.name, e)
                continue
            await self._process_events(events, seen, report)

        popular = await self.ticketing.search_events(
            start=now,
            end=end,
            size=self.ticketing_settings.popular_events_size,
            sort="relevance,desc",
        )
        report.details["invalid_events"] += popular.invalid
        await self._process_events(popular.events, seen, report)
        return report

    async def _artist_events(
        self, attraction_id: str, start: datetime, end: datetime, report: JobReport
    ) -> list[TicketingEventDTO]:
        events: list[TicketingEventDTO] = []
        page_number = 0
        while page_number < self.ticketing_settings.max_pages:
            page = await self.ticketing.search_events(
                attraction_id=attraction_id,
                start=start,
                end=end,
                page=page_number,
                size=self.ticketing_settings.page_size,
            )
            events.extend(page.events)
            report.details["invalid_events"] += page.invalid
            if not page.has_next:
                break
            page_number += 1
        return events

    async def _process_events(
        self, events: list[TicketingEventDTO], seen: set[str], report: JobReport
    ) -> None:
        for event in events:
            if event.external_id in seen:
                continue
            seen.add(event.external_id)
            try:
                outcome = await self.reconciler.process_ticketing_event(event)
            except BackpressureError:
                raise
            except ITEM_ERRORS as e:
                report.errors += 1
                logger.warning("Event %s failed: %s", event.external_id, e)
                continue
            report.records_processed += 1
            if outcome.show_created:
                report.details["shows_created"] += 1
            for warning in outcome.warnings:
                logger.info("Event %s: %s", event.external_id, warning)

    # =========================================================================
    # Played setlists, trending
    # =========================================================================

    async def setlist_import(self) -> JobReport:
        """Import what was actually played at recent shows."""
        today = utc_now().date()
        async with self.db.session_scope() as session:
            rows = await ShowRepository(session).list_needing_played_setlist(
                today - timedelta(days=self.settings.setlist_import_window_days),
                today - timedelta(days=1),
                self.settings.setlist_import_batch,
            )

        report = JobReport(details={"shows_checked": len(rows), "setlists_imported": 0})
        for index, (show, artist_name, venue_name) in enumerate(rows):
            await self._pause(index)
            try:
                result = await self.setlist_importer.import_played_setlist(
                    show, artist_name, venue_name
                )
            except BackpressureError:
                raise
            except ITEM_ERRORS as e:
                report.errors += 1
                logger.warning("Setlist import failed for show %s: %s", show.id, e)
                continue
            report.records_processed += 1
            if result.imported:
                report.details["setlists_imported"] += 1
        return report

    async def trending_recompute(self) -> JobReport:
        return JobReport(records_processed=await self.trending.recompute())

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def cache_maintenance(self) -> JobReport:
        purged = await self.search_cache.purge_expired()
        evicted = sum(limiter.evict_stale() for limiter in self.limiters.values())
        return JobReport(
            records_processed=purged + evicted,
            details={"cache_purged": purged, "requests_evicted": evicted},
        )

    async def db_maintenance(self) -> JobReport:
        """Complete past shows, then drop old finished shows and orphaned stubs."""
        now = utc_now()
        cutoff = now - timedelta(days=self.settings.retention_days)
        async with self.db.session_scope() as session:
            shows = ShowRepository(session)
            completed = await shows.mark_completed(now.date())
            deleted_shows = await shows.delete_finished_before(cutoff.date())
            deleted_stubs = await ArtistRepository(session).delete_orphan_stubs(cutoff)
        return JobReport(
            records_processed=completed + deleted_shows + deleted_stubs,
            details={
                "shows_completed": completed,
                "shows_deleted": deleted_shows,
                "stubs_deleted": deleted_stubs,
            },
        )

    async def health_check(self) -> JobReport:
        """Ping the database (raises when down) and log limiter/cache state."""
        await self.db.ping()
        limiter_stats = {name: limiter.get_stats() for name, limiter in self.limiters.items()}
        for name, stats in limiter_stats.items():
            if stats["queue_size"]:
                logger.info(
                    "Limiter %s: %d queued, %d processed, %d rate limited",
                    name,
                    stats["queue_size"],
                    stats["processed"],
                    stats["rate_limited"],
                )
        return JobReport(
            details={
                "database": self.db.get_pool_stats(),
                "limiters": limiter_stats,
                "search_cache": self.search_cache.get_stats(),
            }
        )

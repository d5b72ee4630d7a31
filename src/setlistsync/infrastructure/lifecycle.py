"""Composition root and process lifecycle.

Everything with state (database, rate limiters, HTTP clients, caches, scheduler) is
constructed here exactly once per process and passed down explicitly. There are no
module-level singletons anywhere else, so tests can build a container against an
in-memory database and mocked transports.
"""

import asyncio
import logging
import signal
from collections.abc import Mapping
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path

import httpx
from sqlalchemy.engine import make_url

from setlistsync.application.services import (
    ArtistMatcher,
    CatalogImporter,
    CatalogSearchCache,
    EntityReconciler,
    SetlistImporter,
    SetlistSeeder,
    TrendingService,
)
from setlistsync.application.workers import JobRunner, JobScheduler, ScheduledJob, SyncJobs
from setlistsync.config import Settings
from setlistsync.domain.exceptions import ConfigurationError
from setlistsync.infrastructure.integrations import (
    SetlistFmClient,
    SpotifyClient,
    TicketmasterClient,
)
from setlistsync.infrastructure.observability import configure_logging
from setlistsync.infrastructure.persistence import Database
from setlistsync.infrastructure.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    db: Database
    limiters: dict[str, RateLimiter]
    spotify: SpotifyClient
    ticketmaster: TicketmasterClient
    setlistfm: SetlistFmClient
    search_cache: CatalogSearchCache
    matcher: ArtistMatcher
    importer: CatalogImporter
    seeder: SetlistSeeder
    reconciler: EntityReconciler
    setlist_importer: SetlistImporter
    trending: TrendingService
    jobs: SyncJobs
    runner: JobRunner
    scheduler: JobScheduler

    async def aclose(self) -> None:
        """Stop the scheduler, drain nothing further, close clients and the engine."""
        await self.scheduler.stop()
        for client in (self.spotify, self.ticketmaster, self.setlistfm):
            await client.close()
        for limiter in self.limiters.values():
            await limiter.aclose()
        await self.db.close()


def _validate_sqlite_path(settings: Settings) -> None:
    """Make sure the directory of a file-backed SQLite database exists.

    SQLite creates its journal/WAL files next to the .db file, so the directory has
    to exist before the engine connects. No-op for other databases and :memory:.
    """
    url = make_url(settings.database.url)
    if not url.drivername.startswith("sqlite") or url.database in (None, "", ":memory:"):
        return
    parent = Path(url.database).expanduser().parent
    try:
        parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigurationError(
            f"Unable to create SQLite database directory '{parent}': {exc}. "
            "Update SETLISTSYNC_DATABASE__URL or adjust directory permissions."
        ) from exc


def build_scheduled_jobs(jobs: SyncJobs, settings: Settings) -> list[ScheduledJob]:
    fns = jobs.as_dict()
    cfg = settings.jobs
    return [
        ScheduledJob(
            "trending_recompute", fns["trending_recompute"], cfg.trending_interval_seconds
        ),
        ScheduledJob("show_sync", fns["show_sync"], cfg.show_sync_interval_seconds),
        ScheduledJob("artist_sync", fns["artist_sync"], cfg.artist_sync_interval_seconds),
        ScheduledJob(
            "setlist_import", fns["setlist_import"], cfg.setlist_import_interval_seconds
        ),
        ScheduledJob(
            "cache_maintenance", fns["cache_maintenance"], cfg.cache_maintenance_interval_seconds
        ),
        ScheduledJob(
            "health_check",
            fns["health_check"],
            cfg.health_check_interval_seconds,
            run_immediately=True,
        ),
        ScheduledJob(
            "db_maintenance", fns["db_maintenance"], daily_hour_utc=cfg.maintenance_hour_utc
        ),
    ]


def build_container(
    settings: Settings,
    transports: Mapping[str, httpx.AsyncBaseTransport] | None = None,
) -> Container:
    """Wire every component from settings.

    Args:
        settings: Loaded settings
        transports: Optional httpx transports keyed by upstream name
            ("spotify", "ticketmaster", "setlistfm"), used by tests
    """
    transports = transports or {}
    db = Database(settings)

    limiters = {
        "spotify": RateLimiter.from_settings("spotify", settings.rate_limits.spotify),
        "ticketmaster": RateLimiter.from_settings(
            "ticketmaster", settings.rate_limits.ticketmaster
        ),
        "setlistfm": RateLimiter.from_settings("setlistfm", settings.rate_limits.setlistfm),
    }
    spotify = SpotifyClient(
        settings.spotify, limiters["spotify"], transport=transports.get("spotify")
    )
    ticketmaster = TicketmasterClient(
        settings.ticketmaster, limiters["ticketmaster"], transport=transports.get("ticketmaster")
    )
    setlistfm = SetlistFmClient(
        settings.setlistfm, limiters["setlistfm"], transport=transports.get("setlistfm")
    )

    catalog_cfg = settings.catalog
    search_cache = CatalogSearchCache(
        spotify,
        ttl_seconds=catalog_cfg.search_cache_ttl_seconds,
        max_entries=catalog_cfg.search_cache_max_size,
    )
    matcher = ArtistMatcher()
    importer = CatalogImporter(db, spotify, catalog_cfg)
    seeder = SetlistSeeder(db, importer, catalog_cfg)
    reconciler = EntityReconciler(db, spotify, search_cache, matcher, importer, seeder)
    setlist_importer = SetlistImporter(db, setlistfm)
    trending = TrendingService(db, window_days=settings.jobs.trending_window_days)

    jobs = SyncJobs(
        db,
        reconciler,
        spotify,
        ticketmaster,
        setlist_importer,
        trending,
        search_cache,
        limiters,
        job_settings=settings.jobs,
        ticketing_settings=settings.ticketmaster,
    )
    runner = JobRunner(
        max_retries=settings.jobs.max_retries, base_delay=settings.jobs.base_delay_seconds
    )
    scheduler = JobScheduler(
        runner,
        build_scheduled_jobs(jobs, settings),
        trigger_secret=settings.jobs.trigger_secret,
        health_log_every_cycles=settings.observability.health_log_every_cycles,
    )

    return Container(
        settings=settings,
        db=db,
        limiters=limiters,
        spotify=spotify,
        ticketmaster=ticketmaster,
        setlistfm=setlistfm,
        search_cache=search_cache,
        matcher=matcher,
        importer=importer,
        seeder=seeder,
        reconciler=reconciler,
        setlist_importer=setlist_importer,
        trending=trending,
        jobs=jobs,
        runner=runner,
        scheduler=scheduler,
    )


def _warn_missing_credentials(settings: Settings) -> None:
    # Not fatal: jobs that need a missing key fail fast with ConfigurationError
    if not settings.spotify.is_configured:
        logger.warning("Spotify credentials not configured; catalog matching will fail")
    if not settings.ticketmaster.is_configured:
        logger.warning("Ticketmaster api key not configured; show sync will fail")
    if not settings.setlistfm.is_configured:
        logger.warning("setlist.fm api key not configured; setlist import will fail")


def setup(settings: Settings) -> Container:
    """Logging, path checks and wiring shared by every CLI command."""
    configure_logging(
        log_level=settings.observability.log_level,
        json_format=settings.observability.log_json_format,
        app_name=settings.app_name,
    )
    _validate_sqlite_path(settings)
    return build_container(settings)


# Listen future me, this is the long-running mode! Scheduler loops run until SIGINT /
# SIGTERM, then we shut down in reverse order: scheduler first (no new jobs), then
# clients and limiters, then the engine.
async def run_service(settings: Settings) -> None:
    container = setup(settings)
    logger.info("Starting %s (%s)", settings.app_name, settings.app_env)
    _warn_missing_credentials(settings)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # add_signal_handler isn't available on Windows event loops
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    try:
        await container.db.ping()
        await container.scheduler.start()
        await stop_event.wait()
        logger.info("Shutdown requested")
    finally:
        await container.aclose()
        logger.info("Shutdown complete")

"""Catalog importer - pulls an artist's songs from the music catalog.

Hey future me - this is the ONLY writer of song rows. It walks the artist's albums
(page size 50, until a short page) and each album's tracks (same pattern), folds in
popularity from the top-tracks endpoint, dedups on normalized (title, album) and
batch-inserts with ON CONFLICT DO NOTHING. Running it twice changes nothing.

NETWORK FIRST, DATABASE LAST: every upstream call happens before we open a session.
A catalog with 30 albums can sit in the rate limiter for a minute; holding a SQLite
write lock that long would block every other job.

Failure policy:
- album listing fails  -> the whole import raises (nothing to import without it)
- one album's tracks fail -> counted in album_errors, the rest still import
- top tracks fail      -> logged, songs just get no popularity
- malformed album or track -> dropped by the client, counted in malformed_items;
  the short-page check uses the raw page size so paging still continues
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from setlistsync.config import CatalogSettings
from setlistsync.domain.dtos import CatalogAlbumDTO, CatalogTrackDTO
from setlistsync.domain.entities import Artist, Song
from setlistsync.domain.exceptions import BackpressureError, ExternalServiceError
from setlistsync.domain.ports import IMusicCatalogClient
from setlistsync.domain.value_objects import normalize_title
from setlistsync.infrastructure.observability import log_operation
from setlistsync.infrastructure.persistence import ArtistRepository, Database, SongRepository

logger = logging.getLogger(__name__)


@dataclass
class CatalogImportResult:
    artist_id: str
    songs_imported: int = 0
    total_tracks: int = 0
    albums_processed: int = 0
    malformed_items: int = 0
    album_errors: int = 0
    skipped: bool = False
    skip_reason: str | None = None
    errors: list[str] = field(default_factory=list)


class CatalogImporter:
    """Imports and deduplicates an artist's catalog."""

    def __init__(
        self,
        db: Database,
        catalog: IMusicCatalogClient,
        settings: CatalogSettings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.db = db
        self.catalog = catalog
        self.settings = settings or CatalogSettings()
        self._sleep = sleep

    async def import_artist_catalog(self, artist: Artist) -> CatalogImportResult:
        result = CatalogImportResult(artist_id=artist.id)
        if artist.primary_external_id is None:
            result.skipped, result.skip_reason = True, "no_catalog_id"
            return result

        async with self.db.session_scope() as session:
            existing = await SongRepository(session).count_for_artist(artist.id)
        if existing > self.settings.skip_threshold:
            result.skipped, result.skip_reason = True, "already_imported"
            logger.debug(
                "Skipping catalog import for %s: %d songs already", artist.name, existing
            )
            return result

        async with log_operation(
            logger, "catalog_import", artist_id=artist.id, artist=artist.name
        ) as fields:
            popularity = await self._top_track_popularity(artist.primary_external_id)
            albums = await self._list_albums(artist.primary_external_id, result)
            tracks = await self._collect_tracks(albums, result)
            songs = self._dedupe(artist.id, tracks, popularity)
            result.total_tracks = len(songs)

            async with self.db.session_scope() as session:
                result.songs_imported = await SongRepository(session).insert_ignore_many(
                    songs, batch_size=self.settings.upsert_batch_size
                )
                await ArtistRepository(session).mark_synced(artist.id)

            fields.update(
                songs_imported=result.songs_imported,
                total_tracks=result.total_tracks,
                album_errors=result.album_errors,
                malformed_items=result.malformed_items,
            )
        return result

    async def _top_track_popularity(self, external_id: str) -> dict[str, CatalogTrackDTO]:
        try:
            tracks = await self.catalog.get_artist_top_tracks(external_id)
        except ExternalServiceError as e:
            logger.warning("Top tracks unavailable for %s: %s", external_id, e.message)
            return {}
        return {t.external_id: t for t in tracks}

    async def _list_albums(
        self, external_id: str, result: CatalogImportResult
    ) -> list[CatalogAlbumDTO]:
        albums: list[CatalogAlbumDTO] = []
        page_size = self.settings.page_size
        for page_no in range(self.settings.max_pages):
            page = await self.catalog.get_artist_albums(
                external_id, limit=page_size, offset=page_no * page_size
            )
            albums.extend(page.items)
            result.malformed_items += page.skipped
            if not page.has_next or page.fetched < page_size:
                break
        else:
            logger.warning(
                "Album listing for %s hit the %d page cap", external_id, self.settings.max_pages
            )
        return albums

    async def _album_tracks(
        self, album: CatalogAlbumDTO, result: CatalogImportResult
    ) -> list[CatalogTrackDTO]:
        tracks: list[CatalogTrackDTO] = []
        page_size = self.settings.page_size
        for page_no in range(self.settings.max_pages):
            page = await self.catalog.get_album_tracks(
                album, limit=page_size, offset=page_no * page_size
            )
            tracks.extend(page.items)
            result.malformed_items += page.skipped
            if not page.has_next or page.fetched < page_size:
                break
        return tracks

    async def _collect_tracks(
        self, albums: list[CatalogAlbumDTO], result: CatalogImportResult
    ) -> list[CatalogTrackDTO]:
        collected: list[CatalogTrackDTO] = []
        batch_size = self.settings.album_batch_size
        for start in range(0, len(albums), batch_size):
            if start:
                await self._sleep(self.settings.album_batch_delay_seconds)
            batch = albums[start : start + batch_size]
            outcomes = await asyncio.gather(
                *(self._album_tracks(album, result) for album in batch), return_exceptions=True
            )
            for album, outcome in zip(batch, outcomes, strict=True):
                if isinstance(outcome, BackpressureError):
                    # Queue trouble is not an album problem - abort the import
                    raise outcome
                if isinstance(outcome, Exception):
                    result.album_errors += 1
                    result.errors.append(f"{album.name}: {outcome}")
                    logger.warning("Album %s failed: %s", album.external_id, outcome)
                    continue
                if isinstance(outcome, BaseException):
                    raise outcome
                result.albums_processed += 1
                collected.extend(outcome)
        return collected

    @staticmethod
    def _dedupe(
        artist_id: str,
        tracks: list[CatalogTrackDTO],
        top_tracks: dict[str, CatalogTrackDTO],
    ) -> list[Song]:
        """One Song per normalized (title, album). First occurrence wins, popularity is max."""
        by_key: dict[tuple[str, str], Song] = {}
        # Top tracks come last so their album info never overrides the album listing
        for track in [*tracks, *top_tracks.values()]:
            key = (normalize_title(track.title), normalize_title(track.album))
            if not key[0]:
                continue
            known = top_tracks.get(track.external_id)
            popularity = track.popularity if track.popularity is not None else (
                known.popularity if known else None
            )
            existing = by_key.get(key)
            if existing is None:
                by_key[key] = Song(
                    artist_id=artist_id,
                    external_id=track.external_id,
                    title=track.title,
                    album=track.album,
                    normalized_title=key[0],
                    normalized_album=key[1],
                    duration_ms=track.duration_ms,
                    popularity=popularity,
                    preview_url=track.preview_url,
                    album_image_url=track.album_image_url,
                )
            elif popularity is not None and (
                existing.popularity is None or popularity > existing.popularity
            ):
                existing.popularity = popularity
        return list(by_key.values())

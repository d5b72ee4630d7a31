"""Entity reconciliation - ensure canonical Artist/Venue/Show rows exist exactly once.

Hey future me - this is THE place where the ticketing world and the catalog world meet.
Every ticketing event flows through process_ticketing_event():

    event -> ensure_artist_exists(attraction) -> ensure_venue_exists(venue)
          -> ensure_show_exists(event, artist, venue) -> seed setlist (new shows only)

ARTIST LOOKUP ORDER (first hit wins, then we return without searching):
1. primary_external_id (catalog ID) - unique, always trustworthy
2. secondary_external_id (ticketing ID) - only if EXACTLY one row carries it
3. case-insensitive exact name

Only when all three miss do we spend a catalog search. A confident match creates the
full artist and imports its catalog; a miss creates a stub (needs_backfill=True) that
the artist sync job retries later. Both paths are idempotent: a second call finds the
row at step 1-3 and is a pure read.

Each ensure_* runs in its own short session scope, network calls happen outside.
"""

import logging
from dataclasses import dataclass, field

from setlistsync.application.services.artist_matcher import ArtistMatcher, MatchResult
from setlistsync.application.services.catalog_importer import (
    CatalogImporter,
    CatalogImportResult,
)
from setlistsync.application.services.catalog_search_cache import CatalogSearchCache
from setlistsync.application.services.setlist_seeder import SetlistSeeder
from setlistsync.domain.dtos import CatalogArtistDTO, TicketingEventDTO, TicketingVenueDTO
from setlistsync.domain.entities import (
    Artist,
    ArtistMappingReview,
    MatchDecision,
    ReviewOutcome,
    Setlist,
    Show,
    ShowStatus,
    Venue,
    utc_now,
)
from setlistsync.domain.exceptions import BackpressureError, DomainException
from setlistsync.domain.ports import IMusicCatalogClient
from setlistsync.infrastructure.persistence import (
    ArtistRepository,
    Database,
    MappingReviewRepository,
    ShowRepository,
    VenueRepository,
)

logger = logging.getLogger(__name__)


@dataclass
class ArtistCandidate:
    """What we know about an artist before reconciliation."""

    name: str
    primary_external_id: str | None = None
    secondary_external_id: str | None = None


@dataclass
class ArtistResolution:
    artist: Artist
    created: bool
    decision: MatchDecision | None = None
    confidence: float | None = None
    catalog_import: CatalogImportResult | None = None


@dataclass
class ShowResolution:
    show: Show
    created: bool
    status_changed: bool = False
    setlist: Setlist | None = None


@dataclass
class EventOutcome:
    event_id: str
    artist_id: str
    venue_id: str
    show_id: str
    artist_created: bool = False
    show_created: bool = False
    status_changed: bool = False
    setlist_created: bool = False
    warnings: list[str] = field(default_factory=list)


class EntityReconciler:
    """Find-or-create for artists, venues and shows across both identity spaces."""

    def __init__(
        self,
        db: Database,
        catalog: IMusicCatalogClient,
        search_cache: CatalogSearchCache,
        matcher: ArtistMatcher,
        importer: CatalogImporter,
        seeder: SetlistSeeder,
    ) -> None:
        self.db = db
        self.catalog = catalog
        self.search_cache = search_cache
        self.matcher = matcher
        self.importer = importer
        self.seeder = seeder

    # =========================================================================
    # Artists
    # =========================================================================

    async def ensure_artist_exists(self, candidate: ArtistCandidate) -> ArtistResolution:
        existing = await self._find_existing_artist(candidate)
        if existing is not None:
            return ArtistResolution(artist=existing, created=False)

        if candidate.primary_external_id:
            # Caller already knows the catalog ID - no fuzzy step needed
            dto = await self.catalog.get_artist(candidate.primary_external_id)
            match = MatchResult(
                query=candidate.name,
                candidate=dto,
                confidence=1.0 if dto else 0.0,
                decision=MatchDecision.ACCEPTED if dto else MatchDecision.REJECTED,
                factors=["known_catalog_id"] if dto else [],
            )
        else:
            results = await self.search_cache.search_artists(candidate.name)
            match = self.matcher.best_match(candidate.name, results)

        if match.accepted and match.candidate is not None:
            return await self._create_linked_artist(candidate, match.candidate, match)
        return await self._create_stub_artist(candidate, match)

    async def _find_existing_artist(self, candidate: ArtistCandidate) -> Artist | None:
        async with self.db.session_scope() as session:
            repo = ArtistRepository(session)
            found: Artist | None = None
            if candidate.primary_external_id:
                found = await repo.get_by_primary_id(candidate.primary_external_id)
            if found is None and candidate.secondary_external_id:
                rows = await repo.find_by_secondary_id(candidate.secondary_external_id)
                if len(rows) == 1:
                    found = rows[0]
                elif len(rows) > 1:
                    logger.warning(
                        "Ticketing ID %s is shared by %d artists, ignoring it",
                        candidate.secondary_external_id,
                        len(rows),
                    )
            if found is None:
                found = await repo.find_by_name(candidate.name)
            if found is None:
                return None

            if candidate.secondary_external_id and found.secondary_external_id is None:
                await repo.set_secondary_id(found.id, candidate.secondary_external_id)
                found.secondary_external_id = candidate.secondary_external_id
                logger.info(
                    "Backfilled ticketing ID %s on artist %s",
                    candidate.secondary_external_id,
                    found.name,
                )
            return found

    async def _create_linked_artist(
        self, candidate: ArtistCandidate, dto: CatalogArtistDTO, match: MatchResult
    ) -> ArtistResolution:
        async with self.db.session_scope() as session:
            repo = ArtistRepository(session)
            # Two ticketing spellings can map onto one catalog artist
            existing = await repo.get_by_primary_id(dto.external_id)
            if existing is not None:
                if candidate.secondary_external_id and existing.secondary_external_id is None:
                    await repo.set_secondary_id(existing.id, candidate.secondary_external_id)
                    existing.secondary_external_id = candidate.secondary_external_id
                return ArtistResolution(
                    artist=existing,
                    created=False,
                    decision=match.decision,
                    confidence=match.confidence,
                )

            artist = await repo.add(
                Artist(
                    name=dto.name,
                    primary_external_id=dto.external_id,
                    secondary_external_id=candidate.secondary_external_id,
                    image_url=dto.image_url,
                    popularity=dto.popularity,
                    genres=list(dto.genres),
                )
            )
            if match.decision is MatchDecision.NEEDS_REVIEW:
                await MappingReviewRepository(session).record(
                    self._review_for(artist, candidate, match, ReviewOutcome.NEEDS_REVIEW)
                )

        logger.info(
            "Created artist %s (catalog %s, confidence %.2f, %s)",
            artist.name,
            dto.external_id,
            match.confidence,
            match.decision.value,
        )
        resolution = ArtistResolution(
            artist=artist,
            created=True,
            decision=match.decision,
            confidence=match.confidence,
        )
        resolution.catalog_import = await self._import_catalog_safely(artist)
        return resolution

    async def _create_stub_artist(
        self, candidate: ArtistCandidate, match: MatchResult
    ) -> ArtistResolution:
        async with self.db.session_scope() as session:
            artist = await ArtistRepository(session).add(
                Artist(
                    name=candidate.name,
                    secondary_external_id=candidate.secondary_external_id,
                    needs_backfill=True,
                )
            )
            await MappingReviewRepository(session).record(
                self._review_for(artist, candidate, match, ReviewOutcome.UNMATCHED)
            )
        logger.info(
            "No confident catalog match for %r (best %.2f), created stub %s",
            candidate.name,
            match.confidence,
            artist.id,
        )
        return ArtistResolution(
            artist=artist,
            created=True,
            decision=MatchDecision.REJECTED,
            confidence=match.confidence,
        )

    @staticmethod
    def _review_for(
        artist: Artist,
        candidate: ArtistCandidate,
        match: MatchResult,
        outcome: ReviewOutcome,
    ) -> ArtistMappingReview:
        return ArtistMappingReview(
            artist_id=artist.id,
            query_name=candidate.name,
            outcome=outcome,
            secondary_external_id=candidate.secondary_external_id,
            candidate_external_id=match.candidate.external_id if match.candidate else None,
            candidate_name=match.candidate.name if match.candidate else None,
            confidence=match.confidence,
            match_factors=list(match.factors),
        )

    async def _import_catalog_safely(self, artist: Artist) -> CatalogImportResult | None:
        # The artist row is committed already; a failed import is retried by artist sync
        try:
            return await self.importer.import_artist_catalog(artist)
        except BackpressureError:
            raise
        except DomainException as e:
            logger.warning("Catalog import for %s failed: %s", artist.name, e.message)
            return None

    async def backfill_stub_artist(self, artist: Artist) -> bool:
        """Retry the catalog match for a stub. True when the stub got linked."""
        if not artist.needs_backfill:
            return False

        await self.search_cache.invalidate(artist.name)
        results = await self.search_cache.search_artists(artist.name)
        match = self.matcher.best_match(artist.name, results)
        candidate = ArtistCandidate(
            name=artist.name, secondary_external_id=artist.secondary_external_id
        )

        async with self.db.session_scope() as session:
            repo = ArtistRepository(session)
            reviews = MappingReviewRepository(session)
            if not match.accepted or match.candidate is None:
                await repo.mark_synced(artist.id)
                await reviews.record(
                    self._review_for(artist, candidate, match, ReviewOutcome.UNMATCHED)
                )
                return False

            dto = match.candidate
            owner = await repo.get_by_primary_id(dto.external_id)
            if owner is not None and owner.id != artist.id:
                # Another row already owns this catalog artist; a human has to merge
                await repo.mark_synced(artist.id)
                await reviews.record(
                    self._review_for(artist, candidate, match, ReviewOutcome.NEEDS_REVIEW)
                )
                logger.warning(
                    "Stub %s matches catalog artist %s which belongs to artist %s",
                    artist.id,
                    dto.external_id,
                    owner.id,
                )
                return False

            artist.primary_external_id = dto.external_id
            artist.image_url = artist.image_url or dto.image_url
            artist.popularity = dto.popularity
            artist.genres = list(dto.genres) or artist.genres
            artist.needs_backfill = False
            artist.last_synced_at = utc_now()
            await repo.update(artist)
            if match.decision is MatchDecision.NEEDS_REVIEW:
                await reviews.record(
                    self._review_for(artist, candidate, match, ReviewOutcome.NEEDS_REVIEW)
                )
            else:
                await reviews.delete_for_artist(artist.id)

        logger.info("Linked stub %s to catalog artist %s", artist.name, dto.external_id)
        await self._import_catalog_safely(artist)
        await self.seed_missing_setlists(artist)
        return True

    async def seed_missing_setlists(self, artist: Artist) -> int:
        """Seed every upcoming show of the artist that still has no setlist."""
        async with self.db.session_scope() as session:
            shows = await ShowRepository(session).list_upcoming_without_setlist(
                artist.id, utc_now().date()
            )
        seeded = 0
        for show in shows:
            if await self.seeder.seed_initial_setlist(show.id, artist) is not None:
                seeded += 1
        return seeded

    # =========================================================================
    # Venues
    # =========================================================================

    async def ensure_venue_exists(self, dto: TicketingVenueDTO) -> Venue:
        incoming = Venue(
            external_id=dto.external_id,
            name=dto.name,
            city=dto.city,
            state=dto.state,
            country=dto.country,
            address=dto.address,
            latitude=dto.latitude,
            longitude=dto.longitude,
        )
        async with self.db.session_scope() as session:
            repo = VenueRepository(session)
            existing = await repo.get_by_external_id(dto.external_id)
            if existing is None:
                return await repo.add(incoming)
            changed = existing.fill_missing(incoming)
            if changed:
                await repo.update_fields(
                    existing.id, **{name: getattr(existing, name) for name in changed}
                )
            return existing

    # =========================================================================
    # Shows
    # =========================================================================

    async def ensure_show_exists(
        self, event: TicketingEventDTO, artist: Artist, venue: Venue
    ) -> ShowResolution:
        status = ShowStatus.from_upstream(event.status_code)
        async with self.db.session_scope() as session:
            repo = ShowRepository(session)
            existing = await repo.get_by_external_id(event.external_id)
            if existing is None:
                existing = await repo.get_by_natural_key(artist.id, venue.id, event.local_date)
                if existing is not None and existing.external_id is None:
                    await repo.set_external_id(existing.id, event.external_id)

            if existing is not None:
                changed = (
                    existing.status is not status
                    and existing.status is not ShowStatus.COMPLETED
                )
                if changed:
                    logger.info(
                        "Show %s status %s -> %s",
                        existing.id,
                        existing.status.value,
                        status.value,
                    )
                    await repo.update_status(existing.id, status)
                    existing.status = status
                return ShowResolution(show=existing, created=False, status_changed=changed)

            show, created = await repo.add(
                Show(
                    external_id=event.external_id,
                    artist_id=artist.id,
                    venue_id=venue.id,
                    name=event.name,
                    date=event.local_date,
                    start_time=event.local_time,
                    status=status,
                    ticket_url=event.url,
                )
            )

        resolution = ShowResolution(show=show, created=created)
        if created:
            try:
                resolution.setlist = await self.seeder.seed_initial_setlist(show.id, artist)
            except BackpressureError:
                raise
            except DomainException as e:
                # Artist sync seeds shows without a setlist later
                logger.warning("Seeding setlist for show %s failed: %s", show.id, e.message)
        return resolution

    async def process_ticketing_event(self, event: TicketingEventDTO) -> EventOutcome:
        artist_res = await self.ensure_artist_exists(
            ArtistCandidate(
                name=event.attraction.name,
                secondary_external_id=event.attraction.external_id,
            )
        )
        venue = await self.ensure_venue_exists(event.venue)
        show_res = await self.ensure_show_exists(event, artist_res.artist, venue)

        outcome = EventOutcome(
            event_id=event.external_id,
            artist_id=artist_res.artist.id,
            venue_id=venue.id,
            show_id=show_res.show.id,
            artist_created=artist_res.created,
            show_created=show_res.created,
            status_changed=show_res.status_changed,
            setlist_created=show_res.setlist is not None,
        )
        if artist_res.decision is MatchDecision.REJECTED:
            outcome.warnings.append(f"artist {artist_res.artist.name!r} stored as stub")
        return outcome

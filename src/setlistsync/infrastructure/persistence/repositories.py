"""Repository implementations.

Hey future me - repositories take an AsyncSession and NEVER commit! The caller's
Database.session_scope() owns the transaction. Every write that can collide with a
concurrent (or repeated) run goes through INSERT ... ON CONFLICT DO NOTHING and then
re-reads the winning row, so running a job twice converges on the same rows instead
of blowing up on a unique constraint.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date, datetime
from typing import Any

from sqlalchemy import delete, exists, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from setlistsync.domain.entities import (
    Artist,
    ArtistMappingReview,
    PlayedSetlist,
    PlayedSetlistSong,
    ReviewOutcome,
    Setlist,
    SetlistSong,
    Show,
    ShowEngagement,
    ShowStatus,
    Song,
    Venue,
    utc_now,
)
from setlistsync.domain.value_objects import name_key
from setlistsync.infrastructure.persistence.models import (
    ArtistMappingReviewModel,
    ArtistModel,
    PlayedSetlistModel,
    PlayedSetlistSongModel,
    SetlistModel,
    SetlistSongModel,
    ShowModel,
    SongModel,
    VenueModel,
    ensure_utc_aware,
)

logger = logging.getLogger(__name__)


def _insert(session: AsyncSession, model: type[Any]) -> Any:
    """Dialect-specific INSERT that supports ``on_conflict_do_nothing``.

    Built on the Table, so value keys are column names (shows.date, not show_date).
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model.__table__)
    if dialect == "sqlite":
        return sqlite.insert(model.__table__)
    raise NotImplementedError(f"Upserts not supported for dialect {dialect!r}")


def _aware(value: datetime | None) -> datetime | None:
    return ensure_utc_aware(value) if value is not None else None


# =============================================================================
# Artists
# =============================================================================


def _to_artist(model: ArtistModel) -> Artist:
    return Artist(
        id=model.id,
        name=model.name,
        primary_external_id=model.primary_external_id,
        secondary_external_id=model.secondary_external_id,
        image_url=model.image_url,
        popularity=model.popularity,
        genres=list(model.genres or []),
        needs_backfill=model.needs_backfill,
        last_synced_at=_aware(model.last_synced_at),
        created_at=ensure_utc_aware(model.created_at),
        updated_at=ensure_utc_aware(model.updated_at),
    )


def _artist_values(artist: Artist) -> dict[str, Any]:
    return {
        "id": artist.id,
        "name": artist.name,
        "name_key": name_key(artist.name),
        "primary_external_id": artist.primary_external_id,
        "secondary_external_id": artist.secondary_external_id,
        "image_url": artist.image_url,
        "popularity": artist.popularity,
        "genres": list(artist.genres),
        "needs_backfill": artist.needs_backfill,
        "last_synced_at": artist.last_synced_at,
        "created_at": artist.created_at,
        "updated_at": artist.updated_at,
    }


class ArtistRepository:
    """Repository for Artist entities."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, artist_id: str) -> Artist | None:
        model = await self.session.get(ArtistModel, artist_id)
        return _to_artist(model) if model else None

    async def get_by_primary_id(self, external_id: str) -> Artist | None:
        stmt = select(ArtistModel).where(ArtistModel.primary_external_id == external_id)
        model = (await self.session.execute(stmt)).scalar_one_or_none()
        return _to_artist(model) if model else None

    async def find_by_secondary_id(self, external_id: str) -> list[Artist]:
        stmt = select(ArtistModel).where(ArtistModel.secondary_external_id == external_id)
        result = await self.session.execute(stmt)
        return [_to_artist(m) for m in result.scalars().all()]

    async def find_by_name(self, name: str) -> Artist | None:
        """Unicode case-insensitive exact name match. Oldest row wins when there are several."""
        stmt = (
            select(ArtistModel)
            .where(ArtistModel.name_key == name_key(name))
            .order_by(ArtistModel.created_at, ArtistModel.id)
            .limit(1)
        )
        model = (await self.session.execute(stmt)).scalar_one_or_none()
        return _to_artist(model) if model else None

    async def add(self, artist: Artist) -> Artist:
        """Insert an artist; when the primary ID is already taken return that row."""
        if artist.primary_external_id is None:
            self.session.add(ArtistModel(**_artist_values(artist)))
            await self.session.flush()
            return artist

        stmt = (
            _insert(self.session, ArtistModel)
            .values(**_artist_values(artist))
            .on_conflict_do_nothing(index_elements=["primary_external_id"])
        )
        await self.session.execute(stmt)
        stored = await self.get_by_primary_id(artist.primary_external_id)
        if stored is None:
            raise RuntimeError(
                f"Artist {artist.primary_external_id} vanished right after upsert"
            )
        return stored

    async def update(self, artist: Artist) -> None:
        artist.updated_at = utc_now()
        values = _artist_values(artist)
        values.pop("id")
        values.pop("created_at")
        await self.session.execute(
            update(ArtistModel).where(ArtistModel.id == artist.id).values(**values)
        )

    async def mark_synced(self, artist_id: str, when: datetime | None = None) -> None:
        await self.session.execute(
            update(ArtistModel)
            .where(ArtistModel.id == artist_id)
            .values(last_synced_at=when or utc_now())
        )

    async def set_secondary_id(self, artist_id: str, secondary_id: str) -> None:
        await self.session.execute(
            update(ArtistModel)
            .where(ArtistModel.id == artist_id)
            .values(secondary_external_id=secondary_id, updated_at=utc_now())
        )

    async def list_sync_candidates(self, stale_before: datetime, limit: int) -> list[Artist]:
        """Artists never synced or last synced before ``stale_before``, never-synced first."""
        stmt = (
            select(ArtistModel)
            .where(
                or_(
                    ArtistModel.last_synced_at.is_(None),
                    ArtistModel.last_synced_at < stale_before,
                )
            )
            .order_by(ArtistModel.last_synced_at.is_not(None), ArtistModel.last_synced_at)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [_to_artist(m) for m in result.scalars().all()]

    async def list_with_secondary_id(self, limit: int) -> list[Artist]:
        stmt = (
            select(ArtistModel)
            .where(ArtistModel.secondary_external_id.is_not(None))
            .order_by(ArtistModel.popularity.is_(None), ArtistModel.popularity.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [_to_artist(m) for m in result.scalars().all()]

    async def count(self) -> int:
        return (await self.session.execute(select(func.count(ArtistModel.id)))).scalar_one()

    async def delete_orphan_stubs(self, created_before: datetime) -> int:
        """Delete stubs older than ``created_before`` that never got a show."""
        has_show = exists().where(ShowModel.artist_id == ArtistModel.id)
        stmt = delete(ArtistModel).where(
            ArtistModel.needs_backfill.is_(True),
            ArtistModel.created_at < created_before,
            ~has_show,
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0


# =============================================================================
# Venues
# =============================================================================


def _to_venue(model: VenueModel) -> Venue:
    return Venue(
        id=model.id,
        external_id=model.external_id,
        name=model.name,
        city=model.city,
        state=model.state,
        country=model.country,
        address=model.address,
        latitude=model.latitude,
        longitude=model.longitude,
        created_at=ensure_utc_aware(model.created_at),
    )


class VenueRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_external_id(self, external_id: str) -> Venue | None:
        stmt = select(VenueModel).where(VenueModel.external_id == external_id)
        model = (await self.session.execute(stmt)).scalar_one_or_none()
        return _to_venue(model) if model else None

    async def add(self, venue: Venue) -> Venue:
        stmt = (
            _insert(self.session, VenueModel)
            .values(
                id=venue.id,
                external_id=venue.external_id,
                name=venue.name,
                city=venue.city,
                state=venue.state,
                country=venue.country,
                address=venue.address,
                latitude=venue.latitude,
                longitude=venue.longitude,
                created_at=venue.created_at,
            )
            .on_conflict_do_nothing(index_elements=["external_id"])
        )
        await self.session.execute(stmt)
        stored = await self.get_by_external_id(venue.external_id)
        if stored is None:
            raise RuntimeError(f"Venue {venue.external_id} vanished right after upsert")
        return stored

    async def update_fields(self, venue_id: str, **fields: Any) -> None:
        if fields:
            await self.session.execute(
                update(VenueModel).where(VenueModel.id == venue_id).values(**fields)
            )


# =============================================================================
# Shows
# =============================================================================


def _to_show(model: ShowModel) -> Show:
    return Show(
        id=model.id,
        external_id=model.external_id,
        artist_id=model.artist_id,
        venue_id=model.venue_id,
        name=model.name,
        date=model.show_date,
        start_time=model.start_time,
        status=ShowStatus(model.status),
        ticket_url=model.ticket_url,
        view_count=model.view_count,
        trending_score=model.trending_score,
        created_at=ensure_utc_aware(model.created_at),
        updated_at=ensure_utc_aware(model.updated_at),
    )


class ShowRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, show_id: str) -> Show | None:
        model = await self.session.get(ShowModel, show_id)
        return _to_show(model) if model else None

    async def get_by_external_id(self, external_id: str) -> Show | None:
        stmt = select(ShowModel).where(ShowModel.external_id == external_id)
        model = (await self.session.execute(stmt)).scalar_one_or_none()
        return _to_show(model) if model else None

    async def get_by_natural_key(
        self, artist_id: str, venue_id: str, show_date: date
    ) -> Show | None:
        stmt = select(ShowModel).where(
            ShowModel.artist_id == artist_id,
            ShowModel.venue_id == venue_id,
            ShowModel.show_date == show_date,
        )
        model = (await self.session.execute(stmt)).scalar_one_or_none()
        return _to_show(model) if model else None

    async def add(self, show: Show) -> tuple[Show, bool]:
        """Insert a show. Returns (stored show, created?)."""
        stmt = (
            _insert(self.session, ShowModel)
            .values(
                id=show.id,
                external_id=show.external_id,
                artist_id=show.artist_id,
                venue_id=show.venue_id,
                name=show.name,
                date=show.date,
                start_time=show.start_time,
                status=show.status.value,
                ticket_url=show.ticket_url,
                view_count=show.view_count,
                trending_score=show.trending_score,
                created_at=show.created_at,
                updated_at=show.updated_at,
            )
            .on_conflict_do_nothing()
        )
        await self.session.execute(stmt)
        stored = await self.get(show.id)
        if stored is not None:
            return stored, True
        # Lost against an existing row on one of the two unique keys
        existing = None
        if show.external_id:
            existing = await self.get_by_external_id(show.external_id)
        if existing is None:
            existing = await self.get_by_natural_key(show.artist_id, show.venue_id, show.date)
        if existing is None:
            raise RuntimeError(f"Show {show.external_id} vanished right after upsert")
        return existing, False

    async def update_status(self, show_id: str, status: ShowStatus) -> None:
        await self.session.execute(
            update(ShowModel)
            .where(ShowModel.id == show_id)
            .values(status=status.value, updated_at=utc_now())
        )

    async def set_external_id(self, show_id: str, external_id: str) -> None:
        await self.session.execute(
            update(ShowModel)
            .where(ShowModel.id == show_id, ShowModel.external_id.is_(None))
            .values(external_id=external_id, updated_at=utc_now())
        )

    async def list_upcoming_without_setlist(self, artist_id: str, from_date: date) -> list[Show]:
        has_setlist = exists().where(SetlistModel.show_id == ShowModel.id)
        stmt = (
            select(ShowModel)
            .where(
                ShowModel.artist_id == artist_id,
                ShowModel.show_date >= from_date,
                ShowModel.status.in_(
                    [ShowStatus.SCHEDULED.value, ShowStatus.POSTPONED.value]
                ),
                ~has_setlist,
            )
            .order_by(ShowModel.show_date)
        )
        result = await self.session.execute(stmt)
        return [_to_show(m) for m in result.scalars().all()]

    async def list_needing_played_setlist(
        self, start: date, end: date, limit: int
    ) -> list[tuple[Show, str, str]]:
        """Past shows in [start, end] without a played setlist.

        Returns (show, artist name, venue name) so the caller can query the setlist
        history upstream without extra lookups.
        """
        has_played = exists().where(PlayedSetlistModel.show_id == ShowModel.id)
        stmt = (
            select(ShowModel, ArtistModel.name, VenueModel.name)
            .join(ArtistModel, ArtistModel.id == ShowModel.artist_id)
            .join(VenueModel, VenueModel.id == ShowModel.venue_id)
            .where(
                ShowModel.show_date >= start,
                ShowModel.show_date <= end,
                ShowModel.status != ShowStatus.CANCELED.value,
                ~has_played,
            )
            .order_by(ShowModel.show_date.desc())
            .limit(limit)
        )
        rows = (await self.session.execute(stmt)).all()
        return [(_to_show(show), artist_name, venue_name) for show, artist_name, venue_name in rows]

    async def list_engagement(self, start: date, end: date) -> list[ShowEngagement]:
        """View and vote counters of active shows dated in [start, end]."""
        stmt = (
            select(
                ShowModel.id,
                ShowModel.show_date,
                ShowModel.view_count,
                func.coalesce(func.sum(SetlistSongModel.vote_count), 0),
                func.count(SetlistSongModel.id),
            )
            .outerjoin(SetlistModel, SetlistModel.show_id == ShowModel.id)
            .outerjoin(SetlistSongModel, SetlistSongModel.setlist_id == SetlistModel.id)
            .where(
                ShowModel.show_date >= start,
                ShowModel.show_date <= end,
                ShowModel.status.in_(
                    [ShowStatus.SCHEDULED.value, ShowStatus.POSTPONED.value]
                ),
            )
            .group_by(ShowModel.id, ShowModel.show_date, ShowModel.view_count)
        )
        rows = (await self.session.execute(stmt)).all()
        return [
            ShowEngagement(
                show_id=show_id,
                show_date=show_date,
                view_count=view_count or 0,
                total_votes=int(total_votes or 0),
                song_count=int(song_count or 0),
            )
            for show_id, show_date, view_count, total_votes, song_count in rows
        ]

    async def set_trending_scores(self, scores: dict[str, float]) -> None:
        for show_id, score in scores.items():
            await self.session.execute(
                update(ShowModel).where(ShowModel.id == show_id).values(trending_score=score)
            )

    async def mark_completed(self, before: date) -> int:
        """Flip scheduled/postponed shows dated before ``before`` to completed."""
        stmt = (
            update(ShowModel)
            .where(
                ShowModel.show_date < before,
                ShowModel.status.in_(
                    [ShowStatus.SCHEDULED.value, ShowStatus.POSTPONED.value]
                ),
            )
            .values(status=ShowStatus.COMPLETED.value, updated_at=utc_now())
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    async def delete_finished_before(self, before: date) -> int:
        """Delete completed/canceled shows dated before ``before`` (cascades)."""
        stmt = delete(ShowModel).where(
            ShowModel.show_date < before,
            ShowModel.status.in_([ShowStatus.COMPLETED.value, ShowStatus.CANCELED.value]),
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    async def count(self) -> int:
        return (await self.session.execute(select(func.count(ShowModel.id)))).scalar_one()


# =============================================================================
# Songs
# =============================================================================


def _to_song(model: SongModel) -> Song:
    return Song(
        id=model.id,
        artist_id=model.artist_id,
        external_id=model.external_id,
        title=model.title,
        album=model.album,
        normalized_title=model.normalized_title,
        normalized_album=model.normalized_album,
        duration_ms=model.duration_ms,
        popularity=model.popularity,
        preview_url=model.preview_url,
        album_image_url=model.album_image_url,
    )


class SongRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def count_for_artist(self, artist_id: str) -> int:
        stmt = select(func.count(SongModel.id)).where(SongModel.artist_id == artist_id)
        return (await self.session.execute(stmt)).scalar_one()

    async def list_for_artist(self, artist_id: str) -> list[Song]:
        stmt = select(SongModel).where(SongModel.artist_id == artist_id)
        result = await self.session.execute(stmt)
        return [_to_song(m) for m in result.scalars().all()]

    async def top_for_artist(self, artist_id: str, limit: int) -> list[Song]:
        """Most popular songs first, unknown popularity last, title as tiebreaker."""
        stmt = (
            select(SongModel)
            .where(SongModel.artist_id == artist_id)
            .order_by(
                SongModel.popularity.is_(None),
                SongModel.popularity.desc(),
                SongModel.normalized_title,
            )
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [_to_song(m) for m in result.scalars().all()]

    async def insert_ignore_many(self, songs: Sequence[Song], batch_size: int = 50) -> int:
        """Insert songs in batches, skipping any that collide. Returns rows inserted."""
        if not songs:
            return 0
        artist_ids = {s.artist_id for s in songs}
        before = await self._count_for(artist_ids)
        for offset in range(0, len(songs), batch_size):
            batch = songs[offset : offset + batch_size]
            stmt = (
                _insert(self.session, SongModel)
                .values(
                    [
                        {
                            "id": s.id,
                            "artist_id": s.artist_id,
                            "external_id": s.external_id,
                            "title": s.title,
                            "album": s.album,
                            "normalized_title": s.normalized_title,
                            "normalized_album": s.normalized_album,
                            "duration_ms": s.duration_ms,
                            "popularity": s.popularity,
                            "preview_url": s.preview_url,
                            "album_image_url": s.album_image_url,
                            "created_at": utc_now(),
                        }
                        for s in batch
                    ]
                )
                .on_conflict_do_nothing()
            )
            await self.session.execute(stmt)
        return await self._count_for(artist_ids) - before

    async def _count_for(self, artist_ids: set[str]) -> int:
        stmt = select(func.count(SongModel.id)).where(SongModel.artist_id.in_(artist_ids))
        return (await self.session.execute(stmt)).scalar_one()


# =============================================================================
# Setlists
# =============================================================================


def _to_setlist(model: SetlistModel) -> Setlist:
    return Setlist(
        id=model.id,
        show_id=model.show_id,
        name=model.name,
        created_at=ensure_utc_aware(model.created_at),
        songs=[
            SetlistSong(
                id=s.id,
                setlist_id=s.setlist_id,
                song_id=s.song_id,
                position=s.position,
                vote_count=s.vote_count,
            )
            for s in sorted(model.songs, key=lambda s: s.position)
        ],
    )


class SetlistRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_show(self, show_id: str) -> Setlist | None:
        stmt = (
            select(SetlistModel)
            .where(SetlistModel.show_id == show_id)
            .options(selectinload(SetlistModel.songs))
        )
        model = (await self.session.execute(stmt)).scalar_one_or_none()
        return _to_setlist(model) if model else None

    async def exists_for_show(self, show_id: str) -> bool:
        stmt = select(exists().where(SetlistModel.show_id == show_id))
        return bool((await self.session.execute(stmt)).scalar())

    async def add(self, setlist: Setlist) -> tuple[Setlist, bool]:
        """Insert setlist + songs unless the show already has one.

        Returns (stored setlist, created?). Songs are only written when we won the
        insert on show_id.
        """
        stmt = (
            _insert(self.session, SetlistModel)
            .values(
                id=setlist.id,
                show_id=setlist.show_id,
                name=setlist.name,
                created_at=setlist.created_at,
            )
            .on_conflict_do_nothing(index_elements=["show_id"])
        )
        result = await self.session.execute(stmt)
        created = bool(result.rowcount)
        if created and setlist.songs:
            await self.session.execute(
                _insert(self.session, SetlistSongModel).values(
                    [
                        {
                            "id": s.id,
                            "setlist_id": setlist.id,
                            "song_id": s.song_id,
                            "position": s.position,
                            "vote_count": s.vote_count,
                        }
                        for s in setlist.songs
                    ]
                )
            )
        stored = await self.get_by_show(setlist.show_id)
        if stored is None:
            raise RuntimeError(f"Setlist for show {setlist.show_id} vanished right after upsert")
        return stored, created


# =============================================================================
# Played setlists
# =============================================================================


class PlayedSetlistRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_show(self, show_id: str) -> PlayedSetlist | None:
        stmt = (
            select(PlayedSetlistModel)
            .where(PlayedSetlistModel.show_id == show_id)
            .options(selectinload(PlayedSetlistModel.songs))
        )
        model = (await self.session.execute(stmt)).scalar_one_or_none()
        if model is None:
            return None
        return PlayedSetlist(
            id=model.id,
            show_id=model.show_id,
            external_id=model.external_id,
            event_date=model.event_date,
            accuracy_score=model.accuracy_score,
            imported_at=ensure_utc_aware(model.imported_at),
            songs=[
                PlayedSetlistSong(
                    id=s.id,
                    played_setlist_id=s.played_setlist_id,
                    song_id=s.song_id,
                    title=s.title,
                    position=s.position,
                )
                for s in sorted(model.songs, key=lambda s: s.position)
            ],
        )

    async def add(self, played: PlayedSetlist) -> bool:
        """Insert a played setlist with its songs. False if the show already has one."""
        stmt = (
            _insert(self.session, PlayedSetlistModel)
            .values(
                id=played.id,
                show_id=played.show_id,
                external_id=played.external_id,
                event_date=played.event_date,
                accuracy_score=played.accuracy_score,
                imported_at=played.imported_at,
            )
            .on_conflict_do_nothing(index_elements=["show_id"])
        )
        result = await self.session.execute(stmt)
        if not result.rowcount:
            return False
        if played.songs:
            await self.session.execute(
                _insert(self.session, PlayedSetlistSongModel).values(
                    [
                        {
                            "id": s.id,
                            "played_setlist_id": played.id,
                            "song_id": s.song_id,
                            "title": s.title,
                            "position": s.position,
                        }
                        for s in played.songs
                    ]
                )
            )
        return True


# =============================================================================
# Mapping review queue
# =============================================================================


class MappingReviewRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def record(self, review: ArtistMappingReview) -> None:
        """Store the review for an artist, replacing any earlier one."""
        await self.delete_for_artist(review.artist_id)
        self.session.add(
            ArtistMappingReviewModel(
                id=review.id,
                artist_id=review.artist_id,
                query_name=review.query_name,
                secondary_external_id=review.secondary_external_id,
                candidate_external_id=review.candidate_external_id,
                candidate_name=review.candidate_name,
                confidence=review.confidence,
                match_factors=list(review.match_factors),
                outcome=review.outcome.value,
                created_at=review.created_at,
            )
        )
        await self.session.flush()

    async def delete_for_artist(self, artist_id: str) -> None:
        await self.session.execute(
            delete(ArtistMappingReviewModel).where(
                ArtistMappingReviewModel.artist_id == artist_id
            )
        )

    async def list_reviews(self, outcome: ReviewOutcome | None = None) -> list[ArtistMappingReview]:
        stmt = select(ArtistMappingReviewModel).order_by(ArtistMappingReviewModel.created_at)
        if outcome is not None:
            stmt = stmt.where(ArtistMappingReviewModel.outcome == outcome.value)
        result = await self.session.execute(stmt)
        return [
            ArtistMappingReview(
                id=m.id,
                artist_id=m.artist_id,
                query_name=m.query_name,
                outcome=ReviewOutcome(m.outcome),
                secondary_external_id=m.secondary_external_id,
                candidate_external_id=m.candidate_external_id,
                candidate_name=m.candidate_name,
                confidence=m.confidence,
                match_factors=list(m.match_factors or []),
                created_at=ensure_utc_aware(m.created_at),
            )
            for m in result.scalars().all()
        ]


__all__ = [
    "ArtistRepository",
    "MappingReviewRepository",
    "PlayedSetlistRepository",
    "SetlistRepository",
    "ShowRepository",
    "SongRepository",
    "VenueRepository",
]

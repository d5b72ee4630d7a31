"""SQLAlchemy ORM models for setlistsync."""

import uuid
from datetime import UTC, date, datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


# Hey future me - SQLite doesn't preserve timezone info! Datetimes come back naive.
# ALWAYS run DB datetimes through this before comparing with datetime.now(UTC).
def ensure_utc_aware(dt: datetime) -> datetime:
    """Ensure datetime is UTC-aware, assuming naive datetimes are UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Listen up, ArtistModel lives in TWO identity spaces! primary_external_id is the catalog
# ID and is UNIQUE (one canonical row per catalog artist). secondary_external_id is the
# ticketing attraction ID and is only INDEXED - the ticketing side has duplicate
# attractions for the same act, so two rows may legitimately share one during cleanup.
# needs_backfill=True marks a stub: created from a ticketing event with no confident
# catalog match, no songs until the artist sync job manages to link it.
class ArtistModel(Base):
    """Canonical artist."""

    __tablename__ = "artists"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    # name_key(name), written by the repository; SQL lower() only folds ASCII
    name_key: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    primary_external_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, unique=True, index=True
    )
    secondary_external_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, index=True
    )
    image_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    popularity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    genres: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    needs_backfill: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_synced_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    songs: Mapped[list["SongModel"]] = relationship(
        "SongModel", back_populates="artist", passive_deletes=True
    )
    shows: Mapped[list["ShowModel"]] = relationship(
        "ShowModel", back_populates="artist", passive_deletes=True
    )


class VenueModel(Base):
    """Venue keyed by ticketing venue ID."""

    __tablename__ = "venues"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    external_id: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[str | None] = mapped_column(String(255), nullable=True)
    state: Mapped[str | None] = mapped_column(String(64), nullable=True)
    country: Mapped[str | None] = mapped_column(String(64), nullable=True)
    address: Mapped[str | None] = mapped_column(String(512), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )


# Yo, a show has TWO uniqueness keys on purpose! external_id catches the same event
# seen twice; (artist_id, venue_id, date) catches the ticketing API listing the same
# gig under a second event ID (resale listings, VIP packages).
class ShowModel(Base):
    """A concert of one artist at one venue on one date."""

    __tablename__ = "shows"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    external_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, unique=True, index=True
    )
    artist_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("artists.id", ondelete="CASCADE"), nullable=False, index=True
    )
    venue_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("venues.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    show_date: Mapped[date] = mapped_column("date", Date, nullable=False, index=True)
    start_time: Mapped[str | None] = mapped_column(String(16), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="scheduled", index=True
    )
    ticket_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    trending_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    artist: Mapped["ArtistModel"] = relationship("ArtistModel", back_populates="shows")

    __table_args__ = (
        UniqueConstraint("artist_id", "venue_id", "date", name="uq_shows_artist_venue_date"),
    )


# Hey future me - normalized_album is "" (never NULL) for singles without album info.
# NULLs are distinct in UNIQUE constraints on both SQLite and Postgres, so a NULL
# would let the same single be inserted over and over.
class SongModel(Base):
    """Catalog track of an artist."""

    __tablename__ = "songs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    artist_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("artists.id", ondelete="CASCADE"), nullable=False, index=True
    )
    external_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, unique=True, index=True
    )
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    album: Mapped[str | None] = mapped_column(String(512), nullable=True)
    normalized_title: Mapped[str] = mapped_column(String(512), nullable=False)
    normalized_album: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    popularity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    preview_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    album_image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )

    artist: Mapped["ArtistModel"] = relationship("ArtistModel", back_populates="songs")

    __table_args__ = (
        UniqueConstraint(
            "artist_id",
            "normalized_title",
            "normalized_album",
            name="uq_songs_artist_normalized",
        ),
    )


class SetlistModel(Base):
    """Predicted, voteable setlist. One per show."""

    __tablename__ = "setlists"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    show_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("shows.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="Main Set")
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )

    songs: Mapped[list["SetlistSongModel"]] = relationship(
        "SetlistSongModel",
        back_populates="setlist",
        order_by="SetlistSongModel.position",
        passive_deletes=True,
    )


class SetlistSongModel(Base):
    """Song slot in a predicted setlist. vote_count belongs to the voting subsystem."""

    __tablename__ = "setlist_songs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    setlist_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("setlists.id", ondelete="CASCADE"), nullable=False, index=True
    )
    song_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("songs.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    vote_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    setlist: Mapped["SetlistModel"] = relationship("SetlistModel", back_populates="songs")

    __table_args__ = (
        UniqueConstraint("setlist_id", "song_id", name="uq_setlist_songs_song"),
        UniqueConstraint("setlist_id", "position", name="uq_setlist_songs_position"),
    )


class PlayedSetlistModel(Base):
    """What was actually played at a show (setlist history import)."""

    __tablename__ = "played_setlists"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    show_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("shows.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    external_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    event_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    accuracy_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    imported_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )

    songs: Mapped[list["PlayedSetlistSongModel"]] = relationship(
        "PlayedSetlistSongModel",
        back_populates="played_setlist",
        order_by="PlayedSetlistSongModel.position",
        passive_deletes=True,
    )


class PlayedSetlistSongModel(Base):
    __tablename__ = "played_setlist_songs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    played_setlist_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("played_setlists.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    song_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("songs.id", ondelete="SET NULL"), nullable=True
    )
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    played_setlist: Mapped["PlayedSetlistModel"] = relationship(
        "PlayedSetlistModel", back_populates="songs"
    )

    __table_args__ = (
        UniqueConstraint(
            "played_setlist_id", "position", name="uq_played_setlist_songs_position"
        ),
    )


# Hey future me - this is the manual review queue for artist mappings. One row per
# artist (UNIQUE artist_id): a later, better decision overwrites the row instead of
# piling up history. Rows are deleted once the stub gets linked confidently.
class ArtistMappingReviewModel(Base):
    __tablename__ = "artist_mapping_reviews"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    artist_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("artists.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    query_name: Mapped[str] = mapped_column(String(255), nullable=False)
    secondary_external_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    candidate_external_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    candidate_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    match_factors: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    outcome: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )

"""Domain entities.

Plain dataclasses, no ORM and no pydantic. The persistence layer maps ORM rows to
these and back; services only ever see these.
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum


def new_id() -> str:
    """Generate a new entity ID (UUID4 string)."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


# Hey future me, the upstream ticketing status codes are NOT this enum! The mapping from
# "onsale"/"cancelled"/... lives in ShowStatus.from_upstream. COMPLETED is never sent by
# the ticketing API - database maintenance sets it once the show date has passed.
class ShowStatus(str, Enum):
    """Lifecycle of a show."""

    SCHEDULED = "scheduled"
    POSTPONED = "postponed"
    CANCELED = "canceled"
    COMPLETED = "completed"

    @classmethod
    def from_upstream(cls, code: str | None) -> "ShowStatus":
        """Map a ticketing status code onto our status.

        Unknown and missing codes count as scheduled. Both spellings of
        cancelled are accepted.
        """
        if not code:
            return cls.SCHEDULED
        normalized = code.strip().lower()
        if normalized in ("cancelled", "canceled"):
            return cls.CANCELED
        if normalized == "postponed":
            return cls.POSTPONED
        return cls.SCHEDULED


class MatchDecision(str, Enum):
    """Outcome of fuzzy-matching an artist name against catalog candidates."""

    ACCEPTED = "accepted"
    NEEDS_REVIEW = "needs_review"
    REJECTED = "rejected"

    @property
    def is_accepted(self) -> bool:
        return self is not MatchDecision.REJECTED


class ReviewOutcome(str, Enum):
    """Why an artist sits in the mapping review queue."""

    NEEDS_REVIEW = "needs_review"
    UNMATCHED = "unmatched"


@dataclass
class Artist:
    """Canonical artist, linked to the catalog and/or the ticketing identity space."""

    name: str
    id: str = field(default_factory=new_id)
    primary_external_id: str | None = None
    secondary_external_id: str | None = None
    image_url: str | None = None
    popularity: int | None = None
    genres: list[str] = field(default_factory=list)
    needs_backfill: bool = False
    last_synced_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def is_stub(self) -> bool:
        """A stub has no catalog link yet and cannot import songs."""
        return self.primary_external_id is None


@dataclass
class Venue:
    name: str
    external_id: str
    id: str = field(default_factory=new_id)
    city: str | None = None
    state: str | None = None
    country: str | None = None
    address: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    created_at: datetime = field(default_factory=utc_now)

    def fill_missing(self, other: "Venue") -> list[str]:
        """Copy fields from ``other`` that are null here. Returns changed field names.

        Existing values always win - we never overwrite venue data with a later
        (possibly sparser) upstream payload.
        """
        changed: list[str] = []
        for name in ("city", "state", "country", "address", "latitude", "longitude"):
            if getattr(self, name) is None and getattr(other, name) is not None:
                setattr(self, name, getattr(other, name))
                changed.append(name)
        return changed


@dataclass
class Show:
    artist_id: str
    venue_id: str
    name: str
    date: date
    id: str = field(default_factory=new_id)
    external_id: str | None = None
    start_time: str | None = None
    status: ShowStatus = ShowStatus.SCHEDULED
    ticket_url: str | None = None
    view_count: int = 0
    trending_score: float = 0.0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class Song:
    artist_id: str
    title: str
    id: str = field(default_factory=new_id)
    external_id: str | None = None
    album: str | None = None
    normalized_title: str = ""
    normalized_album: str = ""
    duration_ms: int | None = None
    popularity: int | None = None
    preview_url: str | None = None
    album_image_url: str | None = None


@dataclass
class SetlistSong:
    song_id: str
    position: int
    setlist_id: str = ""
    id: str = field(default_factory=new_id)
    vote_count: int = 0


@dataclass
class Setlist:
    """Predicted (voteable) setlist of a show. At most one per show."""

    show_id: str
    id: str = field(default_factory=new_id)
    name: str = "Main Set"
    songs: list[SetlistSong] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class PlayedSetlistSong:
    position: int
    title: str
    song_id: str | None = None
    played_setlist_id: str = ""
    id: str = field(default_factory=new_id)


@dataclass
class PlayedSetlist:
    """What was actually played, imported from the setlist-history upstream."""

    show_id: str
    id: str = field(default_factory=new_id)
    external_id: str | None = None
    event_date: date | None = None
    accuracy_score: float | None = None
    songs: list[PlayedSetlistSong] = field(default_factory=list)
    imported_at: datetime = field(default_factory=utc_now)


@dataclass
class ArtistMappingReview:
    """An artist whose catalog mapping a human should look at."""

    artist_id: str
    query_name: str
    outcome: ReviewOutcome
    id: str = field(default_factory=new_id)
    secondary_external_id: str | None = None
    candidate_external_id: str | None = None
    candidate_name: str | None = None
    confidence: float = 0.0
    match_factors: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class ShowEngagement:
    """Counters the trending score is computed from."""

    show_id: str
    show_date: date
    view_count: int = 0
    total_votes: int = 0
    song_count: int = 0

    @property
    def avg_votes_per_song(self) -> float:
        return self.total_votes / self.song_count if self.song_count else 0.0


__all__ = [
    "Artist",
    "ArtistMappingReview",
    "MatchDecision",
    "PlayedSetlist",
    "PlayedSetlistSong",
    "ReviewOutcome",
    "Setlist",
    "SetlistSong",
    "Show",
    "ShowEngagement",
    "ShowStatus",
    "Song",
    "Venue",
    "new_id",
    "utc_now",
]

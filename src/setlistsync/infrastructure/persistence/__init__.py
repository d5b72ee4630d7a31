"""Persistence layer: database, ORM models and repositories."""

from setlistsync.infrastructure.persistence.database import Database
from setlistsync.infrastructure.persistence.repositories import (
    ArtistRepository,
    MappingReviewRepository,
    PlayedSetlistRepository,
    SetlistRepository,
    ShowRepository,
    SongRepository,
    VenueRepository,
)

__all__ = [
    "ArtistRepository",
    "Database",
    "MappingReviewRepository",
    "PlayedSetlistRepository",
    "SetlistRepository",
    "ShowRepository",
    "SongRepository",
    "VenueRepository",
]

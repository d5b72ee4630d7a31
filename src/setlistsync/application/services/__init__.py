"""Application services."""

from setlistsync.application.services.artist_matcher import ArtistMatcher, MatchResult
from setlistsync.application.services.catalog_importer import (
    CatalogImporter,
    CatalogImportResult,
)
from setlistsync.application.services.catalog_search_cache import CatalogSearchCache
from setlistsync.application.services.entity_reconciler import (
    ArtistCandidate,
    ArtistResolution,
    EntityReconciler,
    EventOutcome,
    ShowResolution,
)
from setlistsync.application.services.setlist_importer import (
    PlayedSetlistImportResult,
    SetlistImporter,
    compare_setlists,
    title_similarity,
)
from setlistsync.application.services.setlist_seeder import (
    SetlistSeeder,
    sample_without_replacement,
)
from setlistsync.application.services.trending_service import (
    TrendingService,
    trending_score,
)

__all__ = [
    "ArtistCandidate",
    "ArtistMatcher",
    "ArtistResolution",
    "CatalogImportResult",
    "CatalogImporter",
    "CatalogSearchCache",
    "EntityReconciler",
    "EventOutcome",
    "MatchResult",
    "PlayedSetlistImportResult",
    "SetlistImporter",
    "SetlistSeeder",
    "ShowResolution",
    "TrendingService",
    "compare_setlists",
    "sample_without_replacement",
    "title_similarity",
    "trending_score",
]

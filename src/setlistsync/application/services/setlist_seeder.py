"""Initial setlist seeding for new shows.

Every new show gets one voteable setlist: 5 songs drawn at random from the artist's
20 most popular. Random (not simply the top 5) so two shows of the same tour don't
open with identical predictions.
"""

import logging
import random
from collections.abc import Sequence
from typing import TypeVar

from setlistsync.application.services.catalog_importer import CatalogImporter
from setlistsync.config import CatalogSettings
from setlistsync.domain.entities import Artist, Setlist, SetlistSong
from setlistsync.infrastructure.persistence import Database, SetlistRepository, SongRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")


def sample_without_replacement(items: Sequence[T], k: int, rng: random.Random) -> list[T]:
    """Partial Fisher-Yates: first k slots of a shuffle, no duplicates."""
    pool = list(items)
    k = min(k, len(pool))
    for i in range(k):
        j = rng.randrange(i, len(pool))
        pool[i], pool[j] = pool[j], pool[i]
    return pool[:k]


class SetlistSeeder:
    """Creates the initial setlist of a show exactly once."""

    def __init__(
        self,
        db: Database,
        importer: CatalogImporter,
        settings: CatalogSettings | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.db = db
        self.importer = importer
        self.settings = settings or CatalogSettings()
        self.rng = rng or random.Random()

    async def seed_initial_setlist(self, show_id: str, artist: Artist) -> Setlist | None:
        """Create the show's setlist. None when it already had one or there are no songs.

        An artist without songs gets a synchronous catalog import first. Stubs can't
        import, so their shows stay without a setlist until backfill links them.
        """
        async with self.db.session_scope() as session:
            if await SetlistRepository(session).exists_for_show(show_id):
                return None
            songs = await SongRepository(session).top_for_artist(
                artist.id, self.settings.seed_pool_size
            )

        if not songs and not artist.is_stub:
            await self.importer.import_artist_catalog(artist)
            async with self.db.session_scope() as session:
                songs = await SongRepository(session).top_for_artist(
                    artist.id, self.settings.seed_pool_size
                )

        if not songs:
            logger.info(
                "No songs for %s yet, show %s stays without a setlist", artist.name, show_id
            )
            return None

        picked = sample_without_replacement(songs, self.settings.seed_song_count, self.rng)
        setlist = Setlist(show_id=show_id)
        setlist.songs = [
            SetlistSong(setlist_id=setlist.id, song_id=song.id, position=position)
            for position, song in enumerate(picked, start=1)
        ]

        async with self.db.session_scope() as session:
            stored, created = await SetlistRepository(session).add(setlist)
        if not created:
            return None
        logger.info(
            "Seeded setlist for show %s with %d songs of %s",
            show_id,
            len(stored.songs),
            artist.name,
        )
        return stored

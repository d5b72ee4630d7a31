"""Played setlist import and prediction accuracy.

After a show, the setlist history upstream tells us what was actually played. We
store it (one PlayedSetlist per show), map each played title onto the artist's songs
and score how many of the voted-on predictions made it into the real set.

Song titles are matched by plain edit-distance similarity, never by substring:
"Home" is not "Homesick" and "Love" is not "Lovers Rock".
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from rapidfuzz.distance import Levenshtein

from setlistsync.domain.dtos import SetlistRecordDTO
from setlistsync.domain.entities import PlayedSetlist, PlayedSetlistSong, Show, Song
from setlistsync.domain.ports import ISetlistHistoryClient
from setlistsync.domain.value_objects import normalize_title
from setlistsync.infrastructure.persistence import (
    Database,
    PlayedSetlistRepository,
    SetlistRepository,
    SongRepository,
)

logger = logging.getLogger(__name__)

SONG_MATCH_THRESHOLD = 0.85


@dataclass
class PlayedSetlistImportResult:
    show_id: str
    imported: bool = False
    songs_total: int = 0
    songs_matched: int = 0
    accuracy_score: float | None = None
    reason: str | None = None


def compare_setlists(
    predicted_song_ids: Sequence[str], played_song_ids: Sequence[str | None]
) -> float | None:
    """Percentage of predicted songs that were actually played.

    None when there was no prediction to score.
    """
    if not predicted_song_ids:
        return None
    played = {song_id for song_id in played_song_ids if song_id}
    hits = sum(1 for song_id in set(predicted_song_ids) if song_id in played)
    return round(hits / len(set(predicted_song_ids)) * 100, 2)


def title_similarity(a: str, b: str) -> float:
    """Edit-distance similarity of two already normalized song titles, 0..1."""
    if not a or not b:
        return 0.0
    return Levenshtein.normalized_similarity(a, b)


class SetlistImporter:
    def __init__(
        self,
        db: Database,
        setlists: ISetlistHistoryClient,
        min_similarity: float = SONG_MATCH_THRESHOLD,
    ) -> None:
        self.db = db
        self.setlists = setlists
        self.min_similarity = min_similarity

    async def import_played_setlist(
        self, show: Show, artist_name: str, venue_name: str | None = None
    ) -> PlayedSetlistImportResult:
        result = PlayedSetlistImportResult(show_id=show.id)

        records = await self.setlists.search_setlists(artist_name, show.date, venue_name)
        if not records and venue_name:
            # Venue names differ between upstreams more often than not
            records = await self.setlists.search_setlists(artist_name, show.date)
        record = next((r for r in records if r.songs), None)
        if record is None:
            result.reason = "no_setlist_found"
            return result

        async with self.db.session_scope() as session:
            songs = await SongRepository(session).list_for_artist(show.artist_id)
            played = self._build_played_setlist(show, record, songs)
            predicted = await SetlistRepository(session).get_by_show(show.id)
            played.accuracy_score = compare_setlists(
                [s.song_id for s in predicted.songs] if predicted else [],
                [s.song_id for s in played.songs],
            )
            inserted = await PlayedSetlistRepository(session).add(played)

        if not inserted:
            result.reason = "already_imported"
            return result

        result.imported = True
        result.songs_total = len(played.songs)
        result.songs_matched = sum(1 for s in played.songs if s.song_id)
        result.accuracy_score = played.accuracy_score
        logger.info(
            "Imported played setlist for show %s: %d songs, %d matched, accuracy %s",
            show.id,
            result.songs_total,
            result.songs_matched,
            result.accuracy_score,
        )
        return result

    def _build_played_setlist(
        self, show: Show, record: SetlistRecordDTO, songs: list[Song]
    ) -> PlayedSetlist:
        by_title: dict[str, Song] = {}
        for song in sorted(songs, key=lambda s: -(s.popularity or 0)):
            by_title.setdefault(song.normalized_title, song)

        played = PlayedSetlist(
            show_id=show.id, external_id=record.external_id, event_date=record.event_date
        )
        for position, title in enumerate(record.songs, start=1):
            song = by_title.get(normalize_title(title)) or self._fuzzy_song(title, songs)
            played.songs.append(
                PlayedSetlistSong(
                    played_setlist_id=played.id,
                    position=position,
                    title=title,
                    song_id=song.id if song else None,
                )
            )
        return played

    def _fuzzy_song(self, title: str, songs: list[Song]) -> Song | None:
        wanted = normalize_title(title)
        if not wanted:
            return None
        best: Song | None = None
        best_score = 0.0
        for song in songs:
            score = title_similarity(wanted, song.normalized_title)
            if score > best_score:
                best, best_score = song, score
        return best if best_score >= self.min_similarity else None

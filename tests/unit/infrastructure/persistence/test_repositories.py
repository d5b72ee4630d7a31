"""Tests for the SQLAlchemy repositories (in-memory SQLite)."""

from datetime import UTC, date, datetime, timedelta

import pytest

from conftest import add_artist_with_songs, add_show
from setlistsync.domain.entities import (
    Artist,
    ArtistMappingReview,
    PlayedSetlist,
    PlayedSetlistSong,
    ReviewOutcome,
    Setlist,
    SetlistSong,
    Show,
    ShowStatus,
    Song,
)
from setlistsync.infrastructure.persistence import (
    ArtistRepository,
    Database,
    MappingReviewRepository,
    PlayedSetlistRepository,
    SetlistRepository,
    ShowRepository,
    SongRepository,
)


class TestArtistRepository:
    """Artist persistence."""

    @pytest.mark.asyncio
    async def test_add_with_taken_primary_id_returns_existing_row(self, db: Database) -> None:
        async with db.session_scope() as session:
            repo = ArtistRepository(session)
            first = await repo.add(Artist(name="The Weeknd", primary_external_id="sp-1"))
            second = await repo.add(Artist(name="Weeknd, The", primary_external_id="sp-1"))
            count = await repo.count()

        assert second.id == first.id
        assert second.name == "The Weeknd"
        assert count == 1

    @pytest.mark.asyncio
    async def test_find_by_name_is_case_insensitive(self, db: Database) -> None:
        async with db.session_scope() as session:
            await ArtistRepository(session).add(Artist(name="Taylor Swift"))

        async with db.session_scope() as session:
            found = await ArtistRepository(session).find_by_name("  taylor SWIFT ")

        assert found is not None
        assert found.name == "Taylor Swift"
        assert found.is_stub

    @pytest.mark.asyncio
    async def test_find_by_name_folds_non_ascii_case(self, db: Database) -> None:
        async with db.session_scope() as session:
            await ArtistRepository(session).add(Artist(name="ÓLAFUR ARNALDS"))

        async with db.session_scope() as session:
            found = await ArtistRepository(session).find_by_name("Ólafur Arnalds")
            missing = await ArtistRepository(session).find_by_name("Olafur Arnalds")

        assert found is not None
        assert found.name == "ÓLAFUR ARNALDS"
        # Accents are part of the key; only case and spacing are folded
        assert missing is None

    @pytest.mark.asyncio
    async def test_sync_candidates_never_synced_first(self, db: Database) -> None:
        now = datetime.now(UTC)
        async with db.session_scope() as session:
            repo = ArtistRepository(session)
            stale = await repo.add(
                Artist(
                    name="Stale",
                    primary_external_id="sp-stale",
                    last_synced_at=now - timedelta(days=30),
                )
            )
            fresh = await repo.add(
                Artist(name="Fresh", primary_external_id="sp-fresh", last_synced_at=now)
            )
            never = await repo.add(Artist(name="Never", primary_external_id="sp-never"))

        async with db.session_scope() as session:
            candidates = await ArtistRepository(session).list_sync_candidates(
                stale_before=now - timedelta(days=7), limit=10
            )

        ids = [a.id for a in candidates]
        assert ids == [never.id, stale.id]
        assert fresh.id not in ids

    @pytest.mark.asyncio
    async def test_delete_orphan_stubs_keeps_stubs_with_shows(self, db: Database) -> None:
        old = datetime.now(UTC) - timedelta(days=400)
        async with db.session_scope() as session:
            repo = ArtistRepository(session)
            orphan = await repo.add(Artist(name="Orphan", needs_backfill=True, created_at=old))
            booked = await repo.add(Artist(name="Booked", needs_backfill=True, created_at=old))
            recent = await repo.add(Artist(name="Recent", needs_backfill=True))
        await add_show(db, booked, date(2030, 1, 1))

        async with db.session_scope() as session:
            deleted = await ArtistRepository(session).delete_orphan_stubs(
                datetime.now(UTC) - timedelta(days=365)
            )

        async with db.session_scope() as session:
            repo = ArtistRepository(session)
            assert await repo.get(orphan.id) is None
            assert await repo.get(booked.id) is not None
            assert await repo.get(recent.id) is not None
        assert deleted == 1


class TestShowRepository:
    """Show upserts and maintenance queries."""

    @pytest.mark.asyncio
    async def test_duplicate_external_id_returns_existing(self, db: Database) -> None:
        artist = await add_artist_with_songs(db, Artist(name="The Weeknd"), [])
        first = await add_show(db, artist, date(2030, 7, 15))

        async with db.session_scope() as session:
            again, created = await ShowRepository(session).add(
                Show(
                    artist_id=artist.id,
                    venue_id=first.venue_id,
                    name="Duplicate",
                    date=date(2030, 7, 16),
                    external_id="tm-1",
                )
            )

        assert created is False
        assert again.id == first.id

    @pytest.mark.asyncio
    async def test_duplicate_natural_key_returns_existing(self, db: Database) -> None:
        artist = await add_artist_with_songs(db, Artist(name="The Weeknd"), [])
        first = await add_show(db, artist, date(2030, 7, 15))

        async with db.session_scope() as session:
            again, created = await ShowRepository(session).add(
                Show(
                    artist_id=artist.id,
                    venue_id=first.venue_id,
                    name="Same night, other listing",
                    date=date(2030, 7, 15),
                    external_id="tm-other",
                )
            )
            total = await ShowRepository(session).count()

        assert created is False
        assert again.id == first.id
        assert total == 1

    @pytest.mark.asyncio
    async def test_mark_completed_and_delete_cascade(self, db: Database) -> None:
        artist = await add_artist_with_songs(db, Artist(name="The Weeknd"), ["Blinding Lights"])
        past = await add_show(db, artist, date(2020, 1, 1), external_id="tm-past")
        future = await add_show(db, artist, date(2030, 1, 1), external_id="tm-future")
        async with db.session_scope() as session:
            song = (await SongRepository(session).list_for_artist(artist.id))[0]
            await SetlistRepository(session).add(
                Setlist(show_id=past.id, songs=[SetlistSong(song_id=song.id, position=1)])
            )

        async with db.session_scope() as session:
            repo = ShowRepository(session)
            completed = await repo.mark_completed(date(2025, 1, 1))
            deleted = await repo.delete_finished_before(date(2025, 1, 1))

        async with db.session_scope() as session:
            assert await ShowRepository(session).get(past.id) is None
            assert await ShowRepository(session).get(future.id) is not None
            assert await SetlistRepository(session).get_by_show(past.id) is None
        assert completed == 1
        assert deleted == 1

    @pytest.mark.asyncio
    async def test_needing_played_setlist_skips_canceled_and_imported(
        self, db: Database
    ) -> None:
        artist = await add_artist_with_songs(db, Artist(name="The Weeknd"), [])
        wanted = await add_show(db, artist, date(2030, 7, 10), external_id="tm-a")
        await add_show(
            db, artist, date(2030, 7, 11), external_id="tm-b",
            venue_external_id="venue-2", status=ShowStatus.CANCELED,
        )
        imported = await add_show(
            db, artist, date(2030, 7, 12), external_id="tm-c", venue_external_id="venue-3"
        )
        async with db.session_scope() as session:
            await PlayedSetlistRepository(session).add(PlayedSetlist(show_id=imported.id))

        async with db.session_scope() as session:
            rows = await ShowRepository(session).list_needing_played_setlist(
                date(2030, 7, 1), date(2030, 7, 31), limit=10
            )

        assert [(show.id, artist_name, venue_name) for show, artist_name, venue_name in rows] == [
            (wanted.id, "The Weeknd", "Madison Square Garden")
        ]

    @pytest.mark.asyncio
    async def test_list_engagement_sums_votes(self, db: Database) -> None:
        artist = await add_artist_with_songs(db, Artist(name="The Weeknd"), ["A", "B"])
        show = await add_show(db, artist, date(2030, 7, 15))
        async with db.session_scope() as session:
            songs = await SongRepository(session).list_for_artist(artist.id)
            await SetlistRepository(session).add(
                Setlist(
                    show_id=show.id,
                    songs=[
                        SetlistSong(song_id=songs[0].id, position=1, vote_count=7),
                        SetlistSong(song_id=songs[1].id, position=2, vote_count=3),
                    ],
                )
            )

        async with db.session_scope() as session:
            engagement = await ShowRepository(session).list_engagement(
                date(2030, 1, 1), date(2030, 12, 31)
            )

        assert len(engagement) == 1
        assert engagement[0].total_votes == 10
        assert engagement[0].song_count == 2
        assert engagement[0].avg_votes_per_song == 5.0


class TestSongRepository:
    """Song inserts and ordering."""

    @pytest.mark.asyncio
    async def test_insert_ignore_many_skips_duplicates(self, db: Database) -> None:
        artist = await add_artist_with_songs(db, Artist(name="The Weeknd"), ["Blinding Lights"])

        async with db.session_scope() as session:
            inserted = await SongRepository(session).insert_ignore_many(
                [
                    # Same normalized title + album as the existing song
                    Song(
                        artist_id=artist.id,
                        title="Blinding Lights",
                        album="Greatest Hits",
                        normalized_title="blinding lights",
                        normalized_album="greatest hits",
                        external_id="other-id",
                    ),
                    Song(
                        artist_id=artist.id,
                        title="Starboy",
                        normalized_title="starboy",
                        external_id="starboy-id",
                    ),
                ],
                batch_size=1,
            )
            total = await SongRepository(session).count_for_artist(artist.id)

        assert inserted == 1
        assert total == 2

    @pytest.mark.asyncio
    async def test_top_for_artist_orders_by_popularity(self, db: Database) -> None:
        artist = await add_artist_with_songs(db, Artist(name="X"), [])
        async with db.session_scope() as session:
            await SongRepository(session).insert_ignore_many(
                [
                    Song(artist_id=artist.id, title="Unknown", normalized_title="unknown"),
                    Song(artist_id=artist.id, title="Hit", normalized_title="hit", popularity=90),
                    Song(
                        artist_id=artist.id,
                        title="Deep Cut",
                        normalized_title="deep cut",
                        popularity=10,
                    ),
                ]
            )

        async with db.session_scope() as session:
            top = await SongRepository(session).top_for_artist(artist.id, limit=3)

        assert [s.title for s in top] == ["Hit", "Deep Cut", "Unknown"]


class TestSetlistRepositories:
    """Predicted and played setlists are write-once per show."""

    @pytest.mark.asyncio
    async def test_second_setlist_for_show_is_not_created(self, db: Database) -> None:
        artist = await add_artist_with_songs(db, Artist(name="The Weeknd"), ["A", "B"])
        show = await add_show(db, artist, date(2030, 7, 15))
        async with db.session_scope() as session:
            songs = await SongRepository(session).list_for_artist(artist.id)

        async with db.session_scope() as session:
            first, created_first = await SetlistRepository(session).add(
                Setlist(show_id=show.id, songs=[SetlistSong(song_id=songs[0].id, position=1)])
            )
        async with db.session_scope() as session:
            second, created_second = await SetlistRepository(session).add(
                Setlist(show_id=show.id, songs=[SetlistSong(song_id=songs[1].id, position=1)])
            )

        assert created_first is True
        assert created_second is False
        assert second.id == first.id
        assert [s.song_id for s in second.songs] == [songs[0].id]

    @pytest.mark.asyncio
    async def test_played_setlist_roundtrip_and_duplicate(self, db: Database) -> None:
        artist = await add_artist_with_songs(db, Artist(name="The Weeknd"), ["A"])
        show = await add_show(db, artist, date(2030, 7, 15))
        played = PlayedSetlist(
            show_id=show.id,
            external_id="sfm-1",
            accuracy_score=50.0,
            songs=[
                PlayedSetlistSong(position=2, title="Unreleased"),
                PlayedSetlistSong(position=1, title="A"),
            ],
        )

        async with db.session_scope() as session:
            assert await PlayedSetlistRepository(session).add(played) is True
        async with db.session_scope() as session:
            assert await PlayedSetlistRepository(session).add(
                PlayedSetlist(show_id=show.id)
            ) is False
            stored = await PlayedSetlistRepository(session).get_by_show(show.id)

        assert stored is not None
        assert stored.external_id == "sfm-1"
        assert [s.title for s in stored.songs] == ["A", "Unreleased"]


class TestMappingReviewRepository:
    @pytest.mark.asyncio
    async def test_record_replaces_previous_review(self, db: Database) -> None:
        artist = await add_artist_with_songs(db, Artist(name="Simon and Garfunkel"), [])

        async with db.session_scope() as session:
            repo = MappingReviewRepository(session)
            await repo.record(
                ArtistMappingReview(
                    artist_id=artist.id, query_name=artist.name, outcome=ReviewOutcome.UNMATCHED
                )
            )
            await repo.record(
                ArtistMappingReview(
                    artist_id=artist.id,
                    query_name=artist.name,
                    outcome=ReviewOutcome.NEEDS_REVIEW,
                    candidate_name="Simon & Garfunkel",
                    confidence=0.8,
                    match_factors=["abbreviation_match"],
                )
            )

        async with db.session_scope() as session:
            reviews = await MappingReviewRepository(session).list_reviews()
            unmatched = await MappingReviewRepository(session).list_reviews(ReviewOutcome.UNMATCHED)

        assert len(reviews) == 1
        assert reviews[0].outcome is ReviewOutcome.NEEDS_REVIEW
        assert reviews[0].match_factors == ["abbreviation_match"]
        assert unmatched == []

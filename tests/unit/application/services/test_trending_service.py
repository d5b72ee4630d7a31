"""Tests for trending score computation."""

from datetime import date

import pytest
from sqlalchemy import update

from conftest import add_artist_with_songs, add_show
from setlistsync.application.services import TrendingService, trending_score
from setlistsync.application.services.trending_service import time_multiplier
from setlistsync.domain.entities import Artist, ShowEngagement, ShowStatus
from setlistsync.infrastructure.persistence import Database, ShowRepository
from setlistsync.infrastructure.persistence.models import ShowModel

TODAY = date(2030, 7, 1)


class TestTrendingScore:
    @pytest.mark.parametrize(
        ("days", "multiplier"),
        [(0, 2.0), (7, 2.0), (8, 1.5), (30, 1.5), (31, 1.0), (90, 1.0), (91, 0.5)],
    )
    def test_time_multiplier(self, days: int, multiplier: float) -> None:
        assert time_multiplier(days) == multiplier

    def test_score_formula(self) -> None:
        engagement = ShowEngagement(
            show_id="s",
            show_date=date(2030, 7, 6),
            view_count=99,
            total_votes=10,
            song_count=2,
        )
        # visibility 20 * 0.2 + (5 + 5 * 2) * 0.5 = 11.5, doubled for < 1 week
        assert trending_score(engagement, TODAY) == pytest.approx(23.0)

    def test_no_engagement_scores_zero(self) -> None:
        engagement = ShowEngagement(show_id="s", show_date=date(2030, 12, 1))
        assert trending_score(engagement, TODAY) == 0.0


class TestTrendingService:
    @pytest.mark.asyncio
    async def test_recompute_scores_upcoming_active_shows(self, db: Database) -> None:
        artist = await add_artist_with_songs(db, Artist(name="The Weeknd"), [])
        soon = await add_show(db, artist, date(2030, 7, 3), external_id="tm-soon")
        past = await add_show(db, artist, date(2030, 6, 1), external_id="tm-past")
        canceled = await add_show(
            db, artist, date(2030, 7, 4), external_id="tm-canceled", status=ShowStatus.CANCELED
        )
        async with db.session_scope() as session:
            await session.execute(update(ShowModel).values(view_count=99))

        count = await TrendingService(db, today=lambda: TODAY).recompute()

        async with db.session_scope() as session:
            repo = ShowRepository(session)
            scores = {show.id: (await repo.get(show.id)) for show in (soon, past, canceled)}
        assert count == 1
        # no votes: log10(100) * 10 * 0.2, doubled for < 1 week
        assert scores[soon.id].trending_score == pytest.approx(8.0)  # type: ignore[union-attr]
        assert scores[past.id].trending_score == 0.0  # type: ignore[union-attr]
        assert scores[canceled.id].trending_score == 0.0  # type: ignore[union-attr]

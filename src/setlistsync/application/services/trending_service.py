"""Trending score for upcoming shows.

    visibility = log10(views + 1) * 10
    engagement = total_votes * 0.5 + avg_votes_per_song * 2
    score      = (visibility * 0.2 + engagement * 0.5) * time_multiplier

time_multiplier favours shows that are close: 2.0 within a week, 1.5 within a
month, 1.0 within three months, 0.5 beyond that.
"""

import logging
import math
from collections.abc import Callable
from datetime import date, timedelta

from setlistsync.domain.entities import ShowEngagement, utc_now
from setlistsync.infrastructure.persistence import Database, ShowRepository

logger = logging.getLogger(__name__)

VISIBILITY_WEIGHT = 0.2
ENGAGEMENT_WEIGHT = 0.5


def time_multiplier(days_until: int) -> float:
    if days_until <= 7:
        return 2.0
    if days_until <= 30:
        return 1.5
    if days_until <= 90:
        return 1.0
    return 0.5


def trending_score(engagement: ShowEngagement, today: date) -> float:
    visibility = math.log10(max(engagement.view_count, 0) + 1) * 10
    activity = engagement.total_votes * 0.5 + engagement.avg_votes_per_song * 2
    base = visibility * VISIBILITY_WEIGHT + activity * ENGAGEMENT_WEIGHT
    days_until = (engagement.show_date - today).days
    return round(base * time_multiplier(days_until), 4)


class TrendingService:
    def __init__(
        self,
        db: Database,
        window_days: int = 365,
        today: Callable[[], date] = lambda: utc_now().date(),
    ) -> None:
        self.db = db
        self.window_days = window_days
        self._today = today

    async def recompute(self) -> int:
        """Recompute and store the score of every upcoming active show."""
        today = self._today()
        async with self.db.session_scope() as session:
            repo = ShowRepository(session)
            rows = await repo.list_engagement(today, today + timedelta(days=self.window_days))
            scores = {row.show_id: trending_score(row, today) for row in rows}
            await repo.set_trending_scores(scores)
        logger.info("Recomputed trending scores for %d shows", len(scores))
        return len(scores)

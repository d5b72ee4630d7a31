"""Fuzzy artist-name matching between the ticketing and catalog identity spaces.

Hey future me - this decides whether "Beyonce" from a ticketing event IS catalog
artist "Beyoncé". Get it wrong in one direction and two canonical rows exist for one
act; get it wrong in the other and a stranger's songs end up in a setlist.

SCORE (raw confidence, 0..1):
- 1.0   normalized names equal
- 0.9   one normalized name contains the other (shorter side >= 3 chars)
- else  1 - levenshtein / max(len)   (rapidfuzz)
- +0.2  (capped at 0.95) when names only differ by abbreviations (& / and, ft / feat)

RANKING among candidates: min(1, score * (1 + 0.5 * popularity / 100)). Popularity
only breaks near-ties between candidates, it NEVER pushes a weak name over a
threshold - decisions use the raw score:

    score < 0.70          -> REJECTED (caller creates a stub)
    0.70 <= score < 0.85  -> NEEDS_REVIEW (accepted, recorded for a human)
    score >= 0.85         -> ACCEPTED
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from rapidfuzz.distance import Levenshtein

from setlistsync.domain.dtos import CatalogArtistDTO
from setlistsync.domain.entities import MatchDecision
from setlistsync.domain.value_objects import canonical_form, normalize_name

logger = logging.getLogger(__name__)

ACCEPT_THRESHOLD = 0.85
REVIEW_THRESHOLD = 0.70
SUBSTRING_SCORE = 0.9
ABBREVIATION_BOOST = 0.2
ABBREVIATION_CAP = 0.95
MIN_SUBSTRING_LENGTH = 3
POPULARITY_WEIGHT = 0.5


@dataclass
class MatchResult:
    """Best candidate for a query plus how sure we are."""

    query: str
    candidate: CatalogArtistDTO | None
    confidence: float
    decision: MatchDecision
    ranking_score: float = 0.0
    factors: list[str] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.candidate is not None and self.decision.is_accepted


class ArtistMatcher:
    """Scores artist names and picks the best catalog candidate."""

    def __init__(
        self,
        accept_threshold: float = ACCEPT_THRESHOLD,
        review_threshold: float = REVIEW_THRESHOLD,
    ) -> None:
        if not 0 <= review_threshold <= accept_threshold <= 1:
            raise ValueError("thresholds must satisfy 0 <= review <= accept <= 1")
        self.accept_threshold = accept_threshold
        self.review_threshold = review_threshold

    def score(self, a: str, b: str) -> float:
        return self.explain(a, b)[0]

    def explain(self, a: str, b: str) -> tuple[float, list[str]]:
        """Score two names and list which match factors applied."""
        left, right = normalize_name(a), normalize_name(b)
        if not left or not right:
            return 0.0, []
        if left == right:
            return 1.0, ["exact_match"]

        factors: list[str] = []
        shorter, longer = sorted((left, right), key=len)
        if len(shorter) >= MIN_SUBSTRING_LENGTH and shorter in longer:
            score = SUBSTRING_SCORE
            factors.append("substring_match")
        else:
            score = Levenshtein.normalized_similarity(left, right)
            factors.append("edit_distance")

        if canonical_form(left) == canonical_form(right):
            score = max(score, min(score + ABBREVIATION_BOOST, ABBREVIATION_CAP))
            factors.append("abbreviation_match")

        left_words, right_words = set(left.split()), set(right.split())
        common = left_words & right_words
        if common:
            factors.append("common_words")
            if len(common) / max(len(left_words), len(right_words)) >= 0.5:
                factors.append("high_word_overlap")

        return round(score, 4), factors

    def decide(self, confidence: float) -> MatchDecision:
        if confidence >= self.accept_threshold:
            return MatchDecision.ACCEPTED
        if confidence >= self.review_threshold:
            return MatchDecision.NEEDS_REVIEW
        return MatchDecision.REJECTED

    @staticmethod
    def ranking_score(confidence: float, popularity: int | None) -> float:
        boost = 1 + POPULARITY_WEIGHT * (max(0, min(popularity or 0, 100)) / 100)
        return min(1.0, confidence * boost)

    def best_match(self, query: str, candidates: Sequence[CatalogArtistDTO]) -> MatchResult:
        """Pick the highest-ranked candidate; ties go to the higher raw score."""
        best: MatchResult | None = None
        for candidate in candidates:
            confidence, factors = self.explain(query, candidate.name)
            result = MatchResult(
                query=query,
                candidate=candidate,
                confidence=confidence,
                decision=self.decide(confidence),
                ranking_score=self.ranking_score(confidence, candidate.popularity),
                factors=factors,
            )
            if best is None or (result.ranking_score, result.confidence) > (
                best.ranking_score,
                best.confidence,
            ):
                best = result

        if best is None:
            return MatchResult(
                query=query, candidate=None, confidence=0.0, decision=MatchDecision.REJECTED
            )

        logger.debug(
            "Best match for %r: %r (confidence=%.3f, rank=%.3f, decision=%s, factors=%s)",
            query,
            best.candidate.name if best.candidate else None,
            best.confidence,
            best.ranking_score,
            best.decision.value,
            best.factors,
        )
        return best

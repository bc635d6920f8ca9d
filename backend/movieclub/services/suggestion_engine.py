"""
suggestion_engine.py

Group suggestions from accumulated likes.

Ranking:
  1. only unwatched movies liked by at least one cohort member
  2. more likes from the cohort first
  3. on equal cohort likes, fewer likes overall first, so titles the group
     wants but the rest of the channel has not piled onto come forward
  4. movie ID as a final, stable key

Every movie tied at the top cohort count is a candidate. The order of the
candidate list follows the ranking above; callers that present the ties are
expected to shuffle them.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from movieclub.services.engagement_store import EngagementStore, MovieTally

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    movie_id: str
    title: str
    year: Optional[int]
    cohort_likes: int
    total_likes: int

    @property
    def display_title(self) -> str:
        return f"{self.title} ({self.year})" if self.year else self.title


@dataclass(frozen=True)
class SuggestionResult:
    max_cohort_likes: int = 0
    candidates: List[Candidate] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.candidates


def _rank_key(tally: MovieTally):
    return (-tally.cohort_likes, tally.total_likes, tally.movie_id)


def rank_tallies(tallies: Iterable[MovieTally]) -> SuggestionResult:
    ranked = sorted((t for t in tallies if t.cohort_likes > 0), key=_rank_key)
    if not ranked:
        return SuggestionResult()

    top = ranked[0].cohort_likes
    candidates = [
        Candidate(
            movie_id=t.movie_id,
            title=t.title,
            year=t.year,
            cohort_likes=t.cohort_likes,
            total_likes=t.total_likes,
        )
        for t in ranked
        if t.cohort_likes == top
    ]
    return SuggestionResult(max_cohort_likes=top, candidates=candidates)


class SuggestionEngine:
    def __init__(self, store: EngagementStore):
        self.store = store

    def suggest(self, cohort: Iterable[str]) -> SuggestionResult:
        cohort = set(cohort)
        result = rank_tallies(self.store.like_tallies(cohort))
        if result.is_empty:
            logger.info(f"No movies to suggest for cohort of {len(cohort)}")
        else:
            logger.info(
                f"Suggesting {len(result.candidates)} movie(s) with {result.max_cohort_likes} "
                f"cohort like(s) for cohort of {len(cohort)}"
            )
        return result

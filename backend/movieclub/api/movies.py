"""
movies.py - read-only views of the channel's movie list
"""
from typing import List, Optional
import logging

from fastapi import APIRouter, HTTPException, Query, Request

from movieclub.schemas import MovieSchema, SuggestionSchema

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/movies", response_model=List[MovieSchema])
def list_movies(request: Request, watched: Optional[bool] = None):
    store = request.app.state.store
    return [MovieSchema.model_validate(m) for m in store.list_movies(watched=watched)]


@router.get("/movies/{movie_id}", response_model=MovieSchema)
def get_movie(movie_id: str, request: Request):
    movie = request.app.state.store.get_movie(movie_id)
    if movie is None:
        raise HTTPException(status_code=404, detail="Movie not found")
    return MovieSchema.model_validate(movie)


@router.get("/suggestions", response_model=SuggestionSchema)
def get_suggestions(request: Request, users: List[str] = Query(...)):
    """Ranked candidates for a cohort, e.g. /api/suggestions?users=1&users=2.

    Unlike the chat announcement, the candidates keep their ranked order.
    """
    engine = request.app.state.suggestion_engine
    cohort = sorted(set(users))
    result = engine.suggest(cohort)
    logger.info(f"Suggestion query for {len(cohort)} user(s): {len(result.candidates)} candidate(s)")
    return SuggestionSchema(
        cohort=cohort,
        max_cohort_likes=result.max_cohort_likes,
        candidates=[
            {
                "movie_id": c.movie_id,
                "title": c.title,
                "year": c.year,
                "cohort_likes": c.cohort_likes,
                "total_likes": c.total_likes,
            }
            for c in result.candidates
        ],
    )

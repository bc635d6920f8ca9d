"""
identity_resolver.py

Turns a chat message containing an IMDb title link into a canonical movie ID
plus display metadata.

Link shapes accepted (case-insensitive, anywhere in the text):
- https://www.imdb.com/title/tt0133093/
- https://m.imdb.com/title/tt0133093/?ref_=nv_sr_1
- https://www.imdb.com/de/title/tt0133093/
- https://www.imdb.com/de-DE/title/tt0133093/

Resolution finishes (or fails) before anything is written to the store.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from movieclub.errors import MetadataUnavailable, NoReferenceFound
from movieclub.services.omdb_client import OmdbClient

logger = logging.getLogger(__name__)

IMDB_ID_PATTERN = re.compile(
    r"imdb\.com/(?:[a-z]{2}(?:-[a-z]{2})?/)?title/(tt\d+)",
    re.IGNORECASE,
)
YEAR_PATTERN = re.compile(r"\d{4}")


@dataclass(frozen=True)
class ResolvedMovie:
    movie_id: str
    title: str
    year: Optional[int]


def extract_movie_id(text: str) -> Optional[str]:
    """First IMDb title ID linked in the text (normalised to "tt..."), or None."""
    if not text:
        return None
    match = IMDB_ID_PATTERN.search(text)
    if not match:
        return None
    return match.group(1).lower()


def parse_year(raw: Optional[str]) -> Optional[int]:
    """OMDb years look like "1999", "2019–2021" or "N/A"."""
    if not raw:
        return None
    match = YEAR_PATTERN.search(str(raw))
    return int(match.group(0)) if match else None


class IdentityResolver:
    """
    Resolves IMDb links to (movie_id, title, year).

    Usage:
        resolver = IdentityResolver(OmdbClient(api_key))
        movie = await resolver.resolve("check this https://www.imdb.com/title/tt0133093/")
    """

    def __init__(self, metadata_client: OmdbClient):
        self.metadata_client = metadata_client

    async def resolve(self, raw_text: str) -> ResolvedMovie:
        movie_id = extract_movie_id(raw_text)
        if movie_id is None:
            raise NoReferenceFound(raw_text)

        data = await self.metadata_client.fetch_title(movie_id)
        title = data.get("Title")
        if not isinstance(title, str) or not title.strip() or title == "N/A":
            raise MetadataUnavailable(movie_id, "response has no title")

        movie = ResolvedMovie(movie_id=movie_id, title=title.strip(), year=parse_year(data.get("Year")))
        logger.debug(f"Resolved {movie_id} to {movie.title} ({movie.year})")
        return movie

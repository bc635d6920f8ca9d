"""
errors.py

Exception taxonomy for MovieClub.

Resolution failures are expected and surfaced to the channel. Invariant
violations mean a handler sequenced its store calls wrongly and are logged as
bugs. Expected non-error outcomes (already liked, not liked, already watched)
are never raised; they come back as booleans on the store's result objects.
"""
from typing import Optional


class MovieClubError(Exception):
    """Base class for every error raised by the MovieClub core."""


class ResolutionError(MovieClubError):
    """A reference could not be turned into a known movie."""


class NoReferenceFound(ResolutionError):
    def __init__(self, text: str = ""):
        self.text = text
        super().__init__("No IMDb title link found in message")


class MetadataUnavailable(ResolutionError):
    """The metadata lookup failed, timed out or returned a negative result."""

    def __init__(self, movie_id: str, reason: str):
        self.movie_id = movie_id
        self.reason = reason
        super().__init__(f"Could not look up {movie_id}: {reason}")


class InvariantViolation(MovieClubError):
    """A storage constraint rejected a write the handlers should never issue."""


class UnknownMovie(InvariantViolation):
    def __init__(self, movie_id: str):
        self.movie_id = movie_id
        super().__init__(f"Movie not found in database: {movie_id}")


class DuplicateLink(InvariantViolation):
    def __init__(self, message_id: str, movie_id: Optional[str] = None):
        self.message_id = message_id
        self.movie_id = movie_id
        super().__init__(f"Message {message_id} is already linked to a movie")


# Name used by the store contract for the same condition
LinkConflict = DuplicateLink


class StoreError(MovieClubError):
    """Any other storage failure, wrapping the underlying SQLAlchemy error."""

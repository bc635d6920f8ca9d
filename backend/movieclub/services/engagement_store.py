"""
engagement_store.py

Persistence for movies, message links, likes and watched flags.

Every method opens its own session and commits or rolls back before
returning, so callers on different threads never share a session. Outcomes
such as "already liked" are decided by the database (primary keys, foreign
keys, conditional updates) and reported through the row count of a single
statement, never by reading first and writing afterwards.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import case, delete, func, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from movieclub.errors import DuplicateLink, StoreError, UnknownMovie
from movieclub.models import LINK_KIND_REFERENCE, Like, MessageLink, Movie
from movieclub.utils.timezone import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpsertResult:
    inserted: bool


@dataclass(frozen=True)
class LikeResult:
    added: bool


@dataclass(frozen=True)
class UnlikeResult:
    removed: bool


@dataclass(frozen=True)
class WatchedResult:
    changed: bool


@dataclass(frozen=True)
class MovieTally:
    movie_id: str
    title: str
    year: Optional[int]
    cohort_likes: int
    total_likes: int


@dataclass(frozen=True)
class MovieSummary:
    id: str
    title: str
    year: Optional[int]
    watched: bool
    watched_at: Optional[datetime]
    added_at: Optional[datetime]
    like_count: int


def _is_foreign_key_violation(exc: IntegrityError) -> bool:
    # sqlite: "FOREIGN KEY constraint failed"; postgres: "violates foreign key constraint"
    return "foreign key" in str(exc.orig).lower()


class EngagementStore:
    """
    Movie list for one community channel.

    Usage:
        store = EngagementStore(make_session_factory(engine))
        store.upsert_movie("tt0133093", "The Matrix", 1999)
        store.link_message("1437574563528704101", "tt0133093")
        store.add_like("tt0133093", "622111772979101706")
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _insert(self, db: Session, model):
        if db.get_bind().dialect.name == "postgresql":
            return pg_insert(model.__table__)
        return sqlite_insert(model.__table__)

    def upsert_movie(self, movie_id: str, title: str, year: Optional[int] = None) -> UpsertResult:
        """Insert the movie unless its ID is already known. Title/year of a known movie are left alone."""
        db: Session = self.session_factory()
        try:
            stmt = self._insert(db, Movie).values(id=movie_id, title=title, year=year, watched=False)
            stmt = stmt.on_conflict_do_nothing(index_elements=["id"])
            result = db.execute(stmt)
            db.commit()
            inserted = int(result.rowcount or 0) == 1
            if inserted:
                logger.info(f"Successfully persisted movie: {title} ({movie_id})")
            else:
                logger.info(f"Movie already in database: {movie_id}")
            return UpsertResult(inserted=inserted)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to persist movie {movie_id}: {e}")
            raise StoreError(str(e)) from e
        finally:
            db.close()

    def link_message(self, message_id: str, movie_id: str, kind: str = LINK_KIND_REFERENCE) -> None:
        db: Session = self.session_factory()
        try:
            db.add(MessageLink(message_id=message_id, movie_id=movie_id, kind=kind))
            db.commit()
            logger.info(f"Linked message {message_id} to {movie_id} ({kind})")
        except IntegrityError as e:
            db.rollback()
            if _is_foreign_key_violation(e):
                raise UnknownMovie(movie_id) from e
            raise DuplicateLink(message_id, movie_id) from e
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to link message {message_id}: {e}")
            raise StoreError(str(e)) from e
        finally:
            db.close()

    def movie_for_message(self, message_id: str) -> Optional[str]:
        """Movie ID referenced by a message, or None for an untracked message."""
        db: Session = self.session_factory()
        try:
            link = db.get(MessageLink, message_id)
            return link.movie_id if link else None
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e
        finally:
            db.close()

    def add_like(self, movie_id: str, user_id: str) -> LikeResult:
        db: Session = self.session_factory()
        try:
            stmt = self._insert(db, Like).values(movie_id=movie_id, user_id=user_id)
            stmt = stmt.on_conflict_do_nothing(index_elements=["movie_id", "user_id"])
            result = db.execute(stmt)
            db.commit()
            added = int(result.rowcount or 0) == 1
            if added:
                logger.info(f"Like added: user {user_id} liked movie {movie_id}")
            else:
                logger.debug(f"User {user_id} already liked movie {movie_id} (duplicate ignored)")
            return LikeResult(added=added)
        except IntegrityError as e:
            db.rollback()
            if _is_foreign_key_violation(e):
                raise UnknownMovie(movie_id) from e
            raise StoreError(str(e)) from e
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(str(e)) from e
        finally:
            db.close()

    def remove_like(self, movie_id: str, user_id: str) -> UnlikeResult:
        db: Session = self.session_factory()
        try:
            result = db.execute(
                delete(Like).where(Like.movie_id == movie_id, Like.user_id == user_id)
            )
            db.commit()
            removed = int(result.rowcount or 0) > 0
            if removed:
                logger.info(f"Like removed: user {user_id} unliked movie {movie_id}")
            else:
                logger.debug(f"No like to remove: user {user_id} had not liked movie {movie_id}")
            return UnlikeResult(removed=removed)
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(str(e)) from e
        finally:
            db.close()

    def set_watched(self, movie_id: str, watched: bool) -> WatchedResult:
        """Flip the watched flag. changed is False when the flag already had the target value."""
        db: Session = self.session_factory()
        try:
            result = db.execute(
                update(Movie)
                .where(Movie.id == movie_id, Movie.watched != watched)
                .values(watched=watched, watched_at=utc_now() if watched else None)
                .execution_options(synchronize_session=False)
            )
            changed = int(result.rowcount or 0) > 0
            if not changed and db.get(Movie, movie_id) is None:
                db.rollback()
                raise UnknownMovie(movie_id)
            db.commit()
            if changed:
                logger.info(f"Movie {movie_id} marked as {'seen' if watched else 'unseen'}")
            else:
                logger.debug(f"Movie {movie_id} already {'seen' if watched else 'unseen'}")
            return WatchedResult(changed=changed)
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(str(e)) from e
        finally:
            db.close()

    def messages_for_movie(self, movie_id: str) -> List[str]:
        db: Session = self.session_factory()
        try:
            rows = (
                db.query(MessageLink.message_id)
                .filter(MessageLink.movie_id == movie_id)
                .order_by(MessageLink.created_at.asc(), MessageLink.message_id.asc())
                .all()
            )
            return [row.message_id for row in rows]
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e
        finally:
            db.close()

    def like_tallies(self, cohort: Iterable[str]) -> List[MovieTally]:
        """Per unwatched movie: likes from the cohort and likes overall, for movies the cohort liked at all."""
        cohort = sorted(set(cohort))
        if not cohort:
            return []
        db: Session = self.session_factory()
        try:
            cohort_likes = func.sum(case((Like.user_id.in_(cohort), 1), else_=0))
            total_likes = func.count(Like.user_id)
            rows = (
                db.query(
                    Movie.id,
                    Movie.title,
                    Movie.year,
                    cohort_likes.label("cohort_likes"),
                    total_likes.label("total_likes"),
                )
                .join(Like, Like.movie_id == Movie.id)
                .filter(Movie.watched.is_(False))
                .group_by(Movie.id, Movie.title, Movie.year)
                .having(cohort_likes > 0)
                .order_by(cohort_likes.desc(), total_likes.asc(), Movie.id.asc())
                .all()
            )
            return [
                MovieTally(
                    movie_id=row.id,
                    title=row.title,
                    year=row.year,
                    cohort_likes=int(row.cohort_likes),
                    total_likes=int(row.total_likes),
                )
                for row in rows
            ]
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e
        finally:
            db.close()

    def get_movie(self, movie_id: str) -> Optional[MovieSummary]:
        found = self.list_movies(movie_id=movie_id)
        return found[0] if found else None

    def list_movies(self, watched: Optional[bool] = None, movie_id: Optional[str] = None) -> List[MovieSummary]:
        db: Session = self.session_factory()
        try:
            like_count = func.count(Like.user_id)
            query = (
                db.query(Movie, like_count.label("like_count"))
                .outerjoin(Like, Like.movie_id == Movie.id)
                .group_by(Movie.id)
            )
            if watched is not None:
                query = query.filter(Movie.watched.is_(watched))
            if movie_id is not None:
                query = query.filter(Movie.id == movie_id)
            rows = query.order_by(Movie.added_at.asc(), Movie.id.asc()).all()
            return [
                MovieSummary(
                    id=movie.id,
                    title=movie.title,
                    year=movie.year,
                    watched=bool(movie.watched),
                    watched_at=movie.watched_at,
                    added_at=movie.added_at,
                    like_count=int(count),
                )
                for movie, count in rows
            ]
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e
        finally:
            db.close()

    def stats(self) -> Dict[str, int]:
        db: Session = self.session_factory()
        try:
            return {
                "movies": db.query(func.count(Movie.id)).scalar() or 0,
                "unwatched": db.query(func.count(Movie.id)).filter(Movie.watched.is_(False)).scalar() or 0,
                "likes": db.query(func.count(Like.user_id)).scalar() or 0,
                "links": db.query(func.count(MessageLink.message_id)).scalar() or 0,
            }
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e
        finally:
            db.close()

    def close(self) -> None:
        """Release pooled connections; call once at shutdown."""
        bind = self.session_factory.kw.get("bind")
        if bind is not None:
            bind.dispose()
            logger.info("Database connections released")

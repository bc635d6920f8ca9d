"""
models.py

SQLAlchemy models for Movie, MessageLink and Like.

Uniqueness and referential integrity live in the schema (primary keys and
foreign keys) so concurrent writers collapse onto a single winner without
application-level locking.
"""
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime, Index
from sqlalchemy.orm import declarative_base
from movieclub.utils.timezone import utc_now

Base = declarative_base()

LINK_KIND_REFERENCE = "reference"
LINK_KIND_ANNOUNCEMENT = "announcement"


class Movie(Base):
    __tablename__ = "movies"
    id = Column(String, primary_key=True)  # IMDb title ID, e.g. tt0133093
    title = Column(String, nullable=False)
    year = Column(Integer, nullable=True)
    watched = Column(Boolean, nullable=False, default=False, index=True)
    watched_at = Column(DateTime(timezone=True), nullable=True)
    added_at = Column(DateTime(timezone=True), default=utc_now)

    def __repr__(self):
        return f"<Movie(id={self.id}, title={self.title!r}, watched={self.watched})>"


class MessageLink(Base):
    __tablename__ = "message_links"
    message_id = Column(String, primary_key=True)
    movie_id = Column(String, ForeignKey("movies.id"), nullable=False)
    kind = Column(String, nullable=False, default=LINK_KIND_REFERENCE)  # 'reference' or 'announcement'
    created_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        Index('ix_message_links_movie_id', 'movie_id'),
    )


class Like(Base):
    __tablename__ = "likes"
    movie_id = Column(String, ForeignKey("movies.id"), primary_key=True)
    user_id = Column(String, primary_key=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        Index('ix_likes_user_id', 'user_id'),
    )

    def __repr__(self):
        return f"<Like(movie_id={self.movie_id}, user_id={self.user_id})>"

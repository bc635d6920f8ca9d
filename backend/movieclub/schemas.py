"""
schemas.py

Pydantic schemas for inbound chat events and the HTTP status surface.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
import datetime


# Inbound chat events

class UserRef(BaseModel):
    user_id: str
    is_bot: bool = False


class MessagePosted(BaseModel):
    """A new message in a channel the transport watches."""
    message_id: str
    channel_id: str
    author_id: str
    author_is_bot: bool = False
    content: str = ""
    mentions: List[UserRef] = Field(default_factory=list)


class ReactionChanged(BaseModel):
    """A single reaction symbol added to or removed from a message."""
    message_id: str
    channel_id: str
    user_id: str
    symbol: str
    added: bool = True


# HTTP responses

class MovieSchema(BaseModel):
    id: str
    title: str
    year: Optional[int] = None
    watched: bool
    watched_at: Optional[datetime.datetime] = None
    added_at: Optional[datetime.datetime] = None
    like_count: int = 0
    model_config = ConfigDict(from_attributes=True)


class CandidateSchema(BaseModel):
    movie_id: str
    title: str
    year: Optional[int] = None
    cohort_likes: int
    total_likes: int
    model_config = ConfigDict(from_attributes=True)


class SuggestionSchema(BaseModel):
    cohort: List[str]
    max_cohort_likes: int
    candidates: List[CandidateSchema]


class StatusSchema(BaseModel):
    status: str
    movies: int
    unwatched: int
    likes: int
    links: int
    counters: dict = Field(default_factory=dict)

"""
event_reactor.py

Maps chat events onto store mutations and outbound chat effects.

Each inbound event is classified into zero or more EventKinds and every kind
has exactly one handler coroutine. Handlers run inside a failure boundary:
an exception is logged, counted and reported to the channel once, and the
reactor carries on with the next event. Blocking store calls are pushed to
the default executor so concurrent events never wait on each other's I/O.
"""
import asyncio
import functools
import logging
import random
import re
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set, Union

from movieclub.core import metrics
from movieclub.core.config import Settings
from movieclub.errors import DuplicateLink, InvariantViolation, ResolutionError
from movieclub.models import LINK_KIND_ANNOUNCEMENT, LINK_KIND_REFERENCE
from movieclub.schemas import MessagePosted, ReactionChanged
from movieclub.services.chat_transport import ChatTransport
from movieclub.services.engagement_store import EngagementStore
from movieclub.services.identity_resolver import IdentityResolver, extract_movie_id
from movieclub.services.suggestion_engine import Candidate, SuggestionEngine

logger = logging.getLogger(__name__)

ChatEvent = Union[MessagePosted, ReactionChanged]

NOTHING_TO_SUGGEST = "No movies to suggest"

# Fitzpatrick skin tone modifiers and emoji/text presentation selectors
_SYMBOL_MODIFIERS = re.compile("[\U0001F3FB-\U0001F3FF\uFE0E\uFE0F]")
_IMDB_HOST = re.compile(r"(?<!share)imdb\.com", re.IGNORECASE)


class EventKind(str, Enum):
    REFERENCE_POSTED = "reference_posted"
    SUGGESTION_REQUESTED = "suggestion_requested"
    ENDORSEMENT_ADDED = "endorsement_added"
    ENDORSEMENT_WITHDRAWN = "endorsement_withdrawn"
    WATCHED_MARKED = "watched_marked"
    WATCHED_UNMARKED = "watched_unmarked"


def canonical_symbol(symbol: str) -> str:
    """Reaction symbol with skin tones and presentation selectors removed."""
    return _SYMBOL_MODIFIERS.sub("", symbol or "")


def to_share_link(text: str) -> str:
    return _IMDB_HOST.sub("shareimdb.com", text)


def format_announcement(candidate: Candidate, cohort_size: int) -> str:
    return (
        f"{candidate.display_title}: liked by {candidate.cohort_likes} of {cohort_size} "
        f"({candidate.total_likes} overall)"
    )


class EventReactor:
    """
    Usage:
        reactor = EventReactor(store, resolver, SuggestionEngine(store), transport, settings)
        reactor.submit(MessagePosted(...))   # from the transport's event callback
        await reactor.drain()                # before shutdown
    """

    def __init__(
        self,
        store: EngagementStore,
        resolver: IdentityResolver,
        engine: SuggestionEngine,
        transport: ChatTransport,
        settings: Settings,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.resolver = resolver
        self.engine = engine
        self.transport = transport
        self.settings = settings
        self.rng = rng or random.Random()
        self.endorse_symbol = canonical_symbol(settings.endorse_symbol)
        self.seen_symbol = canonical_symbol(settings.seen_symbol)
        self._tasks: Set[asyncio.Task] = set()
        self.handlers: Dict[EventKind, Callable[[ChatEvent], Awaitable[None]]] = {
            EventKind.REFERENCE_POSTED: self.handle_reference_posted,
            EventKind.SUGGESTION_REQUESTED: self.handle_suggestion_requested,
            EventKind.ENDORSEMENT_ADDED: self.handle_endorsement_added,
            EventKind.ENDORSEMENT_WITHDRAWN: self.handle_endorsement_withdrawn,
            EventKind.WATCHED_MARKED: self.handle_watched_marked,
            EventKind.WATCHED_UNMARKED: self.handle_watched_unmarked,
        }

    # --- scheduling -------------------------------------------------------

    def submit(self, event: ChatEvent) -> asyncio.Task:
        """Handle the event on its own task; must be called from the running loop."""
        task = asyncio.get_running_loop().create_task(self.dispatch(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every submitted event to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def dispatch(self, event: ChatEvent) -> None:
        for kind in self.classify(event):
            await self._run_handler(kind, event)

    async def _run_handler(self, kind: EventKind, event: ChatEvent) -> None:
        try:
            await self.handlers[kind](event)
            await metrics.increment(f"events.{kind.value}", enabled=self.settings.metrics_enabled)
        except Exception as e:
            await self._report_failure(kind, event, e)

    async def _call_store(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))

    # --- classification ---------------------------------------------------

    def classify(self, event: ChatEvent) -> List[EventKind]:
        if event.channel_id != self.settings.movie_channel_id:
            return []
        if isinstance(event, MessagePosted):
            return self._classify_message(event)
        if isinstance(event, ReactionChanged):
            return self._classify_reaction(event)
        return []

    def _classify_message(self, event: MessagePosted) -> List[EventKind]:
        if event.author_is_bot or event.author_id == self.settings.bot_user_id:
            return []
        kinds = []
        if extract_movie_id(event.content):
            kinds.append(EventKind.REFERENCE_POSTED)
        if self._mentions_bot(event) and self.cohort_of(event):
            kinds.append(EventKind.SUGGESTION_REQUESTED)
        return kinds

    def _classify_reaction(self, event: ReactionChanged) -> List[EventKind]:
        if self.settings.bot_user_id and event.user_id == self.settings.bot_user_id:
            return []
        symbol = canonical_symbol(event.symbol)
        if symbol == self.endorse_symbol:
            return [EventKind.ENDORSEMENT_ADDED if event.added else EventKind.ENDORSEMENT_WITHDRAWN]
        if symbol == self.seen_symbol:
            return [EventKind.WATCHED_MARKED if event.added else EventKind.WATCHED_UNMARKED]
        return []

    def _mentions_bot(self, event: MessagePosted) -> bool:
        bot_id = self.settings.bot_user_id
        if bot_id:
            return any(m.user_id == bot_id for m in event.mentions)
        return any(m.is_bot for m in event.mentions)

    def cohort_of(self, event: MessagePosted) -> Set[str]:
        """Mentioned users other than bots, i.e. the people asking for a movie."""
        return {
            m.user_id
            for m in event.mentions
            if not m.is_bot and m.user_id != self.settings.bot_user_id
        }

    # --- handlers ---------------------------------------------------------

    async def handle_reference_posted(self, event: MessagePosted) -> None:
        movie = await self.resolver.resolve(event.content)
        await self._call_store(self.store.upsert_movie, movie.movie_id, movie.title, movie.year)
        try:
            await self._call_store(self.store.link_message, event.message_id, movie.movie_id, LINK_KIND_REFERENCE)
        except DuplicateLink:
            linked = await self._call_store(self.store.movie_for_message, event.message_id)
            if linked != movie.movie_id:
                raise
            logger.info(f"Message {event.message_id} already recorded for {movie.movie_id} (redelivery)")
        await self._call_store(self.store.add_like, movie.movie_id, event.author_id)
        await self._acknowledge(event)

    async def handle_suggestion_requested(self, event: MessagePosted) -> None:
        cohort = self.cohort_of(event)
        result = await self._call_store(self.engine.suggest, cohort)
        if result.is_empty:
            await self.transport.post_message(event.channel_id, NOTHING_TO_SUGGEST)
            return

        candidates = list(result.candidates)
        self.rng.shuffle(candidates)
        for candidate in candidates:
            text = format_announcement(candidate, len(cohort))
            message_id = await self.transport.post_message(event.channel_id, text)
            try:
                await self._call_store(
                    self.store.link_message, message_id, candidate.movie_id, LINK_KIND_ANNOUNCEMENT
                )
                logger.info(f"Persisted movie message: {message_id} ({candidate.display_title})")
            except Exception as e:
                # The announcement is already visible; it just won't collect likes
                logger.error(f"Suggestion {message_id} for {candidate.movie_id} could not be tracked: {e}")
                await self._notify(
                    event.channel_id,
                    f"⚠️ Error: could not track suggestion {candidate.display_title}: {e}",
                    page_owner=True,
                )

    async def handle_endorsement_added(self, event: ReactionChanged) -> None:
        movie_id = await self._tracked_movie(event)
        if movie_id is None:
            return
        await self._call_store(self.store.add_like, movie_id, event.user_id)

    async def handle_endorsement_withdrawn(self, event: ReactionChanged) -> None:
        movie_id = await self._tracked_movie(event)
        if movie_id is None:
            return
        await self._call_store(self.store.remove_like, movie_id, event.user_id)

    async def handle_watched_marked(self, event: ReactionChanged) -> None:
        await self._toggle_watched(event, watched=True)

    async def handle_watched_unmarked(self, event: ReactionChanged) -> None:
        await self._toggle_watched(event, watched=False)

    # --- helpers ----------------------------------------------------------

    async def _tracked_movie(self, event: ReactionChanged) -> Optional[str]:
        movie_id = await self._call_store(self.store.movie_for_message, event.message_id)
        if movie_id is None:
            logger.debug(f"Ignoring reaction on untracked message {event.message_id}")
        return movie_id

    async def _toggle_watched(self, event: ReactionChanged, watched: bool) -> None:
        movie_id = await self._tracked_movie(event)
        if movie_id is None:
            return
        result = await self._call_store(self.store.set_watched, movie_id, watched)
        if not result.changed:
            return
        message_ids = await self._call_store(self.store.messages_for_movie, movie_id)
        await self._annotate_seen(event.channel_id, message_ids, watched)

    async def _annotate_seen(self, channel_id: str, message_ids: Iterable[str], watched: bool) -> None:
        message_ids = list(message_ids)
        if watched:
            calls = [self.transport.add_reaction(channel_id, mid, self.settings.seen_symbol) for mid in message_ids]
        else:
            calls = [self.transport.remove_reaction(channel_id, mid, self.settings.seen_symbol) for mid in message_ids]
        results = await asyncio.gather(*calls, return_exceptions=True)
        failed = []
        for mid, res in zip(message_ids, results):
            if isinstance(res, Exception):
                logger.warning(f"Could not update seen marker on message {mid}: {res}")
                failed.append(mid)
        if failed:
            logger.warning(f"Seen marker updated on {len(message_ids) - len(failed)}/{len(message_ids)} messages")

    async def _acknowledge(self, event: MessagePosted) -> None:
        try:
            await self.transport.add_reaction(event.channel_id, event.message_id, self.settings.ack_symbol)
        except Exception as e:
            logger.warning(f"Could not acknowledge message {event.message_id}: {e}")

        if not self.settings.rewrite_share_links:
            return
        new_content = to_share_link(event.content)
        if new_content == event.content:
            return
        try:
            await self.transport.edit_message(event.channel_id, event.message_id, new_content)
        except Exception as e:
            logger.warning(f"Could not rewrite link in message {event.message_id}: {e}")

    async def _report_failure(self, kind: EventKind, event: ChatEvent, exc: Exception) -> None:
        if isinstance(exc, ResolutionError):
            logger.warning(f"{kind.value} failed for message {event.message_id}: {exc}")
            page_owner = False
        elif isinstance(exc, InvariantViolation):
            logger.error(f"Invariant violation in {kind.value} for message {event.message_id}: {exc}", exc_info=exc)
            page_owner = True
        else:
            logger.error(f"{kind.value} failed for message {event.message_id}: {exc}", exc_info=exc)
            page_owner = True
        await metrics.increment(f"errors.{kind.value}", enabled=self.settings.metrics_enabled)
        await self._notify(event.channel_id, f"⚠️ Error: {exc}", page_owner=page_owner)

    async def _notify(self, channel_id: str, text: str, page_owner: bool = False) -> None:
        if page_owner and self.settings.owner_mention:
            text = f"{text} {self.settings.owner_mention}"
        try:
            await self.transport.post_message(channel_id, text)
        except Exception as e:
            logger.error(f"Could not post notification to channel {channel_id}: {e}")

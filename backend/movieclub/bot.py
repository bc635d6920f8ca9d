"""
bot.py

Composition root: builds every component from Settings and hands the chat
transport to the reactor. Nothing here is a module-level singleton; the
integrator creates one MovieClubBot per process and closes it on shutdown.
"""
import logging
from typing import Optional

from movieclub.core import database
from movieclub.core.config import Settings, settings as default_settings
from movieclub.core.redis_client import close_redis
from movieclub.services.chat_transport import ChatTransport
from movieclub.services.engagement_store import EngagementStore
from movieclub.services.event_reactor import EventReactor
from movieclub.services.identity_resolver import IdentityResolver
from movieclub.services.omdb_client import OmdbClient
from movieclub.services.suggestion_engine import SuggestionEngine
from movieclub.utils.logger import logger as package_logger

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> EngagementStore:
    engine = database.make_engine(settings.database_url)
    database.init_db(engine)
    return EngagementStore(database.make_session_factory(engine))


class MovieClubBot:
    def __init__(
        self,
        transport: ChatTransport,
        settings: Optional[Settings] = None,
        store: Optional[EngagementStore] = None,
        metadata_client: Optional[OmdbClient] = None,
    ):
        self.settings = settings or default_settings
        self.store = store or build_store(self.settings)
        self.metadata_client = metadata_client or OmdbClient(
            api_key=self.settings.omdb_api_key,
            base_url=self.settings.omdb_base_url,
            timeout=self.settings.omdb_timeout_seconds,
        )
        self.resolver = IdentityResolver(self.metadata_client)
        self.engine = SuggestionEngine(self.store)
        self.reactor = EventReactor(self.store, self.resolver, self.engine, transport, self.settings)
        package_logger.info(f"MovieClub ready for channel {self.settings.movie_channel_id or '(unset)'}")

    async def close(self) -> None:
        """Finish in-flight events, then release HTTP, Redis and database resources."""
        await self.reactor.drain()
        await self.metadata_client.aclose()
        if self.settings.metrics_enabled:
            await close_redis()
        self.store.close()
        logger.info("MovieClub shut down")

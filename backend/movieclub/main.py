from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from movieclub.api import movies, status
from movieclub.bot import build_store
from movieclub.core.config import Settings, settings as default_settings
from movieclub.services.engagement_store import EngagementStore
from movieclub.services.suggestion_engine import SuggestionEngine
from movieclub.utils.logger import logger


def create_app(store: Optional[EngagementStore] = None, app_settings: Optional[Settings] = None) -> FastAPI:
    """HTTP status surface over the movie list. Pass a store to share one with a running bot."""
    owns_store = store is None
    app_settings = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.settings = app_settings
        app.state.store = store or build_store(app_settings)
        app.state.suggestion_engine = SuggestionEngine(app.state.store)
        logger.info("MovieClub API started")
        try:
            yield
        finally:
            if owns_store:
                app.state.store.close()
            logger.info("MovieClub API stopped")

    app = FastAPI(title="MovieClub API", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )
    app.include_router(status.router, prefix="/api", tags=["Status"])
    app.include_router(movies.router, prefix="/api", tags=["Movies"])
    return app


app = create_app()

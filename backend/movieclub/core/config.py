import os
from pydantic_settings import BaseSettings



class Settings(BaseSettings):
    database_url: str = os.getenv("MOVIECLUB_DATABASE_URL", "sqlite:///data/movies.db")

    # OMDb metadata lookups (one request per resolved link, no retries)
    omdb_api_key: str = os.getenv("OMDB_API_KEY", "")
    omdb_base_url: str = os.getenv("OMDB_BASE_URL", "https://www.omdbapi.com/")
    omdb_timeout_seconds: float = float(os.getenv("OMDB_TIMEOUT_SECONDS", "10"))

    # Chat identities; all IDs are kept as strings regardless of transport
    movie_channel_id: str = os.getenv("MOVIE_CHANNEL_ID", "")
    bot_user_id: str = os.getenv("BOT_USER_ID", "")
    # Appended to error notifications, e.g. "<@622111772979101706>"
    owner_mention: str = os.getenv("OWNER_MENTION", "")

    # Reaction symbols
    endorse_symbol: str = os.getenv("ENDORSE_SYMBOL", "\U0001F44D")
    seen_symbol: str = os.getenv("SEEN_SYMBOL", "\U0001F440")
    ack_symbol: str = os.getenv("ACK_SYMBOL", "\U0001F3AC")
    # Rewrite imdb.com links to shareimdb.com after a reference is recorded
    rewrite_share_links: bool = os.getenv("REWRITE_SHARE_LINKS", "false").lower() == "true"

    # Event counters in Redis (disabled by default)
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    metrics_enabled: bool = os.getenv("METRICS_ENABLED", "false").lower() == "true"

    log_level: str = os.getenv("LOG_LEVEL", "INFO")

settings = Settings()

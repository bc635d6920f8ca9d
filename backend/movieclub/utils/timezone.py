"""
Timezone utilities for MovieClub.
All stored timestamps are timezone-aware UTC.
"""
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current UTC datetime with timezone info."""
    return datetime.now(timezone.utc)

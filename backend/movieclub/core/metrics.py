from __future__ import annotations
from typing import Dict, Optional

from movieclub.core.config import settings
from movieclub.core.redis_client import get_redis


COUNTERS_KEY = "metrics:counters"


def _enabled(enabled: Optional[bool]) -> bool:
    return settings.metrics_enabled if enabled is None else enabled


async def increment(name: str, amount: int = 1, enabled: Optional[bool] = None) -> None:
    """Bump a named event counter. Counting never fails the caller.

    `enabled` overrides the process settings, for callers built with their own Settings.
    """
    if not _enabled(enabled):
        return
    r = get_redis()
    try:
        await r.hincrby(COUNTERS_KEY, name, amount)
    except Exception:
        pass


async def counters_snapshot(enabled: Optional[bool] = None) -> Dict[str, int]:
    if not _enabled(enabled):
        return {}
    r = get_redis()
    out: Dict[str, int] = {}
    try:
        data = await r.hgetall(COUNTERS_KEY)
        for k, v in (data or {}).items():
            key = k.decode("utf-8") if isinstance(k, bytes) else str(k)
            try:
                out[key] = int(v)
            except Exception:
                out[key] = 0
    except Exception:
        pass
    return out

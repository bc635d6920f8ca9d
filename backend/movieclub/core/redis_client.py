from redis import asyncio as aioredis
from redis.asyncio.connection import ConnectionPool as AsyncConnectionPool
from ..core.config import settings
import asyncio
import threading
from typing import Dict

# Per-event-loop clients; an asyncio Redis client must not cross loops
_redis_async_by_loop: Dict[str, aioredis.Redis] = {}

def _current_loop_key() -> str:
	try:
		loop = asyncio.get_running_loop()
		return f"loop-{id(loop)}"
	except RuntimeError:
		return f"thread-{threading.get_ident()}"

def get_redis() -> aioredis.Redis:
	"""Async Redis client bound to the current event loop, used for event counters."""
	key = _current_loop_key()
	client = _redis_async_by_loop.get(key)
	if client is not None:
		return client

	pool = AsyncConnectionPool.from_url(
		settings.redis_url,
		decode_responses=True,
		max_connections=10,
		socket_connect_timeout=2,
		socket_timeout=2,
	)
	client = aioredis.Redis(connection_pool=pool)
	_redis_async_by_loop[key] = client
	return client

async def close_redis() -> None:
	key = _current_loop_key()
	client = _redis_async_by_loop.pop(key, None)
	if client is not None:
		await client.aclose()

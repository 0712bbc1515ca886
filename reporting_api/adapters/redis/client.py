"""Redis Adapter - Connection and utilities."""
import redis.asyncio as redis
from typing import Optional

from reporting_api.settings import settings

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis:
    """Get or create Redis connection."""
    global _redis_client
    if _redis_client is None:
        # Every store call is bounded by the socket timeout
        _redis_client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=settings.store_timeout_seconds,
            socket_connect_timeout=settings.store_timeout_seconds,
        )
    return _redis_client


async def close_redis():
    """Close Redis connection."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None

"""Redis Store Implementations."""
from typing import Optional
import logging

from redis.exceptions import RedisError

from reporting_api.domain.interfaces import KeyValueStore
from reporting_api.errors import StoreTransientError

logger = logging.getLogger(__name__)

# Conditional writes run as Lua so each one is a single atomic step on the server
_COMPARE_AND_SWAP = """
local current = redis.call('GET', KEYS[1])
if current ~= ARGV[1] then
    return 0
end
local ttl_ms = tonumber(ARGV[3])
if ttl_ms and ttl_ms > 0 then
    redis.call('SET', KEYS[1], ARGV[2], 'PX', ttl_ms)
else
    redis.call('SET', KEYS[1], ARGV[2], 'KEEPTTL')
end
return 1
"""

_COMPARE_AND_DELETE = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


def _ttl_ms(ttl_seconds: Optional[float]) -> Optional[int]:
    if ttl_seconds is None:
        return None
    return max(1, int(ttl_seconds * 1000))


class RedisKeyValueStore(KeyValueStore):
    def __init__(self, redis_client):
        self.redis = redis_client

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.redis.get(key)
        except RedisError as e:
            logger.error(f"Redis GET failed for {key}: {e}")
            raise StoreTransientError() from e

    async def put(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> None:
        try:
            await self.redis.set(key, value, px=_ttl_ms(ttl_seconds))
        except RedisError as e:
            logger.error(f"Redis SET failed for {key}: {e}")
            raise StoreTransientError() from e

    async def put_if_absent(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> bool:
        try:
            result = await self.redis.set(key, value, px=_ttl_ms(ttl_seconds), nx=True)
            return bool(result)
        except RedisError as e:
            logger.error(f"Redis SET NX failed for {key}: {e}")
            raise StoreTransientError() from e

    async def compare_and_swap(self, key: str, expected: str, value: str, ttl_seconds: Optional[float] = None) -> bool:
        try:
            result = await self.redis.eval(_COMPARE_AND_SWAP, 1, key, expected, value, _ttl_ms(ttl_seconds) or 0)
            return bool(result)
        except RedisError as e:
            logger.error(f"Redis compare-and-swap failed for {key}: {e}")
            raise StoreTransientError() from e

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        try:
            result = await self.redis.eval(_COMPARE_AND_DELETE, 1, key, expected)
            return bool(result)
        except RedisError as e:
            logger.error(f"Redis compare-and-delete failed for {key}: {e}")
            raise StoreTransientError() from e

    async def delete(self, key: str) -> None:
        try:
            await self.redis.delete(key)
        except RedisError as e:
            logger.error(f"Redis DEL failed for {key}: {e}")
            raise StoreTransientError() from e

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except RedisError as e:
            logger.error(f"Redis PING failed: {e}")
            return False

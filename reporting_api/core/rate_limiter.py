import math
import time
import abc
import threading
from typing import Callable, Dict, Optional, Tuple
import logging

from redis.exceptions import RedisError

from reporting_api.domain.keys import rate_limit_key
from reporting_api.domain.models import ActionClass, RateLimitResult, SubjectKey
from reporting_api.errors import StoreTransientError

logger = logging.getLogger(__name__)


class RateLimitStorage(abc.ABC):
    @abc.abstractmethod
    async def consume(self, key: str, limit: int, window_seconds: int, now: float) -> Tuple[bool, int, float]:
        """
        Record one request against a fixed window.

        Args:
            key: Unique identifier for the window counter.
            limit: Max requests admitted per window.
            window_seconds: Window length, anchored at the first request.
            now: Current time in Unix seconds.

        Returns:
            (allowed, count_after, window_start)
        """
        pass


class MemoryRateLimitStorage(RateLimitStorage):
    def __init__(self):
        # key -> (count, window_start)
        self._windows: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()
        self._next_sweep = 0.0

    async def consume(self, key: str, limit: int, window_seconds: int, now: float) -> Tuple[bool, int, float]:
        with self._lock:
            # Drop elapsed windows at most once per window length
            if now >= self._next_sweep:
                for stale in [k for k, (_, s) in self._windows.items() if now >= s + window_seconds]:
                    del self._windows[stale]
                self._next_sweep = now + window_seconds

            count, start = self._windows.get(key, (0, now))

            # Window elapsed: start a new one at this request
            if now >= start + window_seconds:
                count, start = 0, now

            if count >= limit:
                self._windows[key] = (count, start)
                return False, count, start

            count += 1
            self._windows[key] = (count, start)
            return True, count, start


class RedisRateLimitStorage(RateLimitStorage):
    # Read, reset-if-elapsed and conditional increment in one server-side step
    LUA_SCRIPT = """
    local key = KEYS[1]
    local limit = tonumber(ARGV[1])
    local window = tonumber(ARGV[2])
    local now = tonumber(ARGV[3])

    local state = redis.call('HMGET', key, 'count', 'window_start')
    local count = tonumber(state[1])
    local start = tonumber(state[2])

    if not count or not start or now >= start + window then
        count = 0
        start = now
    end

    local allowed = 0
    if count < limit then
        count = count + 1
        allowed = 1
    end

    redis.call('HSET', key, 'count', count, 'window_start', tostring(start))
    redis.call('PEXPIREAT', key, math.ceil((start + window) * 1000))

    return {allowed, count, tostring(start)}
    """

    def __init__(self, redis_client):
        self.redis = redis_client

    async def consume(self, key: str, limit: int, window_seconds: int, now: float) -> Tuple[bool, int, float]:
        try:
            result = await self.redis.eval(self.LUA_SCRIPT, 1, key, limit, window_seconds, repr(now))
        except RedisError as e:
            logger.error(f"Redis rate limit error: {e}")
            raise StoreTransientError() from e
        allowed = bool(int(result[0]))
        count = int(result[1])
        window_start = float(result[2])
        return allowed, count, window_start


class RateLimiter:
    """Fixed-window limiter keyed by (client, action class).

    Store failures fail closed with ``StoreTransientError`` unless
    ``fail_open`` is set, which is only honored outside prod.
    """

    def __init__(
        self,
        storage: RateLimitStorage,
        limits: Dict[ActionClass, int],
        window_seconds: int = 3600,
        clock: Optional[Callable[[], float]] = None,
        enabled: bool = True,
        fail_open: bool = False,
    ):
        self.storage = storage
        self.limits = dict(limits)
        self.window_seconds = window_seconds
        self.clock = clock or time.time
        self.enabled = enabled
        self.fail_open = fail_open

    def limit_for(self, action_class: ActionClass) -> int:
        return self.limits[action_class]

    async def check(self, subject: SubjectKey) -> RateLimitResult:
        """Count one request for ``subject`` and report the window state."""
        limit = self.limit_for(subject.action_class)
        now = self.clock()

        if not self.enabled:
            return RateLimitResult(
                allowed=True,
                limit=limit,
                remaining=limit,
                reset_at=int(math.ceil(now + self.window_seconds)),
            )

        try:
            allowed, count, window_start = await self.storage.consume(
                rate_limit_key(subject), limit, self.window_seconds, now
            )
        except StoreTransientError:
            if self.fail_open:
                logger.warning(f"Rate limiter store unavailable, admitting {subject.action_class.value} (fail-open)")
                return RateLimitResult(
                    allowed=True,
                    limit=limit,
                    remaining=limit,
                    reset_at=int(math.ceil(now + self.window_seconds)),
                )
            raise

        return RateLimitResult(
            allowed=allowed,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=int(math.ceil(window_start + self.window_seconds)),
        )

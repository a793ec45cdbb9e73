"""Per-session fixed-window rate limiting for inbound visitor messages.

The counter store performs check-and-increment atomically per key: a Lua
script on Redis, or a lock-guarded dictionary when Redis is not configured.
Expiry belongs to the store; the limiter never sweeps counters itself.
"""

import math
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from chatbridge.logging_config import get_logger

logger = get_logger("rate_limiter")

DEFAULT_LIMIT = 20
DEFAULT_WINDOW_SECONDS = 60
KEY_PREFIX = "chatbridge:ratelimit:"

# Returns {admitted (0/1), count after the call, ttl seconds}
CHECK_AND_INCREMENT_LUA = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
local limit = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
if current >= limit then
    local ttl = redis.call('TTL', KEYS[1])
    return {0, current, ttl}
end
current = redis.call('INCR', KEYS[1])
if current == 1 then
    redis.call('EXPIRE', KEYS[1], window)
end
return {1, current, redis.call('TTL', KEYS[1])}
"""


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_in_seconds: int


@dataclass(frozen=True)
class CounterResult:
    admitted: bool
    count: int
    ttl_seconds: int


class CounterStore(ABC):
    """Time-windowed counter with atomic check-and-increment per key."""

    @abstractmethod
    def check_and_increment(self, key: str, limit: int, window_seconds: int) -> CounterResult:
        ...


class InMemoryCounterStore(CounterStore):
    """Process-local counters. Suitable for a single worker."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, tuple[int, float]] = {}
        self._last_prune = time.time()

    def _prune(self, now: float, window_seconds: int) -> None:
        # Caller holds the lock.
        expired = [key for key, (_, started_at) in self._counters.items() if now - started_at >= window_seconds]
        for key in expired:
            del self._counters[key]
        self._last_prune = now

    def check_and_increment(self, key: str, limit: int, window_seconds: int) -> CounterResult:
        now = time.time()
        with self._lock:
            if now - self._last_prune >= window_seconds:
                self._prune(now, window_seconds)

            count, started_at = self._counters.get(key, (0, now))
            if now - started_at >= window_seconds:
                count, started_at = 0, now

            ttl = max(math.ceil(started_at + window_seconds - now), 0)
            if count >= limit:
                return CounterResult(admitted=False, count=count, ttl_seconds=ttl)

            count += 1
            self._counters[key] = (count, started_at)
            return CounterResult(admitted=True, count=count, ttl_seconds=ttl or window_seconds)

    def __len__(self) -> int:
        with self._lock:
            return len(self._counters)

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()


class RedisCounterStore(CounterStore):
    """Redis counters; INCR + EXPIRE run inside one Lua script."""

    def __init__(self, redis_client) -> None:
        self._redis = redis_client
        self._script = redis_client.register_script(CHECK_AND_INCREMENT_LUA)

    def check_and_increment(self, key: str, limit: int, window_seconds: int) -> CounterResult:
        admitted, count, ttl = self._script(keys=[key], args=[limit, window_seconds])
        ttl = int(ttl)
        if ttl < 0:
            ttl = window_seconds
        return CounterResult(admitted=bool(int(admitted)), count=int(count), ttl_seconds=ttl)


class RateLimiter:
    def __init__(
        self,
        store: CounterStore,
        limit: int = DEFAULT_LIMIT,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
    ) -> None:
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds

    def check(self, session_id: str) -> RateLimitDecision:
        key = f"{KEY_PREFIX}{session_id}"
        try:
            result = self.store.check_and_increment(key, self.limit, self.window_seconds)
        except Exception as exc:
            logger.warning(
                "Rate limit check failed, allowing request",
                extra={"context": {"event": "rate_limit_store_error", "session_id": session_id, "error": str(exc)}},
            )
            return RateLimitDecision(allowed=True, remaining=self.limit, reset_in_seconds=self.window_seconds)

        if not result.admitted:
            logger.info(
                "Rate limit exceeded",
                extra={"context": {"event": "rate_limited", "session_id": session_id, "count": result.count}},
            )
            return RateLimitDecision(allowed=False, remaining=0, reset_in_seconds=result.ttl_seconds)

        return RateLimitDecision(
            allowed=True,
            remaining=max(self.limit - result.count, 0),
            reset_in_seconds=result.ttl_seconds,
        )


def build_counter_store(redis_url: Optional[str]) -> CounterStore:
    if not redis_url:
        return InMemoryCounterStore()

    import redis

    client = redis.Redis.from_url(redis_url, socket_timeout=1.0, socket_connect_timeout=1.0)
    return RedisCounterStore(client)

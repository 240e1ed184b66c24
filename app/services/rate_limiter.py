import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

import structlog
from redis.asyncio import Redis

from app.core.config import settings
from app.core.errors import RateLimitUnavailable

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_in_seconds: int


@dataclass
class RateLimitEntry:
    count: int
    reset_at: float


class RateLimitStore(Protocol):
    """Per-client request counters with a fixed window that starts at the first hit."""

    async def get(self, key: str) -> Optional[RateLimitEntry]: ...

    async def increment(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        """Atomically check the counter and consume one unit if under ``limit``."""
        ...

    async def reset(self, key: str) -> None: ...


class InMemoryRateLimitStore:
    """
    Process-local store for single-instance deployments.
    Expired entries are overwritten on the next hit rather than swept.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._entries: Dict[str, RateLimitEntry] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def get(self, key: str) -> Optional[RateLimitEntry]:
        entry = self._entries.get(key)
        if entry is None or self._clock() > entry.reset_at:
            return None
        return entry

    async def increment(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        async with self._lock:
            now = self._clock()
            entry = self._entries.get(key)

            if entry is None or now > entry.reset_at:
                entry = RateLimitEntry(count=1, reset_at=now + window_seconds)
                self._entries[key] = entry
                return RateLimitDecision(True, limit - 1, window_seconds)

            reset_in = max(0, int(entry.reset_at - now))
            if entry.count >= limit:
                return RateLimitDecision(False, 0, reset_in)

            entry.count += 1
            return RateLimitDecision(True, limit - entry.count, reset_in)

    async def reset(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)


class RedisRateLimitStore:
    """
    Redis-backed store shared by every instance, with fail-closed behavior
    (no in-memory fallback).
    """

    SCRIPT = """
    local key = KEYS[1]
    local limit = tonumber(ARGV[1])
    local ttl = tonumber(ARGV[2])
    local current = redis.call('GET', key)
    if current == false then
      redis.call('SET', key, 1, 'EX', ttl)
      return {1, limit - 1, ttl}
    end
    local count = tonumber(current)
    local remaining_ttl = redis.call('TTL', key)
    if count >= limit then
      return {0, 0, remaining_ttl}
    end
    count = redis.call('INCR', key)
    return {1, limit - count, remaining_ttl}
    """

    def __init__(self, redis_client: Redis, prefix: str = "rate_limit:"):
        self.redis_client = redis_client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Optional[RateLimitEntry]:
        try:
            raw = await self.redis_client.get(self._key(key))
            if raw is None:
                return None
            ttl = await self.redis_client.ttl(self._key(key))
        except Exception as e:
            logger.error("rate_limit_get_error", error=str(e), key=key)
            raise RateLimitUnavailable("redis_unavailable") from e
        try:
            count = int(raw)
        except (TypeError, ValueError):
            logger.error("rate_limit_parse_error", key=key, raw_value=str(raw))
            return None
        return RateLimitEntry(count=count, reset_at=time.monotonic() + max(ttl, 0))

    async def increment(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        try:
            result = await self.redis_client.eval(self.SCRIPT, 1, self._key(key), limit, window_seconds)
        except Exception as e:
            logger.error("rate_limit_lua_error", error=str(e), key=key)
            raise RateLimitUnavailable("redis_unavailable") from e
        allowed = bool(int(result[0]) == 1)
        return RateLimitDecision(allowed, int(result[1]), max(int(result[2]), 0))

    async def reset(self, key: str) -> None:
        try:
            await self.redis_client.delete(self._key(key))
        except Exception as e:
            logger.error("rate_limit_reset_error", error=str(e), key=key)
            raise RateLimitUnavailable("redis_unavailable") from e


class RateLimiter:
    """Applies the configured quota to a store."""

    def __init__(
        self,
        store: RateLimitStore,
        limit: int = settings.API_RATE_LIMIT,
        window_seconds: int = settings.RATE_LIMIT_WINDOW_SECONDS,
    ):
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds

    async def check(self, client_id: str) -> RateLimitDecision:
        decision = await self.store.increment(client_id, self.limit, self.window_seconds)
        if not decision.allowed:
            logger.info("rate_limit_exceeded", client_id=client_id, reset_in_seconds=decision.reset_in_seconds)
        return decision

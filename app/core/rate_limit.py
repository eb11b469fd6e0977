"""Sliding-window rate limiting with pluggable storage"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, Optional, Tuple
import logging
import math
import time
import uuid

import redis.asyncio as redis

from .config import Settings

logger = logging.getLogger(__name__)

FALLBACK_IDENTIFIER = "anonymous"

Clock = Callable[[], int]

def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds"""
    return int(time.time() * 1000)

@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of one admission decision"""

    success: bool
    limit: int
    remaining: int
    reset: int  # epoch ms at which the oldest counted request leaves the window

    def retry_after(self, now: int) -> int:
        """Whole seconds a rejected caller should wait"""
        return max(0, math.ceil((self.reset - now) / 1000))

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset),
        }

class RateLimitStore(ABC):
    """Storage backend holding per-key request timestamps"""

    @abstractmethod
    async def hit(self, key: str, limit: int, window_ms: int, now: int) -> RateLimitResult:
        """Prune, count and (when under the limit) record one request"""

    async def close(self) -> None:
        """Release backend resources"""

class MemoryRateLimitStore(RateLimitStore):
    """
    Process-local store

    Best-effort, single-node semantics: counts are lost on restart and are
    not shared between worker processes. Keys whose newest request has left
    its window are swept out at most once per window.
    """

    def __init__(self):
        self._windows: Dict[str, list] = {}
        self._expires_at: Dict[str, int] = {}
        self._last_sweep: Optional[int] = None

    @property
    def key_count(self) -> int:
        return len(self._windows)

    async def hit(self, key: str, limit: int, window_ms: int, now: int) -> RateLimitResult:
        # No await between prune and append, so this is atomic per event loop
        self._sweep(now, window_ms)

        window_start = now - window_ms
        timestamps = [t for t in self._windows.get(key, ()) if t > window_start]

        count = len(timestamps)
        remaining = max(0, limit - count)
        success = count < limit

        if success:
            timestamps.append(now)

        if timestamps:
            self._windows[key] = timestamps
            self._expires_at[key] = timestamps[-1] + window_ms
        else:
            self._forget(key)

        reset = timestamps[0] + window_ms if timestamps else now + window_ms
        return RateLimitResult(success=success, limit=limit, remaining=remaining, reset=reset)

    def _sweep(self, now: int, interval_ms: int) -> None:
        if self._last_sweep is not None and now - self._last_sweep < interval_ms:
            return
        self._last_sweep = now

        expired = [key for key, expires_at in self._expires_at.items() if expires_at <= now]
        for key in expired:
            self._forget(key)

        if expired:
            logger.debug(f"Evicted {len(expired)} idle rate limit keys")

    def _forget(self, key: str) -> None:
        self._windows.pop(key, None)
        self._expires_at.pop(key, None)

# Prune, count, conditionally append and report the oldest entry in one
# server-side step so concurrent nodes cannot over-admit.
SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
local member = ARGV[4]

redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
local count = redis.call('ZCARD', key)
local success = 0
if count < limit then
    redis.call('ZADD', key, now, member)
    success = 1
end
redis.call('PEXPIRE', key, window)

local reset = now + window
local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
if oldest[2] then
    reset = tonumber(oldest[2]) + window
end
return {success, count, reset}
"""

class RedisRateLimitStore(RateLimitStore):
    """Shared sorted-set store for multi-node deployments"""

    def __init__(self, redis_client: redis.Redis):
        self.redis_client = redis_client
        self._script = redis_client.register_script(SLIDING_WINDOW_SCRIPT)

    @classmethod
    def from_url(cls, url: str, max_connections: int = 50) -> "RedisRateLimitStore":
        return cls(redis.from_url(url, max_connections=max_connections))

    async def hit(self, key: str, limit: int, window_ms: int, now: int) -> RateLimitResult:
        member = f"{now}:{uuid.uuid4().hex}"
        success, count, reset = await self._script(
            keys=[key],
            args=[now, window_ms, limit, member]
        )
        return RateLimitResult(
            success=bool(int(success)),
            limit=limit,
            remaining=max(0, limit - int(count)),
            reset=int(reset)
        )

    async def close(self) -> None:
        await self.redis_client.aclose()
        logger.info("Rate limit Redis connection closed")

class SlidingWindowRateLimiter:
    """
    Admit or reject requests per identifier over a trailing window

    Exhaustion is reported through ``RateLimitResult.success`` and is never
    raised. Each limiter owns one counting namespace (its ``scope``).
    """

    def __init__(
        self,
        store: Optional[RateLimitStore] = None,
        scope: str = "default",
        clock: Clock = now_ms
    ):
        self.store = store or MemoryRateLimitStore()
        self.scope = scope
        self.clock = clock

    def _key(self, identifier: str) -> str:
        return f"rate_limit:{self.scope}:{identifier or FALLBACK_IDENTIFIER}"

    async def check(self, identifier: str, limit: int, window_ms: int) -> RateLimitResult:
        return await self.store.hit(self._key(identifier), limit, window_ms, self.clock())

class RouteClass(str, Enum):
    AUTH = "auth"
    EXPENSIVE = "expensive"
    DEFAULT = "default"

@dataclass(frozen=True)
class RateLimitPolicy:
    limit: int
    window_ms: int

    def __post_init__(self):
        if self.limit <= 0:
            raise ValueError("Rate limit must be a positive integer")
        if self.window_ms <= 0:
            raise ValueError("Rate limit window must be positive")

class RateLimiterRegistry:
    """One limiter and policy per route class"""

    def __init__(
        self,
        policies: Dict[RouteClass, RateLimitPolicy],
        auth_prefixes: Iterable[str] = (),
        expensive_prefixes: Iterable[str] = (),
        store: Optional[RateLimitStore] = None,
        clock: Clock = now_ms
    ):
        missing = set(RouteClass) - set(policies)
        if missing:
            raise ValueError(f"Missing rate limit policy for: {sorted(m.value for m in missing)}")

        self.policies = dict(policies)
        self.auth_prefixes = tuple(auth_prefixes)
        self.expensive_prefixes = tuple(expensive_prefixes)
        self.clock = clock
        self.limiters: Dict[RouteClass, SlidingWindowRateLimiter] = {
            route_class: SlidingWindowRateLimiter(
                store=store or MemoryRateLimitStore(),
                scope=route_class.value,
                clock=clock
            )
            for route_class in RouteClass
        }

    @classmethod
    def from_settings(cls, config: Settings, clock: Clock = now_ms) -> "RateLimiterRegistry":
        window_ms = config.RATE_LIMIT_WINDOW_MS
        policies = {
            RouteClass.AUTH: RateLimitPolicy(config.RATE_LIMIT_AUTH_LIMIT, window_ms),
            RouteClass.EXPENSIVE: RateLimitPolicy(config.RATE_LIMIT_EXPENSIVE_LIMIT, window_ms),
            RouteClass.DEFAULT: RateLimitPolicy(config.RATE_LIMIT_DEFAULT_LIMIT, window_ms),
        }

        store = None
        if config.RATE_LIMIT_STORAGE == "redis":
            store = RedisRateLimitStore.from_url(config.REDIS_URL, config.REDIS_MAX_CONNECTIONS)
        elif config.RATE_LIMIT_STORAGE != "memory":
            raise ValueError(f"Unknown rate limit storage: {config.RATE_LIMIT_STORAGE}")

        return cls(
            policies,
            auth_prefixes=config.RATE_LIMIT_AUTH_PREFIXES,
            expensive_prefixes=config.RATE_LIMIT_EXPENSIVE_PREFIXES,
            store=store,
            clock=clock
        )

    def classify(self, path: str) -> RouteClass:
        if path.startswith(self.auth_prefixes):
            return RouteClass.AUTH
        if path.startswith(self.expensive_prefixes):
            return RouteClass.EXPENSIVE
        return RouteClass.DEFAULT

    def resolve(self, path: str) -> Tuple[RouteClass, SlidingWindowRateLimiter, RateLimitPolicy]:
        route_class = self.classify(path)
        return route_class, self.limiters[route_class], self.policies[route_class]

    async def check(self, path: str, identifier: str) -> Tuple[RouteClass, RateLimitResult]:
        route_class, limiter, policy = self.resolve(path)
        result = await limiter.check(identifier, policy.limit, policy.window_ms)
        return route_class, result

    async def close(self) -> None:
        stores = {id(limiter.store): limiter.store for limiter in self.limiters.values()}
        for store in stores.values():
            await store.close()

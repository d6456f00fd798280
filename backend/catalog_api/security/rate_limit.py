"""Fixed-window request limiting keyed by client identifier.

The in-memory store is process-local: counters reset on restart and are not
shared between instances. Deployments running several instances should use
the Redis store so the limit is enforced globally.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from fastapi import Request
from redis import Redis
from redis.exceptions import RedisError

from catalog_api.core.config import Settings
from catalog_api.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)

RATE_LIMIT_PREFIX = "ratelimit:"
PRUNE_THRESHOLD = 10_000


@dataclass
class RateLimitDecision:
    allowed: bool
    count: int
    reset_at: float

    def retry_after(self, now: float) -> int:
        return max(1, int(self.reset_at - now + 0.999))


class RateLimitStore(Protocol):
    def hit(
        self,
        identifier: str,
        now: float,
        max_requests: int,
        window_seconds: int,
    ) -> RateLimitDecision: ...


@dataclass
class _Window:
    count: int
    reset_at: float


class InMemoryRateLimitStore:
    """Per-process ``{identifier: (count, reset_at)}`` map."""

    def __init__(self) -> None:
        self._windows: dict[str, _Window] = {}

    def __len__(self) -> int:
        return len(self._windows)

    def hit(
        self,
        identifier: str,
        now: float,
        max_requests: int,
        window_seconds: int,
    ) -> RateLimitDecision:
        window = self._windows.get(identifier)

        if window is None or now > window.reset_at:
            if len(self._windows) >= PRUNE_THRESHOLD:
                self._prune(now)
            window = _Window(count=1, reset_at=now + window_seconds)
            self._windows[identifier] = window
            return RateLimitDecision(True, window.count, window.reset_at)

        if window.count >= max_requests:
            return RateLimitDecision(False, window.count, window.reset_at)

        window.count += 1
        return RateLimitDecision(True, window.count, window.reset_at)

    def _prune(self, now: float) -> None:
        expired = [key for key, window in self._windows.items() if now > window.reset_at]
        for key in expired:
            del self._windows[key]


# KEYS[1]: counter key; ARGV[1]: max requests; ARGV[2]: window in ms.
# Returns {allowed, count, ttl_ms}. A full window is left untouched.
HIT_SCRIPT = """
local count = tonumber(redis.call('GET', KEYS[1]) or '0')
local allowed = 0
if count < tonumber(ARGV[1]) then
  count = redis.call('INCR', KEYS[1])
  allowed = 1
end
local ttl = redis.call('PTTL', KEYS[1])
if ttl < 0 then
  redis.call('PEXPIRE', KEYS[1], ARGV[2])
  ttl = tonumber(ARGV[2])
end
return {allowed, count, ttl}
"""


class RedisRateLimitStore:
    """Counters shared through Redis, checked and incremented in one script.

    Redis being unavailable must not take the API down, so errors let the
    request through and are logged.
    """

    def __init__(self, client: Redis, prefix: str = RATE_LIMIT_PREFIX) -> None:
        self.client = client
        self.prefix = prefix
        self._hit_script = client.register_script(HIT_SCRIPT)

    def hit(
        self,
        identifier: str,
        now: float,
        max_requests: int,
        window_seconds: int,
    ) -> RateLimitDecision:
        key = f"{self.prefix}{identifier}"
        window_ms = window_seconds * 1000
        try:
            allowed, count, ttl_ms = self._hit_script(
                keys=[key], args=[max_requests, window_ms]
            )
        except RedisError as e:
            logger.warning(f"Rate limit store unavailable, allowing request: {e}")
            return RateLimitDecision(True, 0, now + window_seconds)

        reset_at = now + int(ttl_ms) / 1000
        return RateLimitDecision(bool(int(allowed)), int(count), reset_at)


class RateLimiter:
    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: int = 15 * 60,
        store: RateLimitStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.store = store if store is not None else InMemoryRateLimitStore()
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimiter":
        store: RateLimitStore
        if settings.rate_limit_storage == "redis":
            logger.info("Using Redis-backed rate limit store")
            store = RedisRateLimitStore(create_redis_client(settings.redis_url))
        else:
            store = InMemoryRateLimitStore()
        return cls(
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
            store=store,
        )

    def hit(self, identifier: str) -> RateLimitDecision:
        return self.store.hit(identifier, self.clock(), self.max_requests, self.window_seconds)


def client_identifier(request: Request) -> str:
    """Client IP, falling back to the Origin header, then a constant."""
    if request.client and request.client.host:
        return request.client.host
    return request.headers.get("Origin") or "unknown"


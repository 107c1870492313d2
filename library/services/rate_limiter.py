# =============================================================================
# Rate Limiter — Per-User Fixed Window
# =============================================================================
#
# Caps chat requests per user: rate_limit_requests per
# rate_limit_window_seconds (5 per 60 s by default).
#
# Two backends behind one interface:
#   - InMemoryRateLimiter: per-process dict, reset on restart. Each process
#     keeps its own counts, so N instances allow N times the limit.
#   - RedisRateLimiter: INCR + EXPIRE on a key per user and window, shared
#     by all instances.
#
# FIXED WINDOW SEMANTICS (in-memory):
# A user's window starts at their first request. Requests 1..limit inside
# the window pass, the next is rejected. The first request after the window
# has elapsed starts a new window with count 1. Rejected requests are not
# counted.
#
# Expired windows are swept at most once per window length, so the map only
# holds users seen within the last window or two.
#
# DESIGN DECISION: Graceful degradation on Redis errors. If Redis is
# unavailable the request is allowed and a warning is logged.
# =============================================================================

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from fastapi import HTTPException

from library.config import Settings, settings

logger = logging.getLogger(__name__)


class RateLimiter(Protocol):
    """Records one request for a user and reports whether it is allowed."""

    async def hit(self, user_id: str) -> bool:
        ...

    async def aclose(self) -> None:
        ...


@dataclass
class _Window:
    count: int
    started_at: float


class InMemoryRateLimiter:
    """Process-local fixed-window counter keyed by user id."""

    def __init__(
        self,
        limit: int = 5,
        window_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._last_sweep = clock()

    async def hit(self, user_id: str) -> bool:
        now = self._clock()
        if now - self._last_sweep > self.window_seconds:
            self._sweep(now)
        window = self._windows.get(user_id)

        if window is None or now - window.started_at > self.window_seconds:
            self._windows[user_id] = _Window(count=1, started_at=now)
            return True

        if window.count >= self.limit:
            return False

        window.count += 1
        return True

    def _sweep(self, now: float) -> None:
        """Drop windows that have fully elapsed."""
        expired = [
            user_id
            for user_id, window in self._windows.items()
            if now - window.started_at > self.window_seconds
        ]
        for user_id in expired:
            del self._windows[user_id]
        self._last_sweep = now

    def reset(self) -> None:
        self._windows.clear()

    async def aclose(self) -> None:
        self.reset()


class RedisRateLimiter:
    """Fixed-window counter shared through Redis."""

    def __init__(
        self,
        redis_url: str | None = None,
        limit: int = 5,
        window_seconds: int = 60,
        client=None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._redis_url = redis_url or settings.redis_url
        self._client = client
        self._clock = clock

    def _get_redis(self):
        """Lazily create and cache the async Redis client."""
        if self._client is None:
            import redis.asyncio as aioredis
            self._client = aioredis.from_url(
                self._redis_url,
                decode_responses=True,
            )
        return self._client

    async def hit(self, user_id: str) -> bool:
        window_index = int(self._clock() // self.window_seconds)
        redis_key = f"ratelimit:chat:{user_id}:{window_index}"

        try:
            r = self._get_redis()
            pipe = r.pipeline()
            pipe.incr(redis_key)
            # Expire shortly after the window closes
            pipe.expire(redis_key, self.window_seconds + 10)
            results = await pipe.execute()
        except Exception as e:
            logger.warning(
                "Rate limiter unavailable (Redis error): %s. "
                "Allowing request through.",
                e,
            )
            return True

        return int(results[0]) <= self.limit

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def build_rate_limiter(config: Settings | None = None) -> RateLimiter:
    """Create the configured rate limiter backend ("memory" or "redis")."""
    config = config or settings
    if config.rate_limit_backend == "redis":
        logger.info("Using Redis rate limiter (%s)", config.redis_url)
        return RedisRateLimiter(
            redis_url=config.redis_url,
            limit=config.rate_limit_requests,
            window_seconds=config.rate_limit_window_seconds,
        )
    if config.rate_limit_backend == "memory":
        logger.info("Using in-memory rate limiter (single instance only)")
        return InMemoryRateLimiter(
            limit=config.rate_limit_requests,
            window_seconds=config.rate_limit_window_seconds,
        )

    raise ValueError(
        f"Unknown rate_limit_backend '{config.rate_limit_backend}'. "
        "Supported types: ['memory', 'redis']"
    )


async def check_rate_limit(
    limiter: RateLimiter,
    user_id: str,
    window_seconds: int | None = None,
) -> None:
    """
    Record a request and reject it if the user is over the limit.

    Raises:
        HTTPException 429: Rate limit exceeded (includes Retry-After header).
    """
    if await limiter.hit(user_id):
        return

    retry_after = window_seconds or settings.rate_limit_window_seconds
    logger.info("Rate limit exceeded for user %s", user_id)
    raise HTTPException(
        status_code=429,
        detail="Rate limit exceeded. Please wait a minute before trying again.",
        headers={"Retry-After": str(retry_after)},
    )

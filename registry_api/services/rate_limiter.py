"""Rate limiting with per-tier sliding windows.

THREE TIERS
------------
Different routes have different abuse profiles, so each has its own
quota, tracked independently:

  general    100 requests / 15 min   every wallet and mint route
  sensitive   10 requests /  5 min   wallet writes
  mint         5 requests /  1 min   POST /mint

A caller can be well inside the general quota while exhausted on the
mint tier; the windows never share counters.

SLIDING WINDOW LOG
-------------------
For each (tier, client) key we keep the timestamps of the hits inside
the current window.  A request is allowed when fewer than ``limit``
timestamps remain after dropping the ones older than ``window``.  When
rejected, ``retry_after`` is how long until the oldest hit slides out.

A fixed window would let a client spend the whole quota at 11:59:59 and
again at 12:00:01.  The log costs at most ``limit`` floats per key, and
our limits are small (≤ 100), so the accuracy is cheap.

ATOMICITY
----------
Check-and-record is a read-modify-write.  The in-memory backend holds an
``asyncio.Lock`` across it; the Redis backend runs it as one Lua script.
Either way two concurrent requests can never both take the last slot.
"""

from __future__ import annotations

import asyncio
import math
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class RateLimitTier:
    """One quota class.

    name:    label used in keys, logs and metrics.
    limit:   requests allowed per window.
    window:  window length in seconds.
    message: human-readable text for the 429 response.
    """

    name: str
    limit: int
    window: int
    message: str


GENERAL = RateLimitTier(
    name="general",
    limit=100,
    window=15 * 60,
    message="Too many API requests from this IP, please try again later",
)
SENSITIVE = RateLimitTier(
    name="sensitive",
    limit=10,
    window=5 * 60,
    message="Too many sensitive operations from this IP, please try again later",
)
MINT = RateLimitTier(
    name="mint",
    limit=5,
    window=60,
    message="Too many mint requests, please try again later",
)


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    """The outcome of a rate limit check.

    retry_after: whole seconds until a slot frees up (0 if allowed).
    """

    allowed: bool
    remaining: int
    limit: int
    retry_after: int


@runtime_checkable
class RateLimiter(Protocol):
    async def hit(self, key: str, tier: RateLimitTier) -> RateLimitResult: ...
    async def reset(self, key: str) -> None: ...


class InMemoryRateLimiter:
    """Process-local sliding windows.

    Per-process only: behind a load balancer each instance counts on its
    own, which is what RedisRateLimiter is for.  Keys whose newest hit has
    left its window are swept every ``_SWEEP_INTERVAL`` seconds, so one-off
    clients do not accumulate.
    """

    _SWEEP_INTERVAL = 60.0

    def __init__(self, clock=time.monotonic) -> None:
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._windows: dict[str, int] = {}
        self._lock = asyncio.Lock()
        self._last_sweep = clock()

    async def hit(self, key: str, tier: RateLimitTier) -> RateLimitResult:
        async with self._lock:
            now = self._clock()
            if now - self._last_sweep >= self._SWEEP_INTERVAL:
                self._sweep(now)
            hits = self._hits.setdefault(key, deque())
            self._windows[key] = tier.window

            # Slide: drop hits that left the window.
            while hits and hits[0] <= now - tier.window:
                hits.popleft()

            if len(hits) < tier.limit:
                hits.append(now)
                return RateLimitResult(
                    allowed=True,
                    remaining=tier.limit - len(hits),
                    limit=tier.limit,
                    retry_after=0,
                )

            retry_after = math.ceil(hits[0] + tier.window - now)
            return RateLimitResult(
                allowed=False,
                remaining=0,
                limit=tier.limit,
                retry_after=max(retry_after, 1),
            )

    def _sweep(self, now: float) -> None:
        # Caller holds the lock.
        stale = [
            key
            for key, hits in self._hits.items()
            if not hits or hits[-1] <= now - self._windows.get(key, 0)
        ]
        for key in stale:
            del self._hits[key]
            self._windows.pop(key, None)
        self._last_sweep = now

    async def reset(self, key: str) -> None:
        async with self._lock:
            self._hits.pop(key, None)
            self._windows.pop(key, None)

    def clear(self) -> None:
        """Forget every window (used in tests)."""
        self._hits.clear()
        self._windows.clear()


class RedisRateLimiter:
    """Redis-backed sliding windows, shared by every API instance.

    Each key is a sorted set of hit ids scored by their timestamp (ms).
    The Lua script trims, counts and records in one atomic step.
    """

    # KEYS[1] = window key
    # ARGV[1] = limit, ARGV[2] = window_ms, ARGV[3] = now_ms, ARGV[4] = member
    # Returns: {allowed (0/1), remaining, retry_after_ms}
    _LUA_SCRIPT = """
    local key = KEYS[1]
    local limit = tonumber(ARGV[1])
    local window_ms = tonumber(ARGV[2])
    local now_ms = tonumber(ARGV[3])

    redis.call('ZREMRANGEBYSCORE', key, '-inf', now_ms - window_ms)
    local count = redis.call('ZCARD', key)

    if count < limit then
        redis.call('ZADD', key, now_ms, ARGV[4])
        redis.call('PEXPIRE', key, window_ms)
        return {1, limit - count - 1, 0}
    end

    local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
    local retry_after_ms = tonumber(oldest[2]) + window_ms - now_ms
    return {0, 0, retry_after_ms}
    """

    _PREFIX = "ratelimit:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client
        self._script = None

    def _get_script(self):
        if self._script is None:
            self._script = self._redis.register_script(self._LUA_SCRIPT)
        return self._script

    async def hit(self, key: str, tier: RateLimitTier) -> RateLimitResult:
        script = self._get_script()
        allowed, remaining, retry_after_ms = await script(
            keys=[f"{self._PREFIX}{key}"],
            args=[
                tier.limit,
                tier.window * 1000,
                int(time.time() * 1000),
                uuid.uuid4().hex,
            ],
        )
        retry_after = 0
        if not allowed:
            retry_after = max(math.ceil(int(retry_after_ms) / 1000), 1)
        return RateLimitResult(
            allowed=bool(allowed),
            remaining=int(remaining),
            limit=tier.limit,
            retry_after=retry_after,
        )

    async def reset(self, key: str) -> None:
        await self._redis.delete(f"{self._PREFIX}{key}")

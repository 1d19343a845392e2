from __future__ import annotations

import asyncio

from registry_api.services.rate_limiter import (
    MINT,
    SENSITIVE,
    InMemoryRateLimiter,
    RateLimitTier,
)

TINY = RateLimitTier(name="tiny", limit=2, window=10, message="slow down")


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


def test_allows_up_to_limit_then_rejects() -> None:
    limiter = InMemoryRateLimiter(clock=FakeClock())

    async def run():
        return [await limiter.hit("k", TINY) for _ in range(3)]

    first, second, third = asyncio.run(run())
    assert (first.allowed, first.remaining) == (True, 1)
    assert (second.allowed, second.remaining) == (True, 0)
    assert third.allowed is False
    assert third.retry_after == 10


def test_window_slides() -> None:
    clock = FakeClock()
    limiter = InMemoryRateLimiter(clock=clock)

    async def run():
        await limiter.hit("k", TINY)
        clock.now += 4
        await limiter.hit("k", TINY)
        clock.now += 3
        blocked = await limiter.hit("k", TINY)
        clock.now += 3  # the first hit is now exactly one window old
        freed = await limiter.hit("k", TINY)
        return blocked, freed

    blocked, freed = asyncio.run(run())
    assert blocked.allowed is False
    assert blocked.retry_after == 3
    assert freed.allowed is True
    assert freed.remaining == 0


def test_retry_after_is_at_least_one_second() -> None:
    clock = FakeClock()
    limiter = InMemoryRateLimiter(clock=clock)

    async def run():
        await limiter.hit("k", TINY)
        await limiter.hit("k", TINY)
        clock.now += 9.9
        return await limiter.hit("k", TINY)

    assert asyncio.run(run()).retry_after == 1


def test_keys_and_tiers_are_independent() -> None:
    limiter = InMemoryRateLimiter(clock=FakeClock())

    async def run():
        for _ in range(MINT.limit):
            await limiter.hit("mint:1.2.3.4:anonymous", MINT)
        return (
            await limiter.hit("mint:1.2.3.4:anonymous", MINT),
            await limiter.hit("mint:5.6.7.8:anonymous", MINT),
            await limiter.hit("sensitive:1.2.3.4:anonymous", SENSITIVE),
        )

    same, other_client, other_tier = asyncio.run(run())
    assert same.allowed is False
    assert other_client.allowed is True
    assert other_tier.allowed is True


def test_reset_forgets_key() -> None:
    limiter = InMemoryRateLimiter(clock=FakeClock())

    async def run():
        await limiter.hit("k", TINY)
        await limiter.hit("k", TINY)
        await limiter.reset("k")
        return await limiter.hit("k", TINY)

    assert asyncio.run(run()).allowed is True


def test_idle_keys_are_swept() -> None:
    clock = FakeClock()
    limiter = InMemoryRateLimiter(clock=clock)
    slow = RateLimitTier(name="slow", limit=2, window=600, message="slow down")

    async def run():
        for i in range(50):
            await limiter.hit(f"tiny:10.0.0.{i}:anonymous", TINY)
        await limiter.hit("slow:10.0.1.1:anonymous", slow)
        clock.now += InMemoryRateLimiter._SWEEP_INTERVAL
        await limiter.hit("tiny:10.0.2.1:anonymous", TINY)

    asyncio.run(run())
    # Only keys with a hit still inside their own window survive.
    assert set(limiter._hits) == {
        "slow:10.0.1.1:anonymous",
        "tiny:10.0.2.1:anonymous",
    }
    assert set(limiter._windows) == set(limiter._hits)


def test_concurrent_hits_never_exceed_limit() -> None:
    limiter = InMemoryRateLimiter()

    async def run():
        return await asyncio.gather(*(limiter.hit("k", MINT) for _ in range(20)))

    results = asyncio.run(run())
    assert sum(r.allowed for r in results) == MINT.limit

"""
tests.test_rate_limiter

Fixed-window admission per principal and per origin, eviction, and
concurrent callers on the in-memory backend.
"""

from __future__ import annotations

import asyncio

import pytest

from conftest import FakeClock
from projectguard.errors import RateLimitError
from projectguard.policy.models import RateLimitTier
from projectguard.ratelimit import RateLimiter
from projectguard.state.memory import InMemoryStateBackend

TIER = RateLimitTier(name="TEST", requests=3, window_seconds=60)


def _limiter(store: InMemoryStateBackend, clock: FakeClock, **kwargs) -> RateLimiter:
    kwargs.setdefault("rng", lambda: 1.0)  # never evict opportunistically
    return RateLimiter(store=store, clock=clock, **kwargs)


@pytest.mark.asyncio
async def test_limit_admitted_then_rejected_with_retry_after(clock: FakeClock) -> None:
    limiter = _limiter(InMemoryStateBackend(), clock)

    for _ in range(TIER.requests):
        await limiter.admit("u1", "10.0.0.1", TIER)

    clock.advance(seconds=20)
    with pytest.raises(RateLimitError) as exc:
        await limiter.admit("u1", "10.0.0.1", TIER)
    assert exc.value.scope == "principal"
    assert exc.value.retry_after_seconds == 40


@pytest.mark.asyncio
async def test_window_reset_opens_a_fresh_bucket(clock: FakeClock) -> None:
    limiter = _limiter(InMemoryStateBackend(), clock)
    for _ in range(TIER.requests):
        await limiter.admit("u1", "10.0.0.1", TIER)

    clock.advance(seconds=60)
    await limiter.admit("u1", "10.0.0.1", TIER)


@pytest.mark.asyncio
async def test_retry_after_is_at_least_one_second(clock: FakeClock) -> None:
    limiter = _limiter(InMemoryStateBackend(), clock)
    for _ in range(TIER.requests):
        await limiter.admit("u1", "10.0.0.1", TIER)

    clock.advance(seconds=59.9)
    with pytest.raises(RateLimitError) as exc:
        await limiter.admit("u1", "10.0.0.1", TIER)
    assert exc.value.retry_after_seconds == 1


@pytest.mark.asyncio
async def test_origin_limit_is_looser_and_shared(clock: FakeClock) -> None:
    # ceil(3 * 1.5) == 5 calls per origin, whatever principal makes them.
    limiter = _limiter(InMemoryStateBackend(), clock)
    for principal in ("u1", "u1", "u2", "u2", "u3"):
        await limiter.admit(principal, "10.0.0.9", TIER)

    with pytest.raises(RateLimitError) as exc:
        await limiter.admit("u4", "10.0.0.9", TIER)
    assert exc.value.scope == "ip"

    await limiter.admit("u4", "10.0.0.10", TIER)


@pytest.mark.asyncio
async def test_bypass_never_counts(clock: FakeClock) -> None:
    store = InMemoryStateBackend()
    limiter = _limiter(store, clock, enforce=False)
    for _ in range(TIER.requests * 10):
        await limiter.admit("u1", "10.0.0.1", TIER)

    assert not limiter.enforcing
    assert store.bucket_count == 0


@pytest.mark.asyncio
async def test_eviction_drops_only_elapsed_buckets(clock: FakeClock) -> None:
    store = InMemoryStateBackend()
    limiter = _limiter(store, clock)
    await limiter.admit("u1", "10.0.0.1", TIER)
    clock.advance(seconds=61)
    await limiter.admit("u2", "10.0.0.2", TIER)

    assert store.bucket_count == 4
    assert await limiter.evict_expired() == 2
    assert store.bucket_count == 2


@pytest.mark.asyncio
async def test_admit_evicts_opportunistically(clock: FakeClock) -> None:
    store = InMemoryStateBackend()
    await _limiter(store, clock).admit("u1", "10.0.0.1", TIER)
    clock.advance(seconds=61)

    await _limiter(store, clock, rng=lambda: 0.0).admit("u2", "10.0.0.2", TIER)
    assert store.bucket_count == 2


@pytest.mark.asyncio
async def test_concurrent_admissions_admit_exactly_the_limit(clock: FakeClock) -> None:
    limiter = _limiter(InMemoryStateBackend(), clock)

    results = await asyncio.gather(
        *(limiter.admit("u1", "10.0.0.1", TIER) for _ in range(TIER.requests + 7)),
        return_exceptions=True,
    )

    assert sum(1 for r in results if r is None) == TIER.requests
    assert all(isinstance(r, RateLimitError) for r in results if r is not None)

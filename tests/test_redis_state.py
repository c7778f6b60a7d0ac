"""
tests.test_redis_state

The Redis state backend against an in-process fake server: counters, sliding
sessions, sweeps, and the limiter/session manager running on top of it.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from datetime import timedelta

import fakeredis
import pytest
import pytest_asyncio

from conftest import FakeClock, RecordingAuditSink
from projectguard.errors import RateLimitError
from projectguard.policy.models import RateLimitTier
from projectguard.ratelimit import RateLimiter
from projectguard.sessions import SessionManager
from projectguard.state import redis_store
from projectguard.state.base import SessionData
from projectguard.state.redis_store import RedisStateBackend

TIMEOUT = timedelta(minutes=30)
WINDOW = timedelta(seconds=60)


@pytest.fixture
def server() -> fakeredis.FakeServer:
    return fakeredis.FakeServer()


@pytest_asyncio.fixture
async def backend(server: fakeredis.FakeServer) -> AsyncIterator[RedisStateBackend]:
    store = RedisStateBackend(
        fakeredis.FakeAsyncRedis(server=server, decode_responses=True), namespace="t"
    )
    try:
        yield store
    finally:
        await store.close()


def _session(clock: FakeClock, session_id: str = "s1", principal_id: str = "u1") -> SessionData:
    return SessionData(
        session_id=session_id,
        principal_id=principal_id,
        email=f"{principal_id}@example.com",
        created_at=clock.now,
        last_activity_at=clock.now,
    )


@pytest.mark.asyncio
async def test_hit_counts_within_one_window(backend: RedisStateBackend, clock: FakeClock) -> None:
    counts = [(await backend.hit("principal:u1", window=WINDOW, now=clock.now)).count for _ in range(3)]
    other = await backend.hit("principal:u2", window=WINDOW, now=clock.now)

    assert counts == [1, 2, 3]
    assert other.count == 1
    assert clock.now < other.window_reset_at <= clock.now + WINDOW
    assert await backend.evict_expired(now=clock.now) == 0


@pytest.mark.asyncio
async def test_refresh_slides_and_get_does_not(backend: RedisStateBackend, clock: FakeClock) -> None:
    await backend.put(_session(clock), timeout=TIMEOUT)
    created_at = clock.now

    clock.advance(minutes=10)
    lookup = await backend.refresh("s1", now=clock.now, timeout=TIMEOUT)
    assert not lookup.expired
    assert lookup.session.last_activity_at == clock.now

    clock.advance(minutes=5)
    stored = await backend.get("s1")
    assert stored.last_activity_at == created_at + timedelta(minutes=10)


@pytest.mark.asyncio
async def test_refresh_removes_an_idle_session(backend: RedisStateBackend, clock: FakeClock) -> None:
    await backend.put(_session(clock), timeout=TIMEOUT)

    clock.advance(minutes=31)
    lookup = await backend.refresh("s1", now=clock.now, timeout=TIMEOUT)

    assert lookup.expired
    assert await backend.get("s1") is None
    assert (await backend.refresh("s1", now=clock.now, timeout=TIMEOUT)).session is None


@pytest.mark.asyncio
async def test_refresh_never_resurrects_a_destroyed_session(
    backend: RedisStateBackend,
    server: fakeredis.FakeServer,
    clock: FakeClock,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    await backend.put(_session(clock), timeout=TIMEOUT)
    other_instance = fakeredis.FakeRedis(server=server)

    class DestroyedMidRefresh:
        fired = False

        @classmethod
        def loads(cls, raw):
            # Another instance destroys the session between the read and the write.
            if not cls.fired:
                cls.fired = True
                other_instance.delete("t:session:s1")
            return json.loads(raw)

        dumps = staticmethod(json.dumps)

    monkeypatch.setattr(redis_store, "json", DestroyedMidRefresh)
    clock.advance(minutes=1)
    lookup = await backend.refresh("s1", now=clock.now, timeout=TIMEOUT)

    assert DestroyedMidRefresh.fired
    assert lookup.session is None
    assert await backend.get("s1") is None


@pytest.mark.asyncio
async def test_sweep_and_count(backend: RedisStateBackend, clock: FakeClock) -> None:
    await backend.put(_session(clock, "old", "u1"), timeout=TIMEOUT)
    clock.advance(minutes=20)
    await backend.put(_session(clock, "fresh", "u1"), timeout=TIMEOUT)
    await backend.put(_session(clock, "other", "u2"), timeout=TIMEOUT)
    assert await backend.count_for("u1") == 2

    clock.advance(minutes=15)
    assert await backend.sweep(now=clock.now, timeout=TIMEOUT) == 1
    assert await backend.count_for("u1") == 1
    assert (await backend.pop("fresh")).principal_id == "u1"
    assert await backend.pop("fresh") is None


@pytest.mark.asyncio
async def test_concurrent_admissions_never_exceed_the_limit(
    backend: RedisStateBackend, clock: FakeClock
) -> None:
    tier = RateLimitTier(name="TEST", requests=5, window_seconds=60)
    limiter = RateLimiter(store=backend, clock=clock, rng=lambda: 1.0)

    results = await asyncio.gather(
        *(limiter.admit("u1", "10.0.0.1", tier) for _ in range(12)), return_exceptions=True
    )

    assert sum(1 for r in results if r is None) == 5
    assert all(isinstance(r, RateLimitError) for r in results if r is not None)


@pytest.mark.asyncio
async def test_session_manager_on_redis(backend: RedisStateBackend, clock: FakeClock) -> None:
    audit = RecordingAuditSink()
    sessions = SessionManager(store=backend, audit=audit, timeout=TIMEOUT, clock=clock)
    session_id = await sessions.create_session("u1", "u1@example.com")

    clock.advance(minutes=29)
    assert (await sessions.validate_session(session_id)).principal_id == "u1"
    await sessions.destroy_session(session_id)

    assert await sessions.get_session(session_id) is None
    assert audit.actions() == ["SESSION_CREATED", "SESSION_DESTROYED"]

"""
tests.test_sessions

Session lifecycle: creation, sliding expiry, destruction, sweeping and
concurrent use.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from conftest import FakeClock, RecordingAuditSink
from projectguard.errors import AuthenticationError
from projectguard.sessions import SessionManager
from projectguard.state.memory import InMemoryStateBackend


def _manager(clock: FakeClock, audit: RecordingAuditSink, store=None) -> SessionManager:
    return SessionManager(
        store=store or InMemoryStateBackend(),
        audit=audit,
        timeout=timedelta(minutes=30),
        clock=clock,
    )


@pytest.mark.asyncio
async def test_create_returns_unguessable_id_and_audits(
    clock: FakeClock, audit_sink: RecordingAuditSink
) -> None:
    sessions = _manager(clock, audit_sink)
    first = await sessions.create_session("u1", "u1@example.com", {"ip": "10.0.0.1"})
    second = await sessions.create_session("u1", "u1@example.com", {})

    assert len(first) == 64
    assert first != second
    assert audit_sink.actions() == ["SESSION_CREATED", "SESSION_CREATED"]
    assert audit_sink.entries[0].meta["ip"] == "10.0.0.1"
    assert await sessions.count_user_sessions("u1") == 2


@pytest.mark.asyncio
async def test_activity_slides_the_expiry(clock: FakeClock, audit_sink: RecordingAuditSink) -> None:
    sessions = _manager(clock, audit_sink)
    session_id = await sessions.create_session("u1", "u1@example.com")

    # Four 25-minute gaps: always inside the 30-minute idle limit.
    for _ in range(4):
        clock.advance(minutes=25)
        data = await sessions.validate_session(session_id)
        assert data.last_activity_at == clock.now


@pytest.mark.asyncio
async def test_idle_session_expires_and_is_removed(
    clock: FakeClock, audit_sink: RecordingAuditSink
) -> None:
    store = InMemoryStateBackend()
    sessions = _manager(clock, audit_sink, store)
    session_id = await sessions.create_session("u1", "u1@example.com")

    clock.advance(minutes=31)
    with pytest.raises(AuthenticationError) as exc:
        await sessions.validate_session(session_id)
    assert exc.value.code == "SESSION_EXPIRED"
    assert store.session_count == 0

    with pytest.raises(AuthenticationError) as exc:
        await sessions.validate_session(session_id)
    assert exc.value.code == "SESSION_INVALID"


@pytest.mark.asyncio
async def test_unknown_session_is_invalid(clock: FakeClock, audit_sink: RecordingAuditSink) -> None:
    sessions = _manager(clock, audit_sink)
    with pytest.raises(AuthenticationError) as exc:
        await sessions.validate_session("nope")
    assert exc.value.code == "SESSION_INVALID"
    with pytest.raises(AuthenticationError):
        await sessions.validate_session("")


@pytest.mark.asyncio
async def test_destroy_is_idempotent_and_records_duration(
    clock: FakeClock, audit_sink: RecordingAuditSink
) -> None:
    sessions = _manager(clock, audit_sink)
    session_id = await sessions.create_session("u1", "u1@example.com")
    clock.advance(minutes=12)

    await sessions.destroy_session(session_id)
    await sessions.destroy_session(session_id)

    assert audit_sink.actions() == ["SESSION_CREATED", "SESSION_DESTROYED"]
    assert audit_sink.entries[1].meta["duration_seconds"] == 720.0
    assert await sessions.count_user_sessions("u1") == 0


@pytest.mark.asyncio
async def test_sweep_removes_only_idle_sessions(
    clock: FakeClock, audit_sink: RecordingAuditSink
) -> None:
    sessions = _manager(clock, audit_sink)
    stale = await sessions.create_session("u1", "u1@example.com")
    clock.advance(minutes=20)
    fresh = await sessions.create_session("u2", "u2@example.com")
    clock.advance(minutes=15)

    assert await sessions.sweep_expired() == 1
    await sessions.validate_session(fresh)
    with pytest.raises(AuthenticationError):
        await sessions.validate_session(stale)


@pytest.mark.asyncio
async def test_audit_failure_does_not_break_sessions(clock: FakeClock) -> None:
    sessions = _manager(clock, RecordingAuditSink(fail=True))
    session_id = await sessions.create_session("u1", "u1@example.com")

    assert (await sessions.validate_session(session_id)).principal_id == "u1"
    await sessions.destroy_session(session_id)


@pytest.mark.asyncio
async def test_sweeper_task_starts_and_stops(
    clock: FakeClock, audit_sink: RecordingAuditSink
) -> None:
    sessions = SessionManager(
        store=InMemoryStateBackend(), audit=audit_sink, sweep_interval_seconds=3600, clock=clock
    )
    sessions.start()
    assert sessions._sweeper.running
    await sessions.stop()
    assert not sessions._sweeper.running


@pytest.mark.asyncio
async def test_ownership_lookup_does_not_slide(
    clock: FakeClock, audit_sink: RecordingAuditSink
) -> None:
    sessions = _manager(clock, audit_sink)
    session_id = await sessions.create_session("u1", "u1@example.com")

    clock.advance(minutes=20)
    assert (await sessions.get_session(session_id)).principal_id == "u1"

    clock.advance(minutes=15)
    assert await sessions.get_session(session_id) is None
    with pytest.raises(AuthenticationError) as exc:
        await sessions.validate_session(session_id)
    assert exc.value.code == "SESSION_EXPIRED"


@pytest.mark.asyncio
async def test_parallel_create_and_destroy(clock: FakeClock, audit_sink: RecordingAuditSink) -> None:
    sessions = _manager(clock, audit_sink)

    ids = await asyncio.gather(*(sessions.create_session("u1", "u1@example.com") for _ in range(20)))
    assert len(set(ids)) == 20
    assert await sessions.count_user_sessions("u1") == 20

    # Every id destroyed twice at once: each is removed and audited exactly once.
    await asyncio.gather(*(sessions.destroy_session(sid) for sid in ids + ids))

    assert await sessions.count_user_sessions("u1") == 0
    assert audit_sink.actions().count("SESSION_DESTROYED") == 20

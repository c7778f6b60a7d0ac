"""
projectguard.state.memory

Single-process state backend.

Responsibilities:
- Hold rate-limit buckets and sessions in dicts guarded by one asyncio lock.

Note:
- Correct only for a single instance; multi-instance deployments must use the
  Redis backend so every instance sees the same counters and sessions.
"""

from __future__ import annotations

import asyncio
import dataclasses
from datetime import datetime, timedelta

from projectguard.state.base import RateLimitBucket, SessionData, SessionLookup, StateBackend


class InMemoryStateBackend(StateBackend):
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._buckets: dict[str, RateLimitBucket] = {}
        self._sessions: dict[str, SessionData] = {}

    async def hit(self, key: str, *, window: timedelta, now: datetime) -> RateLimitBucket:
        async with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None or now >= bucket.window_reset_at:
                bucket = RateLimitBucket(key=key, count=1, window_reset_at=now + window)
                self._buckets[key] = bucket
            else:
                bucket.count += 1
            # Callers get a snapshot; the stored bucket keeps mutating under the lock.
            return dataclasses.replace(bucket)

    async def evict_expired(self, *, now: datetime) -> int:
        async with self._lock:
            stale = [k for k, b in self._buckets.items() if b.window_reset_at <= now]
            for k in stale:
                del self._buckets[k]
            return len(stale)

    async def put(self, session: SessionData, *, timeout: timedelta) -> None:
        async with self._lock:
            self._sessions[session.session_id] = dataclasses.replace(session)

    async def get(self, session_id: str) -> SessionData | None:
        async with self._lock:
            session = self._sessions.get(session_id)
            return dataclasses.replace(session) if session is not None else None

    async def refresh(self, session_id: str, *, now: datetime, timeout: timedelta) -> SessionLookup:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return SessionLookup(session=None)
            if session.is_expired(now=now, timeout=timeout):
                del self._sessions[session_id]
                return SessionLookup(session=dataclasses.replace(session), expired=True)
            session.last_activity_at = now
            return SessionLookup(session=dataclasses.replace(session))

    async def pop(self, session_id: str) -> SessionData | None:
        async with self._lock:
            return self._sessions.pop(session_id, None)

    async def sweep(self, *, now: datetime, timeout: timedelta) -> int:
        async with self._lock:
            stale = [
                sid for sid, s in self._sessions.items() if s.is_expired(now=now, timeout=timeout)
            ]
            for sid in stale:
                del self._sessions[sid]
            return len(stale)

    async def count_for(self, principal_id: str) -> int:
        async with self._lock:
            return sum(1 for s in self._sessions.values() if s.principal_id == principal_id)

    @property
    def bucket_count(self) -> int:
        return len(self._buckets)

    @property
    def session_count(self) -> int:
        return len(self._sessions)

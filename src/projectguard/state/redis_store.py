"""
projectguard.state.redis_store

Shared state backend on Redis (multi-instance deployments).

Responsibilities:
- Fixed-window counters via MULTI/EXEC (SET NX PX + INCR + PTTL).
- Sliding sessions stored as JSON with a PX expiry refreshed on every use.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Any

from redis.exceptions import WatchError

from projectguard.state.base import RateLimitBucket, SessionData, SessionLookup, StateBackend


def _ms(delta: timedelta) -> int:
    return max(1, int(delta.total_seconds() * 1000))


class RedisStateBackend(StateBackend):
    def __init__(self, redis_client: Any, *, namespace: str = "pg") -> None:
        self._r = redis_client
        self._ns = namespace

    def _bucket_key(self, key: str) -> str:
        return f"{self._ns}:rl:{key}"

    def _session_key(self, session_id: str) -> str:
        return f"{self._ns}:session:{session_id}"

    async def hit(self, key: str, *, window: timedelta, now: datetime) -> RateLimitBucket:
        rkey = self._bucket_key(key)
        async with self._r.pipeline(transaction=True) as pipe:
            # The NX set opens a window with its expiry; INCR then counts this request.
            pipe.set(rkey, 0, px=_ms(window), nx=True)
            pipe.incr(rkey)
            pipe.pttl(rkey)
            _, count, ttl_ms = await pipe.execute()
        ttl = timedelta(milliseconds=ttl_ms) if ttl_ms and ttl_ms > 0 else window
        return RateLimitBucket(key=key, count=int(count), window_reset_at=now + ttl)

    async def evict_expired(self, *, now: datetime) -> int:
        # Redis expires buckets itself.
        return 0

    async def put(self, session: SessionData, *, timeout: timedelta) -> None:
        await self._r.set(
            self._session_key(session.session_id),
            json.dumps(session.to_dict()),
            px=_ms(timeout),
        )

    async def _load(self, rkey: str) -> SessionData | None:
        raw = await self._r.get(rkey)
        if raw is None:
            return None
        return SessionData.from_dict(json.loads(raw))

    async def get(self, session_id: str) -> SessionData | None:
        return await self._load(self._session_key(session_id))

    async def refresh(self, session_id: str, *, now: datetime, timeout: timedelta) -> SessionLookup:
        rkey = self._session_key(session_id)
        async with self._r.pipeline(transaction=True) as pipe:
            while True:
                try:
                    # WATCH turns a concurrent pop/sweep into a retry instead of a resurrection.
                    await pipe.watch(rkey)
                    raw = await pipe.get(rkey)
                    if raw is None:
                        return SessionLookup(session=None)
                    session = SessionData.from_dict(json.loads(raw))
                    expired = session.is_expired(now=now, timeout=timeout)
                    pipe.multi()
                    if expired:
                        pipe.delete(rkey)
                    else:
                        session.last_activity_at = now
                        pipe.set(rkey, json.dumps(session.to_dict()), px=_ms(timeout), xx=True)
                    (written,) = await pipe.execute()
                except WatchError:
                    continue
                if expired:
                    return SessionLookup(session=session, expired=True)
                if not written:
                    return SessionLookup(session=None)
                return SessionLookup(session=session)

    async def pop(self, session_id: str) -> SessionData | None:
        rkey = self._session_key(session_id)
        async with self._r.pipeline(transaction=True) as pipe:
            pipe.get(rkey)
            pipe.delete(rkey)
            raw, _ = await pipe.execute()
        if raw is None:
            return None
        return SessionData.from_dict(json.loads(raw))

    async def _iter_sessions(self):
        async for rkey in self._r.scan_iter(match=self._session_key("*")):
            session = await self._load(rkey)
            if session is not None:
                yield rkey, session

    async def sweep(self, *, now: datetime, timeout: timedelta) -> int:
        removed = 0
        async for rkey, session in self._iter_sessions():
            if session.is_expired(now=now, timeout=timeout):
                removed += int(await self._r.delete(rkey))
        return removed

    async def count_for(self, principal_id: str) -> int:
        count = 0
        async for _, session in self._iter_sessions():
            if session.principal_id == principal_id:
                count += 1
        return count

    async def close(self) -> None:
        await self._r.aclose()


# --- Module Notes -----------------------------------------------------------
# Key TTLs mirror the session timeout and the rate-limit window, so abandoned
# entries disappear even if no sweeper runs on any instance.

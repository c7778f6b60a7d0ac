"""
projectguard.sessions

Sliding-window session lifecycle.

Responsibilities:
- Create, validate (sliding expiry), and destroy sessions.
- Sweep abandoned sessions in the background.
- Audit session creation and destruction.

Sessions are independent of the identity credential's own lifetime: a valid
token does not keep an idle session alive, and continuous activity never forces
a re-login.
"""

from __future__ import annotations

import secrets
from collections.abc import Mapping
from datetime import timedelta
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from projectguard.clock import Clock, utcnow
from projectguard.db.repositories.audit import AuditEntry, AuditSink
from projectguard.errors import AuthenticationError
from projectguard.observability.logging import get_logger
from projectguard.services.maintenance import PeriodicTask
from projectguard.state.base import SessionData, SessionStore

log = get_logger(__name__)

DEFAULT_TIMEOUT = timedelta(minutes=30)
DEFAULT_SWEEP_INTERVAL_SECONDS = 300.0


def generate_session_id() -> str:
    # 32 random bytes, hex encoded.
    return secrets.token_hex(32)


class SessionManager:
    def __init__(
        self,
        *,
        store: SessionStore,
        audit: AuditSink,
        timeout: timedelta = DEFAULT_TIMEOUT,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._audit = audit
        self._timeout = timeout
        self._clock = clock
        self._sweeper = PeriodicTask(
            name="session-sweep",
            interval_seconds=sweep_interval_seconds,
            action=self.sweep_expired,
        )

    @property
    def timeout(self) -> timedelta:
        return self._timeout

    async def create_session(
        self,
        principal_id: str,
        email: str,
        origin_metadata: Mapping[str, Any] | None = None,
    ) -> str:
        now = self._clock()
        session = SessionData(
            session_id=generate_session_id(),
            principal_id=principal_id,
            email=email,
            created_at=now,
            last_activity_at=now,
            metadata=dict(origin_metadata or {}),
        )
        await self._store.put(session, timeout=self._timeout)
        await self._record(
            AuditEntry(
                user_id=principal_id,
                action="SESSION_CREATED",
                entity="session",
                entity_id=session.session_id,
                meta={**session.metadata, "created_at": now.isoformat()},
            )
        )
        log.info("session_created", user_id=principal_id)
        return session.session_id

    async def validate_session(self, session_id: str) -> SessionData:
        if not session_id:
            raise AuthenticationError("Invalid or expired session", code="SESSION_INVALID")

        lookup = await self._store.refresh(session_id, now=self._clock(), timeout=self._timeout)
        if lookup.expired:
            log.info("session_expired", user_id=lookup.session.principal_id if lookup.session else None)
            raise AuthenticationError(
                "Session timed out due to inactivity", code="SESSION_EXPIRED"
            )
        if lookup.session is None:
            raise AuthenticationError("Invalid or expired session", code="SESSION_INVALID")
        return lookup.session

    async def get_session(self, session_id: str) -> SessionData | None:
        # Non-sliding: ownership checks must not keep someone else's session alive.
        if not session_id:
            return None
        session = await self._store.get(session_id)
        if session is None or session.is_expired(now=self._clock(), timeout=self._timeout):
            return None
        return session

    async def destroy_session(self, session_id: str) -> None:
        session = await self._store.pop(session_id)
        if session is None:
            return
        now = self._clock()
        await self._record(
            AuditEntry(
                user_id=session.principal_id,
                action="SESSION_DESTROYED",
                entity="session",
                entity_id=session_id,
                meta={
                    "duration_seconds": (now - session.created_at).total_seconds(),
                    "destroyed_at": now.isoformat(),
                },
            )
        )
        log.info("session_destroyed", user_id=session.principal_id)

    async def sweep_expired(self) -> int:
        removed = await self._store.sweep(now=self._clock(), timeout=self._timeout)
        if removed:
            log.info("sessions_swept", removed=removed)
        return removed

    async def count_user_sessions(self, principal_id: str) -> int:
        return await self._store.count_for(principal_id)

    def start(self) -> None:
        self._sweeper.start()

    async def stop(self) -> None:
        await self._sweeper.stop()

    async def _record(self, entry: AuditEntry) -> None:
        # Session bookkeeping must not fail because the audit table is unavailable.
        try:
            await self._audit.write(entry)
        except SQLAlchemyError:
            log.exception("session_audit_failed", action=entry.action, user_id=entry.user_id)


# --- Module Notes -----------------------------------------------------------
# The store decides where sessions live (see `projectguard.state`); this class
# owns the policy: timeout, sliding refresh, audit, sweep cadence.

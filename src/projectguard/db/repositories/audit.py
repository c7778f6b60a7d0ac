"""
projectguard.db.repositories.audit

Audit trail persistence.

Responsibilities:
- Define `AuditEntry` and the append-only `AuditSink` protocol.
- Append audit entries inside the caller's session (`AuditRepo`).
- Append audit entries from outside any request session (`SessionFactoryAuditSink`).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from projectguard.db.models import AuditLog


@dataclass(frozen=True, slots=True)
class AuditEntry:
    user_id: str
    action: str
    entity: str
    entity_id: str = ""
    meta: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime | None = None


class AuditSink(Protocol):
    async def write(self, entry: AuditEntry) -> None: ...


class AuditRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def write(self, entry: AuditEntry) -> None:
        # Audit rows are append-only (no update/delete) in normal operation.
        row = AuditLog(
            user_id=entry.user_id,
            action=entry.action,
            entity=entry.entity,
            entity_id=entry.entity_id or "",
            meta=dict(entry.meta),
        )
        if entry.timestamp is not None:
            row.created_at = entry.timestamp.replace(tzinfo=None)
        self._session.add(row)
        await self._session.flush()


class SessionFactoryAuditSink:
    """
    Writes each entry in its own short transaction; used by components that live
    for the whole process (the session manager) rather than for one request.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def write(self, entry: AuditEntry) -> None:
        async with self._session_factory() as session:
            await AuditRepo(session).write(entry)
            await session.commit()


# --- Module Notes -----------------------------------------------------------
# Repository mutations audit through the request session so the audit row commits
# or rolls back together with the change it describes.

"""
projectguard.db.repositories.scoped

Tenant-scoped repository over the generic `Store`.

Responsibilities:
- Refuse to exist for a project the caller cannot access.
- Inject the tenant filter into every query-style read and aggregate.
- Validate the tenant column of every record that comes back, including
  primary-key lookups that bypass filter injection.
- Stamp the tenant on creates; re-fetch and validate before updates/deletes.
- Gate the raw-SQL escape hatch on an explicit tenant reference.
- Audit every mutation.
"""

from __future__ import annotations

import re
from collections.abc import AsyncIterator, Iterable, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from projectguard.db.repositories.audit import AuditEntry, AuditSink
from projectguard.db.store import Record, Store
from projectguard.errors import (
    AuthorizationError,
    NotFoundError,
    TenantViolationError,
    ValidationError,
)
from projectguard.observability.logging import get_logger, get_security_logger
from projectguard.policy.engine import PolicyEngine

TENANT_COLUMN = "project_id"
_TENANT_REFERENCE = re.compile(r"\bproject_id\b", re.IGNORECASE)
_MISSING = object()

log = get_logger(__name__)
security_log = get_security_logger()


@dataclass(frozen=True, slots=True)
class ScopedContext:
    user_id: str
    project_id: str
    # Every project the caller is a member of.
    caller_projects: tuple[str, ...]


async def create_scoped_context(policy: PolicyEngine, user_id: str, project_id: str) -> ScopedContext:
    caller_projects = tuple(await policy.get_user_projects(user_id))
    if project_id not in caller_projects:
        raise AuthorizationError("Not authorized for this project", code="NOT_A_MEMBER")
    return ScopedContext(user_id=user_id, project_id=project_id, caller_projects=caller_projects)


class ScopedRepository:
    def __init__(
        self,
        *,
        store: Store,
        context: ScopedContext,
        entity: str,
        audit: AuditSink,
        skip_project_scope: bool = False,
    ) -> None:
        if not context.user_id or not context.project_id:
            raise ValidationError("Invalid security context")
        if context.project_id not in context.caller_projects:
            raise AuthorizationError("Project access denied", code="PROJECT_ACCESS_DENIED")

        self._store = store
        self._context = context
        self._entity = entity
        self._audit = audit
        # Tenant-global entities (no tenant column) skip injection and validation.
        self._skip_scope = skip_project_scope

    @property
    def context(self) -> ScopedContext:
        return self._context

    @property
    def entity(self) -> str:
        return self._entity

    def _scoped(self, where: Mapping[str, Any] | None) -> dict[str, Any]:
        scoped = dict(where or {})
        if not self._skip_scope:
            # Overrides any caller-supplied tenant value.
            scoped[TENANT_COLUMN] = self._context.project_id
        return scoped

    def _validate_ownership(self, records: Iterable[Record]) -> None:
        if self._skip_scope:
            return
        for record in records:
            # A record without a tenant column cannot prove ownership, so it is refused.
            owner = record.get(TENANT_COLUMN, _MISSING)
            if owner is _MISSING or owner != self._context.project_id:
                security_log.error(
                    "tenant_violation",
                    user_id=self._context.user_id,
                    project_id=self._context.project_id,
                    entity=self._entity,
                    entity_id=record.get("id"),
                    owner_project_id=None if owner is _MISSING else owner,
                )
                raise TenantViolationError(
                    "Access denied - resource belongs to different project"
                )

    async def _write_audit(self, action: str, entity_id: Any, meta: Mapping[str, Any] | None = None) -> None:
        await self._audit.write(
            AuditEntry(
                user_id=self._context.user_id,
                action=action,
                entity=self._entity,
                entity_id=str(entity_id or ""),
                meta={"project_id": self._context.project_id, **dict(meta or {})},
            )
        )

    # --- reads --------------------------------------------------------------

    async def find_many(
        self,
        *,
        where: Mapping[str, Any] | None = None,
        order_by: Sequence[str] = (),
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Record]:
        records = await self._store.find_many(
            self._entity, where=self._scoped(where), order_by=order_by, limit=limit, offset=offset
        )
        self._validate_ownership(records)
        return records

    async def find_first(
        self, *, where: Mapping[str, Any] | None = None, order_by: Sequence[str] = ()
    ) -> Record | None:
        record = await self._store.find_first(
            self._entity, where=self._scoped(where), order_by=order_by
        )
        if record is not None:
            self._validate_ownership([record])
        return record

    async def find_unique(self, id: str) -> Record | None:
        # Primary-key lookups never see the tenant filter; validate unconditionally.
        record = await self._store.find_unique(self._entity, id)
        if record is not None:
            self._validate_ownership([record])
        return record

    async def get(self, id: str) -> Record:
        record = await self.find_unique(id)
        if record is None:
            raise NotFoundError("Resource not found")
        return record

    async def count(self, *, where: Mapping[str, Any] | None = None) -> int:
        return await self._store.count(self._entity, where=self._scoped(where))

    async def aggregate(
        self, *, functions: Mapping[str, Sequence[str]], where: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        return await self._store.aggregate(
            self._entity, functions=functions, where=self._scoped(where)
        )

    async def group_by(
        self, by: Sequence[str], *, where: Mapping[str, Any] | None = None
    ) -> list[Record]:
        return await self._store.group_by(self._entity, by, where=self._scoped(where))

    # --- mutations ----------------------------------------------------------

    async def create(self, data: Mapping[str, Any]) -> Record:
        payload = dict(data)
        if not self._skip_scope:
            supplied = payload.get(TENANT_COLUMN)
            if supplied is not None and supplied != self._context.project_id:
                log.warning(
                    "tenant_override_ignored",
                    entity=self._entity,
                    supplied_project_id=supplied,
                    project_id=self._context.project_id,
                )
            payload[TENANT_COLUMN] = self._context.project_id

        record = await self._store.create(self._entity, payload)
        await self._write_audit("CREATE", record.get("id"))
        return record

    async def update(self, id: str, data: Mapping[str, Any]) -> Record:
        existing = await self._store.find_unique(self._entity, id)
        if existing is None:
            raise NotFoundError("Resource not found")
        self._validate_ownership([existing])

        changes = dict(data)
        if not self._skip_scope:
            # A record can never be moved to another tenant.
            changes.pop(TENANT_COLUMN, None)
        record = await self._store.update(self._entity, id, changes)
        await self._write_audit("UPDATE", record.get("id"), {"fields": sorted(changes)})
        return record

    async def delete(self, id: str) -> Record:
        existing = await self._store.find_unique(self._entity, id)
        if existing is None:
            raise NotFoundError("Resource not found")
        self._validate_ownership([existing])

        record = await self._store.delete(self._entity, id)
        await self._write_audit("DELETE", record.get("id"))
        return record

    async def execute_raw(
        self, sql: str, params: Mapping[str, Any] | None = None
    ) -> list[Record] | int:
        bound = dict(params or {})
        if not self._skip_scope:
            if not _TENANT_REFERENCE.search(sql):
                raise ValidationError("Raw query must include project_id filter")
            if self._context.project_id not in bound.values():
                bound[TENANT_COLUMN] = self._context.project_id
        return await self._store.execute_raw(sql, bound)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[ScopedRepository]:
        async with self._store.transaction():
            yield self


# --- Module Notes -----------------------------------------------------------
# Typed queries, primary-key lookups and raw SQL each enforce the tenant on their
# own; none of them relies on another path having checked first.

"""
projectguard.db.repositories.domain

Entity-specific scoped repositories.

Responsibilities:
- Budget reads redacted for the caller's project role.
- Procurement creation/approval restricted to elevated project roles.
- Task status changes with an activity audit entry.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from projectguard.auth.models import SystemRole
from projectguard.db.repositories.audit import AuditSink
from projectguard.db.repositories.scoped import ScopedContext, ScopedRepository
from projectguard.db.store import Record, Store
from projectguard.errors import AuthorizationError
from projectguard.policy.engine import apply_data_redaction
from projectguard.policy.models import Module
from projectguard.policy.rules import ELEVATED_ROLES, redaction_fields


class BudgetRepository(ScopedRepository):
    def __init__(
        self, *, store: Store, context: ScopedContext, audit: AuditSink, role: SystemRole
    ) -> None:
        super().__init__(store=store, context=context, entity="budget_item", audit=audit)
        self._role = role

    def _redact(self, record: Record) -> Record:
        return apply_data_redaction(record, self._role, Module.BUDGET)

    async def find_many(
        self,
        *,
        where: Mapping[str, Any] | None = None,
        order_by: Sequence[str] = (),
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Record]:
        items = await super().find_many(where=where, order_by=order_by, limit=limit, offset=offset)
        return [self._redact(i) for i in items]

    async def find_first(
        self, *, where: Mapping[str, Any] | None = None, order_by: Sequence[str] = ()
    ) -> Record | None:
        item = await super().find_first(where=where, order_by=order_by)
        return self._redact(item) if item is not None else None

    async def find_unique(self, id: str) -> Record | None:
        item = await super().find_unique(id)
        return self._redact(item) if item is not None else None

    async def update(self, id: str, data: Mapping[str, Any]) -> Record:
        return self._redact(await super().update(id, data))

    @property
    def can_see_totals(self) -> bool:
        return "est_total" not in redaction_fields(self._role, Module.BUDGET)

    async def calculate_totals(self) -> dict[str, float]:
        if not self.can_see_totals:
            raise AuthorizationError(
                "Cost totals are not visible for this role",
                module=Module.BUDGET.value,
                permission="read",
            )
        sums = await self.aggregate(
            functions={"sum": ["est_total", "committed_total", "paid_to_date"]}
        )
        totals = {k: float(v or 0.0) for k, v in sums.get("sum", {}).items()}
        estimated = totals.get("est_total", 0.0)
        committed = totals.get("committed_total", 0.0)
        return {
            "estimated_total": estimated,
            "committed_total": committed,
            "paid_to_date": totals.get("paid_to_date", 0.0),
            "variance": estimated - committed,
        }


class ProcurementRepository(ScopedRepository):
    def __init__(
        self, *, store: Store, context: ScopedContext, audit: AuditSink, role: SystemRole
    ) -> None:
        super().__init__(store=store, context=context, entity="procurement", audit=audit)
        self._role = role

    def _require_elevated(self, action: str) -> None:
        if self._role not in ELEVATED_ROLES:
            raise AuthorizationError(
                f"Only ADMIN/STAFF can {action} procurement items",
                module=Module.PROCUREMENT.value,
                permission="approve" if action == "approve" else "write",
            )

    async def create(self, data: Mapping[str, Any]) -> Record:
        self._require_elevated("create")
        return await super().create(data)

    async def approve(self, procurement_id: str) -> Record:
        self._require_elevated("approve")
        return await self.update(
            procurement_id,
            {
                "order_status": "APPROVED",
                "approved_by": self.context.user_id,
                "approved_at": datetime.now(tz=UTC).replace(tzinfo=None),
            },
        )


class TaskRepository(ScopedRepository):
    def __init__(self, *, store: Store, context: ScopedContext, audit: AuditSink) -> None:
        super().__init__(store=store, context=context, entity="task", audit=audit)

    async def update_status(self, task_id: str, status: str) -> Record:
        before = await self.get(task_id)
        updated = await self.update(
            task_id, {"status": status, "updated_by": self.context.user_id}
        )
        await self._write_audit(
            "STATUS_CHANGE", task_id, {"from": before.get("status"), "to": status}
        )
        return updated

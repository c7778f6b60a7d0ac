"""
projectguard.api.routers.budget

Budget endpoints.

Responsibilities:
- List a project's budget items, redacted for the caller's project role.
- Update a budget item; the owning project comes from the item, not the client.
"""

from __future__ import annotations

import dataclasses
from typing import Any

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from projectguard.api.deps import db_session, finish, inbound_call, request_pipeline
from projectguard.db.repositories.audit import AuditRepo
from projectguard.db.repositories.domain import BudgetRepository
from projectguard.db.store import SqlAlchemyStore
from projectguard.policy.models import Module, Permission
from projectguard.services.pipeline import (
    InboundCall,
    OperationSpec,
    RequestPipeline,
    SecurityContext,
    resource_project,
)

router = APIRouter(prefix="/v1/budget", tags=["budget"])


class BudgetItemPatch(BaseModel):
    item: str | None = Field(default=None, max_length=256)
    category: str | None = Field(default=None, max_length=32)
    notes: str | None = None
    est_unit_cost: float | None = None
    est_total: float | None = None
    committed_total: float | None = None
    paid_to_date: float | None = None
    variance: float | None = None
    # Accepted for client compatibility; the item's own project always wins.
    project_id: str | None = None


def _repo(session: AsyncSession, ctx: SecurityContext) -> BudgetRepository:
    return BudgetRepository(
        store=SqlAlchemyStore(session),
        context=ctx.scoped(),
        audit=AuditRepo(session),
        role=ctx.project_role,
    )


@router.get("")
async def list_budget(
    project_id: str | None = Query(default=None),
    call: InboundCall = Depends(inbound_call),
    pipeline: RequestPipeline = Depends(request_pipeline),
    session: AsyncSession = Depends(db_session),
) -> JSONResponse:
    async def handler(ctx: SecurityContext) -> dict[str, Any]:
        repo = _repo(session, ctx)
        items = await repo.find_many(order_by=["item"])
        totals = await repo.calculate_totals() if repo.can_see_totals else None
        return {"items": items, "totals": totals}

    call = dataclasses.replace(call, project_id=project_id)
    spec = OperationSpec(module=Module.BUDGET, permission=Permission.READ)
    return await finish(session, await pipeline.run(call, spec, handler))


@router.patch("/{item_id}")
async def update_budget_item(
    item_id: str,
    body: BudgetItemPatch,
    call: InboundCall = Depends(inbound_call),
    pipeline: RequestPipeline = Depends(request_pipeline),
    session: AsyncSession = Depends(db_session),
) -> JSONResponse:
    async def handler(ctx: SecurityContext) -> dict[str, Any]:
        return await _repo(session, ctx).update(item_id, body.model_dump(exclude_unset=True))

    call = dataclasses.replace(call, project_id=body.project_id, params={"item_id": item_id})
    spec = OperationSpec(
        module=Module.BUDGET,
        permission=Permission.WRITE,
        resolve_project=resource_project(SqlAlchemyStore(session), "budget_item", "item_id"),
    )
    return await finish(session, await pipeline.run(call, spec, handler))

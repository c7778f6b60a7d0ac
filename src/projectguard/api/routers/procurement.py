"""
projectguard.api.routers.procurement

Procurement approval endpoint.
"""

from __future__ import annotations

import dataclasses
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from projectguard.api.deps import db_session, finish, inbound_call, request_pipeline
from projectguard.db.repositories.audit import AuditRepo
from projectguard.db.repositories.domain import ProcurementRepository
from projectguard.db.store import SqlAlchemyStore
from projectguard.policy.models import Module, Permission
from projectguard.services.pipeline import (
    InboundCall,
    OperationSpec,
    RequestPipeline,
    SecurityContext,
    resource_project,
)

router = APIRouter(prefix="/v1/procurement", tags=["procurement"])


@router.post("/{procurement_id}/approve")
async def approve_procurement(
    procurement_id: str,
    call: InboundCall = Depends(inbound_call),
    pipeline: RequestPipeline = Depends(request_pipeline),
    session: AsyncSession = Depends(db_session),
) -> JSONResponse:
    store = SqlAlchemyStore(session)

    async def handler(ctx: SecurityContext) -> dict[str, Any]:
        repo = ProcurementRepository(
            store=store, context=ctx.scoped(), audit=AuditRepo(session), role=ctx.project_role
        )
        return await repo.approve(procurement_id)

    call = dataclasses.replace(call, params={"procurement_id": procurement_id})
    spec = OperationSpec(
        module=Module.PROCUREMENT,
        permission=Permission.APPROVE,
        resolve_project=resource_project(store, "procurement", "procurement_id"),
    )
    return await finish(session, await pipeline.run(call, spec, handler))

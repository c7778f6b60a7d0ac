"""
projectguard.api.routers.projects

Project capability and membership-administration endpoints.

Responsibilities:
- Report the caller's effective permissions in a project (UI gating).
- Apply a named access preset to a project member (ADMIN only).
"""

from __future__ import annotations

import dataclasses
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from projectguard.api.deps import db_session, finish, inbound_call, request_pipeline
from projectguard.auth.models import SystemRole
from projectguard.db.repositories.audit import AuditEntry, AuditRepo
from projectguard.errors import NotFoundError
from projectguard.policy.presets import AccessPreset, apply_access_preset
from projectguard.services.pipeline import (
    InboundCall,
    OperationSpec,
    RequestPipeline,
    SecurityContext,
)

router = APIRouter(prefix="/v1/projects", tags=["projects"])


class PresetRequest(BaseModel):
    preset: AccessPreset


@router.get("/{project_id}/permissions")
async def get_permissions(
    project_id: str,
    call: InboundCall = Depends(inbound_call),
    pipeline: RequestPipeline = Depends(request_pipeline),
    session: AsyncSession = Depends(db_session),
) -> JSONResponse:
    async def handler(ctx: SecurityContext) -> dict[str, Any]:
        effective = await pipeline.policy.get_effective_permissions(ctx.principal.id, project_id)
        return {
            "project_id": project_id,
            "role": ctx.project_role,
            "modules": {m.value: sorted(p.value for p in perms) for m, perms in effective.items()},
        }

    call = dataclasses.replace(call, project_id=project_id)
    return await finish(session, await pipeline.run(call, OperationSpec(), handler))


@router.put("/{project_id}/members/{user_id}/preset")
async def apply_preset(
    project_id: str,
    user_id: str,
    body: PresetRequest,
    call: InboundCall = Depends(inbound_call),
    pipeline: RequestPipeline = Depends(request_pipeline),
    session: AsyncSession = Depends(db_session),
) -> JSONResponse:
    async def handler(ctx: SecurityContext) -> dict[str, Any]:
        if await pipeline.policy.get_user_project_role(user_id, project_id) is None:
            raise NotFoundError("Member not found")
        applied = await apply_access_preset(
            pipeline.policy.directory, user_id=user_id, project_id=project_id, preset=body.preset
        )
        await AuditRepo(session).write(
            AuditEntry(
                user_id=ctx.principal.id,
                action="ACCESS_PRESET_APPLIED",
                entity="project_member",
                entity_id=user_id,
                meta={"project_id": project_id, "preset": body.preset.value},
            )
        )
        return {
            "user_id": user_id,
            "preset": body.preset,
            "modules": [a.module.value for a in applied],
        }

    call = dataclasses.replace(call, project_id=project_id)
    spec = OperationSpec(roles=frozenset({SystemRole.ADMIN}))
    return await finish(session, await pipeline.run(call, spec, handler))

"""
projectguard.api.routers.sessions

Session lifecycle endpoints.

Responsibilities:
- Open a session for the authenticated principal.
- Close one of the caller's own sessions.
"""

from __future__ import annotations

import dataclasses
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from projectguard.api.deps import db_session, finish, inbound_call, request_pipeline, session_manager
from projectguard.errors import NotFoundError
from projectguard.services.pipeline import (
    InboundCall,
    OperationSpec,
    RequestPipeline,
    SecurityContext,
)
from projectguard.sessions import SessionManager

router = APIRouter(prefix="/v1/sessions", tags=["sessions"])

_UNSCOPED = OperationSpec(project_scoped=False)


@router.post("")
async def open_session(
    request: Request,
    call: InboundCall = Depends(inbound_call),
    pipeline: RequestPipeline = Depends(request_pipeline),
    sessions: SessionManager = Depends(session_manager),
    session: AsyncSession = Depends(db_session),
) -> JSONResponse:
    # A session is being created here; an accompanying session header is not validated.
    call = dataclasses.replace(call, session_id=None)

    async def handler(ctx: SecurityContext) -> dict[str, Any]:
        session_id = await sessions.create_session(
            ctx.principal.id,
            ctx.principal.email,
            {"ip": call.origin_ip, "user_agent": request.headers.get("user-agent", "")},
        )
        return {
            "session_id": session_id,
            "timeout_seconds": int(sessions.timeout.total_seconds()),
        }

    return await finish(session, await pipeline.run(call, _UNSCOPED, handler))


@router.delete("/{session_id}")
async def close_session(
    session_id: str,
    call: InboundCall = Depends(inbound_call),
    pipeline: RequestPipeline = Depends(request_pipeline),
    sessions: SessionManager = Depends(session_manager),
    session: AsyncSession = Depends(db_session),
) -> JSONResponse:
    call = dataclasses.replace(call, session_id=None)

    async def handler(ctx: SecurityContext) -> dict[str, Any]:
        existing = await sessions.get_session(session_id)
        if existing is None:
            # Unknown or already expired: nothing left to close.
            return {"session_id": session_id, "destroyed": False}
        if existing.principal_id != ctx.principal.id:
            raise NotFoundError("Session not found")
        await sessions.destroy_session(session_id)
        return {"session_id": session_id, "destroyed": True}

    return await finish(session, await pipeline.run(call, _UNSCOPED, handler))

"""
projectguard.api.deps

Dependencies shared by the routers.

Responsibilities:
- Expose app-scoped infrastructure (settings, sessionmaker, session manager).
- Build the per-request `RequestPipeline` around a request-scoped DB session.
- Translate HTTP requests into `InboundCall`s and pipeline outcomes into responses.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import timedelta

from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from projectguard.db.repositories.access import AccessRepo
from projectguard.db.repositories.users import UserRepo
from projectguard.policy.engine import PolicyEngine
from projectguard.services.pipeline import InboundCall, PipelineResponse, RequestPipeline
from projectguard.sessions import SessionManager
from projectguard.settings import Settings

SESSION_HEADER = "x-session-id"

_bearer = HTTPBearer(auto_error=False)


def settings_dep(request: Request) -> Settings:
    # The settings object passed to `create_app`, not a fresh env read.
    return request.app.state.settings  # type: ignore[attr-defined]


def sessionmaker_from_app(request: Request) -> async_sessionmaker[AsyncSession]:
    # Built by the startup hook in `api.app`.
    return request.app.state.sessionmaker  # type: ignore[attr-defined]


def session_manager(request: Request) -> SessionManager:
    return request.app.state.sessions  # type: ignore[attr-defined]


async def db_session(
    session_factory: async_sessionmaker[AsyncSession] = Depends(sessionmaker_from_app),
) -> AsyncIterator[AsyncSession]:
    # Request-scoped DB session. Routers commit explicitly via `finish`.
    async with session_factory() as session:
        yield session


def origin_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def inbound_call(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> InboundCall:
    # Routers add project_id/params with `dataclasses.replace`.
    return InboundCall(
        credential=creds.credentials if creds is not None else None,
        origin_ip=origin_ip(request),
        session_id=request.headers.get(SESSION_HEADER),
        correlation_id=getattr(request.state, "request_id", None),
    )


def request_pipeline(
    request: Request,
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> RequestPipeline:
    state = request.app.state
    return RequestPipeline(
        verifier=state.verifier,
        provisioner=UserRepo(session),
        rate_limiter=state.rate_limiter,
        policy=PolicyEngine(directory=AccessRepo(session), tiers=state.tiers),
        sessions=state.sessions,
        handler_timeout_seconds=settings.handler_timeout_seconds,
        refresh_threshold=timedelta(seconds=settings.token_refresh_threshold_seconds),
        expose_internal_errors=settings.is_dev,
    )


async def finish(session: AsyncSession, outcome: PipelineResponse) -> JSONResponse:
    # Changes (including first-sight provisioning) persist only for successful calls.
    if outcome.status_code < 400:
        await session.commit()
    else:
        await session.rollback()
    return JSONResponse(
        status_code=outcome.status_code, content=outcome.body, headers=outcome.headers
    )


# --- Module Notes -----------------------------------------------------------
# FastAPI caches dependencies per request, so the pipeline and the router share
# one `AsyncSession` (and therefore one transaction).

"""
projectguard.api.routers.health

Probes. These bypass the request pipeline: no credential, no rate limit.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from projectguard.api.deps import db_session, settings_dep
from projectguard.settings import Settings

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> dict[str, str]:
    # Fails with a 500 when the database is unreachable.
    await session.execute(text("SELECT 1"))
    return {"status": "ready", "database": "ok", "state_backend": settings.state_backend}

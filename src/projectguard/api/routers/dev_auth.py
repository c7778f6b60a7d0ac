"""
projectguard.api.routers.dev_auth

Token minting for local development and tests. Answers 404 in prod so the
route is indistinguishable from an unknown path.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from projectguard.api.deps import settings_dep
from projectguard.auth.jwt import JwtConfig, issue_token
from projectguard.auth.models import SystemRole
from projectguard.settings import Settings

router = APIRouter(prefix="/v1/dev", tags=["dev"])


class DevTokenRequest(BaseModel):
    subject: str = Field(min_length=1, max_length=128)
    email: str = Field(default="", max_length=256)
    # Only used when the subject is provisioned for the first time.
    role: SystemRole | None = None
    ttl_minutes: int = Field(default=60, ge=1, le=24 * 60)


class DevTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime


@router.post("/token", response_model=DevTokenResponse)
async def mint_dev_token(
    body: DevTokenRequest,
    settings: Settings = Depends(settings_dep),
) -> DevTokenResponse:
    if settings.env == "prod":
        raise HTTPException(status_code=404, detail="Not Found")

    now = datetime.now(tz=UTC)
    ttl = timedelta(minutes=body.ttl_minutes)
    token = issue_token(
        cfg=JwtConfig.from_settings(settings),
        subject=body.subject,
        email=body.email,
        role=body.role.value if body.role else None,
        ttl=ttl,
        now=now,
    )
    return DevTokenResponse(access_token=token, expires_at=now + ttl)

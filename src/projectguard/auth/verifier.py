"""
projectguard.auth.verifier

Identity-verifier boundary.

Responsibilities:
- Define the `IdentityVerifier` protocol consumed by the request pipeline.
- Provide the default JWT-backed verifier.
- Define the explicit provisioning step (`PrincipalProvisioner`) that runs after
  verification, separately from it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol

from projectguard.auth.jwt import (
    JwtConfig,
    JwtExpiredError,
    JwtValidationError,
    decode_and_validate,
)
from projectguard.auth.models import Principal
from projectguard.errors import AuthenticationError


@dataclass(frozen=True, slots=True)
class VerifiedIdentity:
    principal_id: str
    email: str
    expires_at: datetime
    role_claim: str | None = None

    def should_refresh(self, *, threshold: timedelta, now: datetime | None = None) -> bool:
        now = now or datetime.now(tz=UTC)
        return self.expires_at - now < threshold


class IdentityVerifier(Protocol):
    async def verify(self, credential: str) -> VerifiedIdentity: ...


class PrincipalProvisioner(Protocol):
    async def provision(self, identity: VerifiedIdentity) -> Principal: ...


class JwtIdentityVerifier:
    def __init__(self, cfg: JwtConfig) -> None:
        self._cfg = cfg

    async def verify(self, credential: str) -> VerifiedIdentity:
        if not credential:
            raise AuthenticationError("Missing bearer token", code="TOKEN_MISSING")
        try:
            payload = decode_and_validate(cfg=self._cfg, token=credential)
        except JwtExpiredError as e:
            raise AuthenticationError(
                "Token expired - please refresh your session", code="TOKEN_EXPIRED"
            ) from e
        except JwtValidationError as e:
            raise AuthenticationError("Invalid authentication token", code="TOKEN_INVALID") from e

        subject = str(payload.get("sub", ""))
        if not subject:
            raise AuthenticationError("Invalid token subject", code="TOKEN_INVALID")

        role = payload.get("role")
        return VerifiedIdentity(
            principal_id=subject,
            email=str(payload.get("email") or ""),
            expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=UTC),
            role_claim=str(role) if role else None,
        )


# --- Module Notes -----------------------------------------------------------
# The pipeline receives a verifier instance through its constructor; building and
# caching the underlying client is the job of the composition root (`api.app`).

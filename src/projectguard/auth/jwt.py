"""
projectguard.auth.jwt

Bearer-token minting and checking.

Responsibilities:
- Mint signed access tokens for the dev endpoint and tests.
- Check signature, issuer, audience and lifetime of inbound tokens, and
  separate "expired" from every other rejection.

HS256 keeps local wiring self-contained; a provider-issued RS256 setup only
changes `JwtConfig.secret` into a public key.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

from projectguard.settings import Settings

REQUIRED_CLAIMS = ("sub", "iss", "aud", "iat", "exp")


@dataclass(frozen=True, slots=True)
class JwtConfig:
    alg: str
    issuer: str
    audience: str
    secret: str
    leeway_seconds: int = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> JwtConfig:
        return cls(
            alg=settings.jwt_alg,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            secret=settings.jwt_secret,
            leeway_seconds=settings.jwt_leeway_seconds,
        )


class JwtValidationError(Exception):
    pass


class JwtExpiredError(JwtValidationError):
    pass


def issue_token(
    *,
    cfg: JwtConfig,
    subject: str,
    email: str = "",
    role: str | None = None,
    ttl: timedelta = timedelta(hours=1),
    now: datetime | None = None,
) -> str:
    issued = now or datetime.now(tz=UTC)
    claims: dict[str, Any] = {
        "sub": subject,
        "iss": cfg.issuer,
        "aud": cfg.audience,
        "iat": int(issued.timestamp()),
        "exp": int((issued + ttl).timestamp()),
        "jti": uuid.uuid4().hex,
        "email": email,
    }
    # Only consulted when the user is provisioned; membership roles live in the database.
    if role:
        claims["role"] = role
    return jwt.encode(claims, cfg.secret, algorithm=cfg.alg)


def decode_and_validate(*, cfg: JwtConfig, token: str) -> dict[str, Any]:
    try:
        claims = jwt.decode(
            token,
            key=cfg.secret,
            algorithms=[cfg.alg],
            audience=cfg.audience,
            issuer=cfg.issuer,
            leeway=cfg.leeway_seconds,
            options={"require": list(REQUIRED_CLAIMS)},
        )
    except jwt.ExpiredSignatureError as exc:
        raise JwtExpiredError(str(exc)) from exc
    except jwt.PyJWTError as exc:
        raise JwtValidationError(str(exc)) from exc
    return claims


# --- Module Notes -----------------------------------------------------------
# `auth.verifier.JwtIdentityVerifier` turns these exceptions into
# AuthenticationError codes (TOKEN_EXPIRED / TOKEN_INVALID).

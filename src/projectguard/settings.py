"""
projectguard.settings

Runtime configuration, read from `PG_*` environment variables.

Responsibilities:
- Hold every tunable the authorization core enforces (timeouts, tiers, backends).
- Keep secrets out of repr output (JWT secret, Redis URL).
- Hand out one cached instance to the entrypoint.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_tiers() -> dict[str, int]:
    # Requests per window, keyed by system role.
    return {"ADMIN": 200, "STAFF": 150, "CONTRACTOR": 100, "VIEWER": 50}


class Settings(BaseSettings):
    """Defaults suit local dev; prod deployments must override `jwt_secret`."""

    model_config = SettingsConfigDict(env_prefix="PG_", case_sensitive=False)

    # Environment controls error verbosity and auto-init of DB tables.
    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "projectguard"
    log_level: str = "INFO"
    # Optional dedicated sink for the security channel (401/403, tenant violations).
    security_log_file: str | None = None

    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Identity verification (default JWT verifier)
    jwt_alg: str = "HS256"
    jwt_issuer: str = "projectguard"
    jwt_audience: str = "projectguard-api"
    jwt_secret: str = Field(default="dev-secret-change-me-0123456789abcdef", repr=False)
    jwt_leeway_seconds: int = 0
    token_refresh_threshold_seconds: int = 300

    # Persistence
    database_url: str = "sqlite+aiosqlite:///./projectguard.db"

    # Shared state (sessions + rate-limit buckets). "memory" is single-instance only.
    state_backend: Literal["memory", "redis"] = "memory"
    redis_url: str | None = Field(default=None, repr=False)
    redis_key_namespace: str = "pg"

    # Rate limiting
    rate_limit_window_seconds: int = 60
    rate_limit_tiers: dict[str, int] = Field(default_factory=_default_tiers)
    rate_limit_ip_multiplier: float = 1.5
    # Escape hatch for test harnesses; never implied by `env`.
    rate_limit_bypass: bool = False
    rate_limit_sweep_interval_seconds: int = 300

    # Sessions
    session_timeout_minutes: int = 30
    session_sweep_interval_seconds: int = 300

    # Upper bound for a business handler, including its store calls.
    handler_timeout_seconds: float | None = 30.0

    @property
    def is_dev(self) -> bool:
        return self.env == "dev"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # The app itself reads `app.state.settings`; this is for the process entrypoint.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# Every limit the authorization core enforces is tunable here; code paths read
# them from the injected Settings object rather than from module constants.

"""
projectguard.api.app

FastAPI app factory.

Responsibilities:
- Assemble middleware and routers.
- Create and dispose shared infrastructure: DB engine, state backend, session
  manager, rate limiter, identity verifier, and their background sweepers.
"""

from __future__ import annotations

from datetime import timedelta

from fastapi import FastAPI

from projectguard import __version__
from projectguard.api.routers.budget import router as budget_router
from projectguard.api.routers.dev_auth import router as dev_auth_router
from projectguard.api.routers.health import router as health_router
from projectguard.api.routers.procurement import router as procurement_router
from projectguard.api.routers.projects import router as projects_router
from projectguard.api.routers.sessions import router as sessions_router
from projectguard.auth.jwt import JwtConfig
from projectguard.auth.verifier import JwtIdentityVerifier
from projectguard.db.init_db import init_db
from projectguard.db.repositories.audit import SessionFactoryAuditSink
from projectguard.db.session import create_engine, create_sessionmaker
from projectguard.observability.logging import configure_logging, get_logger
from projectguard.observability.middleware import RequestContextMiddleware
from projectguard.policy.rules import build_tiers
from projectguard.ratelimit import RateLimiter
from projectguard.sessions import SessionManager
from projectguard.settings import Settings
from projectguard.state import build_state_backend

log = get_logger(__name__)


def create_app(*, settings: Settings) -> FastAPI:
    configure_logging(
        service_name=settings.service_name,
        level=settings.log_level,
        security_log_file=settings.security_log_file,
    )

    app = FastAPI(title="ProjectGuard", version=__version__)
    app.state.settings = settings
    # A bad tier table fails here, not on the first request.
    app.state.tiers = build_tiers(settings)

    app.add_middleware(RequestContextMiddleware)
    for router in (
        health_router,
        dev_auth_router,
        sessions_router,
        projects_router,
        budget_router,
        procurement_router,
    ):
        app.include_router(router)

    @app.on_event("startup")
    async def _open_runtime() -> None:
        log.info("runtime_starting", env=settings.env, state_backend=settings.state_backend)
        app.state.engine = create_engine(settings)
        app.state.sessionmaker = create_sessionmaker(app.state.engine)
        if settings.env != "prod":
            await init_db(app.state.engine)

        state = build_state_backend(settings)
        app.state.state_backend = state
        app.state.verifier = JwtIdentityVerifier(JwtConfig.from_settings(settings))
        app.state.sessions = SessionManager(
            store=state,
            audit=SessionFactoryAuditSink(app.state.sessionmaker),
            timeout=timedelta(minutes=settings.session_timeout_minutes),
            sweep_interval_seconds=settings.session_sweep_interval_seconds,
        )
        app.state.rate_limiter = RateLimiter(
            store=state,
            ip_multiplier=settings.rate_limit_ip_multiplier,
            enforce=not settings.rate_limit_bypass,
            sweep_interval_seconds=settings.rate_limit_sweep_interval_seconds,
        )
        app.state.sessions.start()
        app.state.rate_limiter.start()

    @app.on_event("shutdown")
    async def _close_runtime() -> None:
        # Reverse of startup; any piece may be missing if startup failed part-way.
        for name in ("sessions", "rate_limiter"):
            sweeper_owner = getattr(app.state, name, None)
            if sweeper_owner is not None:
                await sweeper_owner.stop()
        state = getattr(app.state, "state_backend", None)
        if state is not None:
            await state.close()
        engine = getattr(app.state, "engine", None)
        if engine is not None:
            await engine.dispose()
        log.info("runtime_stopped")

    return app


# --- Module Notes -----------------------------------------------------------
# App composition stays here; authorization lives in `services.pipeline` and the
# policy/repository layers beneath it.

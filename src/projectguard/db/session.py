"""
projectguard.db.session

Engine and session-factory construction.

Responsibilities:
- Build the async engine from `database_url`, sharing one connection for
  in-memory SQLite.
- Build the sessionmaker used by request handlers and the audit sink.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from projectguard.settings import Settings


def _is_memory_sqlite(url: str) -> bool:
    return url.startswith("sqlite") and url.endswith(":memory:")


def create_engine(settings: Settings) -> AsyncEngine:
    options: dict[str, Any] = {}
    if _is_memory_sqlite(settings.database_url):
        # Every checkout must see the same in-memory database.
        options["poolclass"] = StaticPool
    else:
        options["pool_pre_ping"] = True
    return create_async_engine(settings.database_url, **options)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Records leave the store as plain dicts, so nothing is lazily read after commit.
    # Repositories flush explicitly.
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

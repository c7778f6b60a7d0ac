"""
projectguard.db.init_db

Schema bootstrap for dev/test runs and the in-memory test database.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine

from projectguard.db import models  # noqa: F401  # registers tables on Base.metadata
from projectguard.db.base import Base


async def init_db(engine: AsyncEngine) -> None:
    # Idempotent: existing tables are left alone.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

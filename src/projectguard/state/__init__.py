"""
projectguard.state

Shared mutable state (sessions, rate-limit buckets) behind an injected backend.

Responsibilities:
- Choose the backend from settings: in-memory (single instance) or Redis.
"""

from __future__ import annotations

import redis.asyncio as aioredis

from projectguard.observability.logging import get_logger
from projectguard.settings import Settings
from projectguard.state.base import StateBackend
from projectguard.state.memory import InMemoryStateBackend
from projectguard.state.redis_store import RedisStateBackend

log = get_logger(__name__)


def build_state_backend(settings: Settings) -> StateBackend:
    if settings.state_backend == "redis":
        if not settings.redis_url:
            raise ValueError("PG_REDIS_URL is required when PG_STATE_BACKEND=redis")
        client = aioredis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
        log.info("state_backend", backend="redis", namespace=settings.redis_key_namespace)
        return RedisStateBackend(client, namespace=settings.redis_key_namespace)

    if settings.env == "prod":
        log.warning("state_backend_single_instance", backend="memory")
    else:
        log.info("state_backend", backend="memory")
    return InMemoryStateBackend()

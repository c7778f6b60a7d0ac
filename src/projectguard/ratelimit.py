"""
projectguard.ratelimit

Fixed-window admission control.

Responsibilities:
- Count each call against a per-principal and a per-origin bucket.
- Reject over-limit calls with a retry hint.
- Evict elapsed buckets opportunistically and on a background schedule.
"""

from __future__ import annotations

import random
from collections.abc import Callable
from datetime import timedelta

from projectguard.clock import Clock, utcnow
from projectguard.errors import RateLimitError
from projectguard.observability.logging import get_logger, get_security_logger
from projectguard.policy.models import RateLimitTier
from projectguard.policy.rules import ip_limit
from projectguard.services.maintenance import PeriodicTask
from projectguard.state.base import CounterStore

log = get_logger(__name__)
security_log = get_security_logger()

DEFAULT_IP_MULTIPLIER = 1.5
DEFAULT_EVICTION_PROBABILITY = 0.01
DEFAULT_SWEEP_INTERVAL_SECONDS = 300.0


def principal_key(principal_id: str) -> str:
    return f"principal:{principal_id}"


def origin_key(origin_ip: str) -> str:
    return f"ip:{origin_ip}"


class RateLimiter:
    def __init__(
        self,
        *,
        store: CounterStore,
        ip_multiplier: float = DEFAULT_IP_MULTIPLIER,
        enforce: bool = True,
        clock: Clock = utcnow,
        eviction_probability: float = DEFAULT_EVICTION_PROBABILITY,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._store = store
        self._ip_multiplier = ip_multiplier
        self._enforce = enforce
        self._clock = clock
        self._eviction_probability = eviction_probability
        self._rng = rng
        self._sweeper = PeriodicTask(
            name="rate-limit-evict",
            interval_seconds=sweep_interval_seconds,
            action=self.evict_expired,
        )
        if not enforce:
            log.warning("rate_limit_bypassed")

    @property
    def enforcing(self) -> bool:
        return self._enforce

    async def admit(self, principal_id: str, origin_ip: str, tier: RateLimitTier) -> None:
        if not self._enforce:
            return

        if self._rng() < self._eviction_probability:
            await self.evict_expired()

        window = timedelta(seconds=tier.window_seconds)
        await self._check(principal_key(principal_id), tier.requests, window, scope="principal")
        await self._check(
            origin_key(origin_ip or "unknown"),
            ip_limit(tier, self._ip_multiplier),
            window,
            scope="ip",
        )

    async def _check(self, key: str, limit: int, window: timedelta, *, scope: str) -> None:
        now = self._clock()
        bucket = await self._store.hit(key, window=window, now=now)
        if bucket.count > limit:
            retry_after = (bucket.window_reset_at - now).total_seconds()
            security_log.warning(
                "rate_limited", key=key, scope=scope, count=bucket.count, limit=limit
            )
            raise RateLimitError(retry_after, scope=scope)

    async def evict_expired(self) -> int:
        return await self._store.evict_expired(now=self._clock())

    def start(self) -> None:
        self._sweeper.start()

    async def stop(self) -> None:
        await self._sweeper.stop()


# --- Module Notes -----------------------------------------------------------
# The origin limit is looser than the principal limit (see `policy.rules.ip_limit`)
# because one address can front many principals.

"""
projectguard.state.base

Interfaces for state shared across concurrent requests.

Responsibilities:
- Define the rate-limit bucket and session records.
- Define `CounterStore` (fixed-window counters) and `SessionStore` (sliding sessions).

Each operation is atomic with respect to the others on the same backend, so
background sweeps never race destructively with foreground admit/validate calls.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any


@dataclass(slots=True)
class RateLimitBucket:
    key: str
    count: int
    window_reset_at: datetime


@dataclass(slots=True)
class SessionData:
    session_id: str
    principal_id: str
    email: str
    created_at: datetime
    last_activity_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "principal_id": self.principal_id,
            "email": self.email,
            "created_at": self.created_at.isoformat(),
            "last_activity_at": self.last_activity_at.isoformat(),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> SessionData:
        return cls(
            session_id=str(raw["session_id"]),
            principal_id=str(raw["principal_id"]),
            email=str(raw.get("email", "")),
            created_at=datetime.fromisoformat(raw["created_at"]),
            last_activity_at=datetime.fromisoformat(raw["last_activity_at"]),
            metadata=dict(raw.get("metadata") or {}),
        )

    def is_expired(self, *, now: datetime, timeout: timedelta) -> bool:
        return now - self.last_activity_at > timeout


@dataclass(frozen=True, slots=True)
class SessionLookup:
    session: SessionData | None
    expired: bool = False


class CounterStore(abc.ABC):
    @abc.abstractmethod
    async def hit(self, key: str, *, window: timedelta, now: datetime) -> RateLimitBucket:
        """
        Count one request against `key`, opening a new window (count 1) when none
        exists or the current one has elapsed.
        """

    @abc.abstractmethod
    async def evict_expired(self, *, now: datetime) -> int:
        """Drop buckets whose window has elapsed; return how many were dropped."""


class SessionStore(abc.ABC):
    @abc.abstractmethod
    async def put(self, session: SessionData, *, timeout: timedelta) -> None: ...

    @abc.abstractmethod
    async def get(self, session_id: str) -> SessionData | None:
        """Read a session without touching its activity timestamp."""

    @abc.abstractmethod
    async def refresh(self, session_id: str, *, now: datetime, timeout: timedelta) -> SessionLookup:
        """
        Slide the session's activity timestamp to `now`, or delete it if it has
        already been idle longer than `timeout`.
        """

    @abc.abstractmethod
    async def pop(self, session_id: str) -> SessionData | None: ...

    @abc.abstractmethod
    async def sweep(self, *, now: datetime, timeout: timedelta) -> int: ...

    @abc.abstractmethod
    async def count_for(self, principal_id: str) -> int: ...


class StateBackend(CounterStore, SessionStore, abc.ABC):
    async def close(self) -> None:
        return None

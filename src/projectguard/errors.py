"""
projectguard.errors

Failure taxonomy and the result type carried through the request pipeline.

Responsibilities:
- Define typed failures with an HTTP-equivalent status and a stable code.
- Provide `Ok` / `Failure` results so pipeline stages report outcomes as values.
"""

from __future__ import annotations

import math
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class CoreError(Exception):
    """Base class for every failure the core raises on purpose."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class AuthenticationError(CoreError):
    status_code = 401
    code = "UNAUTHENTICATED"


class AuthorizationError(CoreError):
    status_code = 403
    code = "FORBIDDEN"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        module: str | None = None,
        permission: str | None = None,
    ) -> None:
        super().__init__(message, code=code)
        self.module = module
        self.permission = permission


class TenantViolationError(AuthorizationError):
    # A fetched record belongs to another project than the bound context.
    code = "TENANT_VIOLATION"


class NotFoundError(CoreError):
    status_code = 404
    code = "NOT_FOUND"


class RateLimitError(CoreError):
    status_code = 429
    code = "RATE_LIMITED"

    def __init__(self, retry_after_seconds: float, *, scope: str = "principal") -> None:
        self.retry_after_seconds = max(1, math.ceil(retry_after_seconds))
        self.scope = scope
        super().__init__(
            f"Rate limit exceeded. Try again in {self.retry_after_seconds} seconds"
        )


class ValidationError(CoreError):
    status_code = 400
    code = "VALIDATION_ERROR"


class InternalError(CoreError):
    status_code = 500
    code = "INTERNAL_ERROR"


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Failure:
    error: CoreError
    stage: str | None = None

    @property
    def ok(self) -> bool:
        return False


Result = Ok[T] | Failure


async def capture(stage: str, awaitable: Awaitable[T]) -> Result[T]:
    """
    Run one pipeline stage and fold a typed failure into a `Failure` value.

    Only `CoreError` is folded; anything else propagates to the pipeline's
    last-resort handler, which turns it into an `InternalError`.
    """

    try:
        return Ok(await awaitable)
    except CoreError as e:
        return Failure(error=e, stage=stage)


def describe(error: CoreError) -> dict[str, Any]:
    details: dict[str, Any] = {"code": error.code, "status": error.status_code}
    if isinstance(error, AuthorizationError):
        if error.module is not None:
            details["module"] = error.module
        if error.permission is not None:
            details["permission"] = error.permission
    if isinstance(error, RateLimitError):
        details["retry_after_seconds"] = error.retry_after_seconds
        details["scope"] = error.scope
    return details


# --- Module Notes -----------------------------------------------------------
# Policy and repository code raise these types; only the pipeline converts them
# into the response envelope (see `projectguard.services.pipeline`).

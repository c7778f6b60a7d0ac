"""
projectguard.services.pipeline

The request pipeline wrapped around every protected operation.

Responsibilities:
- Run the security stages in a fixed order: authenticate, rate-limit,
  role allowlist, resolve project, membership, module permission.
- Bound the business handler with a deadline.
- Convert stage failures into the response envelope (the only place that does).

Stages report `Ok` / `Failure` values; the first failure short-circuits the rest.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable, Collection, Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from pydantic import BaseModel

from projectguard.auth.models import Principal, SystemRole
from projectguard.auth.verifier import IdentityVerifier, PrincipalProvisioner, VerifiedIdentity
from projectguard.clock import Clock, utcnow
from projectguard.db.repositories.scoped import ScopedContext
from projectguard.db.store import Store
from projectguard.errors import (
    AuthenticationError,
    AuthorizationError,
    CoreError,
    Failure,
    InternalError,
    NotFoundError,
    Ok,
    RateLimitError,
    TenantViolationError,
    ValidationError,
    capture,
    describe,
)
from projectguard.observability.logging import get_logger, get_security_logger
from projectguard.policy.engine import PolicyEngine
from projectguard.policy.models import AccessWindow, Module, Permission, ProjectMembership
from projectguard.ratelimit import RateLimiter
from projectguard.sessions import SessionManager
from projectguard.state.base import SessionData

log = get_logger(__name__)
security_log = get_security_logger()

REFRESH_HEADER = "x-auth-refresh"
GENERIC_INTERNAL_MESSAGE = "Internal server error"


@dataclass(frozen=True, slots=True)
class InboundCall:
    credential: str | None
    origin_ip: str
    session_id: str | None = None
    # Request-bound project id; only read-style operations honor it.
    project_id: str | None = None
    params: Mapping[str, Any] = field(default_factory=dict)
    correlation_id: str | None = None


ProjectResolver = Callable[[InboundCall], Awaitable[str | None]]


@dataclass(frozen=True, slots=True)
class OperationSpec:
    roles: Collection[SystemRole] | None = None
    module: Module | None = None
    permission: Permission | None = None
    # Mutation-style operations derive the project from the resource itself.
    resolve_project: ProjectResolver | None = None
    access_window: AccessWindow | None = None
    project_scoped: bool = True


@dataclass(frozen=True, slots=True)
class SecurityContext:
    principal: Principal
    project_id: str | None = None
    membership: ProjectMembership | None = None
    caller_projects: tuple[str, ...] = ()
    session: SessionData | None = None

    @property
    def project_role(self) -> SystemRole | None:
        return self.membership.role if self.membership is not None else None

    def scoped(self) -> ScopedContext:
        if self.project_id is None:
            raise InternalError("Operation is not project scoped")
        return ScopedContext(
            user_id=self.principal.id,
            project_id=self.project_id,
            caller_projects=self.caller_projects,
        )


Handler = Callable[[SecurityContext], Awaitable[Any]]


class ApiResponse(BaseModel):
    success: bool
    data: Any = None
    error: str | None = None
    code: str | None = None
    correlation_id: str | None = None


@dataclass(slots=True)
class PipelineResponse:
    status_code: int
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)


def resource_project(store: Store, entity: str, id_param: str) -> ProjectResolver:
    """
    Resolver for mutation-style operations: the owning project is read from the
    stored resource named by `call.params[id_param]`. A project id sent by the
    client is never consulted.
    """

    async def resolve(call: InboundCall) -> str | None:
        resource_id = call.params.get(id_param)
        if not resource_id:
            raise ValidationError(f"{id_param} is required")
        record = await store.find_unique(entity, str(resource_id))
        if record is None:
            return None
        owner = record.get("project_id")
        if call.project_id and call.project_id != owner:
            security_log.warning(
                "client_project_ignored",
                entity=entity,
                entity_id=resource_id,
                supplied_project_id=call.project_id,
                project_id=owner,
            )
        return owner

    return resolve


class RequestPipeline:
    def __init__(
        self,
        *,
        verifier: IdentityVerifier,
        provisioner: PrincipalProvisioner,
        rate_limiter: RateLimiter,
        policy: PolicyEngine,
        sessions: SessionManager | None = None,
        handler_timeout_seconds: float | None = None,
        refresh_threshold: timedelta = timedelta(minutes=5),
        expose_internal_errors: bool = False,
        clock: Clock = utcnow,
    ) -> None:
        self._verifier = verifier
        self._provisioner = provisioner
        self._rate_limiter = rate_limiter
        self._policy = policy
        self._sessions = sessions
        self._timeout = handler_timeout_seconds
        self._refresh_threshold = refresh_threshold
        self._expose_internal = expose_internal_errors
        self._clock = clock

    @property
    def policy(self) -> PolicyEngine:
        return self._policy

    async def run(
        self, call: InboundCall, spec: OperationSpec, handler: Handler
    ) -> PipelineResponse:
        correlation_id = call.correlation_id or str(uuid.uuid4())
        trace = _Trace()
        try:
            result = await self._execute(call, spec, handler, trace)
        except Exception as e:
            log.exception("pipeline_unhandled_error", correlation_id=correlation_id)
            message = str(e) if self._expose_internal else GENERIC_INTERNAL_MESSAGE
            result = Failure(error=InternalError(message), stage="handler")

        response = self._render(result, correlation_id=correlation_id, trace=trace)
        if trace.identity is not None and trace.identity.should_refresh(
            threshold=self._refresh_threshold, now=self._clock()
        ):
            response.headers[REFRESH_HEADER] = "recommended"
        return response

    async def _execute(
        self, call: InboundCall, spec: OperationSpec, handler: Handler, trace: _Trace
    ) -> Ok[Any] | Failure:
        verified = await capture("authenticate", self._verifier.verify(call.credential or ""))
        if not verified.ok:
            return verified
        trace.identity = verified.value

        provisioned = await capture("authenticate", self._provisioner.provision(verified.value))
        if not provisioned.ok:
            return provisioned
        principal: Principal = provisioned.value
        trace.principal_id = principal.id

        session: SessionData | None = None
        if call.session_id:
            checked = await capture("session", self._check_session(call.session_id, principal))
            if not checked.ok:
                return checked
            session = checked.value

        admitted = await capture("rate_limit", self._admit(principal, call.origin_ip))
        if not admitted.ok:
            return admitted

        if spec.roles is not None and principal.system_role not in spec.roles:
            return Failure(
                error=AuthorizationError("Insufficient role", code="ROLE_DENIED"),
                stage="role",
            )

        if not spec.project_scoped:
            context = SecurityContext(principal=principal, session=session)
            return await capture("handler", self._invoke(handler, context))

        resolved = await capture("resolve_project", self._resolve_project(call, spec))
        if not resolved.ok:
            return resolved
        project_id: str = resolved.value
        trace.project_id = project_id

        authorized = await capture("authorize", self._authorize(principal, project_id, spec))
        if not authorized.ok:
            return authorized

        caller_projects = tuple(await self._policy.get_user_projects(principal.id))
        context = SecurityContext(
            principal=principal,
            project_id=project_id,
            membership=authorized.value,
            caller_projects=caller_projects,
            session=session,
        )
        return await capture("handler", self._invoke(handler, context))

    async def _check_session(self, session_id: str, principal: Principal) -> SessionData:
        if self._sessions is None:
            raise InternalError("Session validation is not configured")
        session = await self._sessions.validate_session(session_id)
        if session.principal_id != principal.id:
            raise AuthenticationError("Session does not belong to caller", code="SESSION_MISMATCH")
        return session

    async def _admit(self, principal: Principal, origin_ip: str) -> None:
        tier = await self._policy.get_rate_limit_tier(principal.id)
        await self._rate_limiter.admit(principal.id, origin_ip, tier)

    async def _resolve_project(self, call: InboundCall, spec: OperationSpec) -> str:
        if spec.resolve_project is not None:
            project_id = await spec.resolve_project(call)
            if not project_id:
                raise NotFoundError("Resource not found")
            return project_id
        if not call.project_id:
            raise ValidationError("project_id is required")
        return call.project_id

    async def _authorize(
        self, principal: Principal, project_id: str, spec: OperationSpec
    ) -> ProjectMembership:
        if spec.module is not None and spec.permission is not None:
            membership = await self._policy.assert_module_access(
                principal.id, project_id, spec.module, spec.permission
            )
        else:
            membership = await self._policy.assert_member(principal.id, project_id)

        if spec.access_window is not None and not self._policy.is_within_access_window(
            spec.access_window, self._clock()
        ):
            raise AuthorizationError(
                "Access is not permitted at this time", code="OUTSIDE_ACCESS_WINDOW"
            )
        return membership

    async def _invoke(self, handler: Handler, context: SecurityContext) -> Any:
        if self._timeout is None:
            return await handler(context)
        try:
            async with asyncio.timeout(self._timeout):
                return await handler(context)
        except TimeoutError as e:
            raise InternalError("Request timed out", code="HANDLER_TIMEOUT") from e

    def _render(
        self, result: Ok[Any] | Failure, *, correlation_id: str, trace: _Trace
    ) -> PipelineResponse:
        if isinstance(result, Ok):
            body = ApiResponse(success=True, data=result.value, correlation_id=correlation_id)
            return PipelineResponse(status_code=200, body=body.model_dump(mode="json"))

        error = self._public_error(result, correlation_id=correlation_id, trace=trace)
        headers: dict[str, str] = {}
        if isinstance(error, RateLimitError):
            headers["Retry-After"] = str(error.retry_after_seconds)
        body = ApiResponse(
            success=False,
            error=error.message,
            code=error.code,
            correlation_id=correlation_id,
        )
        return PipelineResponse(
            status_code=error.status_code,
            body=body.model_dump(mode="json", exclude_none=True),
            headers=headers,
        )

    def _public_error(self, failure: Failure, *, correlation_id: str, trace: _Trace) -> CoreError:
        error = failure.error
        if isinstance(error, TenantViolationError):
            security_log.error(
                "tenant_violation_masked",
                stage=failure.stage,
                user_id=trace.principal_id,
                project_id=trace.project_id,
                correlation_id=correlation_id,
            )
            # Existence of another tenant's resource is never confirmed.
            return NotFoundError("Resource not found")

        if error.status_code in (401, 403):
            security_log.warning(
                "access_denied",
                stage=failure.stage,
                user_id=trace.principal_id,
                project_id=trace.project_id,
                correlation_id=correlation_id,
                **describe(error),
            )
        elif isinstance(error, InternalError):
            log.error("pipeline_internal_error", stage=failure.stage, code=error.code)
            if not self._expose_internal and error.message != GENERIC_INTERNAL_MESSAGE:
                return InternalError(GENERIC_INTERNAL_MESSAGE, code=error.code)
        return error


@dataclass(slots=True)
class _Trace:
    # What the pipeline learned before it stopped; used for headers and log fields.
    identity: VerifiedIdentity | None = None
    principal_id: str | None = None
    project_id: str | None = None


# --- Module Notes -----------------------------------------------------------
# Handlers see only a `SecurityContext`; they build scoped repositories from it
# (see `projectguard.db.repositories.scoped.ScopedContext`) and raise typed errors.

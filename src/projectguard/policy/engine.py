"""
projectguard.policy.engine

The authorization decision engine.

Responsibilities:
- Project membership and per-module permission checks.
- Effective-permission aggregation for capability queries.
- Role-conditional data redaction.
- Rate-limit tier resolution.

All decisions depend only on the rows returned by the injected
`AccessDirectory` and on the tables in `projectguard.policy.rules`.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any, TypeVar

from projectguard.auth.models import SystemRole
from projectguard.errors import AuthorizationError, ValidationError
from projectguard.observability.logging import get_logger, get_security_logger
from projectguard.policy.models import (
    AccessDirectory,
    AccessWindow,
    Module,
    Permission,
    ProjectMembership,
    RateLimitTier,
)
from projectguard.policy.rules import permissions_for, permits, redaction_fields, tier_for_role
from projectguard.policy.windows import is_within_access_window

log = get_logger(__name__)
security_log = get_security_logger()

R = TypeVar("R", bound=Mapping[str, Any])


def apply_data_redaction(record: R, role: SystemRole, module: Module) -> dict[str, Any]:
    """
    Return a shallow copy of `record` without the fields `role` may not see in
    `module`. The input is never mutated; applying twice equals applying once.
    """

    hidden = redaction_fields(role, module)
    return {k: v for k, v in record.items() if k not in hidden}


def _coerce_permission(permission: Permission | str) -> Permission:
    try:
        return Permission(permission)
    except ValueError as e:
        raise ValidationError(f"Unknown permission: {permission}") from e


def _coerce_module(module: Module | str) -> Module:
    try:
        return Module(module)
    except ValueError as e:
        raise ValidationError(f"Unknown module: {module}") from e


class PolicyEngine:
    def __init__(
        self,
        *,
        directory: AccessDirectory,
        tiers: Mapping[SystemRole, RateLimitTier],
    ) -> None:
        self._directory = directory
        self._tiers = tiers

    @property
    def directory(self) -> AccessDirectory:
        return self._directory

    async def assert_member(self, user_id: str, project_id: str) -> ProjectMembership:
        if not user_id or not project_id:
            raise ValidationError("User ID and Project ID are required")

        member = await self._directory.get_membership(user_id, project_id)
        if member is None:
            # Absence is never defaulted to a role.
            self._deny(user_id, project_id, None, None, "not a member")
            raise AuthorizationError("Not a member of this project", code="NOT_A_MEMBER")
        return member

    async def assert_module_access(
        self,
        user_id: str,
        project_id: str,
        module: Module | str,
        permission: Permission | str,
    ) -> ProjectMembership:
        member = await self.assert_member(user_id, project_id)
        await self._check_module(member, _coerce_module(module), _coerce_permission(permission))
        return member

    async def assert_multiple_access(
        self,
        user_id: str,
        project_id: str,
        requirements: Iterable[tuple[Module | str, Permission | str]],
    ) -> ProjectMembership:
        # Validate the whole request up front so a typo never reads as a denial.
        checks = [(_coerce_module(m), _coerce_permission(p)) for m, p in requirements]
        member = await self.assert_member(user_id, project_id)
        for module, permission in checks:
            await self._check_module(member, module, permission)
        return member

    async def _check_module(
        self, member: ProjectMembership, module: Module, permission: Permission
    ) -> None:
        access = await self._directory.get_module_access(member.user_id, member.project_id, module)
        if access is None:
            self._deny(member.user_id, member.project_id, module, permission, "no module access")
            raise AuthorizationError(
                f"No {module} access for this project",
                code="MODULE_ACCESS_DENIED",
                module=module.value,
                permission=permission.value,
            )

        if not permits(access, member.role, permission):
            self._deny(member.user_id, member.project_id, module, permission, "flag or role")
            raise AuthorizationError(
                f"No {permission} permission for {module}",
                code="PERMISSION_DENIED",
                module=module.value,
                permission=permission.value,
            )

        log.debug(
            "policy_decision",
            user_id=member.user_id,
            project_id=member.project_id,
            module=module.value,
            permission=permission.value,
            granted=True,
        )

    async def get_effective_permissions(
        self, user_id: str, project_id: str
    ) -> dict[Module, frozenset[Permission]]:
        member = await self.assert_member(user_id, project_id)
        rows = await self._directory.list_module_access(user_id, project_id)
        return {row.module: permissions_for(row, member.role) for row in rows}

    async def get_user_project_role(self, user_id: str, project_id: str) -> SystemRole | None:
        member = await self._directory.get_membership(user_id, project_id)
        return member.role if member is not None else None

    async def has_role(
        self, user_id: str, project_id: str, allowed: Iterable[SystemRole]
    ) -> bool:
        role = await self.get_user_project_role(user_id, project_id)
        return role is not None and role in set(allowed)

    async def get_user_projects(self, user_id: str) -> list[str]:
        return list(await self._directory.list_project_ids(user_id))

    async def get_rate_limit_tier(self, user_id: str) -> RateLimitTier:
        # Unknown principals fall to the most restrictive tier.
        role = await self._directory.get_system_role(user_id) if user_id else None
        return tier_for_role(self._tiers, role)

    def is_within_access_window(self, window: AccessWindow, now: datetime | None = None) -> bool:
        return is_within_access_window(window, now)

    def _deny(
        self,
        user_id: str,
        project_id: str,
        module: Module | None,
        permission: Permission | None,
        reason: str,
    ) -> None:
        security_log.warning(
            "policy_denied",
            user_id=user_id,
            project_id=project_id,
            module=module.value if module else None,
            permission=permission.value if permission else None,
            reason=reason,
        )


# --- Module Notes -----------------------------------------------------------
# The engine is cheap to construct; the API layer builds one per request around a
# request-scoped `AccessRepo` (see `projectguard.api.deps`).

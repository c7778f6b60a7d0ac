"""
projectguard.policy.rules

Declarative authorization tables.

Responsibilities:
- Map each permission to the module flags (and, for approve, the roles) it needs.
- List the fields stripped by role-conditional redaction.
- Build role-indexed rate-limit tiers from settings.

Adding a permission or role means editing a table here; call sites only go
through `permits()` / `redaction_fields()` / `tier_for_role()`.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass

from projectguard.auth.models import SystemRole
from projectguard.policy.models import Module, ModuleAccess, Permission, RateLimitTier
from projectguard.settings import Settings

ELEVATED_ROLES: frozenset[SystemRole] = frozenset({SystemRole.ADMIN, SystemRole.STAFF})


@dataclass(frozen=True, slots=True)
class PermissionRule:
    # Every listed flag must be true on the ModuleAccess row.
    flags: tuple[str, ...]
    # When set, the membership role must also be in this set.
    roles: frozenset[SystemRole] | None = None


PERMISSION_RULES: Mapping[Permission, PermissionRule] = {
    Permission.READ: PermissionRule(flags=("can_view",)),
    Permission.WRITE: PermissionRule(flags=("can_edit",)),
    Permission.EXPORT: PermissionRule(flags=("can_view",)),
    Permission.DELETE: PermissionRule(flags=("can_edit",)),
    # Module flags alone never grant approval.
    Permission.APPROVE: PermissionRule(flags=("can_edit",), roles=ELEVATED_ROLES),
    Permission.UPLOAD: PermissionRule(flags=("can_upload",)),
    Permission.REQUEST: PermissionRule(flags=("can_request",)),
}


def permits(access: ModuleAccess, role: SystemRole, permission: Permission) -> bool:
    rule = PERMISSION_RULES[permission]
    if not all(getattr(access, flag) for flag in rule.flags):
        return False
    if rule.roles is not None and role not in rule.roles:
        return False
    return True


def permissions_for(access: ModuleAccess, role: SystemRole) -> frozenset[Permission]:
    return frozenset(p for p in PERMISSION_RULES if permits(access, role, p))


# --- Redaction --------------------------------------------------------------

BUDGET_COST_FIELDS: tuple[str, ...] = (
    "est_unit_cost",
    "est_total",
    "committed_total",
    "paid_to_date",
    "variance",
    "variance_amount",
    "variance_percent",
    "unit_cost",
    "total_cost",
    "cost",
    "amount",
    "value",
)

VIEWER_SENSITIVE_FIELDS: tuple[str, ...] = ("cost", "price", "amount", "rate", "salary")


@dataclass(frozen=True, slots=True)
class RedactionRule:
    role: SystemRole
    # None applies the rule in every module.
    module: Module | None
    fields: tuple[str, ...]


REDACTION_RULES: tuple[RedactionRule, ...] = (
    RedactionRule(role=SystemRole.CONTRACTOR, module=Module.BUDGET, fields=BUDGET_COST_FIELDS),
    RedactionRule(role=SystemRole.VIEWER, module=None, fields=VIEWER_SENSITIVE_FIELDS),
)


def redaction_fields(role: SystemRole, module: Module) -> frozenset[str]:
    fields: set[str] = set()
    for rule in REDACTION_RULES:
        if rule.role is role and (rule.module is None or rule.module is module):
            fields.update(rule.fields)
    return frozenset(fields)


# --- Rate-limit tiers -------------------------------------------------------

MOST_RESTRICTIVE_ROLE = SystemRole.VIEWER


def build_tiers(settings: Settings) -> dict[SystemRole, RateLimitTier]:
    tiers: dict[SystemRole, RateLimitTier] = {}
    for raw_role, requests in settings.rate_limit_tiers.items():
        role = SystemRole.parse(raw_role)
        if role is None:
            raise ValueError(f"unknown role in rate_limit_tiers: {raw_role!r}")
        tiers[role] = RateLimitTier(
            name=role.value,
            requests=int(requests),
            window_seconds=settings.rate_limit_window_seconds,
        )
    if MOST_RESTRICTIVE_ROLE not in tiers:
        raise ValueError("rate_limit_tiers must define a VIEWER tier")
    return tiers


def tier_for_role(
    tiers: Mapping[SystemRole, RateLimitTier], role: SystemRole | None
) -> RateLimitTier:
    if role is None:
        return tiers[MOST_RESTRICTIVE_ROLE]
    return tiers.get(role, tiers[MOST_RESTRICTIVE_ROLE])


def ip_limit(tier: RateLimitTier, multiplier: float) -> int:
    # An origin IP may front many principals (NAT, corporate proxies).
    return max(tier.requests, math.ceil(tier.requests * multiplier))

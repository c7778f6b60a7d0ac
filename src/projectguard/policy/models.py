"""
projectguard.policy.models

Authorization domain types.

Responsibilities:
- Module and permission enums.
- Value types for stored membership and module-access rows.
- The `AccessDirectory` protocol the policy engine reads rows through.
"""

from __future__ import annotations

import enum
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from projectguard.auth.models import SystemRole


class Module(enum.StrEnum):
    # Functional areas with independent permission flags.
    TASKS = "TASKS"
    SCHEDULE = "SCHEDULE"
    BUDGET = "BUDGET"
    PROCUREMENT = "PROCUREMENT"
    PROCUREMENT_READ = "PROCUREMENT_READ"
    CONTACTS = "CONTACTS"
    PLANS = "PLANS"
    UPLOADS = "UPLOADS"
    INVOICES = "INVOICES"
    DOCS_READ = "DOCS_READ"
    BIDDING = "BIDDING"


class Permission(enum.StrEnum):
    READ = "read"
    WRITE = "write"
    EXPORT = "export"
    DELETE = "delete"
    APPROVE = "approve"
    UPLOAD = "upload"
    REQUEST = "request"


@dataclass(frozen=True, slots=True)
class ProjectMembership:
    project_id: str
    user_id: str
    role: SystemRole


@dataclass(frozen=True, slots=True)
class ModuleAccess:
    user_id: str
    project_id: str
    module: Module
    can_view: bool = False
    can_edit: bool = False
    can_upload: bool = False
    can_request: bool = False


@dataclass(frozen=True, slots=True)
class RateLimitTier:
    name: str
    requests: int
    window_seconds: int


@dataclass(frozen=True, slots=True)
class AccessWindow:
    start_hour: int  # 0-23
    end_hour: int  # 0-23
    timezone: str = "UTC"
    # 0-6, Sunday-Saturday; empty means every day.
    days_of_week: tuple[int, ...] = field(default_factory=tuple)


class AccessDirectory(Protocol):
    """
    Read/write access to stored membership rows.
    """

    async def get_membership(self, user_id: str, project_id: str) -> ProjectMembership | None: ...

    async def get_module_access(
        self, user_id: str, project_id: str, module: Module
    ) -> ModuleAccess | None: ...

    async def list_module_access(self, user_id: str, project_id: str) -> Sequence[ModuleAccess]: ...

    async def list_project_ids(self, user_id: str) -> Sequence[str]: ...

    async def get_system_role(self, user_id: str) -> SystemRole | None: ...

    async def upsert_module_access(self, access: ModuleAccess) -> ModuleAccess: ...

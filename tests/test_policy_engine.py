"""
tests.test_policy_engine

Membership and module-permission decisions against the seeded projects,
including presets and rate-limit tiers.
"""

from __future__ import annotations

import pytest

from conftest import ADMIN, CONTRACTOR, OUTSIDER, PROJECT_A, PROJECT_B, STAFF, VIEWER
from projectguard.auth.models import SystemRole
from projectguard.db.repositories.access import AccessRepo
from projectguard.errors import AuthorizationError, ValidationError
from projectguard.policy.engine import PolicyEngine
from projectguard.policy.models import Module, Permission
from projectguard.policy.presets import AccessPreset, apply_access_preset


@pytest.mark.asyncio
async def test_membership_requires_a_stored_row(policy: PolicyEngine) -> None:
    member = await policy.assert_member(CONTRACTOR, PROJECT_A)
    assert member.role is SystemRole.CONTRACTOR

    with pytest.raises(AuthorizationError) as exc:
        await policy.assert_member(OUTSIDER, PROJECT_A)
    assert exc.value.code == "NOT_A_MEMBER"


@pytest.mark.asyncio
async def test_missing_ids_are_validation_errors(policy: PolicyEngine) -> None:
    with pytest.raises(ValidationError):
        await policy.assert_member("", PROJECT_A)
    with pytest.raises(ValidationError):
        await policy.assert_module_access(ADMIN, "", Module.BUDGET, Permission.READ)


@pytest.mark.asyncio
async def test_module_flags_drive_read_and_write(policy: PolicyEngine) -> None:
    await policy.assert_module_access(CONTRACTOR, PROJECT_A, Module.BUDGET, Permission.READ)
    await policy.assert_module_access(CONTRACTOR, PROJECT_A, Module.BUDGET, "export")

    with pytest.raises(AuthorizationError) as exc:
        await policy.assert_module_access(CONTRACTOR, PROJECT_A, Module.BUDGET, Permission.WRITE)
    assert exc.value.code == "PERMISSION_DENIED"
    assert exc.value.module == "BUDGET"
    assert exc.value.permission == "write"


@pytest.mark.asyncio
async def test_missing_module_row_denies_everything(policy: PolicyEngine) -> None:
    with pytest.raises(AuthorizationError) as exc:
        await policy.assert_module_access(CONTRACTOR, PROJECT_A, Module.PROCUREMENT, "read")
    assert exc.value.code == "MODULE_ACCESS_DENIED"
    assert "PROCUREMENT" in exc.value.message


@pytest.mark.asyncio
async def test_approve_needs_elevated_membership_role(policy: PolicyEngine) -> None:
    # Contractor tasks access has can_edit, which alone never grants approval.
    with pytest.raises(AuthorizationError):
        await policy.assert_module_access(CONTRACTOR, PROJECT_A, Module.TASKS, Permission.APPROVE)

    await policy.assert_module_access(STAFF, PROJECT_A, Module.PROCUREMENT, Permission.APPROVE)
    await policy.assert_module_access(ADMIN, PROJECT_A, Module.PROCUREMENT, Permission.APPROVE)


@pytest.mark.asyncio
async def test_upload_uses_its_own_flag(policy: PolicyEngine) -> None:
    await policy.assert_module_access(CONTRACTOR, PROJECT_A, Module.UPLOADS, Permission.UPLOAD)
    with pytest.raises(AuthorizationError):
        await policy.assert_module_access(CONTRACTOR, PROJECT_A, Module.UPLOADS, Permission.REQUEST)


@pytest.mark.asyncio
async def test_unknown_permission_or_module_is_rejected(policy: PolicyEngine) -> None:
    with pytest.raises(ValidationError):
        await policy.assert_module_access(ADMIN, PROJECT_A, Module.BUDGET, "destroy")
    with pytest.raises(ValidationError):
        await policy.assert_module_access(ADMIN, PROJECT_A, "PAYROLL", Permission.READ)


@pytest.mark.asyncio
async def test_effective_permissions_follow_the_rule_table(policy: PolicyEngine) -> None:
    perms = await policy.get_effective_permissions(CONTRACTOR, PROJECT_A)

    assert perms[Module.BUDGET] == {Permission.READ, Permission.EXPORT}
    assert perms[Module.TASKS] == {
        Permission.READ,
        Permission.WRITE,
        Permission.EXPORT,
        Permission.DELETE,
    }
    assert Module.PROCUREMENT not in perms

    staff = await policy.get_effective_permissions(STAFF, PROJECT_A)
    assert Permission.APPROVE in staff[Module.PROCUREMENT]


@pytest.mark.asyncio
async def test_multiple_access_reports_first_failing_pair(policy: PolicyEngine) -> None:
    await policy.assert_multiple_access(
        STAFF, PROJECT_A, [(Module.BUDGET, "read"), (Module.PROCUREMENT, "approve")]
    )

    with pytest.raises(AuthorizationError) as exc:
        await policy.assert_multiple_access(
            CONTRACTOR,
            PROJECT_A,
            [(Module.BUDGET, "read"), (Module.BUDGET, "write"), (Module.PROCUREMENT, "read")],
        )
    assert (exc.value.module, exc.value.permission) == ("BUDGET", "write")


@pytest.mark.asyncio
async def test_role_and_project_queries(policy: PolicyEngine) -> None:
    assert await policy.get_user_project_role(VIEWER, PROJECT_A) is SystemRole.VIEWER
    assert await policy.get_user_project_role(VIEWER, PROJECT_B) is None
    assert await policy.has_role(STAFF, PROJECT_A, {SystemRole.ADMIN, SystemRole.STAFF})
    assert not await policy.has_role(CONTRACTOR, PROJECT_A, {SystemRole.ADMIN})
    assert await policy.get_user_projects(OUTSIDER) == [PROJECT_B]


@pytest.mark.asyncio
async def test_rate_limit_tier_by_system_role(policy: PolicyEngine) -> None:
    assert (await policy.get_rate_limit_tier(ADMIN)).requests == 200
    assert (await policy.get_rate_limit_tier(CONTRACTOR)).requests == 100
    unknown = await policy.get_rate_limit_tier("nobody")
    assert unknown.name == "VIEWER"
    assert unknown.requests == 50


@pytest.mark.asyncio
async def test_presets_grant_module_flags(policy: PolicyEngine) -> None:
    directory = policy.directory
    applied = await apply_access_preset(
        directory, user_id=VIEWER, project_id=PROJECT_A, preset=AccessPreset.FIELD_CONTRACTOR
    )
    assert {a.module for a in applied} >= {Module.TASKS, Module.UPLOADS}

    await policy.assert_module_access(VIEWER, PROJECT_A, Module.UPLOADS, Permission.UPLOAD)
    await policy.assert_module_access(VIEWER, PROJECT_A, Module.SCHEDULE, Permission.REQUEST)

    with pytest.raises(ValidationError):
        await apply_access_preset(directory, user_id=VIEWER, project_id=PROJECT_A, preset="GOD")


@pytest.mark.asyncio
async def test_removed_member_loses_module_access(session, policy: PolicyEngine) -> None:
    repo = AccessRepo(session)
    assert await repo.remove_member(project_id=PROJECT_A, user_id=CONTRACTOR)

    with pytest.raises(AuthorizationError):
        await policy.assert_module_access(CONTRACTOR, PROJECT_A, Module.BUDGET, "read")
    assert await repo.get_module_access(CONTRACTOR, PROJECT_A, Module.BUDGET) is None
"""
projectguard.db.repositories.access

Repository for membership and module-access rows.

Responsibilities:
- Implement the policy engine's `AccessDirectory` over SQLAlchemy.
- Add/remove project members and upsert module flags.
"""

from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from projectguard.auth.models import SystemRole
from projectguard.db.models import ProjectMember, User, UserModuleAccess
from projectguard.policy.models import Module, ModuleAccess, ProjectMembership


def _membership(row: ProjectMember) -> ProjectMembership:
    return ProjectMembership(project_id=row.project_id, user_id=row.user_id, role=row.role)


def _access(row: UserModuleAccess) -> ModuleAccess:
    return ModuleAccess(
        user_id=row.user_id,
        project_id=row.project_id,
        module=row.module,
        can_view=row.can_view,
        can_edit=row.can_edit,
        can_upload=row.can_upload,
        can_request=row.can_request,
    )


class AccessRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _member_row(self, user_id: str, project_id: str) -> ProjectMember | None:
        stmt = select(ProjectMember).where(
            ProjectMember.project_id == project_id, ProjectMember.user_id == user_id
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def _access_row(
        self, user_id: str, project_id: str, module: Module
    ) -> UserModuleAccess | None:
        stmt = select(UserModuleAccess).where(
            UserModuleAccess.user_id == user_id,
            UserModuleAccess.project_id == project_id,
            UserModuleAccess.module == module,
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def get_membership(self, user_id: str, project_id: str) -> ProjectMembership | None:
        row = await self._member_row(user_id, project_id)
        return _membership(row) if row is not None else None

    async def get_module_access(
        self, user_id: str, project_id: str, module: Module
    ) -> ModuleAccess | None:
        row = await self._access_row(user_id, project_id, module)
        return _access(row) if row is not None else None

    async def list_module_access(self, user_id: str, project_id: str) -> list[ModuleAccess]:
        stmt = select(UserModuleAccess).where(
            UserModuleAccess.user_id == user_id, UserModuleAccess.project_id == project_id
        )
        return [_access(r) for r in (await self._session.execute(stmt)).scalars().all()]

    async def list_project_ids(self, user_id: str) -> list[str]:
        stmt = (
            select(ProjectMember.project_id)
            .where(ProjectMember.user_id == user_id)
            .order_by(ProjectMember.created_at)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def get_system_role(self, user_id: str) -> SystemRole | None:
        user = await self._session.get(User, user_id)
        return user.role if user is not None else None

    async def upsert_module_access(self, access: ModuleAccess) -> ModuleAccess:
        row = await self._access_row(access.user_id, access.project_id, access.module)
        if row is None:
            row = UserModuleAccess(
                user_id=access.user_id, project_id=access.project_id, module=access.module
            )
            self._session.add(row)
        row.can_view = access.can_view
        row.can_edit = access.can_edit
        row.can_upload = access.can_upload
        row.can_request = access.can_request
        await self._session.flush()
        return _access(row)

    async def add_member(self, *, project_id: str, user_id: str, role: SystemRole) -> ProjectMembership:
        row = await self._member_row(user_id, project_id)
        if row is None:
            row = ProjectMember(project_id=project_id, user_id=user_id, role=role)
            self._session.add(row)
        else:
            row.role = role
        await self._session.flush()
        return _membership(row)

    async def remove_member(self, *, project_id: str, user_id: str) -> bool:
        # Revoking membership also drops the module flags it carried.
        await self._session.execute(
            delete(UserModuleAccess).where(
                UserModuleAccess.user_id == user_id, UserModuleAccess.project_id == project_id
            )
        )
        result = await self._session.execute(
            delete(ProjectMember).where(
                ProjectMember.user_id == user_id, ProjectMember.project_id == project_id
            )
        )
        await self._session.flush()
        return bool(result.rowcount)

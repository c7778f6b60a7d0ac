"""
tests.conftest

Shared fixtures: an in-memory database seeded with two projects, a controllable
clock, and an in-memory audit sink.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from projectguard.auth.models import SystemRole
from projectguard.db.init_db import init_db
from projectguard.db.models import BudgetItem, Procurement, Project, Task, User
from projectguard.db.repositories.access import AccessRepo
from projectguard.db.repositories.audit import AuditEntry
from projectguard.db.session import create_sessionmaker
from projectguard.policy.engine import PolicyEngine
from projectguard.policy.models import Module, ModuleAccess
from projectguard.policy.rules import build_tiers
from projectguard.settings import Settings

PROJECT_A = "proj-a"
PROJECT_B = "proj-b"

ADMIN = "admin-1"
STAFF = "staff-1"
CONTRACTOR = "contractor-1"
VIEWER = "viewer-1"
OUTSIDER = "outsider-1"


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingAuditSink:
    def __init__(self, *, fail: bool = False) -> None:
        self.entries: list[AuditEntry] = []
        self.fail = fail

    async def write(self, entry: AuditEntry) -> None:
        if self.fail:
            raise OperationalError("INSERT INTO audit_logs", {}, Exception("database is locked"))
        self.entries.append(entry)

    def actions(self) -> list[str]:
        return [e.action for e in self.entries]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def settings() -> Settings:
    return Settings(env="test", database_url="sqlite+aiosqlite:///:memory:")


@pytest_asyncio.fixture
async def session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    await init_db(engine)
    factory = create_sessionmaker(engine)
    async with factory() as session:
        await seed(session)
        await session.commit()
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    async with session_factory() as s:
        yield s


@pytest.fixture
def policy(session: AsyncSession, settings: Settings) -> PolicyEngine:
    return PolicyEngine(directory=AccessRepo(session), tiers=build_tiers(settings))


def _access(user_id: str, project_id: str, module: Module, **flags: bool) -> ModuleAccess:
    return ModuleAccess(user_id=user_id, project_id=project_id, module=module, **flags)


async def seed(session: AsyncSession) -> None:
    """
    Project A: one member per role. Project B: a single STAFF outsider.
    """

    session.add_all(
        [
            User(id=ADMIN, email="admin@example.com", role=SystemRole.ADMIN),
            User(id=STAFF, email="staff@example.com", role=SystemRole.STAFF),
            User(id=CONTRACTOR, email="contractor@example.com", role=SystemRole.CONTRACTOR),
            User(id=VIEWER, email="viewer@example.com", role=SystemRole.VIEWER),
            User(id=OUTSIDER, email="outsider@example.com", role=SystemRole.STAFF),
            Project(id=PROJECT_A, name="Harbor Tower"),
            Project(id=PROJECT_B, name="Elm Street Retrofit"),
        ]
    )
    await session.flush()

    access = AccessRepo(session)
    for user_id, role in (
        (ADMIN, SystemRole.ADMIN),
        (STAFF, SystemRole.STAFF),
        (CONTRACTOR, SystemRole.CONTRACTOR),
        (VIEWER, SystemRole.VIEWER),
    ):
        await access.add_member(project_id=PROJECT_A, user_id=user_id, role=role)
    await access.add_member(project_id=PROJECT_B, user_id=OUTSIDER, role=SystemRole.STAFF)

    for user_id in (ADMIN, STAFF):
        for module in (Module.BUDGET, Module.PROCUREMENT, Module.TASKS):
            await access.upsert_module_access(
                _access(user_id, PROJECT_A, module, can_view=True, can_edit=True)
            )
    await access.upsert_module_access(_access(CONTRACTOR, PROJECT_A, Module.BUDGET, can_view=True))
    await access.upsert_module_access(
        _access(CONTRACTOR, PROJECT_A, Module.TASKS, can_view=True, can_edit=True)
    )
    await access.upsert_module_access(
        _access(CONTRACTOR, PROJECT_A, Module.UPLOADS, can_view=True, can_upload=True)
    )
    await access.upsert_module_access(_access(VIEWER, PROJECT_A, Module.BUDGET, can_view=True))
    await access.upsert_module_access(_access(VIEWER, PROJECT_A, Module.PLANS, can_view=True))
    for module in (Module.BUDGET, Module.PROCUREMENT):
        await access.upsert_module_access(
            _access(OUTSIDER, PROJECT_B, module, can_view=True, can_edit=True)
        )

    session.add_all(
        [
            BudgetItem(
                id="budget-a1",
                project_id=PROJECT_A,
                item="Concrete",
                category="MATERIALS",
                est_unit_cost=120.0,
                est_total=1000.0,
                committed_total=600.0,
                paid_to_date=200.0,
                variance=400.0,
            ),
            BudgetItem(
                id="budget-a2",
                project_id=PROJECT_A,
                item="Rebar",
                category="MATERIALS",
                est_total=500.0,
                committed_total=500.0,
            ),
            BudgetItem(id="budget-b1", project_id=PROJECT_B, item="Drywall", est_total=900.0),
            Procurement(id="proc-a1", project_id=PROJECT_A, item="Crane rental", amount=2500.0),
            Procurement(id="proc-b1", project_id=PROJECT_B, item="Scaffolding", amount=800.0),
            Task(id="task-a1", project_id=PROJECT_A, title="Pour foundation"),
            Task(id="task-b1", project_id=PROJECT_B, title="Strip ceilings"),
        ]
    )
    await session.flush()

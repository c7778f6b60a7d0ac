from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from projectguard.auth.models import Principal, SystemRole
from projectguard.auth.verifier import VerifiedIdentity
from projectguard.db.models import User
from projectguard.observability.logging import get_logger

log = get_logger(__name__)


def _principal(user: User) -> Principal:
    return Principal(id=user.id, email=user.email, system_role=user.role)


class UserRepo:
    """
    Users table access, including first-sight provisioning of verified identities.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, user_id: str) -> Principal | None:
        user = await self._session.get(User, user_id)
        return _principal(user) if user is not None else None

    async def provision(self, identity: VerifiedIdentity) -> Principal:
        user = await self._session.get(User, identity.principal_id)
        if user is not None:
            # The stored role wins; a token claim never escalates an existing user.
            if identity.email and user.email != identity.email:
                user.email = identity.email
                await self._session.flush()
            return _principal(user)

        role = SystemRole.parse(identity.role_claim, SystemRole.VIEWER)
        user = User(id=identity.principal_id, email=identity.email, role=role)
        self._session.add(user)
        await self._session.flush()
        log.info("principal_provisioned", user_id=user.id, role=role.value)
        return _principal(user)

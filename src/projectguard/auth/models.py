"""
projectguard.auth.models

Auth domain models.

Responsibilities:
- Define the system role enum shared by principals and project memberships.
- Define the authenticated identity type (`Principal`) carried through the pipeline.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass


class SystemRole(enum.StrEnum):
    # Stored in DB and embedded in tokens; treat values as a stable contract.
    ADMIN = "ADMIN"
    STAFF = "STAFF"
    CONTRACTOR = "CONTRACTOR"
    VIEWER = "VIEWER"

    @classmethod
    def parse(cls, raw: object, default: SystemRole | None = None) -> SystemRole | None:
        try:
            return cls(str(raw).upper())
        except ValueError:
            return default


@dataclass(frozen=True, slots=True)
class Principal:
    """
    Authenticated caller identity.
    """

    id: str
    email: str
    system_role: SystemRole


# --- Module Notes -----------------------------------------------------------
# Keep this model minimal; in-project authorization uses the membership role, not
# `system_role` (see `projectguard.policy.engine`).

"""
projectguard.policy.presets

Named bundles of module flags applied when a user joins a project.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping

from projectguard.errors import ValidationError
from projectguard.policy.models import AccessDirectory, Module, ModuleAccess


class AccessPreset(enum.StrEnum):
    FIELD_CONTRACTOR = "FIELD_CONTRACTOR"
    SUPPLIER = "SUPPLIER"
    VIEWER = "VIEWER"


# module -> (can_view, can_edit, can_upload, can_request)
ACCESS_PRESETS: Mapping[AccessPreset, Mapping[Module, tuple[bool, bool, bool, bool]]] = {
    AccessPreset.FIELD_CONTRACTOR: {
        Module.TASKS: (True, False, False, False),
        Module.SCHEDULE: (True, False, False, True),
        Module.PLANS: (True, False, False, False),
        Module.UPLOADS: (True, False, True, False),
        Module.INVOICES: (True, False, True, False),
    },
    AccessPreset.SUPPLIER: {
        Module.PROCUREMENT_READ: (True, False, False, False),
        Module.INVOICES: (True, False, True, False),
    },
    AccessPreset.VIEWER: {
        Module.PLANS: (True, False, False, False),
        Module.DOCS_READ: (True, False, False, False),
    },
}


async def apply_access_preset(
    directory: AccessDirectory,
    *,
    user_id: str,
    project_id: str,
    preset: AccessPreset | str,
) -> list[ModuleAccess]:
    try:
        bundle = ACCESS_PRESETS[AccessPreset(preset)]
    except ValueError as e:
        raise ValidationError(f"Unknown access preset: {preset}") from e

    applied: list[ModuleAccess] = []
    for module, (view, edit, upload, request) in bundle.items():
        applied.append(
            await directory.upsert_module_access(
                ModuleAccess(
                    user_id=user_id,
                    project_id=project_id,
                    module=module,
                    can_view=view,
                    can_edit=edit,
                    can_upload=upload,
                    can_request=request,
                )
            )
        )
    return applied

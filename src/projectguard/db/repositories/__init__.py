"""
projectguard.db.repositories

Repository package.

Responsibilities:
- Group data-access repositories for the persistence layer.
"""

# Package marker; repositories are imported directly from submodules.


# --- Module Notes -----------------------------------------------------------
# Tenant-owned data is only reachable through `scoped.ScopedRepository`; the other
# repositories serve identity, access rows and audit.

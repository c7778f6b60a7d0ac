"""
projectguard.db

Persistence package (SQLAlchemy async).

Responsibilities:
- Provide ORM models, engine/session setup, the generic store and repositories.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# The authorization core depends on the `Store` / `AccessDirectory` / `AuditSink`
# interfaces; this package is the default implementation of all three.

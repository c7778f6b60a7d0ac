"""
projectguard.services

Service layer package.

Responsibilities:
- Request pipeline composition (credential -> admission -> policy -> handler).
- Background maintenance tasks (session sweep, bucket eviction).
"""

# Package marker.

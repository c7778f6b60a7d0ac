"""
projectguard.policy

Authorization decision package.

Responsibilities:
- Declarative permission / redaction / tier tables.
- The policy engine consulted by the request pipeline and the repositories.
"""

# Package marker.

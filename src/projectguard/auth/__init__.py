"""
projectguard.auth

Authentication package.

Responsibilities:
- Principal identity types and system roles.
- The identity-verifier boundary and its default JWT implementation.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Authorization (membership, module permissions) lives in `projectguard.policy`;
# this package only answers "who is calling".

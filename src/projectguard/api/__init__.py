"""
projectguard.api

HTTP surface for the authorization core.

Responsibilities:
- FastAPI app factory and router modules.
- Dependency wiring that hands each request its pipeline.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Routers stay thin: build an `InboundCall`, describe the operation, delegate to
# the pipeline, commit on success.

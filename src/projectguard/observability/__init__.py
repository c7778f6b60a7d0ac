"""
projectguard.observability

Observability package.

Responsibilities:
- Structured logging configuration, including the security channel.
- Request context propagation (request id / correlation id) for log enrichment.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Metrics/tracing exporters can be added here without touching policy logic.

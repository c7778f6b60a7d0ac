"""
projectguard.observability.logging

structlog setup for the service.

Responsibilities:
- Render every event as one JSON object on stdout.
- Expose the security channel: authn/authz failures and tenant violations,
  optionally mirrored to a dedicated file.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

SECURITY_LOGGER_NAME = "projectguard.security"


def configure_logging(
    *, service_name: str, level: str, security_log_file: str | None = None
) -> None:
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=logging.getLevelNamesMapping().get(level.upper(), logging.INFO),
    )
    if security_log_file:
        _attach_security_file(security_log_file)

    structlog.configure(
        processors=_processors(service_name),
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _processors(service_name: str) -> list[Any]:
    def add_service(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_service,
        structlog.processors.dict_tracebacks,
        structlog.processors.JSONRenderer(),
    ]


def _attach_security_file(path: str) -> None:
    # Still propagates to the root handler; the file is an extra copy.
    security = logging.getLogger(SECURITY_LOGGER_NAME)
    security.setLevel(logging.INFO)
    if any(isinstance(h, logging.FileHandler) for h in security.handlers):
        return
    handler = logging.FileHandler(path)
    handler.setFormatter(logging.Formatter("%(message)s"))
    security.addHandler(handler)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def get_security_logger() -> structlog.stdlib.BoundLogger:
    # Initial values keep the proxy lazy; module-level callers pick up the later configure().
    return structlog.get_logger(SECURITY_LOGGER_NAME, channel="security")


# --- Module Notes -----------------------------------------------------------
# Request-scoped metadata is bound via contextvars in `observability.middleware`.

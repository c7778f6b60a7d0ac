"""
projectguard.api.__main__

`python -m projectguard.api` / `projectguard-api`: serve the app with uvicorn.
"""

from __future__ import annotations

import uvicorn

from projectguard.api.app import create_app
from projectguard.settings import get_settings


def main() -> None:
    settings = get_settings()
    # log_config=None leaves logging to configure_logging (structlog JSON).
    uvicorn.run(
        create_app(settings=settings),
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,
    )


if __name__ == "__main__":
    main()

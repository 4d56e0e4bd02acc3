"""
Service entry point.

This module provides the main() function for running the HTTP service.
"""

from __future__ import annotations

import sys

import uvicorn

from identisnap.app import create_app
from identisnap.config import ConfigurationError, get_settings


def main() -> int:
    """
    Run the service with uvicorn.

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    try:
        # Validate configuration before starting
        settings = get_settings()
    except ConfigurationError as e:
        # Print to stderr - logging isn't configured yet
        print(f"FATAL: Configuration error\n{e}", file=sys.stderr)
        return 1

    app = create_app()

    uvicorn.run(
        app,
        host=settings.server.host,
        port=settings.server.port,
        log_level="warning",  # app logs go through the JSON logger
        access_log=False,
    )

    return 0


if __name__ == "__main__":
    sys.exit(main())

"""
LRM catalog server - main entry point.

Starts the HTTP transport (FastAPI under uvicorn) over the catalog stores.

Usage:
    python -m catalog.lrm_server.main

Configuration is entirely via environment variables.
See config.py and api/config.py for all available settings.

Invariants:
    - The type registry is built and frozen before the database opens
    - The database schema exists before the first request is served
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter
import uvicorn

from .api import ApiSettings, create_app
from .config import ServerConfig
from .schema import get_registry

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def main() -> int:
    """Run the catalog server until interrupted."""
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(config)
    config.log_config()

    settings = ApiSettings()
    app = create_app(config, settings, get_registry())

    logger.info(f"Starting catalog server on {settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
    return 0


if __name__ == "__main__":
    sys.exit(main())

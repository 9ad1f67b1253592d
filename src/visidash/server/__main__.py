"""Entry point for running the API server.

This module allows running the server as a module:
    python -m visidash.server

Host and port come from HOST and PORT (default 0.0.0.0:8000).
"""

import logging
import os
import sys

import uvicorn

from visidash.server.config import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Send log records to stdout in the server's format."""
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def run_server(host: str = "0.0.0.0", port: int = 8000, reload: bool = False) -> None:
    """Run the FastAPI app with uvicorn."""
    configure_logging(get_settings().log_level)
    logging.getLogger(__name__).info(f"Starting Visidash API on {host}:{port}")
    uvicorn.run("visidash.server.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    run_server(
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
    )

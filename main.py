"""
GRC Analytics Engine - Entry Point

Serves the statistics, anomaly and prediction API with uvicorn.

Environment:
    HOST: Bind address (default 0.0.0.0)
    PORT / APP_PORT: Listen port; PORT wins when both are set (default 8000)
    LOG_LEVEL: uvicorn and application log level (default info)
    WORKERS: uvicorn worker processes (default 1)
"""

import logging
import os

import uvicorn
from dotenv import load_dotenv

load_dotenv()

from app.server import app

logger = logging.getLogger("grc_analytics")


def serve() -> None:
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", os.getenv("APP_PORT", "8000")))
    workers = int(os.getenv("WORKERS", "1"))
    log_level = os.getenv("LOG_LEVEL", "info").lower()

    logger.info(f"GRC Analytics Engine listening on {host}:{port} ({workers} worker(s))")

    # Multiple workers need an import string rather than the app object
    uvicorn.run(
        "app.server:app" if workers > 1 else app,
        host=host,
        port=port,
        workers=workers,
        log_level=log_level,
    )


if __name__ == "__main__":
    serve()

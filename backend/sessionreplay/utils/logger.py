"""Logging setup for the API, the render worker and the capture uploader."""
import logging
import sys
from typing import Optional

from sessionreplay.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(name: str = "sessionreplay", level: Optional[str] = None) -> logging.Logger:
    """
    Configure and return the package logger.

    Args:
        name: Logger name
        level: Level name; defaults to ``settings.log_level``, else DEBUG in
            development and INFO elsewhere

    Returns:
        Logger writing to stdout, not propagating to the root logger
    """
    level = level or settings.log_level or ("DEBUG" if settings.environment == "development" else "INFO")

    configured = logging.getLogger(name)
    configured.setLevel(level.upper())

    if not configured.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        configured.addHandler(handler)

    # Uvicorn and arq install their own root handlers
    configured.propagate = False
    return configured


logger = configure_logging()

__all__ = ["configure_logging", "logger"]

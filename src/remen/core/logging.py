"""
Logging Configuration

One ``dictConfig`` call for the API process and its queue worker.
Remen's own loggers follow LOG_LEVEL; libraries get fixed ceilings so a
DEBUG run still reads as the story of the queue and the search engine.
Everything goes to stdout for container log aggregation.
"""

from logging.config import dictConfig
from typing import Any

from remen.core.config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Independent of LOG_LEVEL
LIBRARY_LEVELS = {
    "uvicorn": "INFO",
    "uvicorn.access": "INFO",
    "sqlalchemy.engine": "WARNING",
    "alembic": "INFO",
    "httpx": "WARNING",
    "httpcore": "WARNING",
    "sentence_transformers": "WARNING",
    "asyncio": "WARNING",
}


def _logger(level: str) -> dict[str, Any]:
    return {"level": level, "handlers": ["stdout"], "propagate": False}


def build_logging_config(level: str | None = None) -> dict[str, Any]:
    """
    ``dictConfig`` payload.

    Args:
        level: Level for the ``remen`` loggers; defaults to LOG_LEVEL.
    """
    app_level = (level or settings.LOG_LEVEL).upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "pipe": {"format": LOG_FORMAT, "datefmt": DATE_FORMAT},
        },
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
                "formatter": "pipe",
            },
        },
        "root": {"level": "WARNING", "handlers": ["stdout"]},
        "loggers": {
            "remen": _logger(app_level),
            **{name: _logger(lib_level) for name, lib_level in LIBRARY_LEVELS.items()},
        },
    }


def setup_logging(level: str | None = None) -> None:
    """Configure logging. Call once at startup, before the first log statement."""
    dictConfig(build_logging_config(level))

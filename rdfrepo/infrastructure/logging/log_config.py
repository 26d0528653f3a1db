"""Logging setup for the repository search service.

Every log category has its own level in Settings: SQL statements emitted by
SQLAlchemy, outbound REST calls, the uvicorn server and the search pipeline
(``rdfrepo.search`` plus the modules that build and run its statements).

Usage:
    from rdfrepo.infrastructure.logging.log_config import setup_logging
    setup_logging()   # once, from the application lifespan
"""

import logging
import sys

from rdfrepo.config import Settings, get_settings
from rdfrepo.infrastructure.logging.search_logger import SEARCH_LOGGER_NAME

_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# Settings field -> loggers it controls
LOG_CATEGORIES: dict[str, tuple[str, ...]] = {
    "log_level_sql": ("sqlalchemy.engine", "sqlalchemy.pool", "asyncpg"),
    "log_level_http": ("httpx", "httpcore", "rdfrepo.infrastructure.rest"),
    "log_level_uvicorn": ("uvicorn", "uvicorn.access", "uvicorn.error"),
    "log_level_search": (
        SEARCH_LOGGER_NAME,
        "rdfrepo.application.services",
        "rdfrepo.infrastructure.database",
    ),
}


def setup_logging(settings: Settings | None = None) -> dict[str, int]:
    """Apply the configured log levels; returns logger name -> level."""
    settings = settings or get_settings()

    root = logging.getLogger()
    root.setLevel(_parse_level(settings.log_level))
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(handler)

    applied: dict[str, int] = {}
    for field_name, logger_names in LOG_CATEGORIES.items():
        level = _parse_level(getattr(settings, field_name))
        for name in logger_names:
            logging.getLogger(name).setLevel(level)
            applied[name] = level

    logging.getLogger(__name__).debug(
        "Log levels: root=%s sql=%s http=%s uvicorn=%s search=%s",
        settings.log_level,
        settings.log_level_sql,
        settings.log_level_http,
        settings.log_level_uvicorn,
        settings.log_level_search,
    )
    return applied


def _parse_level(raw: str) -> int:
    """Level name to logging constant; unknown names fall back to INFO."""
    level = logging.getLevelName(raw.upper())
    return level if isinstance(level, int) else logging.INFO

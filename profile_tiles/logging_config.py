"""
profile-tiles Logging

Configures structlog on top of stdlib logging so that library and
application events share one stream.
"""

import logging
import sys
from typing import Any

import structlog

from profile_tiles.config import Settings


def configure_logging(settings: Settings) -> None:
    """
    Configure structlog with ISO timestamps.

    Output is JSON when LOG_JSON is set, otherwise a console renderer.
    Every event carries:
    - timestamp: ISO 8601 format
    - level: log level (info, warning, error, etc.)
    - event: snake_case event name
    - Additional context fields (year, month, source, etc.)
    """
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if settings.LOG_JSON:
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(settings.LOG_LEVEL.upper())

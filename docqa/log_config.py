"""structlog setup shared by the API server and the CLI scripts."""
import logging
import sys

import structlog

from docqa import config


def configure_logging(level: str = None, fmt: str = None) -> None:
    """Configure structured logging.

    Args:
        level: Log level name (default from config.LOG_LEVEL)
        fmt: "json" or "console" (default from config.LOG_FORMAT)
    """
    level_name = (level or config.LOG_LEVEL).upper()
    renderer = (
        structlog.dev.ConsoleRenderer()
        if (fmt or config.LOG_FORMAT) == "console"
        else structlog.processors.JSONRenderer()
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level_name, logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

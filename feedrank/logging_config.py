"""Structured logging for feed ranking.

Ranking events carry ``strategy`` and ``user_id`` fields bound by the
pipeline. Output is JSON when ``FEEDRANK_LOG_FORMAT=json`` or stderr is not
a terminal, and a coloured console rendering otherwise.
"""

import logging
import os
import sys

import structlog

PACKAGE_LOGGER = "feedrank"
LOG_FORMAT_ENV = "FEEDRANK_LOG_FORMAT"


def configure_logging(level: str = "INFO") -> None:
    """Route ``feedrank`` loggers through structlog at ``level``."""
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level}")

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.handlers[:] = [handler]
    package_logger.setLevel(numeric)
    package_logger.propagate = False

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
            if _is_json_mode()
            else structlog.dev.ConsoleRenderer(colors=True),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _is_json_mode() -> bool:
    fmt = os.environ.get(LOG_FORMAT_ENV, "").lower()
    if fmt in ("json", "console"):
        return fmt == "json"
    return not sys.stderr.isatty()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Logger for a ``feedrank`` module; names outside the package are nested under it."""
    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return structlog.get_logger(name)

"""Wires formatters and filters onto a single stdout handler."""

import logging
import sys
from typing import TextIO

from fulfillment.settings import LoggingSettings

from .context import ContextFilter
from .filters import DefaultCorrelationFilter, PIIFilter
from .formatters import DevFormatter, JSONFormatter

# Chatty third-party loggers capped at WARNING
QUIET_LOGGERS = ("httpx", "httpcore", "urllib3")


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    environment: str = "development",
    stream: TextIO | None = None,
) -> logging.Handler:
    """Replace the root handlers with one configured handler and return it."""
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter(environment) if json_output else DevFormatter())
    # Context first so the correlation fallback can see the order id
    for log_filter in (PIIFilter(), ContextFilter(), DefaultCorrelationFilter()):
        handler.addFilter(log_filter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler


def setup_logging_from_settings(settings: LoggingSettings) -> logging.Handler:
    return setup_logging(
        level=settings.level,
        json_output=settings.format == "json",
        environment=settings.environment,
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)

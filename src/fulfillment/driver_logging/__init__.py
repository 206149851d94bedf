from .context import ContextFilter, LogContext, log_context, log_order_context
from .filters import DefaultCorrelationFilter, PIIFilter
from .formatters import DevFormatter, JSONFormatter
from .setup import get_logger, setup_logging, setup_logging_from_settings

__all__ = [
    "ContextFilter",
    "DefaultCorrelationFilter",
    "DevFormatter",
    "JSONFormatter",
    "LogContext",
    "PIIFilter",
    "get_logger",
    "log_context",
    "log_order_context",
    "setup_logging",
    "setup_logging_from_settings",
]

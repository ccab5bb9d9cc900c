"""Observability: structured logging with bound context."""

from .logging import (
    BoundLogger,
    JsonFormatter,
    LogScope,
    TextFormatter,
    configure_logging,
    get_logger,
    record_context,
)

__all__ = [
    "BoundLogger", "LogScope", "get_logger", "configure_logging",
    "TextFormatter", "JsonFormatter", "record_context",
]

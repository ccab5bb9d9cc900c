"""Structured logging with bound context.

Every module logs through stdlib ``logging`` under the ``dataverse_core``
namespace. ``BoundLogger`` adds key/value context (instance URL, table,
operation) to each record, and ``configure_logging`` installs a handler that
renders records as text (``event key=value ...``) or JSON Lines via orjson.

Quick Start:
    >>> from dataverse_core.runtime.observability import configure_logging, get_logger
    >>> configure_logging(LoggingSettings(format="json", level="DEBUG"))
    >>> log = get_logger("dataverse_core.http", instance="https://org.crm.dynamics.com")
    >>> log.info("request sent", method="GET", path="WhoAmI")
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, TextIO

import orjson

if TYPE_CHECKING:
    from dataverse_core.foundation.config import LoggingSettings

ROOT_LOGGER = "dataverse_core"
CONTEXT_ATTR = "dataverse_context"

# Context that applies to every log call inside a scope (persists across awaits)
_log_context: ContextVar[dict[str, Any]] = ContextVar("dataverse_log_context", default={})


@dataclass(slots=True)
class BoundLogger:
    """Logger with bound context. Immutable - bind() returns a new logger.

    Example:
        >>> log = get_logger("dataverse_core.metadata", instance="https://org")
        >>> log.bind(table="account").debug("cache miss")
    """

    logger: logging.Logger
    context: dict[str, Any] = field(default_factory=dict)

    def bind(self, **kw: Any) -> BoundLogger:
        return BoundLogger(self.logger, {**self.context, **kw})

    def unbind(self, *keys: str) -> BoundLogger:
        return BoundLogger(self.logger, {k: v for k, v in self.context.items() if k not in keys})

    def _log(self, level: int, event: str, exc_info: bool = False, **kw: Any) -> None:
        if not self.logger.isEnabledFor(level):
            return
        merged = {**_log_context.get(), **self.context, **kw}
        self.logger.log(level, event, exc_info=exc_info, extra={CONTEXT_ATTR: merged}, stacklevel=3)

    def debug(self, event: str, **kw: Any) -> None: self._log(logging.DEBUG, event, **kw)
    def info(self, event: str, **kw: Any) -> None: self._log(logging.INFO, event, **kw)
    def warning(self, event: str, **kw: Any) -> None: self._log(logging.WARNING, event, **kw)
    def error(self, event: str, **kw: Any) -> None: self._log(logging.ERROR, event, **kw)

    def exception(self, event: str, **kw: Any) -> None:
        self._log(logging.ERROR, event, exc_info=True, **kw)

    def scope(self, **kw: Any) -> LogScope:
        """Context applied to every logger inside the ``with`` block."""
        return LogScope(kw)


class LogScope:
    """Context manager for scoped log context."""

    __slots__ = ("_ctx", "_token")

    def __init__(self, ctx: dict[str, Any]) -> None:
        self._ctx, self._token = ctx, None

    def __enter__(self) -> None:
        self._token = _log_context.set({**_log_context.get(), **self._ctx})

    def __exit__(self, *_: object) -> None:
        if self._token is not None:
            _log_context.reset(self._token)


def record_context(record: logging.LogRecord) -> dict[str, Any]:
    return getattr(record, CONTEXT_ATTR, None) or {}


# ─────────────────────────────────────────────────────────────────────────────
# Formatters
# ─────────────────────────────────────────────────────────────────────────────


class TextFormatter(logging.Formatter):
    """``HH:MM:SS.mmm [level] logger: event key=value ...``"""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=UTC).strftime("%H:%M:%S.%f")[:-3]
        parts = [ts, f"[{record.levelname.lower()}]", f"{record.name}:", record.getMessage()]
        parts += [f"{k}={v}" for k, v in sorted(record_context(record).items())]
        line = " ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class JsonFormatter(logging.Formatter):
    """JSON Lines output for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": record.getMessage(),
            **record_context(record),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, option=orjson.OPT_NON_STR_KEYS, default=str).decode()


# ─────────────────────────────────────────────────────────────────────────────
# Global Configuration
# ─────────────────────────────────────────────────────────────────────────────

_HANDLER_NAME = "dataverse_core.handler"


def configure_logging(settings: LoggingSettings | None = None, *, output: TextIO | None = None) -> logging.Handler:
    """Install (or replace) the package handler. Safe to call repeatedly."""
    from dataverse_core.foundation.config import LoggingSettings

    settings = settings or LoggingSettings()
    root = logging.getLogger(ROOT_LOGGER)
    for existing in [h for h in root.handlers if h.get_name() == _HANDLER_NAME]:
        root.removeHandler(existing)

    handler = logging.StreamHandler(output or sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(JsonFormatter() if settings.format == "json" else TextFormatter())
    root.addHandler(handler)
    root.setLevel(settings.level)
    return handler


def get_logger(name: str = ROOT_LOGGER, **initial_context: Any) -> BoundLogger:
    return BoundLogger(logging.getLogger(name), dict(initial_context))

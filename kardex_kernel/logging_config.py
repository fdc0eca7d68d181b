"""
Structured JSON logging for the kardex kernel.

Every record is written as one JSON object per line:

    ts, level, logger, message
    + the operation context bound through LogContext
    + the record's ``extra`` fields

Context fields win over an ``extra`` key of the same name, so a record
logged inside ``LogContext.bind(stock_unit_id=...)`` always reports the
unit being processed.  Exceptions add exc_type, exc_message and traceback;
kernel errors also add exc_code and one ``exc_<attribute>`` field per
structured attribute (requested_quantity, as_of_date, ...).

Decimals are written as strings so quantities and costs keep their scale.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

# ---------------------------------------------------------------------------
# Operation context
# ---------------------------------------------------------------------------

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "owner_id",
    "stock_unit_id",
    "movement_id",
    "document_id",
    "trace_id",
)

_context: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"kardex_log_{name}", default=None) for name in CONTEXT_FIELDS
}


def _context_var(name: str) -> ContextVar[str | None]:
    try:
        return _context[name]
    except KeyError:
        raise TypeError(f"Unknown log context field {name!r}") from None


class LogContext:
    """
    Operation-scoped log fields.

    Backed by contextvars, so values are isolated per thread and per
    asyncio task.  A cascade binds correlation_id and owner_id once, then
    stock_unit_id per unit; every log record in between carries them.
    """

    @classmethod
    def set(cls, **fields: str | None) -> None:
        """Set context fields.  None leaves a field unchanged."""
        for name, value in fields.items():
            var = _context_var(name)
            if value is not None:
                var.set(value)

    @classmethod
    def get_all(cls) -> dict[str, str]:
        """Non-None context fields, in CONTEXT_FIELDS order."""
        values = ((name, var.get()) for name, var in _context.items())
        return {name: value for name, value in values if value is not None}

    @classmethod
    def clear(cls) -> None:
        for var in _context.values():
            var.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: str | None) -> Iterator[None]:
        """
        Set fields for the duration of a block and restore them on exit.

        None values are skipped, so optional ids can be passed through
        unconditionally.
        """
        targets = [(_context_var(name), value) for name, value in fields.items()]
        tokens = [(var, var.set(value)) for var, value in targets if value is not None]
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------

# Attributes every LogRecord has; anything else came from ``extra``
_RECORD_ATTRIBUTES: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _to_json_value(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if not name.startswith("_") and name != "code":
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for key, value in vars(record).items():
            if key not in _RECORD_ATTRIBUTES:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_to_json_value)


# ---------------------------------------------------------------------------
# Logger factory and setup
# ---------------------------------------------------------------------------

_ROOT_LOGGER = "kardex_kernel"


def get_logger(name: str) -> logging.Logger:
    """Logger under the kardex_kernel namespace, e.g. ``kardex_kernel.services.lots``."""
    return logging.getLogger(f"{_ROOT_LOGGER}.{name}")


_configured = False
# Handler attached by configure_logging; reset_logging removes only this one
_installed: logging.Handler | None = None
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the kardex_kernel logger.

    Idempotent: later calls are ignored until reset_logging().  Records do
    not propagate to the root logger.
    """
    global _configured, _installed
    with _lock:
        if _configured:
            return
        _configured = True

    target = handler or logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    _installed = target

    root = logging.getLogger(_ROOT_LOGGER)
    root.setLevel(level)
    root.propagate = False
    root.addHandler(target)


def reset_logging() -> None:
    """Detach our handler and forget the configuration.  For tests."""
    global _configured, _installed
    with _lock:
        _configured = False
        installed, _installed = _installed, None
    root = logging.getLogger(_ROOT_LOGGER)
    if installed is not None:
        root.removeHandler(installed)
    root.setLevel(logging.WARNING)

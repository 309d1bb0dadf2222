"""
Structured logging for the stock ledger.

Every record under the ``stock_ledger`` logger is written as one JSON
object per line.  Fields bound in ``LogContext`` (the correlation id of the
calling request, the movement reference, the acting user and the count
being finalised) are added to every record emitted while they are bound, so
a transfer's two legs or a count's adjustments can be pulled out of the log
by one key.

Services log an event name as the message and put the data in ``extra``:

    logger.info("stock_mutation_applied", extra={"product_id": "P1", "quantity": "-2"})
"""

__all__ = [
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
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Iterator
from uuid import UUID

LOGGER_NAME = "stock_ledger"


class LogContext:
    """Log fields that follow the current thread or task."""

    FIELDS = ("correlation_id", "reference", "actor_id", "count_id")

    _vars: dict[str, ContextVar[str | None]] = {
        name: ContextVar(f"stock_ledger_{name}", default=None) for name in FIELDS
    }

    @classmethod
    def _var(cls, name: str) -> ContextVar[str | None]:
        try:
            return cls._vars[name]
        except KeyError:
            raise TypeError(f"Unknown log context field: {name}") from None

    @classmethod
    def set(cls, **fields: str | None) -> None:
        """Set the given fields; ``None`` leaves a field unchanged."""
        for name, value in fields.items():
            var = cls._var(name)
            if value is not None:
                var.set(value)

    @classmethod
    def get(cls, name: str) -> str | None:
        return cls._var(name).get()

    @classmethod
    def get_all(cls) -> dict[str, str]:
        bound = {name: var.get() for name, var in cls._vars.items()}
        return {name: value for name, value in bound.items() if value is not None}

    @classmethod
    def clear(cls) -> None:
        for var in cls._vars.values():
            var.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: str | None) -> Iterator[None]:
        """Bind fields for the duration of a ``with`` block."""
        tokens = [
            (cls._var(name), cls._var(name).set(value))
            for name, value in fields.items()
            if value is not None
        ]
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "taskName"}


def _to_json(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, datetime):
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
    # StockLedgerError subclasses keep their details as public attributes
    for name, value in vars(exc).items():
        if not name.startswith("_") and name not in ("args", "code"):
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: envelope, bound context, extras, exception."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for name, value in vars(record).items():
            if name not in _RECORD_ATTRS:
                payload.setdefault(name, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_to_json)


def get_logger(name: str) -> logging.Logger:
    """Logger for a ledger component, e.g. ``get_logger("services.locks")``."""
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


_configured = False
_configure_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach a JSON handler to the ``stock_ledger`` logger.

    Only the first call has an effect.  Records do not propagate to the
    root logger, so an application's own logging setup is left alone.
    """
    global _configured
    with _configure_lock:
        if _configured:
            return
        _configured = True

    ledger_logger = logging.getLogger(LOGGER_NAME)
    ledger_logger.setLevel(level)
    ledger_logger.propagate = False

    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    ledger_logger.addHandler(handler)


def reset_logging() -> None:
    """Undo ``configure_logging``; used by tests."""
    global _configured
    with _configure_lock:
        _configured = False
    ledger_logger = logging.getLogger(LOGGER_NAME)
    ledger_logger.handlers.clear()
    ledger_logger.setLevel(logging.WARNING)

"""
Structured JSON logging for the fulfillment kernel.

Every record leaves the ``fulfillment_kernel`` logger tree as one JSON
object per line:

    {"ts": "...", "level": "INFO", "logger": "fulfillment_kernel.ledger",
     "message": "movement_recorded", "order_id": "...", "stock_after": 7}

Request-scoped fields (idempotency key, order, product, acting staff
member) live in a ContextVar so services can bind them once at the top of
an operation and every log line below picks them up, across threads and
asyncio tasks alike.
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
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import UUID

ROOT_LOGGER = "fulfillment_kernel"

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "idempotency_key",
    "actor_id",
    "order_id",
    "product_id",
)

_EMPTY: Mapping[str, str] = MappingProxyType({})
_context: ContextVar[Mapping[str, str]] = ContextVar("fulfillment_log_context", default=_EMPTY)


def _merged(current: Mapping[str, str], fields: Mapping[str, Any]) -> Mapping[str, str]:
    updated = dict(current)
    for name, value in fields.items():
        if name in CONTEXT_FIELDS and value is not None:
            updated[name] = str(value)
    return MappingProxyType(updated)


class LogContext:
    """Request-scoped fields attached to every kernel log record."""

    @staticmethod
    def set(**fields: Any) -> None:
        """Merge fields into the current context; None and unknown names are ignored."""
        _context.set(_merged(_context.get(), fields))

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set(_EMPTY)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """Scope fields to a ``with`` block, restoring the outer context on exit."""
        token = _context.set(_merged(_context.get(), fields))
        try:
            yield
        finally:
            _context.reset(token)


# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


def _jsonable(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    details = getattr(exc, "details", None)
    if callable(details):
        fields.update({f"exc_{k}": v for k, v in details().items()})
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: base fields, context, extras, exception."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, Any] = {
            "ts": created.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context.get(),
        }
        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS:
                payload.setdefault(key, value)

        exc_info = record.exc_info
        if exc_info and exc_info[1] is not None:
            payload.update(_exception_fields(exc_info[1]))
            payload["traceback"] = self.formatException(exc_info)

        return json.dumps(payload, default=_jsonable)


def get_logger(name: str) -> logging.Logger:
    """Child of the kernel logger, e.g. ``get_logger("ledger")``."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


_configured = False
_configure_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach a JSON handler to the kernel logger tree.

    Only the first call has any effect, so engine bootstrap and the service
    facade can both call it safely. The tree does not propagate to the root
    logger; host applications that want kernel records elsewhere pass their
    own ``handler``.
    """
    global _configured
    with _configure_lock:
        if _configured:
            return
        _configured = True

        if handler is None:
            handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(StructuredFormatter())

        kernel = logging.getLogger(ROOT_LOGGER)
        kernel.setLevel(level.upper() if isinstance(level, str) else level)
        kernel.propagate = False
        kernel.addHandler(handler)


def reset_logging() -> None:
    """Detach handlers and allow reconfiguration. Used by the test suite."""
    global _configured
    with _configure_lock:
        _configured = False
        kernel = logging.getLogger(ROOT_LOGGER)
        for handler in list(kernel.handlers):
            kernel.removeHandler(handler)
        kernel.setLevel(logging.WARNING)

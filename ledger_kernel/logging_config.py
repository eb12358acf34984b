"""
Structured JSON logging for the billing core.

Every record emitted under the ``ledger_kernel`` logger namespace is written
as one JSON object per line.  Billing scope (owner, rental, invoice, payment,
actor and a per-operation correlation id) is carried in a context variable so
nested calls inherit it without threading it through every signature.

Usage::

    logger = get_logger("services.orchestrator")
    with LogContext.bind(owner_id=str(owner_id), rental_id=str(rental_id)):
        logger.info("invoice_sent", extra={"invoice_number": number})
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
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterator
from uuid import UUID

LOGGER_NAMESPACE = "ledger_kernel"

SCOPE_FIELDS = (
    "correlation_id",
    "owner_id",
    "actor_id",
    "rental_id",
    "invoice_id",
    "payment_id",
)

_scope: ContextVar[dict[str, str]] = ContextVar("billing_log_scope", default={})


class LogContext:
    """Billing scope attached to every log record of the current context."""

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_scope.get())

    @staticmethod
    def clear() -> None:
        _scope.set({})

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """
        Add scope fields for the duration of the block.

        Unknown names and None values are dropped; values are stored as
        strings.  The previous scope is restored on exit.
        """
        merged = dict(_scope.get())
        merged.update(
            {name: str(value) for name, value in fields.items()
             if name in SCOPE_FIELDS and value is not None}
        )
        token = _scope.set(merged)
        try:
            yield
        finally:
            _scope.reset(token)


# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _to_json(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (tuple, set, frozenset)):
        return [_to_json(v) for v in value]
    return str(value)


class StructuredFormatter(logging.Formatter):
    """One JSON line per record: core fields, billing scope, extras, error."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        payload.update(
            (key, value) for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in payload
        )
        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._error_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_to_json)

    @staticmethod
    def _error_fields(exc: BaseException) -> dict[str, Any]:
        # BillingError subclasses keep their context as public attributes.
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        for name, value in vars(exc).items():
            if not name.startswith("_") and name not in ("args", "code"):
                fields[f"exc_{name}"] = value
        return fields


def get_logger(name: str) -> logging.Logger:
    """Logger for a component, e.g. ``get_logger("modules.invoicing")``."""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


_configured = False
_configure_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Install the JSON handler on the namespace logger once per process."""
    global _configured
    with _configure_lock:
        if _configured:
            return
        _configured = True

    namespace = logging.getLogger(LOGGER_NAMESPACE)
    namespace.setLevel(level)
    namespace.propagate = False
    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    namespace.addHandler(handler)


def reset_logging() -> None:
    """Remove installed handlers so the next configure_logging() applies. Tests only."""
    global _configured
    with _configure_lock:
        _configured = False
    namespace = logging.getLogger(LOGGER_NAMESPACE)
    namespace.handlers.clear()
    namespace.setLevel(logging.WARNING)

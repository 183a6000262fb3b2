"""
Structured JSON logging for the ERP kernel.

Every record written under the ``erp_kernel`` logger becomes one JSON
object per line.  A record carries, in order of precedence:

    1. ts / level / logger / message
    2. the bound approval context (actor, entity, workflow, correlation)
    3. the ``extra={...}`` fields given at the call site
    4. for exceptions: exc_type, exc_message, exc_code and every public
       attribute of an ErpKernelError (exc_workflow_id, exc_failed, ...)

Usage:
    from erp_kernel.logging_config import LogContext, get_logger

    logger = get_logger("services.workflow_engine")
    with LogContext.bind(actor_id=str(actor.actor_id), entity_type="loan"):
        logger.info("entity_advanced", extra={"level_id": 2})
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
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

LOGGER_ROOT = "erp_kernel"

# ---------------------------------------------------------------------------
# Approval context
# ---------------------------------------------------------------------------

_CONTEXT: ContextVar[Mapping[str, str]] = ContextVar("erp_log_context", default={})


class LogContext:
    """
    Request-scoped fields stamped on every record.

    The whole context lives in one ContextVar holding an immutable snapshot,
    so ``bind()`` restores the previous snapshot exactly on exit.
    """

    FIELDS = (
        "correlation_id",
        "actor_id",
        "entity_type",
        "entity_id",
        "workflow_id",
        "trace_id",
    )

    @classmethod
    def _merged(cls, fields: Mapping[str, Any]) -> dict[str, str]:
        unknown = set(fields) - set(cls.FIELDS)
        if unknown:
            raise TypeError(f"unknown log context field(s): {sorted(unknown)}")
        merged = dict(_CONTEXT.get())
        merged.update({k: str(v) for k, v in fields.items() if v is not None})
        return merged

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Overwrite the given fields; ``None`` values are ignored."""
        _CONTEXT.set(cls._merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_CONTEXT.get())

    @classmethod
    def clear(cls) -> None:
        _CONTEXT.set({})

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """Set fields for the duration of a ``with`` block."""
        token = _CONTEXT.set(cls._merged(fields))
        try:
            yield cls
        finally:
            _CONTEXT.reset(token)


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------

_RESERVED = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return repr(value)


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
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_CONTEXT.get(),
        }
        for name, value in vars(record).items():
            if name not in _RESERVED:
                payload.setdefault(name, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Logger named ``erp_kernel.<name>``."""
    return logging.getLogger(f"{LOGGER_ROOT}.{name}")


_setup_lock = threading.Lock()
_handler: logging.Handler | None = None


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``erp_kernel`` logger.

    Later calls are no-ops until ``reset_logging()``.  Records do not
    propagate to the root logger.
    """
    global _handler
    with _setup_lock:
        if _handler is not None:
            return
        _handler = handler or logging.StreamHandler(stream)
        _handler.setFormatter(StructuredFormatter())
        root = logging.getLogger(LOGGER_ROOT)
        root.setLevel(level)
        root.propagate = False
        root.addHandler(_handler)


def reset_logging() -> None:
    """Detach the configured handler. Tests only."""
    global _handler
    with _setup_lock:
        root = logging.getLogger(LOGGER_ROOT)
        root.handlers.clear()
        root.setLevel(logging.WARNING)
        _handler = None

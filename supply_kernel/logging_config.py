"""
JSON logging for the supply kernel.

Every service logs through ``get_logger(__name__)`` with a snake_case event
name as the message and the business fields in ``extra``::

    logger.warning(
        "purchase_order_version_conflict",
        extra={"reference": "BC-2024-00001", "expected_version": 1, "actual_version": 2},
    )

Services bind the order, material or scan they are working on with
``LogContext.bind(...)``; every line emitted inside the block carries those
fields. One JSON object per line, so the output can be shipped as-is.
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
from datetime import UTC, datetime
from typing import Any

from supply_kernel.utils.hashing import json_default

_LOGGER_PREFIX = "supply_kernel"

# Fields a service may bind; anything else passed to bind() is dropped.
CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "actor_id",
    "order_id",
    "material_id",
    "trace_id",
)

_context: ContextVar[dict[str, str] | None] = ContextVar("supply_log_context", default=None)


def _only_known(values: dict[str, Any]) -> dict[str, str]:
    return {
        name: str(value)
        for name, value in values.items()
        if name in CONTEXT_FIELDS and value is not None
    }


class LogContext:
    """Per-task log fields (order, material, actor, scan correlation id)."""

    @staticmethod
    def set(**fields: Any) -> None:
        """Merge ``fields`` into the current context; None values are skipped."""
        _context.set({**(_context.get() or {}), **_only_known(fields)})

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_context.get() or {})

    @staticmethod
    def clear() -> None:
        _context.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[type["LogContext"]]:
        """Overlay ``fields`` for the duration of the block, then restore."""
        token = _context.set({**(_context.get() or {}), **_only_known(fields)})
        try:
            yield LogContext
        finally:
            _context.reset(token)


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------

_RESERVED: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _log_default(obj: Any) -> Any:
    try:
        return json_default(obj)
    except TypeError:
        return str(obj)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    """Flatten an exception; kernel errors contribute ``code`` and their attributes."""
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if name.startswith("_") or name == "code":
            continue
        fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Renders a record as one JSON object: envelope, bound context, extras."""

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RESERVED:
                line.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            line.update(_exception_fields(record.exc_info[1]))
            line["traceback"] = self.formatException(record.exc_info)

        return json.dumps(line, default=_log_default)


def get_logger(name: str) -> logging.Logger:
    """Logger under ``supply_kernel`` (module names are nested beneath it)."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``supply_kernel`` logger.

    Only the first call has an effect; ``reset_logging()`` re-arms it.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.setLevel(level)
    kernel_logger.propagate = False

    target = handler or logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    kernel_logger.addHandler(target)


def reset_logging() -> None:
    """Drop handlers and re-arm configure_logging(). Used by the test suite."""
    global _configured
    with _lock:
        _configured = False
    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.handlers.clear()
    kernel_logger.setLevel(logging.WARNING)
    kernel_logger.propagate = True

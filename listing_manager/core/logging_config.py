"""Process-wide logging setup for the reconciliation loops.

``__main__`` calls :func:`configure_logging` once; every other module only
does ``logger = logging.getLogger(__name__)``.

Each line carries the tick it was logged from (``orders-1a2b3c4d``, ``-``
outside any tick) and the structured event name passed as
``extra={"event": ...}`` (``-`` when the call site gave none)::

    2026-10-16 09:12:44 INFO    orders-1a2b3c4d ORDER_FOUND listing_manager.orchestrator...

``LOG_LEVEL`` and ``LOG_FORMAT`` are read from the environment when the
caller passes nothing.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from listing_manager.core.models import to_js_iso

__all__ = ["configure_logging", "JsonFormatter", "TICK_ID_CTX", "TickContextFilter"]

#: Label of the tick running in the current task; set by
#: :meth:`~listing_manager.core.tick_context.TickContext.activate`.
TICK_ID_CTX: ContextVar[str] = ContextVar("tick_id", default="-")

LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
FORMATS: tuple[str, ...] = ("text", "json")

#: Name given to the handler this module installs, so reconfiguring replaces it.
HANDLER_NAME = "listing_manager"

#: Chatty third-party loggers held at WARNING unless running at DEBUG.
QUIET_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "asyncio")

_TEXT_LAYOUT = "%(asctime)s %(levelname)-7s %(tick_id)s %(event)s %(name)s: %(message)s"

# Attributes every LogRecord has; anything else on a record came from ``extra``.
_BUILTIN_ATTRS: frozenset[str] = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
    "taskName",
}


class TickContextFilter(logging.Filter):
    """Stamp ``tick_id`` and a default ``event`` onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        record.tick_id = TICK_ID_CTX.get()
        if not hasattr(record, "event"):
            record.event = "-"
        return True


class JsonFormatter(logging.Formatter):
    """One flat JSON object per record.

    Keys: ``ts`` (JavaScript-style UTC timestamp, as on the wire), ``level``,
    ``logger``, ``tick``, ``event`` and ``msg``.  Other ``extra`` fields are
    added under their own names; ``exc`` holds the traceback, if any.
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        payload: dict[str, Any] = {
            "ts": to_js_iso(datetime.fromtimestamp(record.created, tz=UTC)),
            "level": record.levelname,
            "logger": record.name,
            "tick": getattr(record, "tick_id", TICK_ID_CTX.get()),
            "event": getattr(record, "event", None),
            "msg": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _BUILTIN_ATTRS and key not in ("tick_id", "event"):
                payload[key] = value
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _resolve(value: str | None, env: str, default: str, allowed: tuple[str, ...]) -> str:
    raw = value or os.environ.get(env) or default
    for candidate in allowed:
        if candidate.lower() == raw.lower():
            return candidate
    raise ValueError(f"Unknown {env} {raw!r}; expected one of {', '.join(allowed)}.")


def configure_logging(
    level: str | None = None,
    fmt: str | None = None,
    *,
    force: bool = False,
) -> None:
    """Install the stderr handler on the root logger.

    When the root logger already has handlers and *force* is not set, only
    the level changes.  With *force*, a handler left by an earlier call is
    replaced; handlers installed by others are left alone.

    Raises:
        ValueError: *level* or *fmt* is not a known value.
    """
    resolved_level = _resolve(level, "LOG_LEVEL", "INFO", LEVELS)
    resolved_fmt = _resolve(fmt, "LOG_FORMAT", "text", FORMATS)

    root = logging.getLogger()
    root.setLevel(resolved_level)
    if root.handlers and not force:
        return

    for existing in [h for h in root.handlers if h.name == HANDLER_NAME]:
        root.removeHandler(existing)
        existing.close()

    handler = logging.StreamHandler(sys.stderr)
    handler.name = HANDLER_NAME
    handler.addFilter(TickContextFilter())
    if resolved_fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_LAYOUT, datefmt="%Y-%m-%d %H:%M:%S"))
    root.addHandler(handler)

    quiet_level = logging.DEBUG if resolved_level == "DEBUG" else logging.WARNING
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

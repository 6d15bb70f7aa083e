"""Structured logging for the asset engine.

Services obtain loggers through :func:`get_logger` and attach structured
fields with ``extra=``. The request actor is carried in a context variable
set by the auth dependency, so every line logged while serving a request is
attributed without threading the actor through each call.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import UTC, date, datetime
from typing import Any

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "json")

_LOGGER_PREFIX = "asset_engine"

actor_id_ctx: ContextVar[str | None] = ContextVar("log_actor_id", default=None)
actor_name_ctx: ContextVar[str | None] = ContextVar("log_actor_name", default=None)

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def set_request_context(actor_id: str | None, actor_name: str | None) -> None:
    actor_id_ctx.set(actor_id)
    actor_name_ctx.set(actor_name)


def get_actor_id() -> str | None:
    return actor_id_ctx.get()


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class StructuredFormatter(logging.Formatter):
    """Formats each record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        actor_id = actor_id_ctx.get()
        if actor_id is not None:
            payload["actor_id"] = actor_id
            payload["actor_name"] = actor_name_ctx.get()

        for key, value in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            code = getattr(exc, "code", None)
            if code is not None:
                payload["exc_code"] = code
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel((level or LOG_LEVEL).upper())
    for handler in list(root.handlers):
        root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stdout)
    if (fmt or LOG_FORMAT) == "json":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    root.addHandler(handler)
    root.propagate = False

"""Structured logging for Agent Sources."""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator

import orjson

_DEFAULT_LEVEL = os.environ.get("AGS_LOG_LEVEL", "INFO")
CONTEXT_PREFIX = "ctx_"

_log_context: ContextVar[dict[str, Any]] = ContextVar("ags_log_context", default={})


class ContextFilter(logging.Filter):
    """Copy the active request context onto every record as `ctx_*` attributes."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line; `ctx_*` extras become top-level fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        payload.update(
            (key[len(CONTEXT_PREFIX) :], value)
            for key, value in record.__dict__.items()
            if key.startswith(CONTEXT_PREFIX)
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, default=str).decode("utf-8")


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Attach `fields` to every record logged inside the block (and tasks it spawns)."""
    merged = {**_log_context.get(), **{f"{CONTEXT_PREFIX}{key}": value for key, value in fields.items()}}
    token = _log_context.set(merged)
    try:
        yield
    finally:
        _log_context.reset(token)


def configure_logging(level: str | int = _DEFAULT_LEVEL, use_json: bool = True) -> None:
    """Route the root logger to stdout, JSON by default."""
    logging.captureWarnings(True)
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter())
    if use_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [handler]


def get_logger(name: str = "agent_sources") -> logging.Logger:
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "log_context", "JsonFormatter", "ContextFilter"]

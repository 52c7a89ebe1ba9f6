"""Structured logging helpers: JSON lines with context."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

_ROOT = "vercel_builder"
_CONTEXT_FIELDS = ("stage", "command", "elapsed_ms")
_current_stage: ContextVar[str | None] = ContextVar("vercel_builder_stage", default=None)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        for field in _CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value
        if "stage" not in payload and _current_stage.get() is not None:
            payload["stage"] = _current_stage.get()
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def get_logger(name: str = _ROOT) -> logging.Logger:
    """Return a logger below the package root, installing the JSON handler once."""
    root = logging.getLogger(_ROOT)
    if not root.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        handler.setFormatter(JsonFormatter())
        root.addHandler(handler)
        root.setLevel(logging.INFO)
    return logging.getLogger(name)


@contextmanager
def stage_context(name: str) -> Iterator[None]:
    """Tag every record formatted inside the block with *name*."""
    token = _current_stage.set(name)
    try:
        yield
    finally:
        _current_stage.reset(token)


def set_debug(enabled: bool) -> None:
    get_logger().setLevel(logging.DEBUG if enabled else logging.INFO)

from __future__ import annotations

import logging
import os
import sys
import uuid
import contextvars
from datetime import datetime, timezone
from typing import Any, Dict


# ---- Per-request trace id ----
_trace_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("trace_id", default="-")


def new_trace_id() -> str:
    """Create a short, unique trace id for one request."""
    return uuid.uuid4().hex[:8]


def bind_trace_id(tid: str) -> None:
    """Bind the trace id to the current context (request scope)."""
    _trace_id_var.set(tid)


def get_trace_id() -> str:
    """Get the current context's trace id (or '-' if none)."""
    return _trace_id_var.get()


# ---- Key=Value formatter ----
def _render(value: Any) -> str:
    if value is None:
        return "-"
    text = str(value)
    if any(c in text for c in ' ="\n'):
        # quoted; inner quotes and newlines escaped so one record stays one line
        text = text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
        return f'"{text}"'
    return text


class KeyValueFormatter(logging.Formatter):
    """
    Emits single-line key=value pairs, one per record.
    Example:
      ts=2025-10-01T07:12:03Z level=INFO logger=timetable.cache trace_id=9f2c1a0b msg=cache.evict key=lectures:...
    """

    def format(self, record: logging.LogRecord) -> str:
        kv: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "level": record.levelname,
            "logger": record.name,
            "trace_id": getattr(record, "trace_id", get_trace_id()),
            "msg": record.getMessage(),
        }

        extra_kv = getattr(record, "kv", None)
        if isinstance(extra_kv, dict):
            kv.update(extra_kv)

        line = " ".join(f"{k}={_render(v)}" for k, v in kv.items())
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


# ---- Logger factory & helper ----
def get_logger(name: str = "timetable") -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        logger.setLevel(os.getenv("TIMETABLE_LOG_LEVEL", "INFO").upper())
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(KeyValueFormatter())
        logger.addHandler(handler)
        logger.propagate = False
    return logger


def log_kv(logger: logging.Logger, level: int, msg: str, **kv: Any) -> None:
    """
    Log a message with structured key=value fields and the bound trace_id.
    Usage:
        log_kv(LOG, logging.INFO, "upstream.response",
               url=url, status=200, duration_ms=84)
    """
    logger.log(level, msg, extra={"kv": kv, "trace_id": get_trace_id()})

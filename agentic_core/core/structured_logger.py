"""
Structured Logger — JSON logging with conversation-scoped context fields.

Provides a StructuredLogger wrapper that adds conversation_id, turn_id,
server_name, provider_name and arbitrary extra fields to every log record.
Two output modes:

- **JSON mode** (`AGENTIC_LOG_FORMAT=json`): each line is a JSON object.
- **Human mode** (default): traditional format with `[conversation_id]` prefix.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

CONTEXT_FIELDS = ("conversation_id", "turn_id", "server_name", "provider_name")


# ── LogContext ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class LogContext:
    """Immutable bag of contextual fields attached to every log line."""
    conversation_id: str = ""
    turn_id: str = ""
    server_name: str = ""
    provider_name: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    def merged_with(self, **kwargs: Any) -> "LogContext":
        """Return a *new* LogContext with the given fields overridden."""
        new_extra = {**self.extra, **kwargs.pop("extra", {})}
        return replace(self, extra=new_extra, **kwargs)


# ── JSON formatter ──────────────────────────────────────────────────

class StructuredFormatter(logging.Formatter):
    """Emits each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for ctx_field in CONTEXT_FIELDS:
            val = getattr(record, ctx_field, "")
            if val:
                entry[ctx_field] = val

        log_extra = getattr(record, "log_extra", None)
        if log_extra:
            entry["extra"] = log_extra

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


# ── Human-readable formatter ───────────────────────────────────────

class HumanFormatter(logging.Formatter):
    """Traditional format with optional [conversation_id] prefix."""

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None):
        super().__init__(
            fmt=fmt or "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt=datefmt or "%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        conversation_id = getattr(record, "conversation_id", "")
        if not conversation_id:
            return super().format(record)
        # Prefix for this handler only; other handlers see the original msg
        original = record.msg
        record.msg = f"[{conversation_id}] {original}"
        try:
            return super().format(record)
        finally:
            record.msg = original


# ── ContextFilter ───────────────────────────────────────────────────

class ContextFilter(logging.Filter):
    """Injects context field defaults into every log record."""

    def __init__(self, context: Optional[LogContext] = None):
        super().__init__()
        self._context = context or LogContext()

    @property
    def context(self) -> LogContext:
        return self._context

    @context.setter
    def context(self, ctx: LogContext) -> None:
        self._context = ctx

    def filter(self, record: logging.LogRecord) -> bool:
        for ctx_field in CONTEXT_FIELDS:
            current = getattr(record, ctx_field, "")
            setattr(record, ctx_field, current or getattr(self._context, ctx_field))
        return True


# ── StructuredLogger ────────────────────────────────────────────────

class StructuredLogger:
    """
    Logger wrapper that stamps a LogContext onto every record.

    Usage::

        log = StructuredLogger(__name__).with_context(conversation_id="c1")
        log.info("Turn finished", tool_calls=2)
    """

    def __init__(self, name: str, context: Optional[LogContext] = None):
        self._name = name
        self._logger = logging.getLogger(name)
        self._context = context or LogContext()

    def with_context(self, **kwargs: Any) -> "StructuredLogger":
        """Return a **new** StructuredLogger with merged context."""
        return StructuredLogger(self._name, context=self._context.merged_with(**kwargs))

    def debug(self, msg: str, **extra: Any) -> None:
        self._log(logging.DEBUG, msg, extra)

    def info(self, msg: str, **extra: Any) -> None:
        self._log(logging.INFO, msg, extra)

    def warning(self, msg: str, **extra: Any) -> None:
        self._log(logging.WARNING, msg, extra)

    def error(self, msg: str, **extra: Any) -> None:
        self._log(logging.ERROR, msg, extra)

    def _log(self, level: int, msg: str, extra: Dict[str, Any]) -> None:
        if not self._logger.isEnabledFor(level):
            return
        record = self._logger.makeRecord(
            name=self._name,
            level=level,
            fn="",
            lno=0,
            msg=msg,
            args=(),
            exc_info=None,
        )
        for ctx_field in CONTEXT_FIELDS:
            setattr(record, ctx_field, getattr(self._context, ctx_field))
        merged = {**self._context.extra, **extra}
        if merged:
            record.log_extra = merged  # type: ignore[attr-defined]
        self._logger.handle(record)

    @staticmethod
    def generate_conversation_id() -> str:
        """Short 12-char hex id."""
        return uuid.uuid4().hex[:12]

    @property
    def context(self) -> LogContext:
        return self._context

    def __repr__(self) -> str:
        return f"StructuredLogger({self._name!r}, context={self._context})"


# ── Module-level setup function ─────────────────────────────────────

def setup_structured_logging(
    json_mode: Optional[bool] = None,
    level: str = "WARNING",
) -> logging.Handler:
    """
    Configure the root logger for structured output.

    Parameters
    ----------
    json_mode : bool or None
        If None, auto-detect from ``AGENTIC_LOG_FORMAT`` env var
        (set to ``"json"`` to enable JSON mode).
    level : str
        Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """
    if json_mode is None:
        json_mode = os.getenv("AGENTIC_LOG_FORMAT", "").lower() == "json"

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.WARNING))
    root.handlers.clear()

    handler = logging.StreamHandler()
    if json_mode:
        handler.setFormatter(StructuredFormatter(datefmt="%Y-%m-%dT%H:%M:%S"))
    else:
        handler.setFormatter(HumanFormatter())
    handler.addFilter(ContextFilter())

    root.addHandler(handler)
    return handler

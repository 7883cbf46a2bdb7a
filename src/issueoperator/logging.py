"""Structured JSON logging for the issue operator."""

from __future__ import annotations

import json
import logging
import sys
import threading
from datetime import datetime, timezone
from typing import Any

from .errors import redact

_RESERVED = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "lineno",
    "exc_info",
    "exc_text",
    "stack_info",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
}


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        # Known structured attributes first so their order is stable
        for attr in (
            "operation",
            "record",
            "issue_number",
            "duration_ms",
            "finalizer_state",
            "error",
        ):
            if hasattr(record, attr):
                entry[attr] = getattr(record, attr)
        for k, v in record.__dict__.items():
            if k not in _RESERVED and not k.startswith("_") and k not in entry:
                entry[k] = v
        return json.dumps(entry, default=str)


class StructuredLogger:
    def __init__(
        self, name: str = "issueoperator", json_logging: bool = False, level: str = "INFO"
    ) -> None:
        self._logger = logging.getLogger(name)
        self._logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        for h in list(self._logger.handlers):
            self._logger.removeHandler(h)
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            JSONFormatter()
            if json_logging
            else logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
        )
        self._logger.addHandler(handler)
        self._logger.propagate = False
        self._dedupe_enabled = json_logging
        self._last_signature: tuple[int, str, tuple[tuple[str, str], ...]] | None = None
        self._dedupe_lock = threading.Lock()

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def _emit(
        self, level: int, message: str, extra: dict[str, Any], *, dedupe: bool = True
    ) -> None:
        if self._dedupe_enabled and dedupe:
            signature = (
                level,
                message,
                tuple(sorted((k, repr(v)) for k, v in extra.items())),
            )
            with self._dedupe_lock:
                if signature == self._last_signature:
                    return
                self._last_signature = signature
        self._logger.log(level, message, extra=extra)

    def log_operation(self, operation: str, **kw: Any) -> None:
        extra = {"operation": operation, **kw}
        self._emit(logging.INFO, f"Operation: {operation}", extra)

    def log_issue_action(
        self,
        action: str,
        record: str,
        issue_number: int | None = None,
        **kw: Any,
    ) -> None:
        extra: dict[str, Any] = {
            "operation": f"issue_{action}",
            "record": record,
            **kw,
        }
        if issue_number:
            extra["issue_number"] = issue_number
        msg = f"issue {action} {record}" + (f" #{issue_number}" if issue_number else "")
        # Every tracker mutation is logged, repeats included.
        self._emit(logging.INFO, msg, extra, dedupe=False)

    def log_performance(self, operation: str, duration_ms: float, **kw: Any) -> None:
        extra = {"operation": operation, "duration_ms": round(duration_ms, 2), **kw}
        self._emit(
            logging.INFO,
            f"Performance: {operation} completed in {duration_ms:.2f}ms",
            extra,
        )

    def log_error(self, message: str, error: str | None = None, **kw: Any) -> None:
        extra = dict(kw)
        if error:
            extra["error"] = redact(error)
        self._logger.error(redact(message), extra=extra)

    def debug(self, message: str, **kw: Any) -> None:
        self._logger.debug(message, extra=kw)

    def info(self, message: str, **kw: Any) -> None:
        self._logger.info(message, extra=kw)

    def warning(self, message: str, **kw: Any) -> None:
        if isinstance(kw.get("error"), str):
            kw["error"] = redact(kw["error"])
        self._logger.warning(redact(message), extra=kw)

    def error(self, message: str, **kw: Any) -> None:  # noqa: D401
        self.log_error(message, **kw)


_GLOBAL: StructuredLogger | None = None


def get_logger() -> StructuredLogger:
    global _GLOBAL  # noqa: PLW0603
    if _GLOBAL is None:
        _GLOBAL = StructuredLogger()
    return _GLOBAL


def configure_logging(json_logging: bool = False, level: str = "INFO") -> StructuredLogger:
    global _GLOBAL  # noqa: PLW0603
    _GLOBAL = StructuredLogger(json_logging=json_logging, level=level)
    return _GLOBAL


__all__ = ["JSONFormatter", "StructuredLogger", "get_logger", "configure_logging"]

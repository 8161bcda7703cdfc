"""
toolgate - Logging Configuration
================================

Every tool execution runs inside an ExecutionLogger scope. The scope binds
an execution id and the tool name in context variables, so any record logged
while the execution is in flight (by the executor, the runner or the cache)
carries them, in JSON lines (StructuredFormatter) or plain text
(ContextFormatter) alike.

Usage:
    from toolgate.observability import setup_logging, get_logger, ExecutionLogger

    setup_logging(level="INFO", json_format=True)
    logger = get_logger(__name__)

    with ExecutionLogger(logger, "npm", "view") as execution:
        execution.annotate(dialect="posix", cache="miss")
"""

import contextvars
import json
import logging
import sys
import time
import traceback as tb
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any
from uuid import uuid4

_execution_id: contextvars.ContextVar[str | None] = contextvars.ContextVar("execution_id", default=None)
_execution_tool: contextvars.ContextVar[str | None] = contextvars.ContextVar("execution_tool", default=None)


def current_execution_id() -> str | None:
    return _execution_id.get()


def current_tool() -> str | None:
    return _execution_tool.get()


def new_execution_id() -> str:
    return f"exec-{uuid4().hex[:12]}"


def _execution_fields() -> dict[str, str]:
    fields = {}
    if execution_id := _execution_id.get():
        fields["execution_id"] = execution_id
    if tool := _execution_tool.get():
        fields["tool"] = tool
    return fields


class StructuredFormatter(logging.Formatter):
    """JSON lines: level, message, the bound execution and any event data."""

    def __init__(self, include_location: bool = True, extra_fields: dict[str, Any] | None = None):
        super().__init__()
        self.include_location = include_location
        self.extra_fields = extra_fields or {}

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_execution_fields(),
        }
        if self.include_location:
            entry["location"] = {"file": record.filename, "line": record.lineno, "function": record.funcName}
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": "".join(tb.format_exception(*record.exc_info)),
            }
        if data := getattr(record, "extra_data", None):
            entry["data"] = data
        entry.update(self.extra_fields)
        return json.dumps(entry, default=str)


class ContextFormatter(logging.Formatter):
    """Plain text with the execution id and tool in brackets."""
    DEFAULT_FORMAT = "%(asctime)s %(levelname)-8s %(context)s%(name)s - %(message)s"

    def __init__(self, fmt: str | None = None, datefmt: str | None = None):
        super().__init__(fmt=fmt or self.DEFAULT_FORMAT, datefmt=datefmt or "%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        fields = _execution_fields()
        record.context = f"[{' '.join(fields.values())}] " if fields else ""
        return super().format(record)


def setup_logging(level: str = "INFO", json_format: bool = False, log_to_console: bool = True,
                  log_file_path: str | None = None, max_file_size_mb: int = 10, backup_count: int = 5,
                  extra_fields: dict[str, Any] | None = None) -> None:
    """
    Configure the root logger.

    Console output goes to stderr because stdout carries command results for
    the CLI. A rotating file handler is added when log_file_path is given.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    formatter = StructuredFormatter(extra_fields=extra_fields) if json_format else ContextFormatter()

    if log_to_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if log_file_path:
        log_path = Path(log_file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_path, maxBytes=max_file_size_mb * 1024 * 1024, backupCount=backup_count)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class ExecutionLogger:
    """
    Log one tool execution as a start record and an end record.

    The end record's data holds the outcome, the duration and whatever the
    executor attached with annotate() (dialect, provenance, cache hit or
    miss). Argument values are never part of it.
    """

    def __init__(self, logger: logging.Logger, tool: str, command: str, execution_id: str | None = None):
        self.logger = logger
        self.tool = tool
        self.command = command
        self.execution_id = execution_id or new_execution_id()
        self.fields: dict[str, Any] = {}
        self.start_time: float | None = None
        self._tokens: list[contextvars.Token] = []

    def annotate(self, **fields) -> None:
        self.fields.update({key: value for key, value in fields.items() if value is not None})

    def __enter__(self):
        self.start_time = time.monotonic()
        self._tokens = [_execution_id.set(self.execution_id), _execution_tool.set(self.tool)]
        self.logger.info(f"Executing {self.tool} {self.command}",
                         extra={"extra_data": self._data("execution_start")})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is None:
                self.logger.info(f"Finished {self.tool} {self.command} in {self.duration_ms}ms",
                                 extra={"extra_data": self._data("execution_end", duration_ms=self.duration_ms)})
            else:
                self.logger.error(f"{self.tool} {self.command} raised after {self.duration_ms}ms: {exc_val}",
                                  exc_info=(exc_type, exc_val, exc_tb),
                                  extra={"extra_data": self._data("execution_failed", duration_ms=self.duration_ms)})
        finally:
            for token in reversed(self._tokens):
                token.var.reset(token)
            self._tokens.clear()
        return False

    def _data(self, event: str, **more) -> dict[str, Any]:
        return {
            "event": event,
            "execution_id": self.execution_id,
            "tool": self.tool,
            "command": self.command,
            **self.fields,
            **more,
        }

    @property
    def duration_ms(self) -> int:
        return int((time.monotonic() - self.start_time) * 1000) if self.start_time is not None else 0


def log_exception(logger: logging.Logger, message: str, exception: BaseException, **data) -> None:
    """Log at ERROR with the exception's traceback and optional event data."""
    logger.error(message, exc_info=(type(exception), exception, exception.__traceback__),
                 extra={"extra_data": data} if data else None)

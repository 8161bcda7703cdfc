"""
toolgate Observability Module
=============================

Logging configuration and per-execution log context.
"""

from .logging_config import (
    ContextFormatter,
    ExecutionLogger,
    StructuredFormatter,
    current_execution_id,
    current_tool,
    get_logger,
    log_exception,
    new_execution_id,
    setup_logging,
)

__all__ = [
    "ContextFormatter",
    "ExecutionLogger",
    "StructuredFormatter",
    "current_execution_id",
    "current_tool",
    "get_logger",
    "log_exception",
    "new_execution_id",
    "setup_logging",
]

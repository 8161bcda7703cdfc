"""
toolgate - allow-listed, injection-safe execution of the npm and GitHub CLIs.
"""

from toolgate.resilience.result_cache import ResultCache, generate_cache_key
from toolgate.tools import (
    CommandExecutor,
    ExecOptions,
    ExecutionResult,
    ShellDialect,
    escape_arg,
    execute_command,
    get_executor,
    set_executor,
)

__version__ = "0.1.0"

__all__ = [
    "CommandExecutor",
    "ExecOptions",
    "ExecutionResult",
    "ResultCache",
    "ShellDialect",
    "escape_arg",
    "execute_command",
    "generate_cache_key",
    "get_executor",
    "set_executor",
]

"""
Tools Module - Guarded execution of the npm and GitHub CLIs

This module provides the execution pipeline:
- CommandValidator: per-tool static allow-lists
- escape_arg / build_command_line: POSIX, cmd.exe and PowerShell escaping
- ExecutableResolver: override, install locations, hijack-safe PATH walk
- ProcessRunner: timeout, output ceiling, stderr classification
- CommandExecutor: the executeCommand entry point

Usage:
    from toolgate.tools import execute_command

    result = await execute_command("npm", "view", ["left-pad"], {"cache": True})
    if result.is_error:
        print(result.error_type, result.message)
"""

from toolgate.tools.escaping import (
    ShellConfig,
    ShellDialect,
    build_command_line,
    check_argument,
    escape_arg,
    escape_executable,
    get_shell_config,
    has_boolean_operators,
    is_structured_query,
)
from toolgate.tools.executor import (
    CommandExecutor,
    execute_command,
    execute_gh_command,
    execute_npm_command,
    get_executor,
    set_executor,
)
from toolgate.tools.models import (
    ExecOptions,
    ExecutionRequest,
    ExecutionResult,
)
from toolgate.tools.registry import (
    BUILTIN_TOOL_SPECS,
    DANGEROUS_COMMANDS,
    GH_SPEC,
    NPM_SPEC,
    CommandValidator,
    GhCommand,
    NpmCommand,
    Tool,
    ToolSpec,
)
from toolgate.tools.resolver import (
    ExecutableResolver,
    Provenance,
    ResolvedExecutable,
)
from toolgate.tools.runner import (
    ProcessRunner,
    parse_output,
)

__all__ = [
    # Escaping
    "ShellConfig",
    "ShellDialect",
    "build_command_line",
    "check_argument",
    "escape_arg",
    "escape_executable",
    "get_shell_config",
    "has_boolean_operators",
    "is_structured_query",
    # Executor
    "CommandExecutor",
    "execute_command",
    "execute_gh_command",
    "execute_npm_command",
    "get_executor",
    "set_executor",
    # Data types
    "ExecOptions",
    "ExecutionRequest",
    "ExecutionResult",
    # Registry
    "BUILTIN_TOOL_SPECS",
    "DANGEROUS_COMMANDS",
    "GH_SPEC",
    "NPM_SPEC",
    "CommandValidator",
    "GhCommand",
    "NpmCommand",
    "Tool",
    "ToolSpec",
    # Resolver
    "ExecutableResolver",
    "Provenance",
    "ResolvedExecutable",
    # Runner
    "ProcessRunner",
    "parse_output",
]

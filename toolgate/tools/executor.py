"""
Command Executor - The one entry point for running a trusted tool

This module implements the execute() pipeline: given "run subcommand X of tool T with
arguments A", it

1. looks up T and checks X against T's allow-list
2. checks every argument is a plain string
3. picks the shell dialect for this platform
4. validates any explicit executable override
5. consults the result cache when the caller asked for caching
6. for rate-limited tools, waits for the call serializer
7. resolves the executable, escapes the line and runs it

Every failure comes back as an ExecutionResult with is_error=True and an
error_type naming its category. Nothing is raised to the caller for
rejected commands, bad paths, process failures, timeouts or serializer
timeouts, and nothing is retried here.
"""

import logging
import sys
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from toolgate.config import Settings, get_settings
from toolgate.observability.logging_config import ExecutionLogger, new_execution_id
from toolgate.resilience.call_serializer import CallSerializer
from toolgate.resilience.errors import InvalidArgumentError, ToolGateError
from toolgate.resilience.result_cache import ResultCache, generate_cache_key
from toolgate.tools.escaping import ShellConfig, build_command_line, check_argument, get_shell_config
from toolgate.tools.models import ExecOptions, ExecutionRequest, ExecutionResult
from toolgate.tools.registry import CommandValidator, Tool, ToolSpec
from toolgate.tools.resolver import ExecutableResolver
from toolgate.tools.runner import ProcessRunner

logger = logging.getLogger(__name__)

_HISTORY_LIMIT = 1000


class CommandExecutor:
    """
    Validates, serializes, caches and runs tool invocations.

    Collaborators are injected so tests can use fresh instances; omitted ones
    are built from settings.

    Usage:
        executor = CommandExecutor()
        result = await executor.execute("npm", "view", ["left-pad"], {"cache": True})
        if not result.is_error:
            print(result.payload["version"])
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        validator: Optional[CommandValidator] = None,
        resolver: Optional[ExecutableResolver] = None,
        runner: Optional[ProcessRunner] = None,
        cache: Optional[ResultCache] = None,
        serializers: Optional[Dict[Tool, CallSerializer]] = None,
        platform_name: Optional[str] = None,
    ):
        self.settings = settings or get_settings()
        self.platform_name = platform_name or sys.platform
        self.validator = validator or CommandValidator()
        self.resolver = resolver or ExecutableResolver(platform_name=self.platform_name)
        self.runner = runner or ProcessRunner(
            max_output_bytes=self.settings.MAX_OUTPUT_BYTES,
            kill_grace_seconds=self.settings.KILL_GRACE_SECONDS,
        )
        self.cache = cache or ResultCache(
            default_ttl=self.settings.CACHE_DEFAULT_TTL,
            check_period=self.settings.CACHE_CHECK_PERIOD,
        )
        self.serializers = dict(serializers or {})
        for spec in self.validator.list_tools():
            if spec.serialized and spec.tool not in self.serializers:
                self.serializers[spec.tool] = CallSerializer(
                    spec.name, wait_timeout=self.settings.SERIALIZER_WAIT_TIMEOUT
                )

        self._history: List[Dict[str, Any]] = []

        logger.info("CommandExecutor initialized")

    async def execute(
        self,
        tool_name: Any,
        command: Any,
        args: Sequence[str] = (),
        options: Optional[Mapping[str, Any]] = None,
    ) -> ExecutionResult:
        """
        Run an allow-listed subcommand of a trusted tool.

        Args:
            tool_name: "npm" or "gh" (alias "github")
            command: Subcommand, checked against the tool's allow-list
            args: Raw arguments, each escaped as one opaque word
            options: ExecOptions or a mapping of its fields

        Returns:
            ExecutionResult; is_error=True carries message and error_type
        """
        try:
            spec = self.validator.get_spec(tool_name)
            validated = self.validator.validate(spec, command)
            request = ExecutionRequest(
                tool=spec.name,
                command=validated,
                args=self._check_args(args),
                options=ExecOptions.from_mapping(options),
            )
        except ToolGateError as e:
            result = ExecutionResult.from_error(e, tool=str(tool_name))
            self._record(str(tool_name), str(command), result)
            return result

        return await self.execute_request(request)

    async def execute_request(self, request: ExecutionRequest) -> ExecutionResult:
        """Run a request. Validation is repeated; requests are not trusted."""
        with ExecutionLogger(logger, request.tool, request.command) as execution:
            try:
                spec = self.validator.get_spec(request.tool)
                self.validator.validate(spec, request.command)
                self._check_args(request.args)
                options = request.options
                shell = get_shell_config(
                    self.platform_name,
                    windows_shell=options.windows_shell or self.settings.WINDOWS_SHELL,
                    posix_shell=self.settings.POSIX_SHELL,
                )
                execution.annotate(dialect=shell.dialect.value)
                override = options.executable_path or getattr(self.settings, spec.executable_setting, None)
                if override:
                    self.resolver.validate_override(override)
            except ToolGateError as e:
                result = ExecutionResult.from_error(e, tool=request.tool)
                execution.annotate(outcome="error", error_type=result.error_type)
                self._record(request.tool, request.command, result, execution.execution_id)
                return result

            spawned = False

            async def produce() -> ExecutionResult:
                nonlocal spawned
                spawned = True
                return await self._run_guarded(spec, request, shell, override)

            if options.cache:
                key = generate_cache_key(spec.cache_prefix, self._cache_params(request, shell, override))
                result = await self.cache.with_cache(key, produce, ttl=options.cache_ttl)
                execution.annotate(cache="miss" if spawned else "hit")
            else:
                result = await produce()

            execution.annotate(
                outcome="error" if result.is_error else "ok",
                error_type=result.error_type,
                provenance=result.metadata.get("provenance"),
            )
            self._record(request.tool, request.command, result, execution.execution_id)
            return result

    @staticmethod
    def _cache_params(request: ExecutionRequest, shell: ShellConfig, override: Optional[str]) -> Dict[str, Any]:
        """Everything that can change what the child prints."""
        options = request.options
        return {
            "command": request.command,
            "args": list(request.args),
            "shell": shell.dialect.value,
            "cwd": options.cwd,
            "env": dict(sorted(options.env.items())),
            "executable": override,
        }

    async def _run_guarded(
        self,
        spec: ToolSpec,
        request: ExecutionRequest,
        shell: ShellConfig,
        override: Optional[str],
    ) -> ExecutionResult:
        try:
            serializer = self.serializers.get(spec.tool)
            if serializer is not None:
                return await serializer.with_exclusive(self._run_pipeline, spec, request, shell, override)
            return await self._run_pipeline(spec, request, shell, override)
        except ToolGateError as e:
            return ExecutionResult.from_error(e, tool=spec.name, dialect=shell.dialect.value)

    async def _run_pipeline(
        self,
        spec: ToolSpec,
        request: ExecutionRequest,
        shell: ShellConfig,
        override: Optional[str],
    ) -> ExecutionResult:
        resolved = self.resolver.resolve(spec, override=override)
        command_line = build_command_line(
            resolved.path,
            request.command,
            request.args,
            shell.dialect,
            search_query_index=spec.search_query_index(request.command, request.args),
        )
        logger.debug(f"Command line ({shell.dialect.value}): {command_line}")

        options = request.options
        timeout = options.timeout
        if timeout is None:
            timeout = getattr(self.settings, spec.timeout_setting, spec.default_timeout)
        result = await self.runner.run(
            command_line,
            shell,
            spec,
            timeout=timeout,
            cwd=options.cwd,
            env=options.env,
            max_output_bytes=options.max_output_bytes,
        )
        return replace(
            result,
            metadata={
                **result.metadata,
                "executable": resolved.path,
                "provenance": resolved.provenance.value,
            },
        )

    @staticmethod
    def _check_args(args: Optional[Sequence[str]]) -> tuple:
        if args is None:
            return ()
        if isinstance(args, (str, bytes)):
            raise InvalidArgumentError("args must be a sequence of strings, not a single string")
        checked = tuple(args)
        for arg in checked:
            check_argument(arg)
        return checked

    def _record(self, tool: str, command: str, result: ExecutionResult, execution_id: Optional[str] = None):
        self._history.append({
            "execution_id": execution_id or new_execution_id(),
            "tool": tool,
            "command": command,
            "is_error": result.is_error,
            "error_type": result.error_type,
            "duration_ms": result.metadata.get("duration_ms"),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        if len(self._history) > _HISTORY_LIMIT:
            self._history = self._history[-(_HISTORY_LIMIT // 2):]

        if result.is_error:
            logger.warning(f"{tool} {command} failed [{result.error_type}]: {result.message}")

    def get_recent_executions(self, limit: int = 50, tool: Optional[str] = None) -> List[Dict[str, Any]]:
        history = self._history
        if tool:
            history = [h for h in history if h["tool"] == tool]
        return history[-limit:]

    def get_stats(self) -> Dict[str, Any]:
        by_tool: Dict[str, Dict[str, int]] = {}
        for entry in self._history:
            counts = by_tool.setdefault(entry["tool"], {"total": 0, "errors": 0})
            counts["total"] += 1
            if entry["is_error"]:
                counts["errors"] += 1
        return {
            "executions": by_tool,
            "cache": self.cache.get_stats(),
            "serializers": {tool.value: s.stats() for tool, s in self.serializers.items()},
        }


# Global executor instance
_default_executor: Optional[CommandExecutor] = None


def get_executor() -> CommandExecutor:
    """Get or create the default CommandExecutor instance"""
    global _default_executor
    if _default_executor is None:
        _default_executor = CommandExecutor()
    return _default_executor


def set_executor(executor: Optional[CommandExecutor]):
    """Set the default CommandExecutor instance"""
    global _default_executor
    _default_executor = executor


async def execute_command(
    tool_name: str,
    command: str,
    args: Sequence[str] = (),
    options: Optional[Mapping[str, Any]] = None,
) -> ExecutionResult:
    """Run through the default executor"""
    return await get_executor().execute(tool_name, command, args, options)


async def execute_npm_command(command: str, args: Sequence[str] = (), options: Optional[Mapping[str, Any]] = None) -> ExecutionResult:
    return await execute_command(Tool.NPM.value, command, args, options)


async def execute_gh_command(command: str, args: Sequence[str] = (), options: Optional[Mapping[str, Any]] = None) -> ExecutionResult:
    return await execute_command(Tool.GH.value, command, args, options)

"""
Process Runner - Spawn one pre-escaped command line and classify the outcome

The command line is handed to the dialect's interpreter as a single string.
Its natural exit races a wall-clock timer: if the timer wins, the child (its
whole process group on POSIX, its process tree on Windows) is killed and a
Timeout result is returned. If a stream exceeds the output ceiling, the child
is killed the same way.

Classification:
- non-zero exit is always an error
- stderr made only of benign lines (tool warnings, shell start-up noise)
  becomes a warning on a successful result
- any other non-blank stderr is an error
- stdout is parsed as JSON when possible, otherwise returned as text

No state is kept between calls.
"""

import asyncio
import json
import logging
import os
import signal
import sys
import time
from typing import Any, Awaitable, Callable, Mapping, Optional, Tuple

from toolgate.observability.logging_config import log_exception
from toolgate.resilience.errors import CommandTimeoutError, OutputLimitError, ProcessError
from toolgate.tools.escaping import ShellConfig, ShellDialect
from toolgate.tools.models import ExecutionResult
from toolgate.tools.registry import ToolSpec

logger = logging.getLogger(__name__)

DEFAULT_MAX_OUTPUT_BYTES = 5 * 1024 * 1024
_READ_CHUNK = 64 * 1024


class ProcessRunner:
    """
    Executes command lines produced by build_command_line().

    Usage:
        runner = ProcessRunner()
        result = await runner.run(
            "npm view left-pad",
            shell_config,
            spec=NPM_SPEC,
            timeout=30.0,
        )
    """

    def __init__(
        self,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        kill_grace_seconds: float = 5.0,
        create_shell: Optional[Callable[..., Awaitable[Any]]] = None,
        create_exec: Optional[Callable[..., Awaitable[Any]]] = None,
        use_process_groups: Optional[bool] = None,
        kill_tree: Optional[bool] = None,
    ):
        self.max_output_bytes = max_output_bytes
        self.kill_grace_seconds = kill_grace_seconds
        self._create_shell = create_shell or asyncio.create_subprocess_shell
        self._create_exec = create_exec or asyncio.create_subprocess_exec
        if use_process_groups is None:
            use_process_groups = os.name == "posix"
        if kill_tree is None:
            kill_tree = os.name == "nt"
        self.use_process_groups = use_process_groups
        self.kill_tree = kill_tree

    async def run(
        self,
        command_line: str,
        shell: ShellConfig,
        spec: ToolSpec,
        timeout: float,
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        max_output_bytes: Optional[int] = None,
    ) -> ExecutionResult:
        """
        Run ``command_line`` under ``shell`` and classify the outcome.

        Args:
            command_line: Fully escaped command line
            shell: Interpreter that parses the line
            spec: Tool declaration (stderr noise patterns, error labels)
            timeout: Wall-clock budget in seconds
            cwd: Working directory for the child
            env: Variables merged over the inherited environment
            max_output_bytes: Per-stream ceiling; defaults to the runner's

        Returns:
            ExecutionResult, never raises for process-level failures
        """
        limit = max_output_bytes or self.max_output_bytes
        meta = {
            "tool": spec.name,
            "command": command_line,
            "platform": sys.platform,
            "shell": shell.interpreter,
            "dialect": shell.dialect.value,
        }
        start = time.monotonic()

        try:
            process = await self._spawn(command_line, shell, cwd, self.build_env(shell, env))
        except OSError as e:
            log_exception(logger, f"Failed to spawn {spec.name}", e, command=command_line)
            error = ProcessError(str(e), summary=spec.failure_label)
            return ExecutionResult.from_error(error, **meta)

        logger.debug(f"Spawned pid {process.pid}: {command_line}")

        try:
            stdout, stderr = await asyncio.wait_for(
                self._communicate(process, limit), timeout=timeout
            )
        except asyncio.TimeoutError:
            await self._kill(process)
            logger.warning(f"{spec.display_name} command exceeded {timeout}s and was killed: {command_line}")
            error = CommandTimeoutError(
                f"{spec.display_name} command exceeded {timeout}s and was terminated",
                timeout=timeout,
            )
            return ExecutionResult.from_error(error, duration_ms=_elapsed_ms(start), **meta)
        except OutputLimitError as e:
            await self._kill(process)
            logger.warning(f"{spec.display_name} output exceeded {limit} bytes: {command_line}")
            e.summary = spec.failure_label
            return ExecutionResult.from_error(e, duration_ms=_elapsed_ms(start), **meta)

        meta["exit_code"] = process.returncode
        meta["duration_ms"] = _elapsed_ms(start)
        return self.classify(spec, process.returncode, stdout, stderr, meta)

    def classify(
        self,
        spec: ToolSpec,
        returncode: int,
        stdout: str,
        stderr: str,
        meta: Optional[dict] = None,
    ) -> ExecutionResult:
        meta = dict(meta or {})

        if returncode != 0:
            detail = stderr.strip() or stdout.strip() or "no output"
            error = ProcessError(
                f"exit code {returncode}: {detail}",
                summary=spec.failure_label,
                exit_code=returncode,
                stderr=stderr,
            )
            return ExecutionResult.from_error(error, **meta)

        warning = None
        lines = [line for line in stderr.splitlines() if line.strip()]
        if lines:
            if all(spec.is_benign_stderr_line(line) for line in lines):
                warning = stderr.strip()
                logger.info(f"{spec.display_name} wrote benign stderr: {lines[0][:200]}")
            else:
                error = ProcessError(stderr.strip(), summary=spec.error_label, exit_code=0, stderr=stderr)
                return ExecutionResult.from_error(error, **meta)

        return ExecutionResult.success(parse_output(stdout), warning=warning, **meta)

    def build_env(self, shell: ShellConfig, env: Optional[Mapping[str, str]] = None) -> dict:
        """Inherited environment with ``env`` on top. PATH is never replaced."""
        merged = dict(os.environ)
        merged.update(env or {})
        if "PATH" in os.environ:
            merged["PATH"] = os.environ["PATH"]
        else:
            merged.pop("PATH", None)
        if shell.dialect is ShellDialect.POSIX:
            merged["SHELL"] = shell.interpreter
            merged["BASH_ENV"] = ""
        return merged

    async def _spawn(self, command_line: str, shell: ShellConfig, cwd: Optional[str], env: dict):
        kwargs = {
            "stdin": asyncio.subprocess.DEVNULL,
            "stdout": asyncio.subprocess.PIPE,
            "stderr": asyncio.subprocess.PIPE,
            "cwd": cwd,
            "env": env,
        }
        if shell.dialect is ShellDialect.POWERSHELL:
            return await self._create_exec(
                shell.interpreter, "-NoProfile", "-NonInteractive", "-Command", command_line,
                **kwargs,
            )
        if shell.dialect is ShellDialect.POSIX:
            kwargs["executable"] = shell.interpreter
            if self.use_process_groups:
                kwargs["start_new_session"] = True
        # cmd: asyncio runs COMSPEC /c with the line verbatim
        return await self._create_shell(command_line, **kwargs)

    async def _communicate(self, process, limit: int) -> Tuple[str, str]:
        stdout_task = asyncio.ensure_future(_read_capped(process.stdout, limit, "stdout"))
        stderr_task = asyncio.ensure_future(_read_capped(process.stderr, limit, "stderr"))
        try:
            stdout, stderr = await asyncio.gather(stdout_task, stderr_task)
            await process.wait()
        finally:
            for task in (stdout_task, stderr_task):
                if not task.done():
                    task.cancel()
        return (
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )

    async def _kill(self, process):
        """Kill the child and reap it, waiting at most kill_grace_seconds."""
        if process.returncode is None:
            try:
                if self.use_process_groups:
                    os.killpg(process.pid, signal.SIGKILL)
                elif self.kill_tree:
                    await self._kill_tree(process)
                else:
                    process.kill()
            except ProcessLookupError:
                pass
        try:
            await asyncio.wait_for(process.wait(), timeout=self.kill_grace_seconds)
        except asyncio.TimeoutError:
            logger.error(f"pid {process.pid} did not exit within {self.kill_grace_seconds}s of being killed")

    async def _kill_tree(self, process):
        """
        Kill the child and all of its descendants with taskkill.

        Terminating cmd.exe alone leaves npm.cmd's node process running, and
        Windows has no process groups to signal instead.
        """
        try:
            killer = await self._create_exec(
                "taskkill", "/T", "/F", "/PID", str(process.pid),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await asyncio.wait_for(killer.wait(), timeout=self.kill_grace_seconds)
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning(f"taskkill failed for pid {process.pid}, killing the shell only: {e!r}")
            process.kill()


async def _read_capped(stream, limit: int, name: str) -> bytes:
    if stream is None:
        return b""
    chunks = []
    size = 0
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            break
        size += len(chunk)
        if size > limit:
            raise OutputLimitError(f"{name} exceeded {limit} bytes", stream=name, limit=limit)
        chunks.append(chunk)
    return b"".join(chunks)


def parse_output(stdout: str) -> Any:
    """JSON when stdout is JSON, otherwise the raw text."""
    if not stdout.strip():
        return stdout
    try:
        return json.loads(stdout)
    except ValueError:
        return stdout


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)

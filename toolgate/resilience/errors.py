"""Errors - Failure taxonomy for guarded command execution.

Every error carries a ``category`` naming its class of failure so a caller can
decide between retry, fallback, or upward propagation without string matching.
"""

from typing import Any


class ToolGateError(Exception):
    """Base exception for toolgate."""

    category = "ToolGateError"
    summary = "Command failed"

    def __init__(self, detail: str, **context: Any):
        super().__init__(detail)
        self.detail = detail
        self.context = context

    @property
    def message(self) -> str:
        return f"{self.summary}: {self.detail}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.category,
            "message": self.message,
            "context": self.context,
        }


class RejectedCommandError(ToolGateError):
    """Tool or subcommand is not on the allow-list. Nothing was spawned."""

    category = "RejectedCommand"
    summary = "Command not registered"


class InvalidArgumentError(ToolGateError):
    """An argument or option cannot be rendered safely."""

    category = "InvalidArgument"
    summary = "Invalid argument"


class InvalidExecutablePathError(ToolGateError):
    """Explicit executable override failed validation. No fallback is attempted."""

    category = "InvalidExecutablePath"
    summary = "Invalid executable path"


class ExecutableNotFoundError(ToolGateError):
    category = "ExecutableNotFound"
    summary = "Executable not found"


class ProcessError(ToolGateError):
    """Non-zero exit, disqualifying stderr, or a failed spawn."""

    category = "ProcessError"
    summary = "Failed to execute command"

    def __init__(
        self,
        detail: str,
        summary: str | None = None,
        exit_code: int | None = None,
        stderr: str | None = None,
        **context: Any,
    ):
        super().__init__(detail, exit_code=exit_code, **context)
        if summary:
            self.summary = summary
        self.exit_code = exit_code
        self.stderr = stderr


class OutputLimitError(ProcessError):
    """A child wrote more than the output ceiling and was killed."""


class CommandTimeoutError(ToolGateError):
    """Wall-clock budget exceeded. The child was forcibly killed."""

    category = "Timeout"
    summary = "Command timed out"

    def __init__(self, detail: str, timeout: float | None = None, **context: Any):
        super().__init__(detail, timeout=timeout, **context)
        self.timeout = timeout


class MutexTimeoutError(ToolGateError):
    """Waiting for the call serializer took longer than its acquisition bound."""

    category = "MutexTimeout"
    summary = "Timed out waiting for exclusive access"

    def __init__(self, detail: str, wait_timeout: float | None = None, **context: Any):
        super().__init__(detail, wait_timeout=wait_timeout, **context)
        self.wait_timeout = wait_timeout

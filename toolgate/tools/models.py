"""
Execution data types.

ExecOptions and ExecutionRequest describe one call and are immutable.
ExecutionResult is produced once per request and may be shared through the
result cache, so it is frozen as well.
"""

import collections.abc
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from toolgate.resilience.errors import InvalidArgumentError, ToolGateError


@dataclass(frozen=True)
class ExecOptions:
    """Per-call execution options"""
    timeout: Optional[float] = None  # seconds; None = tool default
    cwd: Optional[str] = None
    env: Mapping[str, str] = field(default_factory=dict)  # merged over the inherited env
    cache: bool = False
    cache_ttl: Optional[float] = None
    windows_shell: Optional[str] = None  # "cmd" | "powershell"
    executable_path: Optional[str] = None
    max_output_bytes: Optional[int] = None

    @classmethod
    def from_mapping(cls, options: Optional[Mapping[str, Any]]) -> "ExecOptions":
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options
        if not isinstance(options, collections.abc.Mapping):
            raise InvalidArgumentError(f"options must be a mapping, got {type(options).__name__}")
        known = {f.name for f in fields(cls)}
        unknown = set(options) - known
        if unknown:
            raise InvalidArgumentError(f"Unknown execution options: {sorted(unknown)}")
        for name, value in options.items():
            _check_option(name, value)
        return cls(**dict(options))


# Accepted types per option; None is always accepted except for env and cache
_OPTION_TYPES: Dict[str, Tuple[type, ...]] = {
    "timeout": (int, float),
    "cwd": (str,),
    "env": (collections.abc.Mapping,),
    "cache": (bool,),
    "cache_ttl": (int, float),
    "windows_shell": (str,),
    "executable_path": (str,),
    "max_output_bytes": (int,),
}


def _check_option(name: str, value: Any) -> None:
    if value is None and name not in ("env", "cache"):
        return
    expected = _OPTION_TYPES[name]
    # bool is an int subclass but never a valid number of seconds or bytes
    if not isinstance(value, expected) or (isinstance(value, bool) and bool not in expected):
        raise InvalidArgumentError(
            f"option {name!r} expects {' or '.join(t.__name__ for t in expected)}, got {type(value).__name__}"
        )
    if name in ("timeout", "cache_ttl") and value < 0:
        raise InvalidArgumentError(f"option {name!r} must not be negative, got {value}")
    if name == "max_output_bytes" and value <= 0:
        raise InvalidArgumentError(f"option 'max_output_bytes' must be positive, got {value}")
    if name == "windows_shell" and value not in ("cmd", "powershell"):
        raise InvalidArgumentError(f"windows_shell must be 'cmd' or 'powershell', got {value!r}")
    if name == "env":
        for key, item in value.items():
            if not isinstance(key, str) or not isinstance(item, str):
                raise InvalidArgumentError(f"env entries must be strings, got {key!r}={item!r}")


@dataclass(frozen=True)
class ExecutionRequest:
    """Run subcommand ``command`` of ``tool`` with ``args``"""
    tool: str
    command: str
    args: Tuple[str, ...] = ()
    options: ExecOptions = field(default_factory=ExecOptions)


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one request: a success payload or a categorized error"""
    is_error: bool
    payload: Any = None
    message: Optional[str] = None
    warning: Optional[str] = None
    error_type: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, payload: Any, warning: Optional[str] = None, **metadata: Any) -> "ExecutionResult":
        return cls(is_error=False, payload=payload, warning=warning or None, metadata=_stamp(metadata))

    @classmethod
    def failure(cls, message: str, error_type: str, **metadata: Any) -> "ExecutionResult":
        return cls(is_error=True, message=message, error_type=error_type, metadata=_stamp(metadata))

    @classmethod
    def from_error(cls, error: ToolGateError, **metadata: Any) -> "ExecutionResult":
        context = {k: v for k, v in error.context.items() if v is not None}
        context.update(metadata)
        return cls.failure(error.message, error.category, **context)

    def to_dict(self) -> Dict[str, Any]:
        if self.is_error:
            data = {
                "is_error": True,
                "error_type": self.error_type,
                "message": self.message,
            }
        else:
            data = {"is_error": False, "payload": self.payload}
            if self.warning:
                data["warning"] = self.warning
        data["metadata"] = self.metadata
        return data


def _stamp(metadata: Dict[str, Any]) -> Dict[str, Any]:
    metadata.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
    return metadata

"""
Tool Registry - Static declarations of the trusted tools and their allow-lists

This module declares the only two executables toolgate will ever run and,
for each, the fixed set of subcommands a caller may request. It provides:
- Tool and per-tool subcommand enums
- ToolSpec: timeouts, serialization, stderr noise, install locations
- CommandValidator: the choke point every request passes before anything
  is resolved or spawned

Security:
- Allow-lists are declared in code and never extended at runtime
- Matching is exact and case-sensitive; "view;" or "View" are rejected
- Rejections of known-dangerous subcommands are logged for audit
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Pattern, Sequence, Tuple

from toolgate.resilience.errors import RejectedCommandError

logger = logging.getLogger(__name__)


class Tool(str, Enum):
    """Trusted external tools"""
    NPM = "npm"
    GH = "gh"


class NpmCommand(str, Enum):
    """Read-only npm subcommands"""
    VIEW = "view"
    SEARCH = "search"
    PING = "ping"
    CONFIG = "config"
    WHOAMI = "whoami"


class GhCommand(str, Enum):
    """GitHub CLI subcommands"""
    SEARCH = "search"
    API = "api"
    AUTH = "auth"
    ORG = "org"
    PR = "pr"
    REPO = "repo"


TOOL_ALIASES: Dict[str, Tool] = {
    "npm": Tool.NPM,
    "gh": Tool.GH,
    "github": Tool.GH,
}

# Subcommands and programs that must never be reachable
DANGEROUS_COMMANDS: FrozenSet[str] = frozenset({
    # npm
    "install", "uninstall", "publish", "unpublish", "run-script", "exec",
    "init", "create", "update", "audit", "fund",
    # system
    "rm", "del", "rmdir", "mv", "cp", "chmod", "chown", "sudo", "su",
    "curl", "wget", "ssh", "scp", "rsync",
    # shells
    "bash", "sh", "zsh", "fish", "cmd", "powershell", "pwsh",
})


@dataclass(frozen=True)
class ToolSpec:
    """Complete declaration of a trusted tool"""
    tool: Tool
    display_name: str
    executable: str
    allowed_commands: FrozenSet[str]

    # Behavior
    default_timeout: float
    timeout_setting: str
    executable_setting: str
    serialized: bool = False
    cache_prefix: str = "default"

    # stderr lines matching any of these are warnings, not failures
    benign_stderr_patterns: Tuple[Pattern[str], ...] = ()

    # Platform key -> candidate paths. Windows entries may use {ProgramFiles} style fields.
    known_locations: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.tool.value

    @property
    def error_label(self) -> str:
        return f"{self.display_name} command error"

    @property
    def failure_label(self) -> str:
        return f"Failed to execute {self.display_name} command"

    def is_benign_stderr_line(self, line: str) -> bool:
        return any(p.search(line) for p in self.benign_stderr_patterns)

    def search_query_index(self, command: str, args: Sequence[str]) -> Optional[int]:
        """Position of a structured search query in ``args``, if any."""
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "executable": self.executable,
            "allowed_commands": sorted(self.allowed_commands),
            "default_timeout": self.default_timeout,
            "serialized": self.serialized,
            "cache_prefix": self.cache_prefix,
        }


@dataclass(frozen=True)
class GhToolSpec(ToolSpec):
    """GitHub CLI: `gh search <type> <query> [flags]` carries a query string"""

    def search_query_index(self, command: str, args: Sequence[str]) -> Optional[int]:
        if command != GhCommand.SEARCH.value or len(args) < 2:
            return None
        if args[1].startswith("-"):
            return None
        return 1


NPM_SPEC = ToolSpec(
    tool=Tool.NPM,
    display_name="NPM",
    executable="npm",
    allowed_commands=frozenset(c.value for c in NpmCommand),
    default_timeout=30.0,
    timeout_setting="NPM_TIMEOUT",
    executable_setting="NPM_EXECUTABLE",
    serialized=False,
    cache_prefix="npm-exec",
    benign_stderr_patterns=(
        re.compile(r"npm WARN"),
        re.compile(r"npm notice"),
    ),
    known_locations={
        "linux": ("/usr/local/bin/npm", "/usr/bin/npm"),
        "darwin": ("/opt/homebrew/bin/npm", "/usr/local/bin/npm"),
        "win32": ("{ProgramFiles}\\nodejs\\npm.cmd", "{APPDATA}\\npm\\npm.cmd"),
    },
)

GH_SPEC = GhToolSpec(
    tool=Tool.GH,
    display_name="GitHub CLI",
    executable="gh",
    allowed_commands=frozenset(c.value for c in GhCommand),
    default_timeout=60.0,
    timeout_setting="GH_TIMEOUT",
    executable_setting="GH_EXECUTABLE",
    # GitHub enforces secondary rate limits on bursts
    serialized=True,
    cache_prefix="gh-exec",
    benign_stderr_patterns=(
        re.compile(r"Warning:"),
        re.compile(r"notice:"),
        # Noise from user shell start-up files
        re.compile(r"No such file or directory"),
        re.compile(r"^\s*head:"),
    ),
    known_locations={
        "linux": ("/usr/local/bin/gh", "/usr/bin/gh", "/home/linuxbrew/.linuxbrew/bin/gh"),
        "darwin": ("/opt/homebrew/bin/gh", "/usr/local/bin/gh"),
        "win32": ("{ProgramFiles}\\GitHub CLI\\gh.exe",),
    },
)

BUILTIN_TOOL_SPECS: Dict[Tool, ToolSpec] = {
    Tool.NPM: NPM_SPEC,
    Tool.GH: GH_SPEC,
}


class CommandValidator:
    """
    Authoritative allow-list check.

    Usage:
        validator = CommandValidator()
        spec = validator.get_spec("npm")
        validator.validate(spec, "view")      # ok
        validator.validate(spec, "install")   # raises RejectedCommandError
    """

    def __init__(self, specs: Optional[Dict[Tool, ToolSpec]] = None):
        self._specs = dict(specs or BUILTIN_TOOL_SPECS)

    def get_spec(self, tool_name: Any) -> ToolSpec:
        """Look up a tool by name or alias. Unknown tools are rejected."""
        if isinstance(tool_name, Tool):
            tool = tool_name
        elif isinstance(tool_name, str):
            tool = TOOL_ALIASES.get(tool_name)
        else:
            tool = None
        spec = self._specs.get(tool) if tool else None
        if spec is None:
            logger.warning(f"Rejected unknown tool: {tool_name!r}")
            raise RejectedCommandError(
                f"tool {tool_name!r} is not registered",
                tool=str(tool_name),
            )
        return spec

    def validate(self, spec: ToolSpec, command: Any) -> str:
        """
        Check ``command`` against the tool's allow-list.

        Returns:
            The validated subcommand as a plain string

        Raises:
            RejectedCommandError: on any mismatch
        """
        name = command.value if isinstance(command, Enum) else command
        if isinstance(name, str) and name in spec.allowed_commands:
            return name

        if isinstance(name, str) and self.is_dangerous_command(name):
            logger.warning(f"Blocked dangerous {spec.display_name} command: {name!r}")
        else:
            logger.warning(f"Rejected {spec.display_name} command: {command!r}")

        raise RejectedCommandError(
            f"{spec.display_name} command {command!r} is not in the allowed list",
            tool=spec.name,
            command=str(command),
        )

    @staticmethod
    def is_dangerous_command(command: str) -> bool:
        return command.strip().lower() in DANGEROUS_COMMANDS

    def allowed_commands(self, tool_name: Any) -> List[str]:
        return sorted(self.get_spec(tool_name).allowed_commands)

    def list_tools(self) -> List[ToolSpec]:
        return list(self._specs.values())

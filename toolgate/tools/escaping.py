"""
Shell argument escaping for POSIX sh, cmd.exe and PowerShell.

Each dialect re-parses a command line differently, so each gets its own pure
escaping function, selected through a table keyed by ShellDialect. An
escaped argument re-parses to exactly the original string as one word: no
substitution, pipe, redirection or command chaining survives.

escape_arg() is not idempotent. Apply it exactly once per raw argument.
"""

import os
import re
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Sequence

from toolgate.resilience.errors import InvalidArgumentError


class ShellDialect(str, Enum):
    POSIX = "posix"
    CMD = "cmd"
    POWERSHELL = "powershell"


@dataclass(frozen=True)
class ShellConfig:
    """The interpreter that will re-parse the assembled command line"""
    dialect: ShellDialect
    interpreter: str

    def to_dict(self) -> Dict[str, str]:
        return {"dialect": self.dialect.value, "interpreter": self.interpreter}


def is_windows(platform_name: Optional[str] = None) -> bool:
    return (platform_name or sys.platform).startswith("win")


def get_shell_config(
    platform_name: Optional[str] = None,
    windows_shell: Optional[str] = None,
    posix_shell: str = "/bin/sh",
) -> ShellConfig:
    """Pick the dialect for this platform. Only Windows has a choice."""
    if not is_windows(platform_name):
        return ShellConfig(ShellDialect.POSIX, posix_shell)

    choice = windows_shell or "cmd"
    if choice == "powershell":
        return ShellConfig(ShellDialect.POWERSHELL, "powershell.exe")
    if choice == "cmd":
        return ShellConfig(ShellDialect.CMD, os.environ.get("COMSPEC", "cmd.exe"))
    raise InvalidArgumentError(
        f"windows_shell must be 'cmd' or 'powershell', got {windows_shell!r}"
    )


# Anything outside this set makes a POSIX argument need quoting
_POSIX_SAFE = re.compile(r"[A-Za-z0-9._/:=@-]+")
_CMD_SPECIAL = re.compile(r'[\s&<>|^"]')
_POWERSHELL_SPECIAL = re.compile(r"[\s&<>|;`$@\"'()\[\]{}]")

_BOOLEAN_OPERATOR = re.compile(r"\b(AND|OR|NOT)\b")
# Characters that stay special inside POSIX double quotes
_POSIX_DQUOTE_SPECIAL = re.compile(r'([\\"$`])')


def has_boolean_operators(query: str) -> bool:
    """GitHub search boolean keywords are upper-case only."""
    return bool(_BOOLEAN_OPERATOR.search(query))


def is_structured_query(query: str) -> bool:
    return has_boolean_operators(query) or '"' in query


def escape_posix(arg: str) -> str:
    if _POSIX_SAFE.fullmatch(arg):
        return arg
    return "'" + arg.replace("'", "'\"'\"'") + "'"


def escape_posix_query(arg: str) -> str:
    """
    Quote a search query so operators and quoted phrases reach the tool intact.

    Inside double quotes a POSIX shell still expands $, ` and \\, and a bare "
    would end the word; backslash-escaping exactly those four keeps the word
    literal.
    """
    if _POSIX_SAFE.fullmatch(arg):
        return arg
    if not is_structured_query(arg):
        return escape_posix(arg)
    return '"' + _POSIX_DQUOTE_SPECIAL.sub(r"\\\1", arg) + '"'


def escape_cmd(arg: str) -> str:
    if arg == "":
        return '""'
    if _CMD_SPECIAL.search(arg):
        return '"' + arg.replace('"', '""') + '"'
    return arg


def escape_powershell(arg: str) -> str:
    if arg == "":
        return "''"
    if _POWERSHELL_SPECIAL.search(arg):
        return "'" + arg.replace("'", "''") + "'"
    return arg


_ESCAPERS: Dict[ShellDialect, Callable[[str], str]] = {
    ShellDialect.POSIX: escape_posix,
    ShellDialect.CMD: escape_cmd,
    ShellDialect.POWERSHELL: escape_powershell,
}

_QUERY_ESCAPERS: Dict[ShellDialect, Callable[[str], str]] = {
    ShellDialect.POSIX: escape_posix_query,
    ShellDialect.CMD: escape_cmd,
    ShellDialect.POWERSHELL: escape_powershell,
}


def check_argument(arg: str) -> str:
    """Reject values no shell can carry as a literal word."""
    if not isinstance(arg, str):
        raise InvalidArgumentError(f"arguments must be strings, got {type(arg).__name__}")
    if "\x00" in arg:
        raise InvalidArgumentError("arguments must not contain NUL bytes")
    return arg


def escape_arg(arg: str, dialect: ShellDialect, is_search_query: bool = False) -> str:
    """
    Render one raw argument as a single shell-safe word.

    Args:
        arg: Raw argument, treated as opaque data
        dialect: Shell that will parse the command line
        is_search_query: Preserve boolean keywords and quoted phrases

    Returns:
        The escaped word
    """
    check_argument(arg)
    table = _QUERY_ESCAPERS if is_search_query else _ESCAPERS
    return table[ShellDialect(dialect)](arg)


def escape_executable(path: str, dialect: ShellDialect) -> str:
    """Escape the program word. PowerShell needs & to call a quoted path."""
    escaped = escape_arg(path, dialect)
    if ShellDialect(dialect) is ShellDialect.POWERSHELL and escaped != path:
        return f"& {escaped}"
    return escaped


def build_command_line(
    executable: str,
    command: str,
    args: Sequence[str],
    dialect: ShellDialect,
    search_query_index: Optional[int] = None,
) -> str:
    """Assemble `<executable> <command> <args...>` with every word escaped."""
    words = [escape_executable(executable, dialect), escape_arg(command, dialect)]
    words.extend(
        escape_arg(arg, dialect, is_search_query=(index == search_query_index))
        for index, arg in enumerate(args)
    )
    return " ".join(words)

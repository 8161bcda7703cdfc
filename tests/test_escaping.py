"""Tests for per-dialect shell argument escaping."""
import shlex
import subprocess
import sys

import pytest

from toolgate.resilience.errors import InvalidArgumentError
from toolgate.tools.escaping import (
    ShellDialect,
    build_command_line,
    check_argument,
    escape_arg,
    escape_cmd,
    escape_executable,
    escape_posix,
    escape_powershell,
    get_shell_config,
    has_boolean_operators,
    is_structured_query,
)
from toolgate.tools.registry import GH_SPEC

HOSTILE_ARGS = [
    "test; rm -rf /",
    "$(whoami)",
    "`id`",
    "a|b",
    "a && b",
    "x > /tmp/pwned",
    "it's",
    'say "hi"',
    "$HOME",
    "back\\slash",
    "*",
    "~",
    "!event",
    "new\nline",
    "trailing\n",
    "left-pad\n",
    "tab\there",
    "",
]


class TestPosixEscaping:
    """POSIX sh single-quote escaping."""

    def test_safe_words_unchanged(self):
        for word in ["left-pad", "react@18.2.0", "/usr/bin/npm", "--json", "key=value", "a.b:c"]:
            assert escape_posix(word) == word

    def test_metacharacters_single_quoted(self):
        assert escape_posix("test; rm -rf /") == "'test; rm -rf /'"

    def test_embedded_single_quote(self):
        assert escape_posix("it's") == "'it'\"'\"'s'"

    def test_empty_argument_is_explicit_word(self):
        assert escape_posix("") == "''"

    @pytest.mark.parametrize("arg", HOSTILE_ARGS)
    def test_reparses_to_single_word(self, arg):
        assert shlex.split(escape_arg(arg, ShellDialect.POSIX)) == [arg]

    def test_accepts_dialect_string(self):
        assert escape_arg("a b", "posix") == "'a b'"


@pytest.mark.skipif(sys.platform.startswith("win"), reason="requires /bin/sh")
class TestPosixShellRoundTrip:
    """Escaped words handed to a real sh come back byte-for-byte."""

    def _echo(self, word: str) -> bytes:
        line = "printf '%s\\0' " + word
        completed = subprocess.run(["/bin/sh", "-c", line], capture_output=True, check=True)
        return completed.stdout

    @pytest.mark.parametrize("arg", HOSTILE_ARGS)
    def test_plain_argument(self, arg):
        assert self._echo(escape_arg(arg, ShellDialect.POSIX)) == arg.encode() + b"\0"

    @pytest.mark.parametrize("query", [
        'react AND "state management"',
        'NOT "$(whoami)" OR `id`',
        'cost AND "$5 \\ off"',
        "hooks OR signals",
    ])
    def test_structured_query(self, query):
        escaped = escape_arg(query, ShellDialect.POSIX, is_search_query=True)
        assert self._echo(escaped) == query.encode() + b"\0"


class TestSearchQueryEscaping:
    """Structured search queries keep operators and quoted phrases."""

    def test_boolean_operators_are_upper_case_words(self):
        assert has_boolean_operators("react AND hooks")
        assert has_boolean_operators("NOT archived")
        assert not has_boolean_operators("react and hooks")
        assert not has_boolean_operators("ANDROID")

    def test_quoted_phrase_is_structured(self):
        assert is_structured_query('"state management"')
        assert not is_structured_query("state management")

    def test_structured_query_double_quoted(self):
        escaped = escape_arg('react AND "hooks"', ShellDialect.POSIX, is_search_query=True)
        assert escaped == '"react AND \\"hooks\\""'

    def test_unstructured_query_single_quoted(self):
        assert escape_arg("state management", ShellDialect.POSIX, is_search_query=True) == "'state management'"

    def test_safe_query_unchanged(self):
        assert escape_arg("react", ShellDialect.POSIX, is_search_query=True) == "react"

    def test_query_dollar_and_backtick_escaped(self):
        escaped = escape_arg("a OR $(id) `x`", ShellDialect.POSIX, is_search_query=True)
        assert escaped == '"a OR \\$(id) \\`x\\`"'

    def test_windows_dialects_use_plain_rules(self):
        query = 'react AND "hooks"'
        assert escape_arg(query, ShellDialect.CMD, is_search_query=True) == escape_cmd(query)
        assert escape_arg(query, ShellDialect.POWERSHELL, is_search_query=True) == escape_powershell(query)


class TestCmdEscaping:
    """cmd.exe double-quote escaping."""

    def test_plain_word_unchanged(self):
        assert escape_cmd("left-pad") == "left-pad"

    def test_whitespace_quoted(self):
        assert escape_cmd("a b") == '"a b"'

    @pytest.mark.parametrize("arg", ["a&b", "a<b", "a>b", "a|b", "a^b"])
    def test_operators_quoted(self, arg):
        assert escape_cmd(arg) == f'"{arg}"'

    def test_embedded_double_quote_doubled(self):
        assert escape_cmd('say "hi"') == '"say ""hi"""'

    def test_empty_argument(self):
        assert escape_cmd("") == '""'


class TestPowerShellEscaping:
    """PowerShell single-quote escaping."""

    def test_plain_word_unchanged(self):
        assert escape_powershell("left-pad") == "left-pad"

    @pytest.mark.parametrize("arg", ["a b", "$env:PATH", "a;b", "@splat", "(1)", "[x]", "{x}", "`n", 'q"'])
    def test_specials_single_quoted(self, arg):
        assert escape_powershell(arg) == f"'{arg}'"

    def test_embedded_single_quote_doubled(self):
        assert escape_powershell("it's") == "'it''s'"

    def test_empty_argument(self):
        assert escape_powershell("") == "''"


class TestArgumentChecks:
    """Values no shell can carry are rejected."""

    def test_non_string_rejected(self):
        with pytest.raises(InvalidArgumentError):
            check_argument(42)

    def test_nul_byte_rejected(self):
        with pytest.raises(InvalidArgumentError):
            escape_arg("a\x00b", ShellDialect.POSIX)


class TestCommandLine:
    """Assembly of the full command line."""

    def test_simple_view(self):
        assert build_command_line("npm", "view", ["left-pad"], ShellDialect.POSIX) == "npm view left-pad"

    def test_injection_attempt_is_one_word(self):
        line = build_command_line("npm", "view", ["test; rm -rf /"], ShellDialect.POSIX)
        assert line == "npm view 'test; rm -rf /'"
        assert shlex.split(line) == ["npm", "view", "test; rm -rf /"]

    def test_trailing_newline_does_not_end_command(self):
        line = build_command_line("npm", "view", ["left-pad\n", "touch", "/tmp/marker"], ShellDialect.POSIX)
        assert line == "npm view 'left-pad\n' touch /tmp/marker"
        assert shlex.split(line) == ["npm", "view", "left-pad\n", "touch", "/tmp/marker"]

    def test_trailing_newline_search_query(self):
        escaped = escape_arg("react\n", ShellDialect.POSIX, is_search_query=True)
        assert shlex.split(escaped) == ["react\n"]

    def test_gh_search_query_position(self):
        args = ["repos", 'react AND "hooks"', "--limit", "5"]
        index = GH_SPEC.search_query_index("search", args)
        assert index == 1
        line = build_command_line("gh", "search", args, ShellDialect.POSIX, search_query_index=index)
        assert line == 'gh search repos "react AND \\"hooks\\"" --limit 5'

    def test_gh_search_flag_in_query_position(self):
        assert GH_SPEC.search_query_index("search", ["repos", "--limit"]) is None
        assert GH_SPEC.search_query_index("api", ["repos", "x"]) is None
        assert GH_SPEC.search_query_index("search", ["repos"]) is None

    def test_powershell_quoted_executable_is_invoked(self):
        path = "C:\\Program Files\\nodejs\\npm.cmd"
        assert escape_executable(path, ShellDialect.POWERSHELL) == f"& '{path}'"
        assert escape_executable("npm", ShellDialect.POWERSHELL) == "npm"

    def test_cmd_quoted_executable(self):
        line = build_command_line("C:\\Program Files\\nodejs\\npm.cmd", "view", ["a b"], ShellDialect.CMD)
        assert line == '"C:\\Program Files\\nodejs\\npm.cmd" view "a b"'


class TestShellConfig:
    """Dialect selection per platform."""

    def test_posix_platforms(self):
        config = get_shell_config("linux")
        assert config.dialect is ShellDialect.POSIX
        assert config.interpreter == "/bin/sh"
        assert get_shell_config("darwin", posix_shell="/bin/dash").interpreter == "/bin/dash"

    def test_windows_default_is_cmd(self):
        assert get_shell_config("win32").dialect is ShellDialect.CMD

    def test_windows_powershell(self):
        config = get_shell_config("win32", windows_shell="powershell")
        assert config.dialect is ShellDialect.POWERSHELL
        assert config.interpreter == "powershell.exe"

    def test_windows_shell_ignored_off_windows(self):
        assert get_shell_config("linux", windows_shell="powershell").dialect is ShellDialect.POSIX

    def test_invalid_windows_shell(self):
        with pytest.raises(InvalidArgumentError):
            get_shell_config("win32", windows_shell="bash")

"""
Executable resolution for trusted tools.

Order, failing closed at the first stage that applies:
1. explicit override: absolute, no shell metacharacters, an existing file.
   A bad override is an error; later stages are NOT tried.
2. known per-platform install locations
3. Windows only: PATH walk skipping relative entries and the current
   directory, trying each PATHEXT extension
4. elsewhere: the bare name, left to the shell's own lookup

Naive shell spawning on Windows searches the current directory first, which
lets a planted npm.cmd hijack the call. Stage 3 exists to close that.
"""

import logging
import ntpath
import os
import posixpath
import re
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Mapping, Optional

from toolgate.resilience.errors import ExecutableNotFoundError, InvalidExecutablePathError
from toolgate.tools.registry import ToolSpec

logger = logging.getLogger(__name__)

_SHELL_METACHARACTERS = re.compile(r"[;&|`$<>(){}\[\]*?!'\"%^\r\n\x00]")
_DEFAULT_PATHEXT = ".COM;.EXE;.BAT;.CMD"


class Provenance(str, Enum):
    OVERRIDE = "override"
    KNOWN_LOCATION = "known-location"
    PATH_SEARCH = "path-search"
    SHELL_LOOKUP = "shell-lookup"


@dataclass(frozen=True)
class ResolvedExecutable:
    path: str
    provenance: Provenance


class ExecutableResolver:
    """
    Resolves the binary for a ToolSpec.

    Platform, environment, working directory and the file test are injectable
    so the Windows path walk can be exercised anywhere.
    """

    def __init__(
        self,
        platform_name: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
        is_file: Callable[[str], bool] = os.path.isfile,
        getcwd: Callable[[], str] = os.getcwd,
    ):
        self.platform_name = platform_name or sys.platform
        self._environ = environ
        self._is_file = is_file
        self._getcwd = getcwd

    @property
    def is_windows(self) -> bool:
        return self.platform_name.startswith("win")

    @property
    def environ(self) -> Mapping[str, str]:
        return os.environ if self._environ is None else self._environ

    @property
    def _path(self):
        return ntpath if self.is_windows else posixpath

    def validate_override(self, path: str) -> str:
        """Return ``path`` if it is a safe explicit override, else raise."""
        if not isinstance(path, str) or not path:
            raise InvalidExecutablePathError("override must be a non-empty string")
        if _SHELL_METACHARACTERS.search(path):
            raise InvalidExecutablePathError(
                f"override {path!r} contains shell metacharacters", path=path
            )
        if not self._path.isabs(path):
            raise InvalidExecutablePathError(
                f"override {path!r} is not an absolute path", path=path
            )
        if not self._is_file(path):
            raise InvalidExecutablePathError(
                f"override {path!r} is not an existing regular file", path=path
            )
        return path

    def resolve(self, spec: ToolSpec, override: Optional[str] = None) -> ResolvedExecutable:
        """
        Determine the concrete binary for ``spec``.

        Raises:
            InvalidExecutablePathError: the override failed validation
            ExecutableNotFoundError: Windows and no candidate exists
        """
        if override:
            return ResolvedExecutable(self.validate_override(override), Provenance.OVERRIDE)

        for candidate in self.known_locations(spec):
            if self._is_file(candidate):
                logger.debug(f"Resolved {spec.name} at known location {candidate}")
                return ResolvedExecutable(candidate, Provenance.KNOWN_LOCATION)

        if self.is_windows:
            found = self.search_path(spec.executable)
            if found:
                logger.debug(f"Resolved {spec.name} on PATH at {found}")
                return ResolvedExecutable(found, Provenance.PATH_SEARCH)
            raise ExecutableNotFoundError(
                f"{spec.display_name} executable {spec.executable!r} was not found in known locations or on PATH",
                tool=spec.name,
            )

        return ResolvedExecutable(spec.executable, Provenance.SHELL_LOOKUP)

    def known_locations(self, spec: ToolSpec) -> List[str]:
        if self.is_windows:
            key = "win32"
        elif self.platform_name == "darwin":
            key = "darwin"
        else:
            key = "linux"

        locations = []
        for template in spec.known_locations.get(key, ()):
            try:
                locations.append(template.format_map(self.environ))
            except KeyError:
                # Variable not set on this machine
                continue
        return locations

    def search_path(self, name: str) -> Optional[str]:
        """Windows PATH walk that never looks in the current directory."""
        cwd = self._normalize(self._getcwd())
        extensions = [
            ext for ext in self.environ.get("PATHEXT", _DEFAULT_PATHEXT).split(";") if ext
        ]

        for entry in self.environ.get("PATH", "").split(ntpath.pathsep):
            entry = entry.strip().strip('"')
            if not entry or entry == ".":
                continue
            if not ntpath.isabs(entry):
                continue
            if self._normalize(entry) == cwd:
                continue
            for ext in extensions:
                candidate = ntpath.join(entry, name + ext.lower())
                if self._is_file(candidate):
                    return candidate
        return None

    @staticmethod
    def _normalize(path: str) -> str:
        return ntpath.normcase(ntpath.normpath(path))

"""Pytest configuration and fixtures for toolgate tests."""
import asyncio
import logging
import os
import sys
import time
from logging.handlers import RotatingFileHandler

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from toolgate.config import Settings
from toolgate.resilience.result_cache import ResultCache
from toolgate.tools.executor import CommandExecutor
from toolgate.tools.models import ExecutionResult
from toolgate.tools.resolver import ExecutableResolver


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeRunner:
    """
    Stand-in for ProcessRunner that never spawns anything.

    Records every command line it is asked to run and the wall-clock interval
    each call occupied, so tests can check ordering and overlap.
    """

    def __init__(self, delay: float = 0.0, result_factory=None):
        self.delay = delay
        self.result_factory = result_factory
        self.calls = []
        self.intervals = []
        self.active = 0
        self.max_active = 0

    @property
    def spawn_count(self) -> int:
        return len(self.calls)

    async def run(self, command_line, shell, spec, timeout, cwd=None, env=None, max_output_bytes=None):
        self.calls.append({
            "command_line": command_line,
            "shell": shell,
            "tool": spec.name,
            "timeout": timeout,
            "cwd": cwd,
            "env": env,
        })
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        start = time.monotonic()
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
            self.intervals.append((start, time.monotonic()))

        if self.result_factory is not None:
            return self.result_factory(command_line, spec)
        return ExecutionResult.success({"command_line": command_line}, tool=spec.name)


@pytest.fixture(autouse=True)
def restore_logging():
    """Undo any setup_logging() call made by a test."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if type(handler) in (logging.StreamHandler, RotatingFileHandler):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


@pytest.fixture
def settings():
    """Settings isolated from any local .env file."""
    return Settings(_env_file=None, NPM_EXECUTABLE=None, GH_EXECUTABLE=None)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ResultCache(check_period=60.0, clock=clock)


@pytest.fixture
def linux_resolver():
    """Resolver that finds nothing on disk and falls back to the shell's lookup."""
    return ExecutableResolver(platform_name="linux", environ={}, is_file=lambda path: False)


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def make_executor(settings, linux_resolver, cache):
    """Build a CommandExecutor around a fake runner."""

    def _make(runner=None, **kwargs):
        kwargs.setdefault("settings", settings)
        kwargs.setdefault("resolver", linux_resolver)
        kwargs.setdefault("cache", cache)
        kwargs.setdefault("platform_name", "linux")
        return CommandExecutor(runner=runner or FakeRunner(), **kwargs)

    return _make

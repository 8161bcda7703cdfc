"""Tests for the toolgate command-line interface."""
import json

import pytest

from conftest import FakeRunner
from toolgate.cli import ToolGateCLI


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def cli(make_executor, runner):
    return ToolGateCLI(executor=make_executor(runner))


def test_run_success(cli, runner, capsys):
    assert cli.run(["run", "npm", "view", "left-pad", "--json"]) == 0

    output = json.loads(capsys.readouterr().out)
    assert output["is_error"] is False
    assert output["payload"] == {"command_line": "npm view left-pad --json"}
    assert runner.calls[0]["command_line"] == "npm view left-pad --json"


def test_run_rejected(cli, runner, capsys):
    assert cli.run(["run", "npm", "install", "left-pad"]) == 1

    output = json.loads(capsys.readouterr().out)
    assert output["error_type"] == "RejectedCommand"
    assert runner.spawn_count == 0


def test_run_options(cli, runner, tmp_path):
    argv = ["run", "--timeout", "3", "--cwd", str(tmp_path), "--cache", "gh", "api", "user"]
    assert cli.run(argv) == 0
    assert cli.run(argv) == 0

    assert runner.spawn_count == 1
    assert runner.calls[0]["timeout"] == 3.0
    assert runner.calls[0]["cwd"] == str(tmp_path)


def test_allowed_single_tool(cli, capsys):
    assert cli.run(["allowed", "npm"]) == 0
    assert json.loads(capsys.readouterr().out) == {"npm": ["config", "ping", "search", "view", "whoami"]}


def test_allowed_all_tools(cli, capsys):
    assert cli.run(["allowed"]) == 0
    assert set(json.loads(capsys.readouterr().out)) == {"npm", "gh"}


def test_allowed_unknown_tool(cli, capsys):
    assert cli.run(["allowed", "yarn"]) == 1
    assert "not registered" in capsys.readouterr().err


def test_resolve(cli, capsys):
    assert cli.run(["resolve", "gh"]) == 0
    assert json.loads(capsys.readouterr().out) == {"path": "gh", "provenance": "shell-lookup"}


def test_no_command(cli, capsys):
    assert cli.run([]) == 1

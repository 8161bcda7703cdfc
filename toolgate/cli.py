"""toolgate CLI - Command-line interface."""

import argparse
import asyncio
import json
import sys

from toolgate.config import get_settings
from toolgate.observability import setup_logging
from toolgate.resilience.errors import ToolGateError
from toolgate.tools.executor import CommandExecutor
from toolgate.tools.registry import CommandValidator


class ToolGateCLI:
    """Command-line interface for toolgate."""

    def __init__(self, executor: CommandExecutor | None = None):
        self.parser = self._create_parser()
        self._executor = executor

    @property
    def executor(self) -> CommandExecutor:
        if self._executor is None:
            self._executor = CommandExecutor()
        return self._executor

    def _create_parser(self):
        parser = argparse.ArgumentParser(prog="toolgate", description="Guarded npm / gh execution")
        parser.add_argument("--log-level", help="Override LOG_LEVEL")
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # Run command
        run_parser = subparsers.add_parser("run", help="Run an allow-listed tool subcommand")
        run_parser.add_argument("tool", help="npm or gh")
        run_parser.add_argument("subcommand", help="Allow-listed subcommand")
        run_parser.add_argument("args", nargs=argparse.REMAINDER, help="Arguments, passed as opaque data")
        run_parser.add_argument("--timeout", type=float, help="Timeout in seconds")
        run_parser.add_argument("--cwd", help="Working directory")
        run_parser.add_argument("--cache", action="store_true", help="Memoize successful results")
        run_parser.add_argument("--windows-shell", choices=["cmd", "powershell"], help="Windows interpreter")

        # Allowed command
        allowed_parser = subparsers.add_parser("allowed", help="Show allow-listed subcommands")
        allowed_parser.add_argument("tool", nargs="?", help="Limit to one tool")

        # Resolve command
        resolve_parser = subparsers.add_parser("resolve", help="Show which executable would run")
        resolve_parser.add_argument("tool", help="npm or gh")

        return parser

    def run(self, args=None):
        parsed = self.parser.parse_args(args)

        settings = get_settings()
        setup_logging(level=parsed.log_level or settings.LOG_LEVEL, json_format=settings.LOG_JSON)

        if not parsed.command:
            self.parser.print_help()
            return 1

        handler = getattr(self, f"cmd_{parsed.command}", None)
        if handler:
            return handler(parsed)
        else:
            print(f"Unknown command: {parsed.command}")
            return 1

    def cmd_run(self, args):
        options = {"cache": args.cache}
        if args.timeout is not None:
            options["timeout"] = args.timeout
        if args.cwd:
            options["cwd"] = args.cwd
        if args.windows_shell:
            options["windows_shell"] = args.windows_shell

        result = asyncio.run(self.executor.execute(args.tool, args.subcommand, args.args, options))
        print(json.dumps(result.to_dict(), indent=2, default=str))
        return 1 if result.is_error else 0

    def cmd_allowed(self, args):
        validator = CommandValidator()
        try:
            specs = [validator.get_spec(args.tool)] if args.tool else validator.list_tools()
        except ToolGateError as e:
            print(e.message, file=sys.stderr)
            return 1
        print(json.dumps({spec.name: sorted(spec.allowed_commands) for spec in specs}, indent=2))
        return 0

    def cmd_resolve(self, args):
        executor = self.executor
        try:
            spec = executor.validator.get_spec(args.tool)
            override = getattr(executor.settings, spec.executable_setting, None)
            resolved = executor.resolver.resolve(spec, override=override)
        except ToolGateError as e:
            print(e.message, file=sys.stderr)
            return 1
        print(json.dumps({"path": resolved.path, "provenance": resolved.provenance.value}, indent=2))
        return 0


def main():
    """Main entry point for CLI."""
    cli = ToolGateCLI()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()

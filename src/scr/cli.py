from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from functools import partial
from pathlib import Path
from typing import Any, Never, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.pretty import Pretty
from rich.table import Table
from rich_argparse import RawTextRichHelpFormatter
from safe_code_run import LocalEngine, SandboxPolicy, run_code, to_envelope, tool_definition, validate
from safe_code_run.transport import serve

_CONSOLE = Console(no_color=False)
_ERR_CONSOLE = Console(stderr=True)


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles.

    Example:
        ```python
        parser = argparse.ArgumentParser(formatter_class=_CLIHelpFormatter)
        ```
    """

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich.

    Example:
        ```python
        parser = _RichArgumentParser(prog="python -m scr")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {message}", border_style="red"))
        self.print_help()
        raise SystemExit(2)


def _add_code_arguments(command: argparse.ArgumentParser) -> None:
    """Attach the shared code source options to a subcommand.

    Example:
        ```python
        _add_code_arguments(run_cmd)
        ```
    """
    command.add_argument(
        "code",
        nargs="?",
        help="Code to execute. Omit and use --file to read it from disk.",
    )
    command.add_argument(
        "--file",
        help="Read the code from this file ('-' reads stdin).",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for safe-code-run.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m scr",
        description=(
            "safe-code-run CLI\n"
            "Run untrusted Python snippets against an explicit capability table.\n"
            "Each run uses a fresh worker process that is killed at the timeout."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m scr run \"set_result(x + y)\" --input '{\"x\": 10, \"y\": 5}'\n"
            "  python -m scr run --file snippet.py --timeout-ms 2000\n"
            "  python -m scr check \"print('hi')\"\n"
            "  python -m scr serve < messages.jsonl\n"
            "  python -m scr tool"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "--policy-file",
        help=(
            "Load the sandbox policy from a TOML file.\n"
            "Example: --policy-file ./policy.toml"
        ),
    )
    parser.add_argument(
        "--python",
        help="Interpreter used for worker processes (default: the current one).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log each execution phase to stderr.",
    )

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    run_cmd = sub.add_parser(
        "run",
        help="Execute code in the sandbox.",
        description=(
            "Validate and execute code in a fresh worker process.\n"
            "Prints the result, the captured output calls and the elapsed time."
        ),
        epilog=(
            "Examples:\n"
            "  python -m scr run \"print('hello', 'world')\\nset_result(42)\"\n"
            "  python -m scr run --file job.py --input '{\"rows\": [1, 2]}' --json"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    _add_code_arguments(run_cmd)
    run_cmd.add_argument(
        "--input",
        default="{}",
        help="JSON object whose keys become variables in the code (default: {}).",
    )
    run_cmd.add_argument(
        "--timeout-ms",
        type=int,
        help="Execution budget in milliseconds, 100..30000 (default: policy value).",
    )
    run_cmd.add_argument(
        "--allow-network",
        action="store_true",
        help="Expose fetch() to the code.",
    )
    run_cmd.add_argument(
        "--allow-timers",
        action="store_true",
        help="Expose sleep() to the code.",
    )
    run_cmd.add_argument(
        "--json",
        action="store_true",
        help="Print the transport envelope as JSON instead of rich panels.",
    )

    check_cmd = sub.add_parser(
        "check",
        help="Run only the static safety checks.",
        description="Report whether code would be allowed to run, without running it.",
        formatter_class=_HELP_FORMATTER,
    )
    _add_code_arguments(check_cmd)

    sub.add_parser(
        "serve",
        help="Answer JSON-lines execute messages on stdin.",
        description=(
            "Read one message per line from stdin and write one reply per line.\n"
            "Message: {\"type\": \"execute\", \"id\": \"1\", \"payload\": {\"code\": \"...\"}}"
        ),
        formatter_class=_HELP_FORMATTER,
    )

    sub.add_parser(
        "tool",
        help="Print the tool definition for LLM tool registration.",
        description="Print the tool name, description and JSON input schema.",
        formatter_class=_HELP_FORMATTER,
    )

    return parser


def build_engine(args: argparse.Namespace) -> LocalEngine:
    """Create a LocalEngine from global CLI flags.

    Example:
        ```python
        engine = build_engine(args)
        ```
    """
    return LocalEngine(python_executable=args.python)


def build_policy(args: argparse.Namespace) -> SandboxPolicy:
    """Create the effective policy from the policy file and run flags.

    Example:
        ```python
        policy = build_policy(args)
        ```
    """
    base = SandboxPolicy.from_file(args.policy_file) if args.policy_file else SandboxPolicy()
    return dataclasses.replace(
        base,
        network=base.network or bool(getattr(args, "allow_network", False)),
        timers=base.timers or bool(getattr(args, "allow_timers", False)),
        config_path=None,
    )


def _configure_logging(verbose: bool) -> None:
    """Send library logs to stderr through Rich.

    Example:
        ```python
        _configure_logging(verbose=True)
        ```
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=_ERR_CONSOLE, show_path=False)],
        force=True,
    )


def _read_code(args: argparse.Namespace, parser: argparse.ArgumentParser) -> str:
    """Return code from the positional argument or --file.

    Example:
        ```python
        code = _read_code(args, parser)
        ```
    """
    if args.code is not None and args.file is not None:
        parser.error("Provide code either as an argument or with --file, not both")
    if args.file == "-":
        return sys.stdin.read()
    if args.file is not None:
        return Path(args.file).read_text(encoding="utf-8")
    if args.code is None:
        parser.error("No code given; pass it as an argument or with --file")
    return args.code


def _print_logs(logs: Sequence[Sequence[Any]]) -> None:
    """Render captured output calls in a rich table.

    Example:
        ```python
        _print_logs([("hello", "world")])
        ```
    """
    table = Table(title="Output")
    table.add_column("#", style="cyan")
    table.add_column("Arguments")
    for index, entry in enumerate(logs, start=1):
        table.add_row(str(index), Pretty(list(entry)))
    _CONSOLE.print(table)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `scr` CLI command handler.

    Example:
        ```python
        code = main(["run", "set_result(1 + 1)"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    _configure_logging(args.verbose)

    if args.command == "tool":
        _CONSOLE.print_json(json.dumps(tool_definition()))
        return 0

    if args.command == "check":
        code = _read_code(args, parser)
        policy = build_policy(args)
        verdict = validate(code, policy.forbidden_keywords)
        if verdict.allowed:
            _CONSOLE.print(Panel.fit("Allowed", style="bold green"))
            return 0
        _CONSOLE.print(f"[bold red]Rejected:[/bold red] {escape(verdict.reason)}", soft_wrap=True)
        return 1

    if args.command == "serve":
        serve(sys.stdin, sys.stdout, engine=build_engine(args), policy=build_policy(args))
        return 0

    if args.command == "run":
        code = _read_code(args, parser)
        try:
            input_data = json.loads(args.input)
        except json.JSONDecodeError as exc:
            parser.error(f"--input is not valid JSON: {exc}")
        if not isinstance(input_data, dict):
            parser.error("--input must be a JSON object")
        try:
            outcome = run_code(
                code,
                input_data,
                args.timeout_ms,
                engine=build_engine(args),
                policy=build_policy(args),
            )
        except (TypeError, ValueError) as exc:
            parser.error(str(exc))
        if args.json:
            _CONSOLE.print_json(json.dumps(to_envelope(outcome), default=str))
            return 0 if outcome.ok else 1
        if outcome.logs:
            _print_logs(outcome.logs)
        if outcome.ok:
            _CONSOLE.print(
                Panel.fit(
                    Pretty(outcome.result),
                    title=f"Result ({outcome.elapsed_ms}ms)",
                    border_style="green",
                )
            )
            return 0
        _CONSOLE.print(
            f"[bold red]Execution failed:[/bold red] {escape(outcome.error or 'unknown error')}",
            soft_wrap=True,
        )
        return 1

    parser.error("Unhandled command")

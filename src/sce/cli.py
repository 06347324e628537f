from __future__ import annotations

import argparse
import sys
from dataclasses import asdict
from functools import partial
from pathlib import Path
from typing import Any, Never, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.pretty import Pretty
from rich.table import Table
from rich_argparse import RawTextRichHelpFormatter
from safe_cpp_engine import EngineConfig, EngineService, EngineStartupError, configure_logging
from safe_cpp_engine.execution import DockerClient
from safe_cpp_engine.parsing import get_ast_statistics
from safe_cpp_engine.service import execution_payload

_CONSOLE = Console(no_color=False)

_SEVERITY_STYLES = {"high": "bold red", "medium": "yellow", "low": "cyan"}


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


_HELP_FORMATTER = partial(_CLIHelpFormatter, max_help_position=34, width=120)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich.

    Example:
        ```python
        parser = _RichArgumentParser(prog="python -m sce")
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


def _add_compile_flags(cmd: argparse.ArgumentParser) -> None:
    """Attach the toolchain options shared by `compile` and `run`.

    Example:
        ```python
        _add_compile_flags(sub.add_parser("compile"))
        ```
    """
    cmd.add_argument("source", help="C++ source file, or '-' to read from stdin.")
    cmd.add_argument("--compiler", help="Compiler name from the config (g++ or clang++).")
    cmd.add_argument("--std", dest="standard", help="Language standard, e.g. c++17.")
    cmd.add_argument("-O", "--optimization", help="Optimization level: O0 O1 O2 O3 Os Og Ofast.")
    cmd.add_argument("-g", "--debug", action="store_true", help="Emit debug information.")
    cmd.add_argument(
        "--flag",
        dest="flags",
        action="append",
        default=[],
        help="Extra compiler flag (repeatable). Example: --flag=-DNDEBUG",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the `sce` CLI parser.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m sce",
        description=(
            "safe-cpp-engine CLI\n"
            "Compile, run, parse and analyze untrusted C++ with bounded resources."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m sce run hello.cpp\n"
            "  python -m sce run solve.cpp --stdin-file input.txt --timeout 2\n"
            "  python -m sce analyze main.cpp --min-severity medium\n"
            "  python -m sce --json parse main.cpp --tokens\n"
            "  python -m sce containers cleanup"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument("--config", help="Path to a TOML file overlaid on the bundled defaults.")
    parser.add_argument("--json", action="store_true", help="Print results as JSON.")
    parser.add_argument("--log-level", help="Log level (default: from config).")

    sub = parser.add_subparsers(dest="command", required=True, parser_class=_RichArgumentParser)

    compile_cmd = sub.add_parser(
        "compile",
        help="Compile a source file and show diagnostics.",
        formatter_class=_HELP_FORMATTER,
    )
    _add_compile_flags(compile_cmd)

    run_cmd = sub.add_parser(
        "run",
        help="Compile and run a source file.",
        description=(
            "Compile and run a program under the configured isolation.\n"
            "Output is capped and the run is killed at the deadline."
        ),
        formatter_class=_HELP_FORMATTER,
    )
    _add_compile_flags(run_cmd)
    stdin_group = run_cmd.add_mutually_exclusive_group()
    stdin_group.add_argument("--stdin", dest="stdin_text", help="Text fed to the program's stdin.")
    stdin_group.add_argument("--stdin-file", help="File fed to the program's stdin.")
    run_cmd.add_argument("--timeout", type=int, dest="timeout_seconds", help="Wall-clock limit in seconds.")
    run_cmd.add_argument("--memory", type=int, dest="memory_limit_mb", help="Memory limit in MB.")
    run_cmd.add_argument("--isolation", choices=["isolated", "direct"], help="Override the isolation mode.")

    parse_cmd = sub.add_parser("parse", help="Parse a source file into a syntax tree.", formatter_class=_HELP_FORMATTER)
    parse_cmd.add_argument("source")
    parse_cmd.add_argument("--tokens", action="store_true", help="Include the token stream.")

    check_cmd = sub.add_parser("check", help="Validate syntax only.", formatter_class=_HELP_FORMATTER)
    check_cmd.add_argument("source")

    analyze_cmd = sub.add_parser(
        "analyze",
        help="Run the static-analysis rules and score the code.",
        formatter_class=_HELP_FORMATTER,
    )
    analyze_cmd.add_argument("source")
    analyze_cmd.add_argument("--min-severity", choices=["low", "medium", "high"], default="low")
    analyze_cmd.add_argument("--disable-category", action="append", default=[], dest="disabled_categories")
    analyze_cmd.add_argument("--disable-rule", action="append", default=[], dest="disabled_rules")

    sub.add_parser("rules", help="List the analysis rule catalog.", formatter_class=_HELP_FORMATTER)
    sub.add_parser(
        "selftest",
        help="Run the start-up checks: toolchain, sandbox and hello-world.",
        formatter_class=_HELP_FORMATTER,
    )

    containers_cmd = sub.add_parser(
        "containers",
        help="Inspect or clean managed sandbox containers.",
        description="Operate only on containers labeled as managed by safe-cpp-engine.",
        formatter_class=_HELP_FORMATTER,
    )
    containers_sub = containers_cmd.add_subparsers(dest="action", required=True, parser_class=_RichArgumentParser)
    containers_sub.add_parser("list", help="List managed containers.", formatter_class=_HELP_FORMATTER)
    containers_sub.add_parser("cleanup", help="Remove every managed container.", formatter_class=_HELP_FORMATTER)
    return parser


def build_service(config: EngineConfig) -> EngineService:
    """Create the engine service for one CLI invocation.

    Example:
        ```python
        service = build_service(EngineConfig.load())
        ```
    """
    return EngineService(config)


def build_docker_client(config: EngineConfig) -> DockerClient:
    """Create a Docker client from the execution settings.

    Example:
        ```python
        client = build_docker_client(EngineConfig.load())
        ```
    """
    execution = config.execution
    return DockerClient(
        image=execution.docker_image,
        docker_context=execution.docker_context,
        command_timeout_seconds=execution.docker_command_timeout_seconds,
        pull_timeout_seconds=execution.docker_pull_timeout_seconds,
    )


def _read_source(path: str) -> str:
    """Read a source file, or stdin for '-'.

    Example:
        ```python
        source = _read_source("main.cpp")
        ```
    """
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def _compile_options(args: argparse.Namespace) -> dict[str, Any]:
    """Collect toolchain options given on the command line.

    Example:
        ```python
        options = _compile_options(args)
        ```
    """
    options: dict[str, Any] = {"debug": args.debug, "flags": list(args.flags)}
    for key in ("compiler", "standard", "optimization"):
        value = getattr(args, key)
        if value is not None:
            options[key] = value
    return options


def _fail(message: str) -> int:
    """Print an error panel and return the failure exit code.

    Example:
        ```python
        return _fail("No such file: main.cpp")
        ```
    """
    _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {message}", border_style="red"))
    return 1


def _print_diagnostics(title: str, lines: Sequence[str], style: str) -> None:
    """Render compiler or parser diagnostics in a panel.

    Example:
        ```python
        _print_diagnostics("Errors", ["main.cpp:1:1: error: x"], "red")
        ```
    """
    if lines:
        _CONSOLE.print(Panel("\n".join(lines), title=title, border_style=style))


def _cmd_compile(service: EngineService, args: argparse.Namespace) -> int:
    """Handle `sce compile`.

    Example:
        ```python
        code = _cmd_compile(service, args)
        ```
    """
    result = service.compile(_read_source(args.source), _compile_options(args))
    if args.json:
        _CONSOLE.print_json(data=asdict(result), default=str)
        return 0 if result.success else 1
    _print_diagnostics("Warnings", result.warnings, "yellow")
    _print_diagnostics("Errors", result.errors, "red")
    if result.success:
        _CONSOLE.print(Panel.fit(f"Compiled in {result.elapsed_ms:.0f} ms", style="bold green"))
        return 0
    return _fail("Compilation timed out" if result.timed_out else "Compilation failed")


def _cmd_run(service: EngineService, args: argparse.Namespace) -> int:
    """Handle `sce run`.

    Example:
        ```python
        code = _cmd_run(service, args)
        ```
    """
    options = _compile_options(args)
    for key in ("timeout_seconds", "memory_limit_mb", "isolation"):
        value = getattr(args, key)
        if value is not None:
            options[key] = value
    stdin = args.stdin_text
    if args.stdin_file is not None:
        stdin = Path(args.stdin_file).read_text(encoding="utf-8")
    result = service.execute(_read_source(args.source), options, stdin=stdin)
    if args.json:
        _CONSOLE.print_json(data=execution_payload(result), default=str)
        return 0 if result.success else 1

    table = Table(title="Execution")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("status", result.status.value)
    table.add_row("exit code", str(result.exit_code))
    table.add_row("isolation", str(result.isolation))
    table.add_row("elapsed", f"{result.elapsed_ms:.0f} ms")
    table.add_row("peak memory", "n/a" if result.peak_memory_kb is None else f"{result.peak_memory_kb} KB")
    table.add_row("truncated", str(result.truncated))
    _CONSOLE.print(table)
    if result.stdout:
        _CONSOLE.print(Panel(result.stdout, title="stdout", border_style="green"), markup=False)
    if result.stderr:
        _CONSOLE.print(Panel(result.stderr, title="stderr", border_style="yellow"), markup=False)
    if result.error:
        return _fail(result.error)
    return 0 if result.success else 1


def _cmd_parse(service: EngineService, args: argparse.Namespace) -> int:
    """Handle `sce parse`.

    Example:
        ```python
        code = _cmd_parse(service, args)
        ```
    """
    result = service.parse(_read_source(args.source), include_tokens=args.tokens)
    if args.json:
        _CONSOLE.print_json(data=asdict(result), default=str)
        return 0 if result.success else 1
    _print_diagnostics("Diagnostics", [str(diag) for diag in result.diagnostics], "yellow")
    if not result.success or result.tree is None:
        return _fail(result.error or "Parse failed")
    stats = get_ast_statistics(result.tree)
    table = Table(title="Syntax Tree")
    table.add_column("Kind", style="cyan")
    table.add_column("Count", justify="right")
    for key, value in stats.to_dict().items():
        table.add_row(key, str(value))
    if result.tokens is not None:
        table.add_row("tokens", str(len(result.tokens)))
    _CONSOLE.print(table)
    return 0


def _cmd_check(service: EngineService, args: argparse.Namespace) -> int:
    """Handle `sce check`.

    Example:
        ```python
        code = _cmd_check(service, args)
        ```
    """
    valid = service.validate_syntax(_read_source(args.source))
    if args.json:
        _CONSOLE.print_json(data={"valid": valid})
    elif valid:
        _CONSOLE.print(Panel.fit("Syntax OK", style="bold green"))
    else:
        _CONSOLE.print(Panel.fit("Syntax errors found", style="bold red"))
    return 0 if valid else 1


def _cmd_analyze(service: EngineService, args: argparse.Namespace) -> int:
    """Handle `sce analyze`.

    Example:
        ```python
        code = _cmd_analyze(service, args)
        ```
    """
    options = {
        "min_severity": args.min_severity,
        "disabled_categories": args.disabled_categories,
        "disabled_rules": args.disabled_rules,
    }
    result = service.analyze(_read_source(args.source), options)
    if args.json:
        _CONSOLE.print_json(data=result.to_dict(), default=str)
        return 0 if result.success else 1
    if not result.success:
        return _fail(result.error or "Analysis failed")
    table = Table(title="Issues")
    table.add_column("Line", justify="right")
    table.add_column("Severity")
    table.add_column("Rule", style="magenta")
    table.add_column("Message")
    for issue in result.issues:
        severity = issue.severity.value
        table.add_row(str(issue.line), f"[{_SEVERITY_STYLES[severity]}]{severity}[/]", issue.rule_id, issue.message)
    _CONSOLE.print(table)
    for suggestion in result.suggestions:
        _CONSOLE.print(Panel(suggestion.description, title=suggestion.category.value, border_style="blue"))
    _CONSOLE.print(
        Panel.fit(
            f"Score {result.score:.1f}  cyclomatic {result.complexity.cyclomatic_complexity}  "
            f"maintainability {result.complexity.maintainability_index:.1f}",
            style="bold green",
        )
    )
    return 0


def _cmd_rules(service: EngineService, args: argparse.Namespace) -> int:
    """Handle `sce rules`.

    Example:
        ```python
        code = _cmd_rules(service, args)
        ```
    """
    rows = [
        {"id": rule.id, "severity": rule.severity.value, "category": rule.category.value, "description": rule.description}
        for rule in service.analyzer.rules
    ]
    if args.json:
        _CONSOLE.print_json(data=rows)
        return 0
    table = Table(title="Analysis Rules")
    table.add_column("ID", style="cyan")
    table.add_column("Severity")
    table.add_column("Category", style="magenta")
    table.add_column("Description")
    for row in rows:
        table.add_row(row["id"], row["severity"], row["category"], row["description"])
    _CONSOLE.print(table)
    return 0


def _cmd_selftest(service: EngineService, args: argparse.Namespace) -> int:
    """Handle `sce selftest`.

    Example:
        ```python
        code = _cmd_selftest(service, args)
        ```
    """
    try:
        service.start()
    except EngineStartupError as exc:
        return _fail(str(exc))
    _CONSOLE.print(Panel.fit("Self-test passed", style="bold green"))
    return 0


def _cmd_containers(config: EngineConfig, args: argparse.Namespace) -> int:
    """Handle `sce containers list|cleanup`.

    Example:
        ```python
        code = _cmd_containers(config, args)
        ```
    """
    client = build_docker_client(config)
    if args.action == "list":
        rows = [asdict(info) for info in client.list_containers(all_states=True)]
        if args.json:
            _CONSOLE.print_json(data=rows)
            return 0
        table = Table(title="Managed Containers")
        table.add_column("ID", style="cyan")
        table.add_column("Name", style="magenta")
        table.add_column("Image")
        table.add_column("State")
        table.add_column("Status")
        for row in rows:
            table.add_row(row["id"], row["name"], row["image"], row["state"], row["status"])
        _CONSOLE.print(table)
        return 0
    summary = asdict(client.cleanup_stale())
    if args.json:
        _CONSOLE.print_json(data=summary)
    else:
        _CONSOLE.print(Panel.fit(Pretty(summary), title="Cleanup Summary", border_style="green"))
    return 0


_HANDLERS = {
    "compile": _cmd_compile,
    "run": _cmd_run,
    "parse": _cmd_parse,
    "check": _cmd_check,
    "analyze": _cmd_analyze,
    "rules": _cmd_rules,
    "selftest": _cmd_selftest,
}


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `sce` CLI command handler.

    Example:
        ```python
        code = main(["analyze", "main.cpp"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    try:
        config = EngineConfig.load(args.config)
    except (OSError, ValueError) as exc:
        return _fail(f"Invalid configuration: {exc}")
    configure_logging(args.log_level or config.log_level)

    if args.command == "containers":
        return _cmd_containers(config, args)
    service = build_service(config)
    try:
        return _HANDLERS[args.command](service, args)
    except OSError as exc:
        return _fail(str(exc))
    except ValueError as exc:
        return _fail(f"Invalid options: {exc}")

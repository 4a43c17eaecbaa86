"""
Root Typer application for the procspine CLI.

Commands map one-to-one onto the library entry points, so the CLI doubles as
a way to rehearse an invocation (``--dry-run``) or see exactly how it would
be resolved (``--verbose``) before scripting it.
"""

from __future__ import annotations

from typing import Any

import typer
from rich.console import Console
from rich.markup import escape
from typer import Typer

from procspine.core.errors import (
    ConfigError,
    ExecutableNotFoundError,
    ExecutionFailedError,
    ProcSpineError,
    SpawnError,
)
from procspine.core.logging import configure_logging
from procspine.core.settings import get_settings
from procspine.execution.dispatcher import get_default_dispatcher
from procspine.execution.registry import get_default_registry
from procspine.execution.remote import RemoteFront

app = Typer(
    name="procspine",
    help="procspine — run external programs as typed, policy-driven operations.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()
err_console = Console(stderr=True)

# everything after PROGRAM / HOST belongs to the child, options included
_PASSTHROUGH = {"allow_interspersed_args": False, "ignore_unknown_options": True}

EXIT_NOT_FOUND = 127
EXIT_SPAWN = 126
EXIT_CONFIG = 2


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from procspine import __version__

        typer.echo(f"procspine {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override PROCSPINE_LOG_LEVEL."),
) -> None:
    """procspine CLI — run, locate and remote-run programs."""
    settings = get_settings()
    json_format = {"json": True, "console": False}.get(settings.log_format)
    configure_logging(level=log_level or settings.log_level, json_format=json_format)


# ── Output helpers ───────────────────────────────────────────────────────


def _report_failure(error: ProcSpineError) -> None:
    err_console.print(f"[bold red]{type(error).__name__}[/bold red]: {escape(error.message)}")
    for key, value in error.context.to_dict().items():
        err_console.print(f"  [dim]{key}[/dim] = {escape(str(value))}", highlight=False)
    if isinstance(error, ExecutionFailedError) and error.captured and error.captured_output:
        err_console.print("  [dim]captured output:[/dim]")
        err_console.print(error.captured_output, markup=False, highlight=False, soft_wrap=True, end="")


def _exit_code_for(error: ProcSpineError) -> int:
    if isinstance(error, ExecutionFailedError):
        # killed by a signal (negative) or never exited
        return error.exit_code if error.exit_code and error.exit_code > 0 else 1
    if isinstance(error, ExecutableNotFoundError):
        return EXIT_NOT_FOUND
    if isinstance(error, SpawnError):
        return EXIT_SPAWN
    if isinstance(error, ConfigError):
        return EXIT_CONFIG
    return 1


def _fail(error: ProcSpineError) -> typer.Exit:
    _report_failure(error)
    return typer.Exit(code=_exit_code_for(error))


def _ok_codes(codes: list[int]) -> dict[int, Any]:
    return {code: True for code in codes}


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("run", context_settings=_PASSTHROUGH)
def run(
    program: str = typer.Argument(..., help="Program name (looked up on the search path) or path."),
    args: list[str] | None = typer.Argument(None, help="Arguments passed to the program."),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Trace the invocation, spawn nothing."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Trace the resolved invocation."),
    explain: str | None = typer.Option(None, "--explain", "-e", help="Explanation echoed before acting."),
    capture: bool = typer.Option(False, "--capture/--inherit", help="Capture output instead of inheriting."),
    env: list[str] = typer.Option([], "--env", help="KEY=VALUE entry for the child (repeatable)."),
    ok_code: list[int] = typer.Option([], "--ok-code", help="Additional successful exit code (repeatable)."),
    timeout: float | None = typer.Option(None, "--timeout", help="Kill the program after this many seconds."),
    required: bool = typer.Option(False, "--required", help="Fail if PROGRAM is not on the search path."),
) -> None:
    """Run PROGRAM with ARGS and exit with its status."""
    overrides: dict[str, Any] = {
        "dry_run": dry_run,
        "verbose": verbose,
        "output": "capture" if capture else "inherit",
        "exit_codes": _ok_codes(ok_code),
    }
    if explain:
        overrides["explanation"] = explain
        overrides["explanatory"] = True
    if env:
        overrides["environment"] = list(env) + list(get_settings().default_environment)
    if timeout is not None:
        overrides["timeout"] = timeout

    try:
        outcome = get_default_dispatcher().execute(program, args or [], required=required, **overrides)
    except ProcSpineError as error:
        raise _fail(error) from None

    if outcome.captured_output:
        console.print(outcome.captured_output, markup=False, highlight=False, soft_wrap=True, end="")


@app.command("which")
def which(
    name: str = typer.Argument(..., help="Program name to resolve."),
    search_path: list[str] = typer.Option([], "--search-path", "-p", help="Directory to scan (repeatable)."),
) -> None:
    """Print the path NAME resolves to."""
    result = get_default_registry().lookup(name, search_path or None)
    if result.is_err():
        err_console.print(f"[yellow]not found[/yellow]: {escape(name)}")
        for directory in result.error.search_path:
            err_console.print(f"  [dim]searched[/dim] {escape(directory)}", highlight=False)
        raise typer.Exit(code=1)
    console.print(str(result.unwrap()), markup=False, highlight=False, soft_wrap=True)


@app.command("remote", context_settings=_PASSTHROUGH)
def remote(
    host: str = typer.Argument(..., help="Remote host."),
    command: list[str] = typer.Argument(..., help="Command tokens, quoted for the remote shell."),
    watch: bool = typer.Option(False, "--watch", "-w", help="Stream output lines as they arrive."),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Trace the invocation, spawn nothing."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Trace the resolved invocation."),
    transport: str | None = typer.Option(None, "--transport", help="Override PROCSPINE_REMOTE_TRANSPORT."),
) -> None:
    """Run COMMAND on HOST over the configured transport."""
    front = RemoteFront(transport=transport)
    try:
        if watch:
            for line in front.watch_remote(host, command, dry_run=dry_run, verbose=verbose):
                console.print(line, markup=False, highlight=False, soft_wrap=True)
        else:
            front.run_remote(host, command, dry_run=dry_run, verbose=verbose, output="inherit")
    except ProcSpineError as error:
        raise _fail(error) from None
    except ValueError as error:
        err_console.print(f"[bold red]Error[/bold red]: {escape(str(error))}")
        raise typer.Exit(code=EXIT_CONFIG) from None

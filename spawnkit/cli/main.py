"""spawnkit CLI — run a program and report what it did.

`spawnkit run -- prog args...` launches prog with captured output and exits
with its classified status. `spawnkit which NAME` shows what a bare name
resolves to.
"""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path
from typing import Any

import typer
from rich.console import Console

from spawnkit.api import launch
from spawnkit.config import settings
from spawnkit.exceptions import ProcessFailedError, SpawnError
from spawnkit.logs import configure_logging
from spawnkit.resolve import which as resolve_which
from spawnkit.types import Output, PathInput, TextInput

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="spawnkit",
    help="spawnkit -- run a child process, drain its output, report its exit.",
    no_args_is_help=True,
)

# Shell conventions for "could not run" outcomes.
EXIT_NOT_FOUND = 127
EXIT_CANNOT_EXECUTE = 126
EXIT_TIMED_OUT = 124


def _parse_env(pairs: list[str]) -> dict[str, str]:
    env = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--env")
        env[key] = value
    return env


async def _execute(command: list[str], timeout: float, check: bool, **options: Any) -> Output:
    handle = await launch(command[0], command[1:], **options)
    try:
        output = await asyncio.wait_for(handle.result(), timeout or None)
    except asyncio.TimeoutError:
        # Nothing else will stop the child; kill it so the reaper thread returns.
        handle.send_signal(signal.SIGKILL)
        raise
    if check and not output.ok:
        raise ProcessFailedError(output)
    return output


def _report(output: Output, show_status: bool) -> None:
    if output.stdout:
        typer.echo(output.stdout, nl=False)
    if output.stderr:
        err_console.print(output.stderr, end="", style="red", markup=False, highlight=False)
    if not show_status:
        return
    if output.signal is not None:
        name = signal.Signals(output.signal).name
        err_console.print(f"[yellow]pid {output.pid} killed by {name} (status {output.exit_code})[/yellow]")
    else:
        style = "green" if output.ok else "red"
        err_console.print(f"[{style}]pid {output.pid} exited with status {output.exit_code}[/{style}]")


@app.command("run")
def run_cmd(
    command: list[str] = typer.Argument(..., help="Executable followed by its arguments"),
    cwd: Path = typer.Option(None, "--cwd", "-C", help="Working directory for the child"),
    env: list[str] = typer.Option([], "--env", "-e", help="KEY=VALUE override (repeatable)"),
    input_text: str = typer.Option(None, "--input", "-i", help="Text to feed on stdin"),
    input_file: Path = typer.Option(None, "--input-file", "-f", help="File to use as stdin"),
    no_capture: bool = typer.Option(False, "--no-capture", help="Let the child write to our stdout/stderr"),
    check: bool = typer.Option(False, "--check", help="Report a non-zero exit as a failure"),
    timeout: float = typer.Option(0, "--timeout", "-t", help="Seconds before killing the child (0=no limit)"),
    status: bool = typer.Option(False, "--status", "-s", help="Print the exit status to stderr"),
):
    """Run EXECUTABLE [ARGS]... and exit with its status.

    Examples:
        spawnkit run -- ls -l /tmp
        spawnkit run --input 'hello' -- cat
        spawnkit run --cwd /srv -e MODE=ci -- make test
    """
    configure_logging(settings.log_level)
    if input_text is not None and input_file is not None:
        raise typer.BadParameter("use either --input or --input-file", param_hint="--input")

    stdin = None
    if input_text is not None:
        stdin = TextInput(input_text)
    elif input_file is not None:
        stdin = PathInput(input_file)

    try:
        output = asyncio.run(_execute(
            command,
            timeout,
            check,
            stdin=stdin,
            env=_parse_env(env) or None,
            cwd=cwd,
            capture_output=not no_capture,
        ))
    except SpawnError as exc:
        err_console.print(f"[red]spawnkit: cannot start {command[0]}: {exc}[/red]")
        raise typer.Exit(EXIT_NOT_FOUND if exc.step == "resolve" else EXIT_CANNOT_EXECUTE)
    except ProcessFailedError as exc:
        _report(exc.output, show_status=True)
        raise typer.Exit(exc.output.exit_code)
    except asyncio.TimeoutError:
        err_console.print(f"[red]spawnkit: {command[0]} did not finish within {timeout}s[/red]")
        raise typer.Exit(EXIT_TIMED_OUT)

    _report(output, show_status=status)
    raise typer.Exit(output.exit_code)


@app.command("which")
def which_cmd(name: str = typer.Argument(help="Program name to look up on PATH")):
    """Show the absolute path NAME resolves to."""
    found = resolve_which(name)
    if found is None:
        err_console.print(f"[red]{name}: not found[/red]")
        raise typer.Exit(1)
    console.print(found, markup=False, highlight=False)


@app.command("version")
def version_cmd():
    """Show spawnkit version."""
    from spawnkit import __version__
    console.print(f"spawnkit v{__version__}")


def main() -> None:
    app()

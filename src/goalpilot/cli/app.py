"""GoalPilot CLI: main Typer entry point.

Registers all subcommands and provides --version / --verbose global options.
"""

from __future__ import annotations

import typer
from rich.console import Console

from goalpilot import __version__

TAGLINE = "Tell the browser what you want. It figures out the clicks."

console = Console()


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"GoalPilot v{__version__}", style="bold cyan")
        console.print(f"  {TAGLINE}", style="dim")
        raise typer.Exit()


app = typer.Typer(
    name="goalpilot",
    help=f"GoalPilot\n\n{TAGLINE}",
    rich_markup_mode="rich",
    no_args_is_help=True,
    add_completion=False,
)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show GoalPilot version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose output.",
    ),
) -> None:
    """GoalPilot: drive a live browser from natural-language goals."""
    from goalpilot.cli.common import configure_logging

    configure_logging(verbose)


# -- Register subcommands -----------------------------------------------------

from goalpilot.cli.batch import batch  # noqa: E402
from goalpilot.cli.run import run  # noqa: E402
from goalpilot.cli.sessions import sessions_app  # noqa: E402

app.command(name="run", help="Pursue one goal in a single browser tab.")(run)
app.command(name="batch", help="Run many goals concurrently, one tab each.")(batch)
app.add_typer(sessions_app, name="sessions", help="List, inspect and delete saved browser sessions.")

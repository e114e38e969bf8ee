"""goalpilot sessions: manage saved browser sessions."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from goalpilot.cli.common import console, fail, load_config_or_exit
from goalpilot.engine.session_store import SessionStore

sessions_app = typer.Typer(no_args_is_help=True)


def _store(config_file: Optional[Path]) -> SessionStore:
    config = load_config_or_exit(config_file)
    return SessionStore(config.sessions_dir)


@sessions_app.command("list")
def list_sessions(
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to a config.yaml."),
) -> None:
    """List saved sessions."""
    store = _store(config_file)
    names = store.list()
    if not names:
        console.print(f"[dim]No saved sessions in {store.sessions_dir}[/dim]")
        return
    table = Table(title="Saved sessions")
    table.add_column("Name", style="bold")
    table.add_column("Saved at")
    table.add_column("Cookies", justify="right")
    table.add_column("localStorage keys", justify="right")
    for name in names:
        info = store.info(name)
        if info is None:
            table.add_row(name, "[red]unreadable[/red]", "-", "-")
            continue
        table.add_row(name, info.timestamp, str(len(info.cookies)), str(len(info.local_storage)))
    console.print(table)


@sessions_app.command("show")
def show_session(
    name: str = typer.Argument(..., help="Session name."),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to a config.yaml."),
) -> None:
    """Show what a saved session contains."""
    store = _store(config_file)
    try:
        info = store.info(name)
    except ValueError as exc:
        fail(str(exc), title="Session Error")
    if info is None:
        fail(f"No saved session named {name}", title="Session Error", code=1)
    console.print(f"[bold]{info.session_name}[/bold]  [dim]saved {info.timestamp}[/dim]")
    domains = sorted({str(c.get("domain", "")) for c in info.cookies})
    console.print(f"  Cookies: {len(info.cookies)} ({', '.join(domains) or '-'})")
    console.print(f"  localStorage keys: {', '.join(sorted(info.local_storage)) or '-'}")


@sessions_app.command("delete")
def delete_session(
    name: str = typer.Argument(..., help="Session name."),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to a config.yaml."),
) -> None:
    """Delete a saved session."""
    store = _store(config_file)
    try:
        deleted = store.delete(name)
    except ValueError as exc:
        fail(str(exc), title="Session Error")
    if not deleted:
        fail(f"No saved session named {name}", title="Session Error", code=1)
    console.print(f"[green]Deleted session {name}[/green]")

"""Helpers shared by the GoalPilot CLI commands."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import NoReturn, Optional

import typer
from rich.console import Console
from rich.panel import Panel

from goalpilot.config import GoalPilotConfig, GoalPilotConfigError

console = Console(stderr=True)
output_console = Console()  # stdout for machine-readable output

PROJECT_DIR_NAME = ".goalpilot"


def resolve_project_dir() -> Path:
    """Find the .goalpilot/ project directory, searching upward from cwd."""
    current = Path.cwd()
    for directory in (current, *current.parents):
        candidate = directory / PROJECT_DIR_NAME
        if candidate.is_dir():
            return candidate
    return current / PROJECT_DIR_NAME


def load_config(project_dir: Path, config_file: Optional[Path] = None) -> GoalPilotConfig:
    """Load config.yaml when present, otherwise defaults rooted at *project_dir*."""
    config_path = config_file or project_dir / "config.yaml"
    if config_file is not None or config_path.is_file():
        return GoalPilotConfig.from_file(config_path)
    config = GoalPilotConfig()
    config.project_dir = project_dir
    config.artifacts_dir = project_dir / "artifacts"
    config.sessions_dir = project_dir / "sessions"
    return config


def fail(message: str, title: str = "Config Error", code: int = 2) -> NoReturn:
    """Print an error panel and exit with *code*."""
    console.print(Panel(f"[red]{message}[/red]", title=f"[red]{title}[/red]", border_style="red"))
    raise typer.Exit(code=code)


def configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s  %(message)s")


def load_config_or_exit(config_file: Optional[Path] = None) -> GoalPilotConfig:
    project_dir = resolve_project_dir()
    try:
        return load_config(project_dir, config_file)
    except GoalPilotConfigError as exc:
        fail(str(exc))

"""goalpilot run: pursue one natural-language goal in a browser.

Resolves config and the API key, launches the browser, optionally restores a
saved session, runs the control loop with live Rich output and prints (or
writes) the final report.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.panel import Panel

from goalpilot.cli.common import configure_logging, console, fail, load_config_or_exit, output_console
from goalpilot.config import GoalPilotConfig, GoalPilotConfigError
from goalpilot.credentials import mask_key, resolve_api_key

logger = logging.getLogger("goalpilot.cli.run")


def _print_run_header(config: GoalPilotConfig, instruction: str, session: Optional[str], api_key: str) -> None:
    info_lines = [
        f"[bold]Goal:[/bold]      {instruction}",
        f"[bold]Browser:[/bold]   {config.browser} ({'headless' if config.headless else 'visible'})",
        f"[bold]Viewport:[/bold]  {config.viewport[0]}x{config.viewport[1]}",
        f"[bold]Cycles:[/bold]    up to {config.max_cycles}",
        f"[bold]Budget:[/bold]    ${config.budget:.2f}",
        f"[bold]Session:[/bold]   {session or '-'}",
        f"[bold]Fast mode:[/bold] {config.fast_mode}",
        f"[bold]API Key:[/bold]   {mask_key(api_key)}",
    ]
    console.print()
    console.print(Panel("\n".join(info_lines), title="[bold cyan]GoalPilot Run[/bold cyan]", border_style="cyan"))
    console.print()


def _print_task(task) -> None:
    if task.completed:
        icon = "[bold green]✓[/bold green]"
    else:
        icon = "[bold red]✗[/bold red]"
    label = "recovery " if task.is_recovery else ""
    console.print(f"  {icon} {label}{task.kind.value}: {task.description}")
    if task.failed and task.error:
        error_short = task.error if len(task.error) <= 120 else task.error[:117] + "..."
        console.print(f"    [dim red]{error_short}[/dim red]")


def _print_summary_panel(report, cost) -> None:
    if report.success:
        border, verdict = "green", "[bold green]GOAL ACHIEVED[/bold green]"
    else:
        border, verdict = "red", f"[bold red]GOAL NOT ACHIEVED[/bold red] ({report.status.value})"
    lines = [
        verdict,
        "",
        f"  Tasks:     {report.completed_count} completed, {report.failed_count} failed",
        f"  Cycles:    {report.cycles}",
        f"  Duration:  {report.duration_seconds:.1f}s",
        f"  Cost:      ${cost.total_cost_usd:.4f}",
        f"  Final URL: {report.final_url or '-'}",
    ]
    if report.evaluation is not None:
        lines.append(f"  Reasoning: {report.evaluation.reasoning}")
    console.print()
    console.print(Panel("\n".join(lines), border_style=border))
    console.print()


async def _run_goal(config: GoalPilotConfig, instruction: str, session: Optional[str], save_session: bool, on_task):
    from goalpilot.engine.browser_session import BrowserSession
    from goalpilot.engine.control_loop import ControlLoop
    from goalpilot.engine.cost_tracker import CostTracker
    from goalpilot.engine.oracle_gateway import AnthropicTransport, OracleGateway
    from goalpilot.engine.session_store import SessionStore

    cost_tracker = CostTracker(per_run_usd=config.budget)
    transport = AnthropicTransport(
        api_key=config.anthropic_api_key,
        planner_model=config.model_planner,
        evaluator_model=config.model_evaluator,
        cost_tracker=cost_tracker,
    )
    gateway = OracleGateway.from_config(config, transport)
    store = SessionStore(
        config.sessions_dir,
        persist_cookies=config.persist_cookies,
        persist_local_storage=config.persist_local_storage,
    )

    async with BrowserSession.from_config(config) as browser:
        page = await browser.new_page()
        if session:
            if await store.load(browser.context, session):
                console.print(f"[dim]Restored session {session}[/dim]")
            else:
                console.print(f"[dim]No saved session named {session}; starting fresh[/dim]")
        loop = ControlLoop.from_config(page, gateway, config, on_task=on_task)
        report = await loop.run(instruction)
        if session and save_session:
            path = store.path_for(session)
            await store.save(browser.context, session)
            console.print(f"[dim]Saved session {session} to {path}[/dim]")
    return report, cost_tracker.get_summary()


def _report_as_dict(report, cost) -> dict:
    return {
        "instruction": report.instruction,
        "success": report.success,
        "status": report.status.value,
        "summary": report.summary,
        "cycles": report.cycles,
        "final_url": report.final_url,
        "error": report.error,
        "evaluation": dataclasses.asdict(report.evaluation) if report.evaluation else None,
        "history": [task.to_dict() for task in report.history],
        "cost": dataclasses.asdict(cost),
    }


def run(
    instruction: str = typer.Argument(..., help="What the browser should accomplish, in plain language."),
    session: Optional[str] = typer.Option(
        None,
        "--session",
        "-s",
        help="Restore cookies/localStorage from this saved session before starting.",
    ),
    save_session: bool = typer.Option(
        True,
        "--save-session/--no-save-session",
        help="Save the session back after the run (only with --session).",
    ),
    report_path: Optional[Path] = typer.Option(
        None,
        "--report",
        "-r",
        help="Write a markdown report to this path.",
    ),
    max_cycles: Optional[int] = typer.Option(None, "--max-cycles", help="Override loop.max_cycles."),
    budget: Optional[float] = typer.Option(None, "--budget", "-b", help="Maximum oracle spend in USD."),
    fast: bool = typer.Option(False, "--fast", help="Use fast-mode settle delays and timeouts."),
    headless: Optional[bool] = typer.Option(
        None,
        "--headless/--no-headless",
        help="Run the browser headless or visible (default from config).",
    ),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to a config.yaml."),
    output_format: str = typer.Option("text", "--output", "-o", help="Output format: text or json."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging."),
) -> None:
    """Drive the browser until the goal is achieved or the loop gives up."""
    configure_logging(verbose)

    if output_format not in ("text", "json"):
        fail(f"Invalid output format: {output_format}\n\nValid formats: text, json")

    config = load_config_or_exit(config_file)
    try:
        config.anthropic_api_key = resolve_api_key(config.project_dir)
    except GoalPilotConfigError as exc:
        fail(str(exc), title="API Key Error")

    if max_cycles is not None:
        config.max_cycles = max_cycles
    if budget is not None:
        config.budget = budget
    if headless is not None:
        config.headless = headless
    if fast:
        config.apply_fast_mode()
    try:
        config.validate()
    except GoalPilotConfigError as exc:
        fail(str(exc))

    text_mode = output_format == "text"
    if text_mode:
        _print_run_header(config, instruction, session, config.anthropic_api_key)

    try:
        report, cost = asyncio.run(
            _run_goal(config, instruction, session, save_session, on_task=_print_task if text_mode else None)
        )
    except KeyboardInterrupt:
        console.print("\n[yellow]Run interrupted by user.[/yellow]")
        raise typer.Exit(code=1)
    except ImportError as exc:
        fail(
            f"Failed to import a browser dependency: {exc}\n\n"
            "Try: [bold]pip install goalpilot[/bold]\n"
            "Then: [bold]playwright install chromium[/bold]",
            title="Import Error",
            code=3,
        )
    except Exception as exc:
        logger.exception("Unexpected error during run")
        fail(f"Unexpected error: {exc}\n\nRun with --verbose for details.", title="Error", code=3)

    if report_path is not None:
        from goalpilot.engine.report_generator import ReportGenerator

        report_path.parent.mkdir(parents=True, exist_ok=True)
        report_path.write_text(ReportGenerator().generate(report, cost))
        if text_mode:
            console.print(f"[dim]Report written to {report_path}[/dim]")

    if text_mode:
        _print_summary_panel(report, cost)
    else:
        output_console.print_json(json.dumps(_report_as_dict(report, cost), default=str))

    raise typer.Exit(code=0 if report.success else 1)

"""goalpilot batch: run a YAML list of goals concurrently, one tab each.

The tasks file is either a list or a mapping with a ``tasks`` list; each
entry holds ``instruction`` plus optional ``id``, ``priority``, ``tab_id``
and ``timeout`` (seconds).
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

import typer
import yaml
from rich.table import Table

from goalpilot.cli.common import configure_logging, console, fail, load_config_or_exit
from goalpilot.config import GoalPilotConfig, GoalPilotConfigError
from goalpilot.credentials import resolve_api_key

logger = logging.getLogger("goalpilot.cli.batch")


def load_tasks_file(path: Path) -> list[Any]:
    """Parse a batch file into ScheduledTasks. Raises GoalPilotConfigError."""
    from goalpilot.engine.scheduler import ScheduledTask

    if not path.is_file():
        raise GoalPilotConfigError(f"Tasks file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text()) or []
    except yaml.YAMLError as exc:
        raise GoalPilotConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if isinstance(data, dict):
        data = data.get("tasks") or []
    if not isinstance(data, list) or not data:
        raise GoalPilotConfigError(f"{path} must contain a non-empty list of tasks")

    tasks = []
    for index, entry in enumerate(data):
        if isinstance(entry, str):
            entry = {"instruction": entry}
        if not isinstance(entry, dict):
            raise GoalPilotConfigError(f"Task #{index + 1} in {path} must be a mapping or a string")
        try:
            tasks.append(ScheduledTask.from_dict(entry, index))
        except (TypeError, ValueError) as exc:
            raise GoalPilotConfigError(f"Invalid task #{index + 1} in {path}: {exc}") from exc

    ids = [t.id for t in tasks]
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        raise GoalPilotConfigError(f"Duplicate task ids in {path}: {', '.join(duplicates)}")
    return tasks


async def _run_batch(config: GoalPilotConfig, tasks: list[Any]):
    from goalpilot.engine.browser_session import BrowserSession
    from goalpilot.engine.control_loop import ControlLoop
    from goalpilot.engine.cost_tracker import CostTracker
    from goalpilot.engine.oracle_gateway import AnthropicTransport, OracleGateway
    from goalpilot.engine.scheduler import ConcurrencyScheduler
    from goalpilot.engine.tab_manager import TabManager

    cost_tracker = CostTracker(per_run_usd=config.budget)
    transport = AnthropicTransport(
        api_key=config.anthropic_api_key,
        planner_model=config.model_planner,
        evaluator_model=config.model_evaluator,
        cost_tracker=cost_tracker,
    )
    # One gateway for every loop so they share the rate window
    gateway = OracleGateway.from_config(config, transport)

    async def run_goal(page, task):
        return await ControlLoop.from_config(page, gateway, config).run(task.instruction)

    async with BrowserSession.from_config(config) as browser:
        tabs = TabManager(
            browser.context,
            max_tabs=config.max_tabs,
            navigation_timeout_ms=config.page_load_timeout_ms,
        )
        scheduler = ConcurrencyScheduler(
            tabs,
            run_goal,
            max_concurrent_tasks=config.max_concurrent_tasks,
            default_timeout=config.task_timeout_seconds,
        )
        try:
            results = await scheduler.run_all(tasks)
            await scheduler.drain()
        finally:
            await tabs.close_all()
    return results, cost_tracker.get_summary()


def _print_results(results: list[Any]) -> None:
    table = Table(title="GoalPilot Batch", show_lines=False)
    table.add_column("Task", style="bold")
    table.add_column("Result")
    table.add_column("Cycles", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Notes", overflow="fold")
    for r in results:
        if r.success:
            result_str = "[green]PASS[/green]"
        elif r.timed_out:
            result_str = "[yellow]TIMEOUT[/yellow]"
        else:
            result_str = "[red]FAIL[/red]"
        cycles = str(r.report.cycles) if r.report else "-"
        notes = r.error or (r.report.summary if r.report else "")
        table.add_row(r.task_id, result_str, cycles, f"{r.duration_seconds:.1f}s", notes)
    console.print()
    console.print(table)
    console.print()


def batch(
    tasks_file: Path = typer.Argument(..., help="YAML file listing the goals to run."),
    max_concurrent: Optional[int] = typer.Option(
        None,
        "--max-concurrent",
        "-n",
        help="Override scheduler.max_concurrent_tasks.",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        "-t",
        help="Default per-task timeout in seconds.",
    ),
    report_path: Optional[Path] = typer.Option(None, "--report", "-r", help="Write a markdown batch report here."),
    budget: Optional[float] = typer.Option(None, "--budget", "-b", help="Maximum oracle spend in USD for the batch."),
    fast: bool = typer.Option(False, "--fast", help="Use fast-mode settle delays and timeouts."),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to a config.yaml."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging."),
) -> None:
    """Run every goal in TASKS_FILE under bounded concurrency."""
    configure_logging(verbose)

    config = load_config_or_exit(config_file)
    try:
        tasks = load_tasks_file(tasks_file)
        config.anthropic_api_key = resolve_api_key(config.project_dir)
        if max_concurrent is not None:
            config.max_concurrent_tasks = max_concurrent
        if timeout is not None:
            config.task_timeout_seconds = timeout
        if budget is not None:
            config.budget = budget
        if fast:
            config.apply_fast_mode()
        config.validate()
    except GoalPilotConfigError as exc:
        fail(str(exc))

    console.print(
        f"[bold]Running {len(tasks)} goals[/bold] "
        f"[dim](max {config.max_concurrent_tasks} at once, {config.task_timeout_seconds:g}s timeout)[/dim]"
    )

    try:
        results, cost = asyncio.run(_run_batch(config, tasks))
    except KeyboardInterrupt:
        console.print("\n[yellow]Batch interrupted by user.[/yellow]")
        raise typer.Exit(code=1)
    except Exception as exc:
        logger.exception("Unexpected error during batch")
        fail(f"Unexpected error: {exc}\n\nRun with --verbose for details.", title="Error", code=3)

    _print_results(results)
    console.print(f"[dim]Oracle cost: ${cost.total_cost_usd:.4f} across {cost.call_count} calls[/dim]")

    if report_path is not None:
        from goalpilot.engine.report_generator import ReportGenerator

        report_path.parent.mkdir(parents=True, exist_ok=True)
        report_path.write_text(ReportGenerator().generate_batch(results, cost))
        console.print(f"[dim]Report written to {report_path}[/dim]")

    raise typer.Exit(code=0 if all(r.success for r in results) else 1)

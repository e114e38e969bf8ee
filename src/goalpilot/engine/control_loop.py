"""GoalPilot Control Loop: plan, execute, observe, evaluate.

A finite state machine over one goal::

    IDLE -> PLANNING -> EXECUTING -> OBSERVING -> EVALUATING -> PLANNING | DONE

A run ends when the goal is achieved, when ``max_cycles`` cycles have run,
or when failures reach ``failure_ceiling``, whichever comes first. Every
executed task, success or failure, is appended to the history. A failed
task may get exactly one recovery task, planned against a fresh observation.

``run`` always returns a RunReport. Budget exhaustion and unexpected
exceptions end the run with their own status instead of escaping.
"""

from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from goalpilot import models
from goalpilot.engine.action_executor import TaskExecutionError
from goalpilot.engine.cost_tracker import BudgetExceededError
from goalpilot.engine.page_state import PageSnapshot, observe_page
from goalpilot.engine.selector_resolver import SelectorResolver
from goalpilot.engine.tasks import Evaluation, Task, TaskKind

if TYPE_CHECKING:
    from playwright.async_api import Page

    from goalpilot.engine.action_executor import ActionExecutor
    from goalpilot.engine.goal_evaluator import GoalEvaluator
    from goalpilot.engine.oracle_gateway import OracleGateway
    from goalpilot.engine.task_planner import TaskPlanner

logger = logging.getLogger("goalpilot.engine.control_loop")


class LoopState(str, enum.Enum):
    IDLE = "idle"
    PLANNING = "planning"
    EXECUTING = "executing"
    OBSERVING = "observing"
    EVALUATING = "evaluating"
    DONE = "done"


class RunStatus(str, enum.Enum):
    GOAL_ACHIEVED = "goal_achieved"
    MAX_CYCLES = "max_cycles"
    FAILURE_CEILING = "failure_ceiling"
    BUDGET_EXCEEDED = "budget_exceeded"
    ERROR = "error"


@dataclasses.dataclass
class GoalState:
    instruction: str
    history: list[Task] = dataclasses.field(default_factory=list)
    cycle_count: int = 0

    @property
    def completed_count(self) -> int:
        return sum(1 for t in self.history if t.completed)

    @property
    def failed_count(self) -> int:
        return sum(1 for t in self.history if t.failed)


@dataclasses.dataclass
class RunReport:
    """Outcome of one control-loop run."""

    instruction: str
    success: bool
    status: RunStatus
    history: list[Task]
    summary: str
    cycles: int
    completed_count: int
    failed_count: int
    evaluation: Evaluation | None = None
    error: str | None = None
    final_url: str = ""
    duration_seconds: float = 0.0


@dataclasses.dataclass
class LoopSettings:
    max_cycles: int = models.MAX_CYCLES
    failure_ceiling: int = models.FAILURE_CEILING
    failure_mode: str = "total"  # "total" or "consecutive"
    recovery: bool = True
    observation: str = "all"  # "all", "key" or "minimal"
    task_wait_ms: int = models.TASK_WAIT_MS
    screenshots: bool = False
    artifacts_dir: Path | None = None

    @classmethod
    def from_config(cls, config: Any) -> LoopSettings:
        return cls(
            max_cycles=config.max_cycles,
            failure_ceiling=config.failure_ceiling,
            failure_mode=config.failure_mode,
            recovery=config.recovery,
            observation=config.observation,
            task_wait_ms=config.task_wait_ms,
            screenshots=config.screenshots,
            artifacts_dir=config.artifacts_dir,
        )


class ControlLoop:
    """Drives one goal to completion on one page."""

    def __init__(
        self,
        page: Page,
        planner: TaskPlanner,
        executor: ActionExecutor,
        evaluator: GoalEvaluator,
        resolver: SelectorResolver | None = None,
        settings: LoopSettings | None = None,
        on_task: Callable[[Task], None] | None = None,
    ) -> None:
        self._page = page
        self._planner = planner
        self._executor = executor
        self._evaluator = evaluator
        self._resolver = resolver or SelectorResolver()
        self._settings = settings or LoopSettings()
        self._on_task = on_task
        self._state = LoopState.IDLE
        self._snapshot: PageSnapshot | None = None

    @classmethod
    def from_config(
        cls,
        page: Page,
        gateway: OracleGateway,
        config: Any,
        on_task: Callable[[Task], None] | None = None,
    ) -> ControlLoop:
        """Wire planner, executor and evaluator for *page* around a shared gateway."""
        from goalpilot.engine.action_executor import ActionExecutor, ExecutorTimings
        from goalpilot.engine.goal_evaluator import GoalEvaluator
        from goalpilot.engine.task_planner import TaskPlanner

        resolver = SelectorResolver()
        return cls(
            page,
            planner=TaskPlanner(gateway, history_window=config.history_window),
            executor=ActionExecutor(
                page,
                resolver=resolver,
                timings=ExecutorTimings.from_config(config),
                artifacts_dir=config.artifacts_dir,
            ),
            evaluator=GoalEvaluator(gateway, confidence_threshold=config.confidence_threshold),
            resolver=resolver,
            settings=LoopSettings.from_config(config),
            on_task=on_task,
        )

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def last_snapshot(self) -> PageSnapshot | None:
        return self._snapshot

    async def run(self, instruction: str) -> RunReport:
        settings = self._settings
        goal = GoalState(instruction=instruction)
        self._state = LoopState.IDLE
        self._snapshot = None
        total_failures = 0
        consecutive_failures = 0
        status: RunStatus | None = None
        error: str | None = None
        start = time.monotonic()
        logger.info("Starting run: %s", instruction)

        try:
            while status is None:
                if goal.cycle_count >= settings.max_cycles:
                    status = RunStatus.MAX_CYCLES
                    break
                goal.cycle_count += 1

                self._transition(LoopState.PLANNING)
                task = await self._planner.plan_next(instruction, list(goal.history), self._snapshot)

                self._transition(LoopState.EXECUTING)
                page_changed = task.kind is TaskKind.NAVIGATE
                if await self._run_task(task, goal):
                    consecutive_failures = 0
                else:
                    total_failures += 1
                    consecutive_failures += 1
                    page_changed = True
                    # No recovery once the ceiling is already reached
                    if settings.recovery and not self._ceiling_reached(total_failures, consecutive_failures):
                        if await self._recover(task, goal):
                            consecutive_failures = 0
                        else:
                            total_failures += 1
                            consecutive_failures += 1

                if self._ceiling_reached(total_failures, consecutive_failures):
                    status = RunStatus.FAILURE_CEILING
                    break

                self._transition(LoopState.OBSERVING)
                if self._should_observe(page_changed):
                    self._snapshot = await self._observe()

                self._transition(LoopState.EVALUATING)
                if await self._evaluator.is_goal_achieved(instruction, list(goal.history), self._snapshot):
                    status = RunStatus.GOAL_ACHIEVED
                    break

                if settings.task_wait_ms > 0:
                    await asyncio.sleep(settings.task_wait_ms / 1000)
        except BudgetExceededError as exc:
            status = RunStatus.BUDGET_EXCEEDED
            error = str(exc)
            logger.error("Run stopped: %s", exc)
        except Exception as exc:
            status = RunStatus.ERROR
            error = f"{type(exc).__name__}: {exc}"
            logger.exception("Run aborted by unexpected error")

        self._transition(LoopState.DONE)
        report = self._build_report(goal, status, error, time.monotonic() - start)
        logger.info("Run finished: %s", report.summary)
        return report

    # -- Cycle steps ---------------------------------------------------------------

    def _transition(self, state: LoopState) -> None:
        logger.debug("Loop state %s -> %s", self._state.value, state.value)
        self._state = state

    async def _run_task(self, task: Task, goal: GoalState) -> bool:
        """Execute *task*, record it in history and report success."""
        task.start()
        try:
            result = await self._executor.execute(task)
        except TaskExecutionError as exc:
            task.fail(str(exc.cause), exc.artifact)
            return False
        else:
            task.complete(result.value)
            return True
        finally:
            goal.history.append(task)
            if self._on_task is not None:
                self._on_task(task)

    async def _recover(self, failed: Task, goal: GoalState) -> bool:
        fresh = await self._observe()
        self._snapshot = fresh
        self._transition(LoopState.PLANNING)
        recovery = await self._planner.plan_recovery(
            goal.instruction, list(goal.history), failed, failed.error or "", fresh
        )
        self._transition(LoopState.EXECUTING)
        recovered = await self._run_task(recovery, goal)
        if recovered:
            logger.info("Recovered from failed task %s with %s", failed.id, recovery.id)
        else:
            logger.warning("Recovery task %s for %s also failed", recovery.id, failed.id)
        return recovered

    def _ceiling_reached(self, total_failures: int, consecutive_failures: int) -> bool:
        settings = self._settings
        failures = consecutive_failures if settings.failure_mode == "consecutive" else total_failures
        return failures >= settings.failure_ceiling

    def _should_observe(self, page_changed: bool) -> bool:
        if self._snapshot is None:
            return True
        policy = self._settings.observation
        if policy == "minimal":
            return False
        if policy == "key":
            return page_changed
        return True

    async def _observe(self) -> PageSnapshot:
        settings = self._settings
        return await observe_page(
            self._page,
            self._resolver,
            artifacts_dir=settings.artifacts_dir,
            with_screenshot=settings.screenshots,
        )

    def _build_report(self, goal: GoalState, status: RunStatus, error: str | None, elapsed: float) -> RunReport:
        completed = goal.completed_count
        failed = goal.failed_count
        success = status is RunStatus.GOAL_ACHIEVED
        reason = {
            RunStatus.GOAL_ACHIEVED: "goal achieved",
            RunStatus.MAX_CYCLES: f"stopped after reaching the {self._settings.max_cycles}-cycle limit",
            RunStatus.FAILURE_CEILING: f"stopped after {self._settings.failure_ceiling} failures",
            RunStatus.BUDGET_EXCEEDED: "stopped: oracle budget exceeded",
            RunStatus.ERROR: f"stopped by error: {error}",
        }[status]
        summary = f"Completed {completed} of {len(goal.history)} tasks ({failed} failed) in {goal.cycle_count} cycles; {reason}"
        try:
            final_url = self._page.url
        except Exception:
            final_url = self._snapshot.url if self._snapshot else ""
        return RunReport(
            instruction=goal.instruction,
            success=success,
            status=status,
            history=list(goal.history),
            summary=summary,
            cycles=goal.cycle_count,
            completed_count=completed,
            failed_count=failed,
            evaluation=self._evaluator.last_evaluation,
            error=error,
            final_url=final_url,
            duration_seconds=round(elapsed, 3),
        )

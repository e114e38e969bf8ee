"""GoalPilot Concurrency Scheduler: many goals, one tab each.

Runs independent control loops concurrently under an admission limit.
Tasks are dispatched in descending priority (stable for ties); when every
slot is taken the next task waits for any running one to finish. Each task
gets its own tab unless it names one to reuse, and a per-task timeout races
the loop. On timeout the result is reported immediately and the abandoned
loop is cancelled and its tab closed in the background; the slot frees up
only after that cleanup.

Results are collected settle-all style: every input task appears exactly
once in the output, failures and timeouts included.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from goalpilot import models
from goalpilot.engine.tab_manager import TabError

if TYPE_CHECKING:
    from playwright.async_api import Page

    from goalpilot.engine.control_loop import RunReport
    from goalpilot.engine.tab_manager import TabManager

logger = logging.getLogger("goalpilot.engine.scheduler")


@dataclasses.dataclass
class ScheduledTask:
    id: str
    instruction: str
    priority: int = 0
    tab_id: str | None = None  # reuse this tab instead of opening one
    timeout: float | None = None  # seconds; scheduler default when None

    @classmethod
    def from_dict(cls, data: dict[str, Any], index: int = 0) -> ScheduledTask:
        instruction = data.get("instruction")
        if not isinstance(instruction, str) or not instruction.strip():
            raise ValueError(f"Task #{index + 1} needs a non-empty 'instruction'")
        timeout = data.get("timeout")
        return cls(
            id=str(data.get("id") or f"task-{index + 1}"),
            instruction=instruction.strip(),
            priority=int(data.get("priority", 0) or 0),
            tab_id=data.get("tab_id") or None,
            timeout=float(timeout) if timeout is not None else None,
        )


@dataclasses.dataclass
class TaskResult:
    task_id: str
    tab_id: str | None
    success: bool
    report: RunReport | None = None
    error: str | None = None
    duration_seconds: float = 0.0
    timed_out: bool = False


# Runs one goal on a leased page and returns its report
GoalRunner = Callable[["Page", ScheduledTask], Awaitable["RunReport"]]


class ConcurrencyScheduler:
    def __init__(
        self,
        tab_manager: TabManager,
        run_goal: GoalRunner,
        max_concurrent_tasks: int = models.MAX_CONCURRENT_TASKS,
        default_timeout: float = models.TASK_TIMEOUT_SECONDS,
    ) -> None:
        if max_concurrent_tasks < 1:
            raise ValueError("max_concurrent_tasks must be at least 1")
        self._tabs = tab_manager
        self._run_goal = run_goal
        self._max_concurrent = max_concurrent_tasks
        self._default_timeout = default_timeout
        self._slots = asyncio.Semaphore(max_concurrent_tasks)
        self._cleanups: set[asyncio.Task] = set()
        self._active = 0

    @property
    def active_count(self) -> int:
        """Tasks currently holding an admission slot."""
        return self._active

    async def run_all(self, tasks: list[ScheduledTask]) -> list[TaskResult]:
        """Run every task and return one result per task, in dispatch order."""
        ordered = sorted(tasks, key=lambda t: -t.priority)
        logger.info(
            "Scheduling %d tasks with at most %d running at once",
            len(ordered),
            self._max_concurrent,
        )

        running: list[asyncio.Task] = []
        for task in ordered:
            await self._slots.acquire()
            self._active += 1
            running.append(asyncio.create_task(self._run_one(task), name=f"goal-{task.id}"))

        outcomes = await asyncio.gather(*running, return_exceptions=True)
        results: list[TaskResult] = []
        for task, outcome in zip(ordered, outcomes):
            if isinstance(outcome, BaseException):
                results.append(
                    TaskResult(
                        task_id=task.id,
                        tab_id=task.tab_id,
                        success=False,
                        error=f"{type(outcome).__name__}: {outcome}",
                    )
                )
            else:
                results.append(outcome)

        succeeded = sum(1 for r in results if r.success)
        logger.info("Completed %d/%d tasks successfully, %d failed", succeeded, len(results), len(results) - succeeded)
        return results

    async def drain(self) -> None:
        """Wait for background cleanup of timed-out tasks."""
        while self._cleanups:
            await asyncio.gather(*list(self._cleanups), return_exceptions=True)

    # -- Internals -----------------------------------------------------------------

    def _release(self) -> None:
        self._active -= 1
        self._slots.release()

    async def _run_one(self, task: ScheduledTask) -> TaskResult:
        start = time.monotonic()
        timeout = task.timeout if task.timeout is not None else self._default_timeout
        tab_id = task.tab_id
        owns_tab = False
        slot_handed_off = False
        logger.info("Starting task %s: %s", task.id, task.instruction)
        try:
            if tab_id is None:
                tab_id = await self._tabs.create_tab()
                owns_tab = True
            elif tab_id not in self._tabs:
                raise TabError(f"Tab with ID {tab_id} not found")

            loop_task = asyncio.create_task(self._drive(tab_id, task))
            done, _ = await asyncio.wait({loop_task}, timeout=timeout)
            if loop_task in done:
                report = loop_task.result()
                logger.info("Task %s finished on %s: %s", task.id, tab_id, report.summary)
                return TaskResult(
                    task_id=task.id,
                    tab_id=tab_id,
                    success=report.success,
                    report=report,
                    error=None if report.success else report.error or report.summary,
                    duration_seconds=round(time.monotonic() - start, 3),
                )

            logger.warning("Task %s timed out after %.1fs", task.id, timeout)
            slot_handed_off = True
            cleanup = asyncio.create_task(self._abandon(loop_task, tab_id if owns_tab else None))
            self._cleanups.add(cleanup)
            cleanup.add_done_callback(self._cleanups.discard)
            return TaskResult(
                task_id=task.id,
                tab_id=tab_id,
                success=False,
                error=f"Task timeout after {timeout:g}s",
                duration_seconds=round(time.monotonic() - start, 3),
                timed_out=True,
            )
        except Exception as exc:
            logger.error("Task %s failed: %s", task.id, exc)
            return TaskResult(
                task_id=task.id,
                tab_id=tab_id,
                success=False,
                error=f"{type(exc).__name__}: {exc}",
                duration_seconds=round(time.monotonic() - start, 3),
            )
        finally:
            if not slot_handed_off:
                if owns_tab and tab_id is not None:
                    await self._close_quietly(tab_id)
                self._release()

    async def _drive(self, tab_id: str, task: ScheduledTask) -> RunReport:
        async with self._tabs.lease(tab_id) as page:
            return await self._run_goal(page, task)

    async def _abandon(self, loop_task: asyncio.Task, tab_id: str | None) -> None:
        try:
            loop_task.cancel()
            await asyncio.gather(loop_task, return_exceptions=True)
            if tab_id is not None:
                await self._close_quietly(tab_id)
        finally:
            self._release()

    async def _close_quietly(self, tab_id: str) -> None:
        if tab_id not in self._tabs:
            return
        try:
            await self._tabs.close_tab(tab_id)
        except Exception as exc:
            logger.warning("Cleanup of tab %s failed: %s", tab_id, exc)

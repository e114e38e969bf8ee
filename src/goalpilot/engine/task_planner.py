"""GoalPilot Task Planner: asks the oracle for exactly one next action.

The planner never hands the control loop an exception for a bad oracle
answer. Unparsable or invalid payloads, and exhausted oracle retries, turn
into a safe ``custom`` task that defers the decision to the next cycle.
Only BudgetExceededError propagates.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from goalpilot import models
from goalpilot.engine import prompts
from goalpilot.engine.oracle_gateway import OracleError
from goalpilot.engine.tasks import (
    Task,
    TaskKind,
    TaskValidationError,
    extract_json_object,
    is_http_url,
    parse_task_payload,
)

if TYPE_CHECKING:
    from goalpilot.engine.oracle_gateway import OracleGateway
    from goalpilot.engine.page_state import PageSnapshot

logger = logging.getLogger("goalpilot.engine.task_planner")

FALLBACK_DESCRIPTION = "Re-analyze the page and decide the next action"

_URL_RE = re.compile(r"https?://[^\s\"'<>]+")


def first_url(instruction: str) -> str | None:
    """The first http(s) URL mentioned in *instruction*, if any."""
    match = _URL_RE.search(instruction)
    if not match:
        return None
    url = match.group(0).rstrip(".,;:!?)")
    return url if is_http_url(url) else None


class TaskPlanner:
    """Turns (goal, history, page) into one validated Task."""

    def __init__(self, gateway: OracleGateway, history_window: int = models.HISTORY_WINDOW) -> None:
        self._gateway = gateway
        self._history_window = history_window

    async def plan_next(self, instruction: str, history: list[Task], page: PageSnapshot | None) -> Task:
        prompt = prompts.planning_prompt(instruction, history, page, self._history_window)
        task = await self._ask(prompt, purpose="plan")
        if task is None:
            task = self.fallback_task(instruction, page)
        logger.info("Planned %s task %s: %s", task.kind.value, task.id, task.description)
        return task

    async def plan_recovery(
        self,
        instruction: str,
        history: list[Task],
        failed_task: Task,
        error: str,
        page: PageSnapshot | None,
    ) -> Task:
        """Plan one task that works around *failed_task*."""
        prompt = prompts.recovery_prompt(instruction, history, failed_task, error, page, self._history_window)
        task = await self._ask(prompt, purpose="recover")
        if task is None:
            task = self.fallback_task(instruction, page)
        task.recovery_of = failed_task.id
        logger.info("Planned recovery %s task %s for %s", task.kind.value, task.id, failed_task.id)
        return task

    @staticmethod
    def fallback_task(instruction: str, page: PageSnapshot | None) -> Task:
        """Safe task used when the oracle gives no usable answer.

        With nothing observed yet and a URL in the instruction, the sensible
        first move is to open it.
        """
        if page is None and (url := first_url(instruction)):
            return Task(kind=TaskKind.NAVIGATE, description=f"Navigate to {url}", url=url)
        return Task(kind=TaskKind.CUSTOM, description=FALLBACK_DESCRIPTION)

    async def _ask(self, prompt: str, purpose: str) -> Task | None:
        try:
            raw_text = await self._gateway.complete(prompt, purpose=purpose)
        except OracleError as exc:
            logger.warning("Oracle unavailable while planning, using fallback task: %s", exc)
            return None

        try:
            return parse_task_payload(extract_json_object(raw_text))
        except TaskValidationError as exc:
            logger.warning("Invalid task from oracle, using fallback task: %s", exc)
        except ValueError as exc:
            logger.warning("Unparsable planner response, using fallback task: %s\nRaw: %s", exc, raw_text[:500])
        return None

"""GoalPilot Goal Evaluator: decides whether the goal has been reached.

Fails safe. No completed task, an oracle failure or an unusable answer all
mean "not achieved". A positive verdict must also clear the confidence gate.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from goalpilot import models
from goalpilot.engine import prompts
from goalpilot.engine.oracle_gateway import OracleError
from goalpilot.engine.tasks import Evaluation, EvaluationValidationError, extract_json_object, parse_evaluation_payload

if TYPE_CHECKING:
    from goalpilot.engine.oracle_gateway import OracleGateway
    from goalpilot.engine.page_state import PageSnapshot
    from goalpilot.engine.tasks import Task

logger = logging.getLogger("goalpilot.engine.goal_evaluator")


class GoalEvaluator:
    def __init__(self, gateway: OracleGateway, confidence_threshold: float = models.CONFIDENCE_THRESHOLD) -> None:
        self._gateway = gateway
        self._threshold = confidence_threshold
        self.last_evaluation: Evaluation | None = None

    @property
    def confidence_threshold(self) -> float:
        return self._threshold

    async def evaluate(self, instruction: str, history: list[Task], page: PageSnapshot | None) -> Evaluation | None:
        """Ask the oracle for a verdict. Returns None when none is usable."""
        completed = [t for t in history if t.completed]
        if not completed:
            return None
        failed = [t for t in history if t.failed]

        prompt = prompts.evaluation_prompt(instruction, completed, failed, page)
        try:
            raw_text = await self._gateway.complete(prompt, purpose="evaluate")
        except OracleError as exc:
            logger.warning("Oracle unavailable during goal check, treating as not achieved: %s", exc)
            return None

        try:
            return parse_evaluation_payload(extract_json_object(raw_text))
        except EvaluationValidationError as exc:
            logger.warning("Invalid evaluation from oracle, treating as not achieved: %s", exc)
        except ValueError as exc:
            logger.warning("Unparsable evaluation response, treating as not achieved: %s", exc)
        return None

    async def is_goal_achieved(self, instruction: str, history: list[Task], page: PageSnapshot | None) -> bool:
        if not any(t.completed for t in history):
            self.last_evaluation = None
            logger.info("Goal check skipped: no completed tasks yet")
            return False
        evaluation = await self.evaluate(instruction, history, page)
        self.last_evaluation = evaluation
        if evaluation is None:
            return False
        achieved = evaluation.passes(self._threshold)
        logger.info(
            "Goal check: achieved=%s confidence=%.2f (threshold %.2f) -> %s",
            evaluation.achieved,
            evaluation.confidence,
            self._threshold,
            achieved,
        )
        return achieved

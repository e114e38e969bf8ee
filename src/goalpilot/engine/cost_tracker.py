"""GoalPilot Cost Tracker: token accounting for oracle calls.

Records model, token counts and USD cost per oracle call, warns when a run
crosses a configurable share of its budget and hard-stops once the per-run
cap is exceeded.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import logging

from goalpilot.models import MODELS, PRICING

logger = logging.getLogger("goalpilot.engine.cost_tracker")

# Unknown model IDs are priced like the planner model
_FALLBACK_MODEL = MODELS["planner"]


class BudgetExceededError(Exception):
    """Raised when a run exceeds its per-run cost budget."""

    pass


@dataclasses.dataclass
class OracleCall:
    """Record of a single oracle call."""

    timestamp: str
    model: str
    input_tokens: int
    output_tokens: int
    cost_usd: float
    purpose: str  # "plan", "recover" or "evaluate"


@dataclasses.dataclass
class CostSummary:
    """Aggregated cost summary for a run."""

    total_cost_usd: float
    total_input_tokens: int
    total_output_tokens: int
    calls_by_model: dict[str, int]
    cost_by_model: dict[str, float]
    budget_limit_usd: float
    budget_remaining_usd: float
    budget_exceeded: bool
    warning_issued: bool
    call_count: int


class CostTracker:
    """Tracks oracle token costs for one run and enforces its budget.

    A ``per_run_usd`` of zero disables the cap.
    """

    def __init__(self, per_run_usd: float = 5.0, warn_at_pct: int = 80) -> None:
        self._per_run_usd = per_run_usd
        self._warn_at_pct = warn_at_pct
        self._calls: list[OracleCall] = []
        self._total_cost = 0.0
        self._warning_issued = False
        self._budget_exceeded = False

    def check_budget(self) -> None:
        """Raise BudgetExceededError if an earlier call already blew the cap."""
        if self._budget_exceeded:
            raise BudgetExceededError(
                f"Run budget exhausted: ${self._total_cost:.4f} > ${self._per_run_usd:.2f} limit"
            )

    def record_call(self, model: str, input_tokens: int, output_tokens: int, purpose: str = "") -> OracleCall:
        """Record an oracle call.

        Raises BudgetExceededError if the per-run cap is now exceeded.
        """
        cost = self.calculate_cost(model, input_tokens, output_tokens)
        call = OracleCall(
            timestamp=dt.datetime.now(dt.timezone.utc).isoformat(timespec="seconds"),
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=round(cost, 6),
            purpose=purpose,
        )
        self._calls.append(call)
        self._total_cost += cost

        if not self._warning_issued and self._per_run_usd > 0:
            if self._total_cost / self._per_run_usd * 100 >= self._warn_at_pct:
                self._warning_issued = True
                logger.warning(
                    "Oracle spend at $%.4f of $%.2f budget (%d%% threshold)",
                    self._total_cost,
                    self._per_run_usd,
                    self._warn_at_pct,
                )

        if self._per_run_usd > 0 and self._total_cost > self._per_run_usd:
            self._budget_exceeded = True
            logger.error("Run budget exceeded: $%.4f > $%.2f", self._total_cost, self._per_run_usd)
            raise BudgetExceededError(f"Run budget exceeded: ${self._total_cost:.4f} > ${self._per_run_usd:.2f} limit")

        return call

    @property
    def warning_issued(self) -> bool:
        return self._warning_issued

    @property
    def budget_exceeded(self) -> bool:
        return self._budget_exceeded

    @property
    def total_cost(self) -> float:
        return round(self._total_cost, 6)

    @property
    def calls(self) -> list[OracleCall]:
        return list(self._calls)

    def get_summary(self) -> CostSummary:
        calls_by_model: dict[str, int] = {}
        cost_by_model: dict[str, float] = {}
        for call in self._calls:
            calls_by_model[call.model] = calls_by_model.get(call.model, 0) + 1
            cost_by_model[call.model] = round(cost_by_model.get(call.model, 0.0) + call.cost_usd, 6)

        return CostSummary(
            total_cost_usd=round(self._total_cost, 6),
            total_input_tokens=sum(c.input_tokens for c in self._calls),
            total_output_tokens=sum(c.output_tokens for c in self._calls),
            calls_by_model=calls_by_model,
            cost_by_model=cost_by_model,
            budget_limit_usd=self._per_run_usd,
            budget_remaining_usd=round(max(0.0, self._per_run_usd - self._total_cost), 6),
            budget_exceeded=self._budget_exceeded,
            warning_issued=self._warning_issued,
            call_count=len(self._calls),
        )

    @staticmethod
    def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
        """USD cost of one call; unknown models fall back to planner pricing."""
        prices = PRICING.get(model) or PRICING[_FALLBACK_MODEL]
        return (input_tokens / 1_000_000) * prices["input"] + (output_tokens / 1_000_000) * prices["output"]

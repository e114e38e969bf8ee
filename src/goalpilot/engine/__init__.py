"""GoalPilot engine: the goal-driven browser automation core.

- OracleGateway: rate-governed, retrying access to the language model
- TaskPlanner: asks the oracle for exactly one next action
- ActionExecutor: translates Tasks into Playwright page calls
- DataExtractor: rule-based and preset structured reads from a page
- SelectorResolver: DOM snapshots and structural-path grounding
- GoalEvaluator: confidence-gated "is the goal achieved?" check
- ControlLoop: plan, execute, observe and evaluate until done
- TabManager / ConcurrencyScheduler: many goals at once, one tab each
- SessionStore: cookies and localStorage kept between runs
- CostTracker / ReportGenerator: token accounting and markdown reports
"""

from goalpilot.engine.action_executor import ActionExecutor, ActionResult, TaskExecutionError
from goalpilot.engine.control_loop import ControlLoop, LoopSettings, RunReport, RunStatus
from goalpilot.engine.cost_tracker import BudgetExceededError, CostTracker
from goalpilot.engine.data_extractor import DataExtractor, ExtractionRule
from goalpilot.engine.goal_evaluator import GoalEvaluator
from goalpilot.engine.oracle_gateway import (
    AnthropicTransport,
    OracleError,
    OracleFatalError,
    OracleGateway,
)
from goalpilot.engine.report_generator import ReportGenerator
from goalpilot.engine.scheduler import ConcurrencyScheduler, ScheduledTask, TaskResult
from goalpilot.engine.selector_resolver import DOMTree, SelectorResolver
from goalpilot.engine.session_store import SessionStore
from goalpilot.engine.tab_manager import TabManager
from goalpilot.engine.task_planner import TaskPlanner
from goalpilot.engine.tasks import Evaluation, Task, TaskKind

# BrowserSession imports Playwright lazily; import it from its module:
#   from goalpilot.engine.browser_session import BrowserSession

__all__ = [
    "ActionExecutor",
    "ActionResult",
    "AnthropicTransport",
    "BudgetExceededError",
    "ConcurrencyScheduler",
    "ControlLoop",
    "CostTracker",
    "DOMTree",
    "DataExtractor",
    "Evaluation",
    "ExtractionRule",
    "GoalEvaluator",
    "LoopSettings",
    "OracleError",
    "OracleFatalError",
    "OracleGateway",
    "ReportGenerator",
    "RunReport",
    "RunStatus",
    "ScheduledTask",
    "SelectorResolver",
    "SessionStore",
    "TabManager",
    "Task",
    "TaskExecutionError",
    "TaskKind",
    "TaskPlanner",
    "TaskResult",
]

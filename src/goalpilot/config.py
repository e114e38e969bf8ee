"""GoalPilot configuration management."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from goalpilot import models


class GoalPilotConfigError(Exception):
    """Raised when configuration is invalid or missing."""

    pass


_BROWSERS = ("chromium", "firefox", "webkit")
_OBSERVATION_POLICIES = ("all", "key", "minimal")
_FAILURE_MODES = ("total", "consecutive")


@dataclass
class GoalPilotConfig:
    """Configuration for a GoalPilot run."""

    # Paths
    project_dir: Path = field(default_factory=lambda: Path(".goalpilot"))
    artifacts_dir: Path = field(default_factory=lambda: Path(".goalpilot/artifacts"))
    sessions_dir: Path = field(default_factory=lambda: Path(".goalpilot/sessions"))

    # Oracle
    anthropic_api_key: str = ""
    model_planner: str = models.MODELS["planner"]
    model_evaluator: str = models.MODELS["evaluator"]
    max_attempts: int = models.DEFAULT_MAX_ATTEMPTS
    calls_per_window: int = models.DEFAULT_CALLS_PER_WINDOW
    window_seconds: float = models.DEFAULT_WINDOW_SECONDS
    rate_limit_delays: tuple[float, ...] = models.RATE_LIMIT_DELAYS
    backoff_base_seconds: float = models.BACKOFF_BASE_SECONDS
    backoff_max_seconds: float = models.BACKOFF_MAX_SECONDS
    ceiling_step: int = models.CEILING_STEP
    ceiling_floor: int = models.CEILING_FLOOR
    budget: float = models.DEFAULT_BUDGET_USD

    # Control loop
    max_cycles: int = models.MAX_CYCLES
    failure_ceiling: int = models.FAILURE_CEILING
    failure_mode: str = "total"
    confidence_threshold: float = models.CONFIDENCE_THRESHOLD
    recovery: bool = True
    observation: str = "all"
    task_wait_ms: int = models.TASK_WAIT_MS
    history_window: int = models.HISTORY_WINDOW

    # Executor
    click_settle_ms: int = models.CLICK_SETTLE_MS
    type_settle_ms: int = models.TYPE_SETTLE_MS
    action_timeout_ms: int = models.ACTION_TIMEOUT_MS
    page_load_timeout_ms: int = models.PAGE_LOAD_TIMEOUT_MS
    fast_mode: bool = False

    # Browser
    browser: str = "chromium"
    headless: bool = True
    viewport: tuple[int, int] = models.DEFAULT_VIEWPORT
    user_agent: str | None = None
    screenshots: bool = True

    # Scheduler
    max_concurrent_tasks: int = models.MAX_CONCURRENT_TASKS
    task_timeout_seconds: float = models.TASK_TIMEOUT_SECONDS
    max_tabs: int = models.MAX_TABS

    # Sessions
    persist_cookies: bool = True
    persist_local_storage: bool = True

    @classmethod
    def from_file(cls, config_path: Path) -> GoalPilotConfig:
        """Load config from a YAML file."""
        if not config_path.exists():
            raise GoalPilotConfigError(f"Config file not found: {config_path}\n\nTo fix: create {config_path}")
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise GoalPilotConfigError(f"Invalid YAML in {config_path}: {exc}") from exc
        if not isinstance(data, dict):
            raise GoalPilotConfigError(f"Config root must be a mapping: {config_path}")
        return cls._from_dict(data, config_path.parent)

    @classmethod
    def _from_dict(cls, data: dict[str, Any], project_dir: Path) -> GoalPilotConfig:
        """Create config from a dictionary of YAML sections."""
        config = cls()
        config.project_dir = project_dir
        config.artifacts_dir = project_dir / "artifacts"
        config.sessions_dir = project_dir / "sessions"

        try:
            oracle = _section(data, "oracle")
            if "model" in oracle:
                config.model_planner = str(oracle["model"])
            if "evaluator_model" in oracle:
                config.model_evaluator = str(oracle["evaluator_model"])
            if "max_attempts" in oracle:
                config.max_attempts = int(oracle["max_attempts"])
            if "calls_per_window" in oracle:
                config.calls_per_window = int(oracle["calls_per_window"])
            if "window_seconds" in oracle:
                config.window_seconds = float(oracle["window_seconds"])
            if "rate_limit_delays" in oracle:
                config.rate_limit_delays = tuple(float(d) for d in oracle["rate_limit_delays"])
            if "backoff_base_seconds" in oracle:
                config.backoff_base_seconds = float(oracle["backoff_base_seconds"])
            if "backoff_max_seconds" in oracle:
                config.backoff_max_seconds = float(oracle["backoff_max_seconds"])
            if "ceiling_step" in oracle:
                config.ceiling_step = int(oracle["ceiling_step"])
            if "ceiling_floor" in oracle:
                config.ceiling_floor = int(oracle["ceiling_floor"])
            if "budget_usd" in oracle:
                config.budget = float(oracle["budget_usd"])

            loop = _section(data, "loop")
            if "max_cycles" in loop:
                config.max_cycles = int(loop["max_cycles"])
            if "failure_ceiling" in loop:
                config.failure_ceiling = int(loop["failure_ceiling"])
            if "failure_mode" in loop:
                config.failure_mode = _choice(loop["failure_mode"], _FAILURE_MODES, "loop.failure_mode")
            if "confidence_threshold" in loop:
                config.confidence_threshold = float(loop["confidence_threshold"])
            if "recovery" in loop:
                config.recovery = bool(loop["recovery"])
            if "observation" in loop:
                config.observation = _choice(loop["observation"], _OBSERVATION_POLICIES, "loop.observation")
            if "task_wait_ms" in loop:
                config.task_wait_ms = int(loop["task_wait_ms"])
            if "history_window" in loop:
                config.history_window = int(loop["history_window"])

            executor = _section(data, "executor")
            if "click_settle_ms" in executor:
                config.click_settle_ms = int(executor["click_settle_ms"])
            if "type_settle_ms" in executor:
                config.type_settle_ms = int(executor["type_settle_ms"])
            if "action_timeout_ms" in executor:
                config.action_timeout_ms = int(executor["action_timeout_ms"])
            if "page_load_timeout_ms" in executor:
                config.page_load_timeout_ms = int(executor["page_load_timeout_ms"])
            if "fast_mode" in executor:
                config.fast_mode = bool(executor["fast_mode"])

            browser = _section(data, "browser")
            if "browser" in browser:
                config.browser = _choice(browser["browser"], _BROWSERS, "browser.browser")
            if "headless" in browser:
                config.headless = bool(browser["headless"])
            if "viewport" in browser:
                vp = browser["viewport"]
                if not isinstance(vp, dict):
                    raise GoalPilotConfigError("browser.viewport must be a mapping with width and height")
                config.viewport = (int(vp.get("width", 1400)), int(vp.get("height", 900)))
            if "user_agent" in browser:
                config.user_agent = str(browser["user_agent"])
            if "screenshots" in browser:
                config.screenshots = bool(browser["screenshots"])
            if "artifacts_dir" in browser:
                config.artifacts_dir = project_dir / browser["artifacts_dir"]

            scheduler = _section(data, "scheduler")
            if "max_concurrent_tasks" in scheduler:
                config.max_concurrent_tasks = int(scheduler["max_concurrent_tasks"])
            if "task_timeout_seconds" in scheduler:
                config.task_timeout_seconds = float(scheduler["task_timeout_seconds"])
            if "max_tabs" in scheduler:
                config.max_tabs = int(scheduler["max_tabs"])

            sessions = _section(data, "sessions")
            if "sessions_dir" in sessions:
                config.sessions_dir = project_dir / sessions["sessions_dir"]
            if "persist_cookies" in sessions:
                config.persist_cookies = bool(sessions["persist_cookies"])
            if "persist_local_storage" in sessions:
                config.persist_local_storage = bool(sessions["persist_local_storage"])
        except (TypeError, ValueError) as exc:
            raise GoalPilotConfigError(f"Invalid config value: {exc}") from exc

        if config.fast_mode:
            config.apply_fast_mode()
        config.validate()
        return config

    def apply_fast_mode(self) -> None:
        """Clamp settle delays and timeouts to the fast-mode presets."""
        self.fast_mode = True
        self.click_settle_ms = min(self.click_settle_ms, 600)
        self.type_settle_ms = min(self.type_settle_ms, 200)
        self.task_wait_ms = min(self.task_wait_ms, 300)
        self.action_timeout_ms = min(self.action_timeout_ms, 5000)
        self.page_load_timeout_ms = min(self.page_load_timeout_ms, 15_000)
        if self.observation == "all":
            self.observation = "key"

    def validate(self) -> None:
        """Reject values the engine cannot run with."""
        if self.max_attempts < 1:
            raise GoalPilotConfigError("oracle.max_attempts must be at least 1")
        if self.calls_per_window < 1:
            raise GoalPilotConfigError("oracle.calls_per_window must be at least 1")
        if self.window_seconds <= 0:
            raise GoalPilotConfigError("oracle.window_seconds must be positive")
        if not self.rate_limit_delays:
            raise GoalPilotConfigError("oracle.rate_limit_delays must not be empty")
        if self.ceiling_step < 1:
            raise GoalPilotConfigError("oracle.ceiling_step must be at least 1")
        if self.ceiling_floor < 1:
            raise GoalPilotConfigError("oracle.ceiling_floor must be at least 1")
        if self.ceiling_floor >= self.calls_per_window:
            raise GoalPilotConfigError(
                f"oracle.ceiling_floor ({self.ceiling_floor}) must be below "
                f"oracle.calls_per_window ({self.calls_per_window}) so throttling can lower the ceiling"
            )
        if self.max_cycles < 1:
            raise GoalPilotConfigError("loop.max_cycles must be at least 1")
        if self.failure_ceiling < 1:
            raise GoalPilotConfigError("loop.failure_ceiling must be at least 1")
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise GoalPilotConfigError("loop.confidence_threshold must be between 0 and 1")
        if self.max_concurrent_tasks < 1:
            raise GoalPilotConfigError("scheduler.max_concurrent_tasks must be at least 1")
        if self.task_timeout_seconds <= 0:
            raise GoalPilotConfigError("scheduler.task_timeout_seconds must be positive")


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise GoalPilotConfigError(f"Config section '{name}' must be a mapping")
    return section


def _choice(value: Any, allowed: tuple[str, ...], key: str) -> str:
    text = str(value).strip().lower()
    if text not in allowed:
        raise GoalPilotConfigError(f"{key} must be one of {', '.join(allowed)} (got {value!r})")
    return text

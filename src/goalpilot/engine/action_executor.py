"""GoalPilot Action Executor: translates Tasks into Playwright page calls.

Dispatches on the task kind. Required fields are checked before the driver
is touched, structural paths (``/html/body/...``) are grounded into CSS
locators, and mutating actions wait only a bounded settle delay rather than
for the network to go idle.

On a driver failure the executor captures a diagnostic screenshot, then
raises TaskExecutionError carrying the task id, cause and artifact path.
Screenshots land in the artifacts directory, or in a private temp directory
when none is configured. Artifact names are reduced to a single safe path
component.
"""

from __future__ import annotations

import dataclasses
import logging
import re
import tempfile
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

from goalpilot import models
from goalpilot.engine.data_extractor import DataExtractor, ExtractionRule
from goalpilot.engine.selector_resolver import SelectorResolver
from goalpilot.engine.tasks import Task, TaskKind, TaskValidationError, validate_task_fields

if TYPE_CHECKING:
    from playwright.async_api import Page

logger = logging.getLogger("goalpilot.engine.action_executor")

MAX_EXTRACT_CHARS = 5000

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class TaskExecutionError(Exception):
    """Raised when a task cannot be carried out against the page."""

    def __init__(self, task_id: str, cause: BaseException, artifact: str | None = None) -> None:
        super().__init__(f"Task {task_id} failed: {cause}")
        self.task_id = task_id
        self.cause = cause
        self.artifact = artifact


@dataclasses.dataclass
class ActionResult:
    """Result of executing a single task against the browser."""

    task_id: str
    kind: TaskKind
    value: Any = None
    locator: str | None = None  # driver-native locator actually used
    duration_ms: float = 0.0


@dataclasses.dataclass
class ExecutorTimings:
    click_settle_ms: int = models.CLICK_SETTLE_MS
    type_settle_ms: int = models.TYPE_SETTLE_MS
    action_timeout_ms: int = models.ACTION_TIMEOUT_MS
    page_load_timeout_ms: int = models.PAGE_LOAD_TIMEOUT_MS

    @classmethod
    def from_config(cls, config: Any) -> ExecutorTimings:
        return cls(
            click_settle_ms=config.click_settle_ms,
            type_settle_ms=config.type_settle_ms,
            action_timeout_ms=config.action_timeout_ms,
            page_load_timeout_ms=config.page_load_timeout_ms,
        )


class ActionExecutor:
    """Executes validated Tasks on one Playwright page."""

    def __init__(
        self,
        page: Page,
        resolver: SelectorResolver | None = None,
        timings: ExecutorTimings | None = None,
        artifacts_dir: Path | None = None,
    ) -> None:
        self._page = page
        self._resolver = resolver or SelectorResolver()
        self._timings = timings or ExecutorTimings()
        self._artifacts_dir = artifacts_dir

    @property
    def page(self) -> Page:
        return self._page

    async def execute(self, task: Task) -> ActionResult:
        """Run *task* and return its result.

        Raises TaskExecutionError for invalid tasks (before any driver call)
        and for driver failures (after a best-effort failure screenshot).
        """
        try:
            validate_task_fields(task)
        except TaskValidationError as exc:
            logger.warning("Rejected %s task %s: %s", task.kind.value, task.id, exc)
            raise TaskExecutionError(task.id, exc) from exc

        start = time.monotonic()
        result = ActionResult(task_id=task.id, kind=task.kind)
        try:
            await self._dispatch(task, result)
        except Exception as exc:
            artifact = await self._capture_failure(task)
            logger.warning("Task %s (%s) failed: %s", task.id, task.kind.value, exc)
            raise TaskExecutionError(task.id, exc, artifact) from exc
        result.duration_ms = round((time.monotonic() - start) * 1000, 1)
        logger.info("Executed %s task %s in %.0fms", task.kind.value, task.id, result.duration_ms)
        return result

    # -- Dispatch ----------------------------------------------------------------

    async def _dispatch(self, task: Task, result: ActionResult) -> None:
        kind = task.kind
        if kind is TaskKind.NAVIGATE:
            await self._do_navigate(task, result)
        elif kind is TaskKind.CLICK:
            await self._do_click(task, result)
        elif kind is TaskKind.CLICK_BY_TEXT:
            await self._click_text(task.click_text or task.text or "", result)
            await self._settle(self._timings.click_settle_ms)
        elif kind is TaskKind.TYPE:
            await self._do_type(task, result)
        elif kind is TaskKind.WAIT:
            await self._do_wait(task, result)
        elif kind is TaskKind.EXTRACT:
            await self._do_extract(task, result)
        elif kind is TaskKind.SCREENSHOT:
            await self._do_screenshot(task, result)
        else:
            # custom and complete carry no browser effect
            result.value = None

    def _ground(self, selector: str) -> str:
        return self._resolver.ground(selector)

    async def _settle(self, ms: int) -> None:
        if ms > 0:
            await self._page.wait_for_timeout(ms)

    async def _do_navigate(self, task: Task, result: ActionResult) -> None:
        await self._page.goto(
            task.url,
            wait_until="domcontentloaded",
            timeout=self._timings.page_load_timeout_ms,
        )
        result.value = self._page.url

    async def _do_click(self, task: Task, result: ActionResult) -> None:
        if task.selector:
            locator = self._ground(task.selector)
            result.locator = locator
            await self._page.click(locator, timeout=self._timings.action_timeout_ms)
        else:
            await self._click_text(task.click_text or "", result)
        await self._settle(self._timings.click_settle_ms)

    async def _click_text(self, text: str, result: ActionResult) -> None:
        # Exact visible text first, then substring
        locator = self._page.get_by_text(text, exact=True)
        if await locator.count() == 0:
            locator = self._page.get_by_text(text)
        result.locator = f"text={text}"
        await locator.first.click(timeout=self._timings.action_timeout_ms)

    async def _do_type(self, task: Task, result: ActionResult) -> None:
        locator = self._ground(task.selector or "")
        result.locator = locator
        await self._page.fill(locator, task.text or "", timeout=self._timings.action_timeout_ms)
        await self._settle(self._timings.type_settle_ms)

    async def _do_wait(self, task: Task, result: ActionResult) -> None:
        if task.selector:
            locator = self._ground(task.selector)
            result.locator = locator
            await self._page.wait_for_selector(locator, timeout=self._timings.action_timeout_ms)
        else:
            await self._page.wait_for_timeout(task.wait_ms or 0)

    async def _do_extract(self, task: Task, result: ActionResult) -> None:
        if task.preset or task.rules or task.attribute or task.multiple:
            await self._extract_structured(task, result)
            return
        locator = self._ground(task.selector) if task.selector else "body"
        result.locator = locator
        text = await self._page.inner_text(locator, timeout=self._timings.action_timeout_ms)
        result.value = text[:MAX_EXTRACT_CHARS]

    async def _extract_structured(self, task: Task, result: ActionResult) -> None:
        extractor = DataExtractor(self._page)
        if task.preset:
            scope = self._ground(task.selector) if task.selector else None
            result.locator = scope
            result.value = await extractor.extract_preset(task.preset, scope)
        elif task.rules:
            rules = [dataclasses.replace(rule, selector=self._ground(rule.selector)) for rule in task.rules]
            result.value = await extractor.extract_data(rules)
        else:
            locator = self._ground(task.selector) if task.selector else "body"
            result.locator = locator
            rule = ExtractionRule("value", locator, attribute=task.attribute, multiple=task.multiple)
            result.value = await extractor.extract_data([rule])

    async def _do_screenshot(self, task: Task, result: ActionResult) -> None:
        path = self._artifact_path(f"{task.id}.png")
        await self._page.screenshot(path=str(path))
        result.value = str(path)

    # -- Artifacts ---------------------------------------------------------------

    @property
    def artifacts_dir(self) -> Path:
        """Where screenshots go; a private temp directory when none was given."""
        if self._artifacts_dir is None:
            self._artifacts_dir = Path(tempfile.mkdtemp(prefix="goalpilot-artifacts-"))
            logger.info("No artifacts directory configured, using %s", self._artifacts_dir)
        return self._artifacts_dir

    def _artifact_path(self, filename: str) -> Path:
        root = self.artifacts_dir
        root.mkdir(parents=True, exist_ok=True)
        path = root / safe_filename(filename)
        if path.resolve().parent != root.resolve():
            raise ValueError(f"Artifact name {filename!r} escapes {root}")
        return path

    async def _capture_failure(self, task: Task) -> str | None:
        """Best-effort screenshot of the page as it was when the task failed."""
        try:
            path = self._artifact_path(f"{task.id}-failure.png")
            await self._page.screenshot(path=str(path))
        except Exception as exc:
            logger.warning("Could not capture failure screenshot for %s: %s", task.id, exc)
            return None
        return str(path)


def safe_filename(name: str) -> str:
    """Reduce *name* to a single path component of ``[A-Za-z0-9_.-]``."""
    cleaned = _UNSAFE_FILENAME_CHARS.sub("_", name).lstrip(".")
    return cleaned or "artifact"

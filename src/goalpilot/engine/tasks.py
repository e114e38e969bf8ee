"""GoalPilot Tasks: the plannable browser actions and their lifecycle.

A Task is created by the planner in the *planned* state, moves to
*executing* when handed to the executor and ends in exactly one of
*completed* (result attached) or *failed* (error attached).

Oracle responses are untrusted; ``parse_task_payload`` and
``parse_evaluation_payload`` turn them into validated values or raise.
"""

from __future__ import annotations

import dataclasses
import enum
import json
import logging
import re
import uuid
from typing import Any
from urllib.parse import urlparse

from goalpilot.engine.data_extractor import PRESETS, ExtractionRule

logger = logging.getLogger("goalpilot.engine.tasks")


class TaskValidationError(ValueError):
    """Raised when a task payload is malformed or misses a required field."""

    pass


class EvaluationValidationError(ValueError):
    """Raised when a goal evaluation payload is malformed."""

    pass


class TaskStateError(RuntimeError):
    """Raised on an illegal task lifecycle transition."""

    pass


class TaskKind(str, enum.Enum):
    NAVIGATE = "navigate"
    CLICK = "click"
    CLICK_BY_TEXT = "clickByText"
    TYPE = "type"
    WAIT = "wait"
    EXTRACT = "extract"
    SCREENSHOT = "screenshot"
    CUSTOM = "custom"
    COMPLETE = "complete"


class TaskStatus(str, enum.Enum):
    PLANNED = "planned"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


# Spellings the oracle uses for the same kind
_KIND_ALIASES = {
    "clickbytext": TaskKind.CLICK_BY_TEXT,
    "click_by_text": TaskKind.CLICK_BY_TEXT,
    "fill": TaskKind.TYPE,
    "goto": TaskKind.NAVIGATE,
    "analyze": TaskKind.CUSTOM,
    "done": TaskKind.COMPLETE,
}


def _new_task_id() -> str:
    return f"task-{uuid.uuid4().hex[:8]}"


@dataclasses.dataclass
class Task:
    """One discrete browser action plus its outcome."""

    kind: TaskKind
    description: str
    id: str = dataclasses.field(default_factory=_new_task_id)
    selector: str | None = None
    click_text: str | None = None
    text: str | None = None
    url: str | None = None
    wait_ms: int | None = None
    # extract: a preset, explicit rules, or one selector read by attribute or all matches
    preset: str | None = None
    rules: list[ExtractionRule] | None = None
    attribute: str | None = None
    multiple: bool = False
    reasoning: str = ""
    status: TaskStatus = TaskStatus.PLANNED
    result: Any = None
    error: str | None = None
    recovery_of: str | None = None  # id of the failed task this one recovers
    artifact: str | None = None  # diagnostic screenshot captured on failure

    @property
    def completed(self) -> bool:
        return self.status is TaskStatus.COMPLETED

    @property
    def failed(self) -> bool:
        return self.status is TaskStatus.FAILED

    @property
    def is_recovery(self) -> bool:
        return self.recovery_of is not None

    # -- Lifecycle -----------------------------------------------------------

    def start(self) -> None:
        if self.status is not TaskStatus.PLANNED:
            raise TaskStateError(f"Task {self.id} cannot start from state {self.status.value}")
        self.status = TaskStatus.EXECUTING

    def complete(self, result: Any = None) -> None:
        if self.status is not TaskStatus.EXECUTING:
            raise TaskStateError(f"Task {self.id} cannot complete from state {self.status.value}")
        self.status = TaskStatus.COMPLETED
        self.result = result

    def fail(self, error: str, artifact: str | None = None) -> None:
        if self.status is not TaskStatus.EXECUTING:
            raise TaskStateError(f"Task {self.id} cannot fail from state {self.status.value}")
        self.status = TaskStatus.FAILED
        self.error = error
        self.artifact = artifact

    def history_line(self) -> str:
        """Compact one-line rendering used in prompts and reports."""
        if self.completed:
            marker = "OK"
        elif self.failed:
            marker = "FAILED"
        else:
            marker = self.status.value.upper()
        line = f"[{marker}] {self.kind.value}: {self.description}"
        if self.failed and self.error:
            line += f" (error: {self.error[:120]})"
        return line

    def to_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        data["kind"] = self.kind.value
        data["status"] = self.status.value
        data["completed"] = self.completed
        return data


@dataclasses.dataclass(frozen=True)
class Evaluation:
    """The oracle's verdict on whether the goal is satisfied."""

    achieved: bool
    confidence: float
    reasoning: str = ""

    def passes(self, threshold: float) -> bool:
        return self.achieved and self.confidence > threshold


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------


def extract_json_object(raw_text: str) -> dict[str, Any]:
    """Parse a JSON object out of an oracle response.

    Handles markdown code fences and prose around the object.
    Raises ValueError if no JSON object can be recovered.
    """
    text = raw_text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        if lines and lines[0].strip().startswith("```"):
            lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines).strip()

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", raw_text, re.DOTALL)
        if not match:
            raise ValueError(f"No JSON object in response: {raw_text[:200]!r}") from None
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Unparsable JSON in response: {exc}") from exc
        logger.debug("Extracted JSON object from prose response")

    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise TaskValidationError(f"Field '{key}' must be a string, got {type(value).__name__}")
    return value.strip() or None


def _parse_kind(value: Any) -> TaskKind:
    if not isinstance(value, str) or not value.strip():
        raise TaskValidationError(f"Missing or invalid action kind: {value!r}")
    raw = value.strip()
    try:
        return TaskKind(raw)
    except ValueError:
        pass
    alias = _KIND_ALIASES.get(raw.lower())
    if alias is None:
        raise TaskValidationError(f"Unknown action kind: {raw!r}")
    return alias


def is_http_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def parse_task_payload(data: dict[str, Any]) -> Task:
    """Build a validated Task from an oracle payload.

    The kind may be named under ``action`` or ``type``; fields may be nested
    under ``parameters``. Any ``id`` in the payload is ignored; task ids are
    always generated locally.
    """
    if not isinstance(data, dict):
        raise TaskValidationError(f"Task payload must be an object, got {type(data).__name__}")

    fields = dict(data)
    params = fields.pop("parameters", None)
    if isinstance(params, dict):
        for key, value in params.items():
            fields.setdefault(key, value)

    kind = _parse_kind(fields.get("action") or fields.get("type"))

    wait_ms = fields.get("waitTime", fields.get("wait_ms"))
    if wait_ms is not None:
        if isinstance(wait_ms, bool) or not isinstance(wait_ms, (int, float)) or wait_ms < 0:
            raise TaskValidationError(f"Field 'waitTime' must be a non-negative number, got {wait_ms!r}")
        wait_ms = int(wait_ms)

    multiple = fields.get("multiple", False)
    if not isinstance(multiple, bool):
        raise TaskValidationError(f"Field 'multiple' must be a boolean, got {multiple!r}")

    rules = fields.get("rules")
    if rules is not None:
        if not isinstance(rules, list) or not rules:
            raise TaskValidationError("Field 'rules' must be a non-empty list")
        try:
            rules = [ExtractionRule.from_dict(rule) for rule in rules]
        except ValueError as exc:
            raise TaskValidationError(str(exc)) from exc

    description = _optional_str(fields, "description") or f"{kind.value} action"
    task = Task(
        kind=kind,
        description=description,
        selector=_optional_str(fields, "selector"),
        click_text=_optional_str(fields, "clickText") or _optional_str(fields, "click_text"),
        text=fields.get("text") if isinstance(fields.get("text"), str) else _optional_str(fields, "text"),
        url=_optional_str(fields, "url"),
        wait_ms=wait_ms,
        preset=_optional_str(fields, "preset"),
        rules=rules,
        attribute=_optional_str(fields, "attribute"),
        multiple=multiple,
        reasoning=_optional_str(fields, "reasoning") or "",
    )
    validate_task_fields(task)
    return task


def validate_task_fields(task: Task) -> None:
    """Check the fields each kind requires. Raises TaskValidationError."""
    kind = task.kind
    if kind is TaskKind.NAVIGATE:
        if not task.url:
            raise TaskValidationError("navigate requires a url")
        if not is_http_url(task.url):
            raise TaskValidationError(f"navigate url must be http(s): {task.url!r}")
    elif kind is TaskKind.CLICK:
        if not task.selector and not task.click_text:
            raise TaskValidationError("click requires a selector or clickText")
    elif kind is TaskKind.CLICK_BY_TEXT:
        if not (task.click_text or task.text):
            raise TaskValidationError("clickByText requires clickText")
    elif kind is TaskKind.TYPE:
        if not task.selector:
            raise TaskValidationError("type requires a selector")
        if task.text is None:
            raise TaskValidationError("type requires text")
    elif kind is TaskKind.WAIT:
        if task.wait_ms is None and not task.selector:
            raise TaskValidationError("wait requires waitTime or a selector")
    elif kind is TaskKind.EXTRACT:
        if task.preset is not None and task.preset not in PRESETS:
            raise TaskValidationError(f"extract preset must be one of {', '.join(PRESETS)}, got {task.preset!r}")
        if task.preset and task.rules:
            raise TaskValidationError("extract takes a preset or rules, not both")


def parse_evaluation_payload(data: dict[str, Any]) -> Evaluation:
    """Build a validated Evaluation from an oracle payload."""
    if not isinstance(data, dict):
        raise EvaluationValidationError(f"Evaluation payload must be an object, got {type(data).__name__}")

    achieved = data.get("achieved")
    if not isinstance(achieved, bool):
        raise EvaluationValidationError(f"'achieved' must be a boolean, got {achieved!r}")

    confidence = data.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise EvaluationValidationError(f"'confidence' must be a number, got {confidence!r}")
    if not 0.0 <= float(confidence) <= 1.0:
        raise EvaluationValidationError(f"'confidence' must be within [0, 1], got {confidence}")

    reasoning = data.get("reasoning", "")
    if reasoning is None:
        reasoning = ""
    if not isinstance(reasoning, str):
        raise EvaluationValidationError("'reasoning' must be a string")

    return Evaluation(achieved=achieved, confidence=float(confidence), reasoning=reasoning)

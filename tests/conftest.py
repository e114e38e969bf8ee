"""Shared fixtures and fakes for GoalPilot unit tests."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import pytest
import yaml

from goalpilot.engine.control_loop import RunReport, RunStatus


# ---------------------------------------------------------------------------
# Fake Playwright objects
# ---------------------------------------------------------------------------

class FakeLocator:
    """Stands in for the Locator returned by ``page.get_by_text``."""

    def __init__(self, page: FakePage, text: str, exact: bool, matches: int) -> None:
        self._page = page
        self.text = text
        self.exact = exact
        self.matches = matches

    async def count(self) -> int:
        return self.matches

    @property
    def first(self) -> FakeLocator:
        return self

    async def click(self, timeout: float | None = None) -> None:
        self._page._record("locator_click", self.text, exact=self.exact, timeout=timeout)
        if self.matches == 0:
            raise TimeoutError(f"No element with text {self.text!r}")


class FakePage:
    """Async page double that records every driver call.

    ``failures`` maps a method name to the exception it should raise.
    ``text_counts`` maps ``(text, exact)`` to the number of matches.
    ``elements`` maps a selector to the elements it matches, each a dict
    with ``text`` and ``attrs``; ``tables`` maps a selector to the
    structured table the page would report for it.
    """

    def __init__(
        self,
        url: str = "about:blank",
        title: str = "",
        dom: Any = None,
        context: FakeContext | None = None,
    ) -> None:
        self.url = url
        self._title = title
        self.dom = dom
        self.context = context
        self.calls: list[tuple[str, tuple, dict]] = []
        self.failures: dict[str, BaseException] = {}
        self.text_counts: dict[tuple[str, bool], int] = {}
        self.inner_text_value = "page text"
        self.storage: dict[str, str] = {}
        self.elements: dict[str, list[dict[str, Any]]] = {}
        self.tables: dict[str, Any] = {}
        self.closed = False

    def _record(self, name: str, *args: Any, **kwargs: Any) -> None:
        self.calls.append((name, args, kwargs))
        if name in self.failures:
            raise self.failures[name]

    def call_names(self) -> list[str]:
        return [name for name, _args, _kwargs in self.calls]

    async def title(self) -> str:
        self._record("title")
        return self._title

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self._record("evaluate", arg)
        if arg == "local":
            return dict(self.storage)
        if isinstance(arg, list) and arg and arg[0] == "local":
            self.storage.update(arg[1])
            return None
        if isinstance(arg, dict) and "rules" in arg:
            return {rule["key"]: self._read_rule(rule) for rule in arg["rules"]}
        if isinstance(arg, dict) and "table" in arg:
            return self.tables.get(arg["table"])
        return self.dom

    def _read_rule(self, rule: dict[str, Any]) -> Any:
        def read(element: dict[str, Any]) -> str | None:
            if rule.get("attribute"):
                value = element.get("attrs", {}).get(rule["attribute"])
            else:
                value = element.get("text")
            return (value.strip() or None) if value is not None else None

        matches = self.elements.get(rule["selector"], [])
        if rule.get("multiple"):
            return [read(element) for element in matches]
        return read(matches[0]) if matches else None

    async def goto(self, url: str, wait_until: str | None = None, timeout: float | None = None) -> None:
        self._record("goto", url, wait_until=wait_until, timeout=timeout)
        self.url = url

    async def click(self, selector: str, timeout: float | None = None) -> None:
        self._record("click", selector, timeout=timeout)

    async def fill(self, selector: str, value: str, timeout: float | None = None) -> None:
        self._record("fill", selector, value, timeout=timeout)

    async def wait_for_selector(self, selector: str, timeout: float | None = None) -> None:
        self._record("wait_for_selector", selector, timeout=timeout)

    async def wait_for_timeout(self, ms: float) -> None:
        self._record("wait_for_timeout", ms)

    async def inner_text(self, selector: str, timeout: float | None = None) -> str:
        self._record("inner_text", selector, timeout=timeout)
        return self.inner_text_value

    async def screenshot(self, path: str | None = None) -> bytes:
        self._record("screenshot", path=path)
        data = b"\x89PNG fake"
        if path:
            Path(path).write_bytes(data)
        return data

    def get_by_text(self, text: str, exact: bool = False) -> FakeLocator:
        self._record("get_by_text", text, exact=exact)
        return FakeLocator(self, text, exact, self.text_counts.get((text, exact), 1))

    async def bring_to_front(self) -> None:
        self._record("bring_to_front")

    async def close(self) -> None:
        self._record("close")
        self.closed = True
        if self.context is not None:
            self.context._page_closed(self)


class FakeContext:
    """BrowserContext double that tracks open pages and cookies."""

    def __init__(self) -> None:
        self.pages: list[FakePage] = []
        self.created = 0
        self.max_open = 0
        self.cookie_jar: list[dict[str, Any]] = []

    async def new_page(self) -> FakePage:
        page = FakePage(context=self)
        self.pages.append(page)
        self.created += 1
        self.max_open = max(self.max_open, len(self.pages))
        return page

    def _page_closed(self, page: FakePage) -> None:
        if page in self.pages:
            self.pages.remove(page)

    async def cookies(self) -> list[dict[str, Any]]:
        return [dict(c) for c in self.cookie_jar]

    async def add_cookies(self, cookies: list[dict[str, Any]]) -> None:
        self.cookie_jar.extend(cookies)


# ---------------------------------------------------------------------------
# Oracle doubles
# ---------------------------------------------------------------------------

class FakeClock:
    """Manual clock: ``sleep`` advances time instantly and records the delay."""

    def __init__(self, start: float = 0.0) -> None:
        self.time = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.time

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.time += seconds
        await asyncio.sleep(0)

    def advance(self, seconds: float) -> None:
        self.time += seconds


class ScriptedTransport:
    """OracleTransport that replays canned responses.

    Responses are queued per purpose (``plan``, ``recover``, ``evaluate``)
    with ``default`` as fallback. The last response in a queue repeats.
    An exception instance in a queue is raised instead of returned.
    """

    def __init__(self, default: list[Any] | None = None, **by_purpose: list[Any]) -> None:
        self.queues: dict[str, list[Any]] = {k: list(v) for k, v in by_purpose.items()}
        self.default = list(default or [])
        self.calls: list[tuple[str, str]] = []

    async def complete(self, prompt: str, attachments: Any = (), purpose: str = "") -> str:
        self.calls.append((purpose, prompt))
        queue = self.queues.get(purpose, self.default)
        if not queue:
            raise RuntimeError(f"no scripted oracle response for purpose {purpose!r}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, BaseException):
            raise item
        return item

    def purposes(self) -> list[str]:
        return [purpose for purpose, _prompt in self.calls]


def task_json(**fields: Any) -> str:
    """Serialize a planner answer."""
    return json.dumps(fields)


def verdict_json(achieved: bool, confidence: float, reasoning: str = "") -> str:
    return json.dumps({"achieved": achieved, "confidence": confidence, "reasoning": reasoning})


def make_report(instruction: str = "goal", success: bool = True, **overrides: Any) -> RunReport:
    fields: dict[str, Any] = dict(
        instruction=instruction,
        success=success,
        status=RunStatus.GOAL_ACHIEVED if success else RunStatus.MAX_CYCLES,
        history=[],
        summary="Completed 1 of 1 tasks (0 failed) in 1 cycles; goal achieved" if success else "gave up",
        cycles=1,
        completed_count=1 if success else 0,
        failed_count=0,
    )
    fields.update(overrides)
    return RunReport(**fields)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_page() -> FakePage:
    return FakePage(url="https://example.com/", title="Example Domain")


@pytest.fixture
def fake_context() -> FakeContext:
    return FakeContext()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sample_dom() -> dict[str, Any]:
    """Raw extraction-script output for a small search page."""
    return {
        "rootId": "dom-5",
        "map": {
            "dom-0": {"type": "TEXT_NODE", "text": "Welcome", "path": "/html/body/h1"},
            "dom-1": {"tag": "h1", "attributes": {}, "children": ["dom-0"], "path": "/html/body/h1"},
            "dom-2": {
                "tag": "input",
                "attributes": {"id": "q", "name": "q", "type": "text"},
                "children": [],
                "path": "/html/body/form/input",
            },
            "dom-3": {
                "tag": "button",
                "attributes": {"type": "submit", "class": "btn primary"},
                "children": [],
                "path": "/html/body/form/button",
            },
            "dom-4": {
                "tag": "form",
                "attributes": {"action": "/search"},
                "children": ["dom-2", "dom-3"],
                "path": "/html/body/form",
            },
            "dom-6": {"tag": "script", "attributes": {}, "children": [], "path": "/html/body/script"},
            "dom-5": {
                "tag": "body",
                "attributes": {},
                "children": ["dom-1", "dom-4", "dom-6", "dom-99"],
                "path": "/html/body",
            },
        },
    }


@pytest.fixture
def tmp_project_dir(tmp_path: Path) -> Path:
    """A .goalpilot/ project directory holding a minimal config.yaml."""
    project_dir = tmp_path / ".goalpilot"
    project_dir.mkdir()
    config_data = {
        "oracle": {"budget_usd": 2.5},
        "browser": {"headless": True, "viewport": {"width": 1280, "height": 720}},
    }
    (project_dir / "config.yaml").write_text(yaml.dump(config_data, default_flow_style=False), encoding="utf-8")
    return project_dir

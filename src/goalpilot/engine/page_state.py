"""Page observations handed to the planner and evaluator."""

from __future__ import annotations

import dataclasses
import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING

from goalpilot.engine.selector_resolver import DOMTree, SelectorResolver, summarize

if TYPE_CHECKING:
    from playwright.async_api import Page

logger = logging.getLogger("goalpilot.engine.page_state")


@dataclasses.dataclass(frozen=True)
class PageSnapshot:
    """One observation of the page. Replaced wholesale, never mutated."""

    url: str
    title: str
    dom_summary: str
    dom_tree: DOMTree | None = None
    screenshot_ref: str | None = None
    extraction_error: str | None = None


async def observe_page(
    page: Page,
    resolver: SelectorResolver,
    artifacts_dir: Path | None = None,
    with_screenshot: bool = False,
    max_elements: int = 300,
) -> PageSnapshot:
    """Capture url, title, DOM tree and summary, and optionally a screenshot.

    Tolerates a page that fails part-way: missing pieces are left empty and
    the first failure is recorded in ``extraction_error``.
    """
    error: str | None = None
    url = page.url
    try:
        title = await page.title()
    except Exception as exc:
        title = ""
        error = f"title unavailable: {exc}"

    tree = await resolver.extract(page)
    summary = summarize(tree, max_elements=max_elements)

    screenshot_ref: str | None = None
    if with_screenshot and artifacts_dir is not None:
        artifacts_dir.mkdir(parents=True, exist_ok=True)
        path = artifacts_dir / f"observe-{int(time.time() * 1000)}.png"
        try:
            await page.screenshot(path=str(path))
            screenshot_ref = str(path)
        except Exception as exc:
            logger.warning("Observation screenshot failed: %s", exc)
            error = error or f"screenshot unavailable: {exc}"

    return PageSnapshot(
        url=url,
        title=title,
        dom_summary=summary,
        dom_tree=tree,
        screenshot_ref=screenshot_ref,
        extraction_error=error,
    )

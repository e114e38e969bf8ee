"""GoalPilot Browser Session: Playwright browser and context lifecycle."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from goalpilot import models

if TYPE_CHECKING:
    from playwright.async_api import BrowserContext, Page

logger = logging.getLogger("goalpilot.engine.browser_session")


class BrowserSession:
    """Owns one Playwright browser and a single context.

    Use as an async context manager, or call ``start()``/``stop()``.
    """

    def __init__(
        self,
        browser: str = "chromium",
        headless: bool = True,
        viewport: tuple[int, int] = models.DEFAULT_VIEWPORT,
        user_agent: str | None = None,
        action_timeout_ms: int = models.ACTION_TIMEOUT_MS,
        page_load_timeout_ms: int = models.PAGE_LOAD_TIMEOUT_MS,
    ) -> None:
        self._browser_type = browser
        self._headless = headless
        self._viewport = viewport
        self._user_agent = user_agent
        self._action_timeout_ms = action_timeout_ms
        self._page_load_timeout_ms = page_load_timeout_ms

        # Managed lifecycle, set by start()/stop()
        self._playwright: Any = None
        self._browser: Any = None
        self._context: Any = None

    @classmethod
    def from_config(cls, config: Any) -> BrowserSession:
        return cls(
            browser=config.browser,
            headless=config.headless,
            viewport=config.viewport,
            user_agent=config.user_agent,
            action_timeout_ms=config.action_timeout_ms,
            page_load_timeout_ms=config.page_load_timeout_ms,
        )

    @property
    def context(self) -> BrowserContext:
        if self._context is None:
            raise RuntimeError("Browser session not started")
        return self._context

    async def __aenter__(self) -> BrowserSession:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    # -- Browser Lifecycle ---------------------------------------------------

    async def start(self) -> None:
        """Launch the browser and create the shared context."""
        from playwright.async_api import async_playwright

        self._playwright = await async_playwright().start()
        launcher = getattr(self._playwright, self._browser_type)
        self._browser = await launcher.launch(headless=self._headless)

        kwargs: dict[str, Any] = {"viewport": {"width": self._viewport[0], "height": self._viewport[1]}}
        if self._user_agent:
            kwargs["user_agent"] = self._user_agent
        self._context = await self._browser.new_context(**kwargs)
        self._context.set_default_timeout(self._action_timeout_ms)
        self._context.set_default_navigation_timeout(self._page_load_timeout_ms)
        logger.info(
            "Launched %s (headless=%s, viewport=%dx%d)",
            self._browser_type,
            self._headless,
            self._viewport[0],
            self._viewport[1],
        )

    async def new_page(self) -> Page:
        return await self.context.new_page()

    async def stop(self) -> None:
        """Close context, browser and Playwright; each step is best-effort."""
        for name, closer in (
            ("context", self._context.close if self._context is not None else None),
            ("browser", self._browser.close if self._browser is not None else None),
            ("playwright", self._playwright.stop if self._playwright is not None else None),
        ):
            if closer is None:
                continue
            try:
                await closer()
            except Exception as exc:
                logger.warning("Failed to close %s: %s", name, exc)
        self._context = None
        self._browser = None
        self._playwright = None

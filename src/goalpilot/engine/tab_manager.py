"""GoalPilot Tab Manager: tabs within one Playwright browser context.

Tracks each open page as a ``TabSession``, enforces a maximum tab count and
hands out exclusive leases so that no two control loops drive the same tab
at once.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
import time
from typing import TYPE_CHECKING, AsyncIterator, Awaitable, Callable, TypeVar

from goalpilot import models

if TYPE_CHECKING:
    from playwright.async_api import BrowserContext, Page

logger = logging.getLogger("goalpilot.engine.tab_manager")

T = TypeVar("T")


class TabError(RuntimeError):
    """Raised for unknown tab ids or when the tab limit is reached."""

    pass


@dataclasses.dataclass
class TabSession:
    tab_id: str
    page: Page
    created_at: float
    last_accessed: float
    is_active: bool = False
    url: str = ""
    title: str = ""


@dataclasses.dataclass
class TabStats:
    total_tabs: int
    active_tab_id: str | None
    oldest_tab_id: str | None
    newest_tab_id: str | None


class TabManager:
    def __init__(
        self,
        context: BrowserContext,
        max_tabs: int = models.MAX_TABS,
        navigation_timeout_ms: int = models.PAGE_LOAD_TIMEOUT_MS,
        inactive_timeout_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._context = context
        self._max_tabs = max_tabs
        self._navigation_timeout_ms = navigation_timeout_ms
        self._inactive_timeout = inactive_timeout_seconds
        self._clock = clock
        self._tabs: dict[str, TabSession] = {}
        self._leases: dict[str, asyncio.Lock] = {}
        self._active_tab_id: str | None = None
        self._counter = 0
        self._lock = asyncio.Lock()

    @property
    def max_tabs(self) -> int:
        return self._max_tabs

    def __len__(self) -> int:
        return len(self._tabs)

    def __contains__(self, tab_id: object) -> bool:
        return tab_id in self._tabs

    # -- Lifecycle -----------------------------------------------------------------

    async def create_tab(self, url: str | None = None) -> str:
        """Open a new tab, optionally navigating it, and make it active."""
        async with self._lock:
            if len(self._tabs) >= self._max_tabs:
                raise TabError(f"Maximum number of tabs ({self._max_tabs}) reached")
            page = await self._context.new_page()
            self._counter += 1
            now = self._clock()
            tab_id = f"tab_{self._counter}_{int(now * 1000)}"
            self._tabs[tab_id] = TabSession(tab_id=tab_id, page=page, created_at=now, last_accessed=now)
            self._leases[tab_id] = asyncio.Lock()
        logger.info("Created tab %s (%d/%d open)", tab_id, len(self._tabs), self._max_tabs)

        if url:
            await self.navigate(tab_id, url)
        self._set_active(tab_id)
        return tab_id

    async def navigate(self, tab_id: str, url: str) -> None:
        tab = self.get(tab_id)
        await tab.page.goto(url, wait_until="domcontentloaded", timeout=self._navigation_timeout_ms)
        tab.last_accessed = self._clock()
        await self._refresh_info(tab)

    async def switch_to(self, tab_id: str) -> None:
        tab = self.get(tab_id)
        await tab.page.bring_to_front()
        self._set_active(tab_id)

    async def close_tab(self, tab_id: str) -> None:
        tab = self.get(tab_id)
        del self._tabs[tab_id]
        self._leases.pop(tab_id, None)
        if self._active_tab_id == tab_id:
            self._active_tab_id = next(iter(self._tabs), None)
            if self._active_tab_id is not None:
                self._tabs[self._active_tab_id].is_active = True
        try:
            await tab.page.close()
        finally:
            logger.info("Closed tab %s (%d open)", tab_id, len(self._tabs))

    async def close_all(self) -> None:
        tabs = list(self._tabs.values())
        self._tabs.clear()
        self._leases.clear()
        self._active_tab_id = None
        results = await asyncio.gather(*(tab.page.close() for tab in tabs), return_exceptions=True)
        for tab, result in zip(tabs, results):
            if isinstance(result, Exception):
                logger.warning("Failed to close tab %s: %s", tab.tab_id, result)
        logger.info("Closed all %d tabs", len(tabs))

    async def cleanup_inactive(self) -> list[str]:
        """Close unleased tabs idle for longer than the inactivity timeout."""
        now = self._clock()
        stale = [
            tab_id
            for tab_id, tab in self._tabs.items()
            if now - tab.last_accessed > self._inactive_timeout and not self._leases[tab_id].locked()
        ]
        for tab_id in stale:
            await self.close_tab(tab_id)
        if stale:
            logger.info("Closed %d inactive tabs", len(stale))
        return stale

    # -- Access --------------------------------------------------------------------

    def get(self, tab_id: str) -> TabSession:
        tab = self._tabs.get(tab_id)
        if tab is None:
            raise TabError(f"Tab with ID {tab_id} not found")
        return tab

    def get_page(self, tab_id: str) -> Page:
        return self.get(tab_id).page

    def active_tab(self) -> TabSession | None:
        return self._tabs.get(self._active_tab_id) if self._active_tab_id else None

    def list_tabs(self) -> list[TabSession]:
        return list(self._tabs.values())

    def tab_ids(self) -> list[str]:
        return list(self._tabs)

    def is_leased(self, tab_id: str) -> bool:
        lock = self._leases.get(tab_id)
        return lock is not None and lock.locked()

    @contextlib.asynccontextmanager
    async def lease(self, tab_id: str) -> AsyncIterator[Page]:
        """Exclusive use of a tab's page for the duration of the block."""
        self.get(tab_id)
        lock = self._leases[tab_id]
        async with lock:
            tab = self.get(tab_id)
            tab.last_accessed = self._clock()
            yield tab.page
            if tab_id in self._tabs:
                tab.last_accessed = self._clock()

    async def execute_on_tab(self, tab_id: str, fn: Callable[[Page], Awaitable[T]]) -> T:
        async with self.lease(tab_id) as page:
            return await fn(page)

    async def execute_on_all(self, fn: Callable[[Page, str], Awaitable[T]]) -> dict[str, T]:
        """Run *fn* on every tab; failures are logged and left out."""
        tab_ids = self.tab_ids()

        async def _one(tab_id: str) -> T:
            async with self.lease(tab_id) as page:
                return await fn(page, tab_id)

        results = await asyncio.gather(*(_one(tab_id) for tab_id in tab_ids), return_exceptions=True)
        collected: dict[str, T] = {}
        for tab_id, result in zip(tab_ids, results):
            if isinstance(result, Exception):
                logger.warning("Error executing on tab %s: %s", tab_id, result)
            else:
                collected[tab_id] = result
        return collected

    def stats(self) -> TabStats:
        tabs = list(self._tabs.values())
        oldest = min(tabs, key=lambda t: t.created_at).tab_id if tabs else None
        newest = max(reversed(tabs), key=lambda t: t.created_at).tab_id if tabs else None
        return TabStats(
            total_tabs=len(tabs),
            active_tab_id=self._active_tab_id,
            oldest_tab_id=oldest,
            newest_tab_id=newest,
        )

    # -- Internals -----------------------------------------------------------------

    def _set_active(self, tab_id: str) -> None:
        for tab in self._tabs.values():
            tab.is_active = False
        tab = self.get(tab_id)
        tab.is_active = True
        tab.last_accessed = self._clock()
        self._active_tab_id = tab_id

    async def _refresh_info(self, tab: TabSession) -> None:
        try:
            tab.title = await tab.page.title()
            tab.url = tab.page.url
        except Exception as exc:
            logger.warning("Failed to update tab info for %s: %s", tab.tab_id, exc)


"""Unit tests for goalpilot.engine.tab_manager: tabs, limits and leases."""

from __future__ import annotations

import asyncio

import pytest

from goalpilot.engine.tab_manager import TabError, TabManager


class Ticker:
    """Manual wall clock for tab timestamps."""

    def __init__(self, start: float = 1000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value


# ---------------------------------------------------------------------------
# 1. Creating and closing tabs
# ---------------------------------------------------------------------------

class TestTabLifecycle:

    @pytest.mark.asyncio
    async def test_create_tab_becomes_active(self, fake_context):
        tabs = TabManager(fake_context, max_tabs=3)
        tab_id = await tabs.create_tab()
        assert tab_id.startswith("tab_1_")
        assert tab_id in tabs
        assert tabs.active_tab().tab_id == tab_id
        assert len(fake_context.pages) == 1

    @pytest.mark.asyncio
    async def test_create_tab_with_url_navigates(self, fake_context):
        tabs = TabManager(fake_context, navigation_timeout_ms=15_000)
        tab_id = await tabs.create_tab("https://example.com/")
        page = tabs.get_page(tab_id)
        assert page.calls[0] == ("goto", ("https://example.com/",), {"wait_until": "domcontentloaded", "timeout": 15_000})
        assert tabs.get(tab_id).url == "https://example.com/"

    @pytest.mark.asyncio
    async def test_tab_limit(self, fake_context):
        tabs = TabManager(fake_context, max_tabs=2)
        await tabs.create_tab()
        await tabs.create_tab()
        with pytest.raises(TabError, match="Maximum number of tabs"):
            await tabs.create_tab()
        assert len(tabs) == 2

    @pytest.mark.asyncio
    async def test_close_tab_moves_active_to_remaining(self, fake_context):
        tabs = TabManager(fake_context)
        first = await tabs.create_tab()
        second = await tabs.create_tab()
        assert tabs.active_tab().tab_id == second
        await tabs.close_tab(second)
        assert second not in tabs
        assert tabs.active_tab().tab_id == first
        assert tabs.get(first).is_active is True
        assert len(fake_context.pages) == 1

    @pytest.mark.asyncio
    async def test_unknown_tab(self, fake_context):
        tabs = TabManager(fake_context)
        with pytest.raises(TabError, match="not found"):
            await tabs.close_tab("tab_9_0")
        with pytest.raises(TabError):
            tabs.get_page("tab_9_0")

    @pytest.mark.asyncio
    async def test_close_all(self, fake_context):
        tabs = TabManager(fake_context)
        for _ in range(3):
            await tabs.create_tab()
        fake_context.pages[0].failures["close"] = RuntimeError("already closed")
        await tabs.close_all()
        assert len(tabs) == 0
        assert tabs.active_tab() is None

    @pytest.mark.asyncio
    async def test_switch_to(self, fake_context):
        tabs = TabManager(fake_context)
        first = await tabs.create_tab()
        await tabs.create_tab()
        await tabs.switch_to(first)
        assert tabs.active_tab().tab_id == first
        assert "bring_to_front" in tabs.get_page(first).call_names()


# ---------------------------------------------------------------------------
# 2. Leases
# ---------------------------------------------------------------------------

class TestLeases:

    @pytest.mark.asyncio
    async def test_lease_is_exclusive(self, fake_context):
        tabs = TabManager(fake_context)
        tab_id = await tabs.create_tab()
        events: list[str] = []

        async def user(name: str) -> None:
            async with tabs.lease(tab_id):
                events.append(f"{name}-in")
                await asyncio.sleep(0.01)
                events.append(f"{name}-out")

        await asyncio.gather(user("a"), user("b"))
        assert events == ["a-in", "a-out", "b-in", "b-out"]

    @pytest.mark.asyncio
    async def test_is_leased(self, fake_context):
        tabs = TabManager(fake_context)
        tab_id = await tabs.create_tab()
        async with tabs.lease(tab_id) as page:
            assert tabs.is_leased(tab_id) is True
            assert page is tabs.get_page(tab_id)
        assert tabs.is_leased(tab_id) is False

    @pytest.mark.asyncio
    async def test_execute_on_tab(self, fake_context):
        tabs = TabManager(fake_context)
        tab_id = await tabs.create_tab()

        async def read_url(page):
            return page.url

        assert await tabs.execute_on_tab(tab_id, read_url) == "about:blank"

    @pytest.mark.asyncio
    async def test_execute_on_all_skips_failures(self, fake_context):
        tabs = TabManager(fake_context)
        ok = await tabs.create_tab()
        bad = await tabs.create_tab()

        async def shout(page, tab_id):
            if tab_id == bad:
                raise RuntimeError("crashed")
            return tab_id.upper()

        assert await tabs.execute_on_all(shout) == {ok: ok.upper()}


# ---------------------------------------------------------------------------
# 3. Housekeeping
# ---------------------------------------------------------------------------

class TestHousekeeping:

    @pytest.mark.asyncio
    async def test_cleanup_inactive_spares_leased_tabs(self, fake_context):
        ticker = Ticker()
        tabs = TabManager(fake_context, inactive_timeout_seconds=60, clock=ticker)
        idle = await tabs.create_tab()
        busy = await tabs.create_tab()
        ticker.value += 120
        async with tabs.lease(busy):
            ticker.value += 120
            closed = await tabs.cleanup_inactive()
        assert closed == [idle]
        assert busy in tabs

    @pytest.mark.asyncio
    async def test_stats(self, fake_context):
        ticker = Ticker()
        tabs = TabManager(fake_context, clock=ticker)
        assert tabs.stats().total_tabs == 0
        first = await tabs.create_tab()
        ticker.value += 5
        second = await tabs.create_tab()
        stats = tabs.stats()
        assert stats.total_tabs == 2
        assert stats.oldest_tab_id == first
        assert stats.newest_tab_id == second
        assert stats.active_tab_id == second

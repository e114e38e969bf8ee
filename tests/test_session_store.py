"""Unit tests for goalpilot.engine.session_store: saved cookies and storage."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from conftest import FakeContext
from goalpilot.engine.session_store import SessionData, SessionStore

COOKIE = {"name": "sid", "value": "abc123", "domain": "shop.example.com", "path": "/"}


@pytest.fixture
def store(tmp_path: Path) -> SessionStore:
    return SessionStore(tmp_path / "sessions")


# ---------------------------------------------------------------------------
# 1. Saving
# ---------------------------------------------------------------------------

class TestSave:

    @pytest.mark.asyncio
    async def test_save_writes_json(self, store, fake_context):
        fake_context.cookie_jar.append(COOKIE)
        page = await fake_context.new_page()
        page.storage["cart"] = '["socks"]'

        path = await store.save(fake_context, "shopper")

        assert path == store.sessions_dir / "shopper.json"
        data = json.loads(path.read_text())
        assert data["sessionName"] == "shopper"
        assert data["cookies"] == [COOKIE]
        assert data["localStorage"] == {"cart": '["socks"]'}
        assert data["sessionStorage"] == {}
        assert data["timestamp"]

    @pytest.mark.asyncio
    async def test_save_without_pages_keeps_cookies(self, store, fake_context):
        fake_context.cookie_jar.append(COOKIE)
        path = await store.save(fake_context, "bare")
        assert json.loads(path.read_text())["localStorage"] == {}

    @pytest.mark.asyncio
    async def test_cookie_persistence_can_be_disabled(self, tmp_path, fake_context):
        fake_context.cookie_jar.append(COOKIE)
        store = SessionStore(tmp_path, persist_cookies=False)
        path = await store.save(fake_context, "nocookies")
        assert json.loads(path.read_text())["cookies"] == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["../escape", "", "a/b", ".hidden"])
    async def test_invalid_names_are_rejected(self, store, fake_context, name):
        with pytest.raises(ValueError):
            await store.save(fake_context, name)


# ---------------------------------------------------------------------------
# 2. Loading
# ---------------------------------------------------------------------------

class TestLoad:

    @pytest.mark.asyncio
    async def test_load_restores_cookies_and_storage(self, store, fake_context):
        source = await fake_context.new_page()
        source.storage["token"] = "t-1"
        fake_context.cookie_jar.append(COOKIE)
        await store.save(fake_context, "shopper")

        target = FakeContext()
        page = await target.new_page()
        assert await store.load(target, "shopper") is True
        assert target.cookie_jar == [COOKIE]
        assert page.storage == {"token": "t-1"}

    @pytest.mark.asyncio
    async def test_load_missing_session(self, store, fake_context):
        assert await store.load(fake_context, "nobody") is False
        assert fake_context.cookie_jar == []


# ---------------------------------------------------------------------------
# 3. Listing, inspecting and deleting
# ---------------------------------------------------------------------------

class TestManagement:

    @pytest.mark.asyncio
    async def test_list_exists_delete(self, store, fake_context):
        assert store.list() == []
        await store.save(fake_context, "beta")
        await store.save(fake_context, "alpha")
        assert store.list() == ["alpha", "beta"]
        assert store.exists("alpha") is True

        assert store.delete("alpha") is True
        assert store.delete("alpha") is False
        assert store.list() == ["beta"]

    def test_info_of_corrupt_file_is_none(self, store):
        store.sessions_dir.mkdir(parents=True)
        (store.sessions_dir / "broken.json").write_text("{not json")
        (store.sessions_dir / "list.json").write_text("[1, 2]")
        assert store.info("broken") is None
        assert store.info("list") is None
        assert store.info("absent") is None

    def test_session_data_round_trip(self):
        data = SessionData(session_name="s", timestamp="2026-01-01T00:00:00+00:00", cookies=[COOKIE])
        assert SessionData.from_dict(data.to_dict()) == data

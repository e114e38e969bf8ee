"""GoalPilot Session Store: cookies and localStorage kept between runs.

Each session is one JSON file, ``{sessions_dir}/{name}.json``. Only the CLI
touches the store, at the start and end of a run.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import json
import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from playwright.async_api import BrowserContext

logger = logging.getLogger("goalpilot.engine.session_store")

_SESSION_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")

_READ_STORAGE_JS = """
(kind) => {
  const store = kind === 'session' ? window.sessionStorage : window.localStorage;
  const data = {};
  for (let i = 0; i < store.length; i++) {
    const key = store.key(i);
    if (key) data[key] = store.getItem(key);
  }
  return data;
}
"""

_WRITE_STORAGE_JS = """
([kind, data]) => {
  const store = kind === 'session' ? window.sessionStorage : window.localStorage;
  for (const [key, value] of Object.entries(data)) store.setItem(key, value);
}
"""


@dataclasses.dataclass
class SessionData:
    session_name: str
    timestamp: str
    cookies: list[dict[str, Any]] = dataclasses.field(default_factory=list)
    local_storage: dict[str, str] = dataclasses.field(default_factory=dict)
    session_storage: dict[str, str] = dataclasses.field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionName": self.session_name,
            "timestamp": self.timestamp,
            "cookies": self.cookies,
            "localStorage": self.local_storage,
            "sessionStorage": self.session_storage,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionData:
        return cls(
            session_name=str(data.get("sessionName", "")),
            timestamp=str(data.get("timestamp", "")),
            cookies=list(data.get("cookies") or []),
            local_storage=dict(data.get("localStorage") or {}),
            session_storage=dict(data.get("sessionStorage") or {}),
        )


class SessionStore:
    def __init__(
        self,
        sessions_dir: Path,
        persist_cookies: bool = True,
        persist_local_storage: bool = True,
        persist_session_storage: bool = False,
    ) -> None:
        self._dir = sessions_dir
        self._persist_cookies = persist_cookies
        self._persist_local_storage = persist_local_storage
        self._persist_session_storage = persist_session_storage

    @property
    def sessions_dir(self) -> Path:
        return self._dir

    def path_for(self, name: str) -> Path:
        if not _SESSION_NAME_RE.match(name):
            raise ValueError(f"Invalid session name: {name!r} (use letters, digits, '.', '_' or '-')")
        return self._dir / f"{name}.json"

    async def save(self, context: BrowserContext, name: str) -> Path:
        """Write the context's cookies and storage to ``{name}.json``."""
        path = self.path_for(name)
        data = SessionData(
            session_name=name,
            timestamp=dt.datetime.now(dt.timezone.utc).isoformat(timespec="seconds"),
        )
        if self._persist_cookies:
            data.cookies = await context.cookies()
        pages = context.pages
        if pages:
            page = pages[0]
            if self._persist_local_storage:
                data.local_storage = await page.evaluate(_READ_STORAGE_JS, "local")
            if self._persist_session_storage:
                data.session_storage = await page.evaluate(_READ_STORAGE_JS, "session")

        self._dir.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data.to_dict(), indent=2))
        logger.info("Saved session %s (%d cookies) to %s", name, len(data.cookies), path)
        return path

    async def load(self, context: BrowserContext, name: str) -> bool:
        """Restore a saved session into *context*. False if there is none."""
        data = self.info(name)
        if data is None:
            return False
        if self._persist_cookies and data.cookies:
            await context.add_cookies(data.cookies)
        pages = context.pages
        if pages:
            page = pages[0]
            if self._persist_local_storage and data.local_storage:
                await page.evaluate(_WRITE_STORAGE_JS, ["local", data.local_storage])
            if self._persist_session_storage and data.session_storage:
                await page.evaluate(_WRITE_STORAGE_JS, ["session", data.session_storage])
        logger.info("Loaded session %s (%d cookies)", name, len(data.cookies))
        return True

    def exists(self, name: str) -> bool:
        return self.path_for(name).exists()

    def list(self) -> list[str]:
        if not self._dir.exists():
            return []
        return sorted(p.stem for p in self._dir.glob("*.json"))

    def delete(self, name: str) -> bool:
        path = self.path_for(name)
        if not path.exists():
            return False
        path.unlink()
        logger.info("Deleted session %s", name)
        return True

    def info(self, name: str) -> SessionData | None:
        path = self.path_for(name)
        if not path.exists():
            return None
        try:
            raw = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Failed to read session %s: %s", name, exc)
            return None
        if not isinstance(raw, dict):
            logger.warning("Session file %s is not a JSON object", path)
            return None
        return SessionData.from_dict(raw)

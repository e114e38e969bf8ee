"""Unit tests for the goalpilot CLI: option handling, sessions and batch files."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from goalpilot import __version__
from goalpilot.cli.app import app
from goalpilot.cli.batch import load_tasks_file
from goalpilot.config import GoalPilotConfigError
from goalpilot.engine.session_store import SessionData

runner = CliRunner()


@pytest.fixture
def isolated(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Run commands from an empty directory with no API key anywhere."""
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.chdir(work)
    return work


def _write_tasks(tmp_path: Path, data) -> Path:
    path = tmp_path / "tasks.yaml"
    path.write_text(yaml.dump(data), encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# 1. Top-level options
# ---------------------------------------------------------------------------

class TestApp:

    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"GoalPilot v{__version__}" in result.output

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert "run" in result.output
        assert "batch" in result.output


# ---------------------------------------------------------------------------
# 2. goalpilot run
# ---------------------------------------------------------------------------

class TestRunCommand:

    def test_invalid_output_format(self, isolated):
        result = runner.invoke(app, ["run", "Find the docs", "--output", "xml"])
        assert result.exit_code == 2

    def test_missing_api_key(self, isolated):
        result = runner.invoke(app, ["run", "Find the docs"])
        assert result.exit_code == 2

    def test_missing_config_file(self, isolated):
        result = runner.invoke(app, ["run", "Find the docs", "--config", str(isolated / "nope.yaml")])
        assert result.exit_code == 2

    def test_invalid_override(self, isolated, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test-key-123")
        result = runner.invoke(app, ["run", "Find the docs", "--max-cycles", "0"])
        assert result.exit_code == 2


# ---------------------------------------------------------------------------
# 3. goalpilot sessions
# ---------------------------------------------------------------------------

class TestSessionsCommand:

    def test_list_empty(self, isolated, tmp_project_dir: Path):
        result = runner.invoke(app, ["sessions", "list", "--config", str(tmp_project_dir / "config.yaml")])
        assert result.exit_code == 0
        assert "No saved sessions" in result.output

    def test_list_show_delete(self, isolated, tmp_project_dir: Path):
        sessions_dir = tmp_project_dir / "sessions"
        sessions_dir.mkdir()
        data = SessionData(
            session_name="shopper",
            timestamp="2026-01-01T00:00:00+00:00",
            cookies=[{"name": "sid", "value": "1", "domain": "shop.example.com"}],
            local_storage={"cart": "[]"},
        )
        (sessions_dir / "shopper.json").write_text(json.dumps(data.to_dict()), encoding="utf-8")
        config = ["--config", str(tmp_project_dir / "config.yaml")]

        listed = runner.invoke(app, ["sessions", "list", *config])
        assert listed.exit_code == 0
        assert "shopper" in listed.output

        shown = runner.invoke(app, ["sessions", "show", "shopper", *config])
        assert shown.exit_code == 0
        assert "shop.example.com" in shown.output

        deleted = runner.invoke(app, ["sessions", "delete", "shopper", *config])
        assert deleted.exit_code == 0
        assert not (sessions_dir / "shopper.json").exists()

    def test_delete_missing_session(self, isolated, tmp_project_dir: Path):
        result = runner.invoke(app, ["sessions", "delete", "ghost", "--config", str(tmp_project_dir / "config.yaml")])
        assert result.exit_code == 1

    def test_invalid_session_name(self, isolated, tmp_project_dir: Path):
        result = runner.invoke(app, ["sessions", "show", "../etc", "--config", str(tmp_project_dir / "config.yaml")])
        assert result.exit_code == 2


# ---------------------------------------------------------------------------
# 4. goalpilot batch
# ---------------------------------------------------------------------------

class TestLoadTasksFile:

    def test_list_of_mappings_and_strings(self, tmp_path: Path):
        path = _write_tasks(
            tmp_path,
            [{"id": "buy", "instruction": "Buy socks", "priority": 3}, "Read the blog"],
        )
        tasks = load_tasks_file(path)
        assert [(t.id, t.instruction, t.priority) for t in tasks] == [
            ("buy", "Buy socks", 3),
            ("task-2", "Read the blog", 0),
        ]

    def test_tasks_key_mapping(self, tmp_path: Path):
        path = _write_tasks(tmp_path, {"tasks": [{"instruction": "x", "timeout": 15}]})
        [task] = load_tasks_file(path)
        assert task.timeout == 15.0

    @pytest.mark.parametrize(
        "data, match",
        [
            ([], "non-empty list"),
            ({"tasks": []}, "non-empty list"),
            ("just text", "non-empty list"),
            ([5], "mapping or a string"),
            ([{"id": "a"}], "instruction"),
            ([{"id": "a", "instruction": "x"}, {"id": "a", "instruction": "y"}], "Duplicate task ids"),
        ],
    )
    def test_invalid_files(self, tmp_path: Path, data, match):
        with pytest.raises(GoalPilotConfigError, match=match):
            load_tasks_file(_write_tasks(tmp_path, data))

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(GoalPilotConfigError, match="not found"):
            load_tasks_file(tmp_path / "absent.yaml")

    def test_invalid_yaml(self, tmp_path: Path):
        path = tmp_path / "tasks.yaml"
        path.write_text("- [unclosed", encoding="utf-8")
        with pytest.raises(GoalPilotConfigError, match="Invalid YAML"):
            load_tasks_file(path)


class TestBatchCommand:

    def test_bad_tasks_file_exits_with_config_error(self, isolated):
        result = runner.invoke(app, ["batch", str(isolated / "absent.yaml")])
        assert result.exit_code == 2

    def test_missing_api_key(self, isolated, tmp_path: Path):
        path = _write_tasks(tmp_path, ["Find the docs"])
        result = runner.invoke(app, ["batch", str(path)])
        assert result.exit_code == 2

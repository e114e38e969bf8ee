"""Anthropic API key resolution for GoalPilot."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml

from goalpilot.config import GoalPilotConfigError

logger = logging.getLogger("goalpilot.credentials")

ENV_VAR = "ANTHROPIC_API_KEY"


def resolve_api_key(project_dir: Path | None = None, env_file: Path | None = None) -> str:
    """Resolve the Anthropic API key.

    Sources, highest priority first:
    1. ANTHROPIC_API_KEY environment variable
    2. .env file in the current directory
    3. Project config (.goalpilot/config.yaml)
    4. Global config (~/.goalpilot/config.yaml)
    """
    if key := os.environ.get(ENV_VAR):
        return key

    env_path = env_file or Path(".env")
    if env_path.exists() and (key := _key_from_env_file(env_path)):
        return key

    candidates = []
    if project_dir is not None:
        candidates.append(project_dir / "config.yaml")
    candidates.append(Path.home() / ".goalpilot" / "config.yaml")
    for config_path in candidates:
        if config_path.exists() and (key := _key_from_yaml(config_path)):
            return key

    raise GoalPilotConfigError(
        f"{ENV_VAR} not set\n\n"
        "GoalPilot needs an Anthropic API key to plan and evaluate browser tasks.\n\n"
        "To fix:\n"
        f"  export {ENV_VAR}=sk-ant-your-key-here\n"
        "  or: add anthropic_api_key to .goalpilot/config.yaml"
    )


def mask_key(key: str) -> str:
    """Mask an API key for display, keeping the first 7 and last 3 chars."""
    if len(key) <= 10:
        return "***"
    return f"{key[:7]}...{key[-3:]}"


def _key_from_env_file(path: Path) -> str | None:
    try:
        lines = path.read_text().splitlines()
    except OSError as exc:
        logger.warning("Could not read %s: %s", path, exc)
        return None
    for raw in lines:
        line = raw.strip()
        if line.startswith("export "):
            line = line[len("export ") :]
        if not line or line.startswith("#") or "=" not in line:
            continue
        name, _, value = line.partition("=")
        if name.strip() == ENV_VAR:
            return value.strip().strip("'\"") or None
    return None


def _key_from_yaml(path: Path) -> str | None:
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Could not read %s: %s", path, exc)
        return None
    if not isinstance(data, dict):
        return None
    oracle = data.get("oracle") if isinstance(data.get("oracle"), dict) else {}
    return data.get("anthropic_api_key") or data.get("api_key") or oracle.get("api_key")

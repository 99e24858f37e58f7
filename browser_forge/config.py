"""Configuration for Browser Forge.

Values come from ``config/forge_config.yaml`` (or the file named by
``FORGE_CONFIG``) and are then overridden by environment variables, which may
themselves come from a ``.env`` file loaded by the CLI.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from loguru import logger
from yaml import safe_load


DEFAULT_CONFIG_PATH = Path("config") / "forge_config.yaml"


@dataclass
class ForgeConfig:
    state_path: Path = Path("data") / "forge_candidates.yaml"
    proposals_path: Path = Path("data") / "forge_proposals.yaml"
    skills_dir: Path = Path("~/.browser-forge/skills").expanduser()
    telemetry_paths: List[Path] = field(default_factory=list)
    min_usage: int = 1
    mine_interval_minutes: int = 60
    log_level: str = "INFO"


def _read_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = safe_load(path.read_text(encoding="utf-8")) or {}
    except Exception:
        logger.exception("Failed to read {path}; using defaults.", path=path)
        return {}
    if not isinstance(data, dict):
        logger.error("{path} is not a mapping; using defaults.", path=path)
        return {}
    return data


def _positive_int(value: Any, name: str, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-integer {name}={value!r}", name=name, value=value)
        return default
    if number < 1:
        logger.warning("Ignoring {name}={value} (must be >= 1)", name=name, value=number)
        return default
    return number


def load_config(path: str | Path | None = None) -> ForgeConfig:
    """Build a ``ForgeConfig`` from the YAML file and the environment."""
    config_path = Path(path or os.environ.get("FORGE_CONFIG") or DEFAULT_CONFIG_PATH)
    data = _read_config_file(config_path)
    config = ForgeConfig()

    state_path = os.environ.get("FORGE_STATE_PATH") or data.get("state_path")
    if state_path:
        config.state_path = Path(str(state_path)).expanduser()

    proposals_path = os.environ.get("FORGE_PROPOSALS_PATH") or data.get("proposals_path")
    if proposals_path:
        config.proposals_path = Path(str(proposals_path)).expanduser()

    skills_dir = os.environ.get("FORGE_SKILLS_DIR") or data.get("skills_dir")
    if skills_dir:
        config.skills_dir = Path(str(skills_dir)).expanduser()

    telemetry = data.get("telemetry_paths") or []
    if isinstance(telemetry, str):
        telemetry = [telemetry]
    config.telemetry_paths = [
        Path(str(p)).expanduser() for p in telemetry if isinstance(p, str) and p.strip()
    ]

    min_usage = os.environ.get("FORGE_MIN_USAGE", data.get("min_usage"))
    if min_usage is not None:
        config.min_usage = _positive_int(min_usage, "min_usage", config.min_usage)

    interval = os.environ.get("FORGE_MINE_INTERVAL", data.get("mine_interval_minutes"))
    if interval is not None:
        config.mine_interval_minutes = _positive_int(
            interval, "mine_interval_minutes", config.mine_interval_minutes
        )

    log_level = os.environ.get("FORGE_LOG_LEVEL") or data.get("log_level")
    if log_level:
        config.log_level = str(log_level).upper()

    return config

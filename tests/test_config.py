"""Tests for browser_forge.config."""

from __future__ import annotations

from pathlib import Path

import pytest

from browser_forge.config import ForgeConfig, load_config


ENV_VARS = (
    "FORGE_CONFIG",
    "FORGE_STATE_PATH",
    "FORGE_PROPOSALS_PATH",
    "FORGE_SKILLS_DIR",
    "FORGE_MIN_USAGE",
    "FORGE_MINE_INTERVAL",
    "FORGE_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _write(tmp_path, text):
    path = tmp_path / "forge_config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    def test_defaults_when_file_missing(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml")
        assert config == ForgeConfig()

    def test_file_values(self, tmp_path):
        path = _write(
            tmp_path,
            "state_path: state/c.yaml\n"
            "telemetry_paths:\n  - a.jsonl\n  - b.yaml\n"
            "min_usage: 3\n"
            "mine_interval_minutes: 15\n"
            "log_level: debug\n",
        )
        config = load_config(path)
        assert config.state_path == Path("state/c.yaml")
        assert config.telemetry_paths == [Path("a.jsonl"), Path("b.yaml")]
        assert config.min_usage == 3
        assert config.mine_interval_minutes == 15
        assert config.log_level == "DEBUG"

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        path = _write(tmp_path, "min_usage: 3\nstate_path: from-file.yaml\n")
        monkeypatch.setenv("FORGE_MIN_USAGE", "5")
        monkeypatch.setenv("FORGE_STATE_PATH", str(tmp_path / "env.yaml"))
        monkeypatch.setenv("FORGE_SKILLS_DIR", str(tmp_path / "skills"))
        config = load_config(path)
        assert config.min_usage == 5
        assert config.state_path == tmp_path / "env.yaml"
        assert config.skills_dir == tmp_path / "skills"

    def test_config_path_from_environment(self, tmp_path, monkeypatch):
        path = _write(tmp_path, "mine_interval_minutes: 5\n")
        monkeypatch.setenv("FORGE_CONFIG", str(path))
        assert load_config().mine_interval_minutes == 5

    def test_bad_numbers_fall_back_to_defaults(self, tmp_path):
        path = _write(tmp_path, "min_usage: zero\nmine_interval_minutes: -4\n")
        config = load_config(path)
        assert config.min_usage == 1
        assert config.mine_interval_minutes == 60

    def test_unparseable_file_uses_defaults(self, tmp_path):
        path = _write(tmp_path, "state_path: [unclosed\n")
        assert load_config(path) == ForgeConfig()

    def test_single_telemetry_path_string(self, tmp_path):
        path = _write(tmp_path, "telemetry_paths: events.jsonl\n")
        assert load_config(path).telemetry_paths == [Path("events.jsonl")]

    def test_proposals_path_from_file_and_environment(self, tmp_path, monkeypatch):
        path = _write(tmp_path, "proposals_path: cache/p.yaml\n")
        assert load_config(path).proposals_path == Path("cache/p.yaml")
        monkeypatch.setenv("FORGE_PROPOSALS_PATH", str(tmp_path / "env-p.yaml"))
        assert load_config(path).proposals_path == tmp_path / "env-p.yaml"

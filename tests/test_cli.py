"""Tests for the forge_cli entry point."""

from __future__ import annotations

import json

import pytest
import yaml

import forge_cli
from browser_forge.models import CandidateStatus
from browser_forge.store import CandidateStore


CID = "forge-shadow-shop-example-com"


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    for name in ("FORGE_CONFIG", "FORGE_MIN_USAGE", "FORGE_MINE_INTERVAL", "FORGE_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("FORGE_STATE_PATH", str(tmp_path / "state.yaml"))
    monkeypatch.setenv("FORGE_PROPOSALS_PATH", str(tmp_path / "proposals.yaml"))
    monkeypatch.setenv("FORGE_SKILLS_DIR", str(tmp_path / "skills"))
    events = []
    monkeypatch.setattr(forge_cli, "notify", lambda event, **kwargs: events.append(event))
    return tmp_path, events


def _write_telemetry(path, records):
    path.write_text("\n".join(json.dumps(r) for r in records) + "\nnot json\n", encoding="utf-8")


def _status(tmp_path):
    store = CandidateStore(tmp_path / "state.yaml")
    store.load()
    return store.get(CID).status


class TestParser:
    def test_apply_preview_flag(self):
        args = forge_cli.build_parser().parse_args(["apply", CID, "--preview"])
        assert args.func is forge_cli.cmd_apply
        assert args.candidate_id == CID
        assert args.preview

    def test_command_required(self):
        with pytest.raises(SystemExit):
            forge_cli.build_parser().parse_args([])


class TestCommands:
    def test_mine_review_and_apply(self, workspace, selector_records):
        tmp_path, events = workspace
        telemetry = tmp_path / "events.jsonl"
        _write_telemetry(telemetry, selector_records(".buy-btn", 9, 10))

        assert forge_cli.main(["mine", str(telemetry)]) == 0
        assert _status(tmp_path) is CandidateStatus.CANDIDATE
        assert forge_cli.main(["list"]) == 0
        assert forge_cli.main(["show", CID]) == 0
        assert forge_cli.main(["propose", CID]) == 0

        assert forge_cli.main(["apply", CID]) == 1
        assert _status(tmp_path) is CandidateStatus.CANDIDATE

        assert forge_cli.main(["approve", CID]) == 0
        assert forge_cli.main(["apply", CID, "--preview"]) == 0
        assert not (tmp_path / "skills").exists()

        assert forge_cli.main(["apply", CID]) == 0
        assert _status(tmp_path) is CandidateStatus.MERGED
        assert (tmp_path / "skills" / "shop-example-com.skill.yaml").exists()
        assert "merged" in events

    def test_unknown_candidate_reports_error(self, workspace):
        assert forge_cli.main(["show", "forge-shadow-nowhere"]) == 1

    def test_reject(self, workspace, selector_records):
        tmp_path, _ = workspace
        telemetry = tmp_path / "events.jsonl"
        _write_telemetry(telemetry, selector_records("#a", 1, 1))
        forge_cli.main(["mine", str(telemetry)])

        assert forge_cli.main(["reject", CID]) == 0
        assert _status(tmp_path) is CandidateStatus.REJECTED
        assert forge_cli.main(["approve", CID]) == 1

    def test_mine_without_paths(self, workspace):
        assert forge_cli.main(["mine"]) == 0

    def test_apply_merges_the_reviewed_proposal(self, workspace, selector_records):
        tmp_path, _ = workspace
        reviewed = tmp_path / "reviewed.jsonl"
        _write_telemetry(reviewed, selector_records(".buy-btn", 9, 10))
        later = tmp_path / "later.jsonl"
        _write_telemetry(
            later,
            selector_records(".buy-btn", 0, 5, start=60) + selector_records("#late", 1, 1, start=70),
        )

        forge_cli.main(["mine", str(reviewed)])
        assert forge_cli.main(["propose", CID]) == 0
        assert forge_cli.main(["approve", CID]) == 0
        assert forge_cli.main(["mine", str(later)]) == 0
        assert forge_cli.main(["apply", CID]) == 0

        pack = yaml.safe_load(
            (tmp_path / "skills" / "shop-example-com.skill.yaml").read_text(encoding="utf-8")
        )
        assert [s["selector"] for s in pack["selectors"]] == [".buy-btn"]
        assert pack["selectors"][0]["usage_count"] == 10
        assert pack["selectors"][0]["success_rate"] == pytest.approx(0.9)

        store = CandidateStore(tmp_path / "state.yaml")
        store.load()
        assert store.get(CID).selectors[0].usage_count == 15

    def test_apply_without_reviewed_proposal(self, workspace, selector_records):
        tmp_path, _ = workspace
        telemetry = tmp_path / "events.jsonl"
        _write_telemetry(telemetry, selector_records("#a", 1, 1))
        forge_cli.main(["mine", str(telemetry)])
        forge_cli.main(["approve", CID])

        assert forge_cli.main(["apply", CID]) == 1
        assert _status(tmp_path) is CandidateStatus.APPROVED
        assert not (tmp_path / "skills").exists()

    def test_remining_same_file_keeps_counts(self, workspace, selector_records):
        tmp_path, _ = workspace
        telemetry = tmp_path / "events.jsonl"
        _write_telemetry(telemetry, selector_records(".buy-btn", 9, 10))
        forge_cli.main(["mine", str(telemetry)])
        forge_cli.main(["mine", str(telemetry)])

        store = CandidateStore(tmp_path / "state.yaml")
        store.load()
        assert store.get(CID).selectors[0].usage_count == 10

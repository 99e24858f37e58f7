"""Tests for browser_forge.summarizer and browser_forge.health_check."""

from __future__ import annotations

from browser_forge import health_check, summarizer
from browser_forge.config import ForgeConfig
from browser_forge.models import CandidateStatus
from browser_forge.store import CandidateStore


def _store(make_candidate):
    store = CandidateStore()
    store.upsert(
        [
            make_candidate(id="pending"),
            make_candidate(id="ok", virtual_domain=None, target_skill_id="shop"),
            make_candidate(id="no"),
        ]
    )
    store.set_status("ok", CandidateStatus.APPROVED)
    store.set_status("no", CandidateStatus.REJECTED)
    return store


class TestReviewSummary:
    def test_payload_counts_and_lists(self, make_candidate):
        payload = summarizer.build_review_summary_payload(_store(make_candidate))
        assert payload["pending"] == 1
        assert payload["approved"] == 1
        assert payload["rejected"] == 1
        assert payload["merged"] == 0
        assert payload["total"] == 3
        assert payload["pending_list"] == "- pending (shop.example.com) – 1 selectors, 1 workflows"
        assert payload["approved_list"].startswith("- ok ")

    def test_empty_store(self):
        payload = summarizer.build_review_summary_payload(CandidateStore())
        assert payload["pending_list"] == "None"
        assert payload["total"] == 0

    def test_run_sends_payload(self, make_candidate, monkeypatch):
        sent = []
        monkeypatch.setattr(summarizer, "send_review_summary", sent.append)
        payload = summarizer.run_review_summary(_store(make_candidate))
        assert sent == [payload]


class TestHealthCheck:
    def test_all_ok_with_writable_dirs(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "t")
        monkeypatch.setenv("TELEGRAM_CHAT_ID", "1")
        monkeypatch.setenv("FORGE_CONFIG", str(tmp_path / "missing.yaml"))
        config = ForgeConfig(state_path=tmp_path / "state" / "c.yaml", skills_dir=tmp_path / "skills")

        results = health_check.run_health_check(config)

        assert {name: info["status"] for name, info in results.items()} == {
            "env": "ok",
            "config": "ok",
            "store": "ok",
            "skills_dir": "ok",
        }

    def test_missing_credentials_only_warn(self, tmp_path, monkeypatch):
        monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
        monkeypatch.delenv("TELEGRAM_CHAT_ID", raising=False)
        monkeypatch.setenv("FORGE_CONFIG", str(tmp_path / "missing.yaml"))
        config = ForgeConfig(state_path=tmp_path / "c.yaml", skills_dir=tmp_path / "skills")
        results = health_check.run_health_check(config)
        assert results["env"]["status"] == "warn"
        assert "TELEGRAM_CHAT_ID" in results["env"]["details"]

    def test_broken_config_file_is_an_error(self, tmp_path, monkeypatch):
        path = tmp_path / "forge_config.yaml"
        path.write_text("- not\n- a mapping\n", encoding="utf-8")
        monkeypatch.setenv("FORGE_CONFIG", str(path))
        config = ForgeConfig(state_path=tmp_path / "c.yaml", skills_dir=tmp_path / "skills")
        assert health_check.run_health_check(config)["config"]["status"] == "error"

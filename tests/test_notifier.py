"""Tests for browser_forge.notifier."""

from __future__ import annotations

import pytest

from browser_forge import notifier


class FakeBot:
    sent = []
    fail_html = False

    def __init__(self, token):
        self.token = token

    async def send_message(self, chat_id, text, parse_mode=None):
        if parse_mode is not None and FakeBot.fail_html:
            raise ValueError("can't parse entities")
        FakeBot.sent.append((chat_id, text, parse_mode))


@pytest.fixture
def fake_bot(monkeypatch):
    FakeBot.sent = []
    FakeBot.fail_html = False
    monkeypatch.setattr(notifier, "Bot", FakeBot)
    monkeypatch.setattr(notifier, "load_dotenv", lambda *a, **k: False)
    return FakeBot


class TestBuildMessage:
    def test_known_event(self):
        message = notifier.build_message("merged", candidate_id="forge-shadow-x", skill_id="x")
        assert "forge-shadow-x" in message
        assert "<code>x</code>" in message

    def test_values_are_html_escaped(self):
        message = notifier.build_message(
            "proposal_ready", candidate_id="c1", summary="button[type=submit] & <form>"
        )
        assert "&amp; &lt;form&gt;" in message
        assert "<form>" not in message

    def test_unknown_event_with_custom_message(self):
        assert notifier.build_message("whatever", message="a < b") == "a &lt; b"

    def test_unknown_event_without_message(self):
        assert notifier.build_message("whatever") == "Browser Forge event: whatever"

    def test_missing_argument_falls_back_to_template(self):
        assert notifier.build_message("merged", candidate_id="c1") == notifier.NOTIF_MERGED

    def test_review_summary_message(self):
        message = notifier.build_review_summary_message(
            {"pending": 2, "approved": 1, "merged": 0, "rejected": 3, "total": 6,
             "pending_list": "- a\n- b", "approved_list": "- c"}
        )
        assert "Awaiting review: 2" in message
        assert "Total candidates: 6" in message


class TestDelivery:
    def test_missing_credentials_only_logs(self, fake_bot, monkeypatch):
        monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
        monkeypatch.delenv("TELEGRAM_CHAT_ID", raising=False)
        notifier.notify("mined", candidates=1, skipped=0)
        assert fake_bot.sent == []

    def test_sends_html(self, fake_bot, monkeypatch):
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "token")
        monkeypatch.setenv("TELEGRAM_CHAT_ID", "42")
        notifier.notify("mined", candidates=3, skipped=1)
        ((chat_id, text, parse_mode),) = fake_bot.sent
        assert chat_id == "42"
        assert "Mined 3 candidate(s)" in text
        assert parse_mode == notifier.ParseMode.HTML

    def test_falls_back_to_plain_text(self, fake_bot, monkeypatch):
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "token")
        monkeypatch.setenv("TELEGRAM_CHAT_ID", "42")
        fake_bot.fail_html = True
        notifier.send_review_summary({"pending": 0, "total": 0})
        ((_, _, parse_mode),) = fake_bot.sent
        assert parse_mode is None

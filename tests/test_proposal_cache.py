"""Tests for browser_forge.proposal_cache."""

from __future__ import annotations

import threading

from browser_forge.proposal_cache import ProposalCache
from browser_forge.synthesizer import synthesize


class TestProposalCache:
    def test_missing_key_returns_none(self):
        assert ProposalCache().get("nope") is None

    def test_put_overwrites(self, make_candidate):
        cache = ProposalCache()
        first = synthesize(make_candidate())
        second = synthesize(make_candidate(target_skill_id="shop"))
        cache.put("c1", first)
        cache.put("c1", second)
        assert cache.get("c1") is second
        assert len(cache) == 1

    def test_discard(self, make_candidate):
        cache = ProposalCache()
        cache.put("c1", synthesize(make_candidate()))
        cache.discard("c1")
        cache.discard("c1")
        assert "c1" not in cache

    def test_parallel_puts_to_different_keys_do_not_interfere(self, make_candidate):
        cache = ProposalCache()
        proposals = {f"c{i}": synthesize(make_candidate(id=f"c{i}")) for i in range(50)}

        threads = [
            threading.Thread(target=cache.put, args=(key, proposal))
            for key, proposal in proposals.items()
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(cache) == 50
        for key, proposal in proposals.items():
            assert cache.get(key) is proposal


class TestPersistence:
    def test_entries_survive_reload(self, tmp_path, make_candidate):
        path = tmp_path / "state" / "proposals.yaml"
        proposal = synthesize(make_candidate(target_skill_id="shop"))
        ProposalCache(path).put(proposal.candidate_id, proposal)

        reloaded = ProposalCache(path)
        assert reloaded.load() == 1
        restored = reloaded.get(proposal.candidate_id)
        assert restored == proposal
        assert restored.generated_at == proposal.generated_at

    def test_discard_is_persisted(self, tmp_path, make_candidate):
        path = tmp_path / "proposals.yaml"
        cache = ProposalCache(path)
        cache.put("c1", synthesize(make_candidate(id="c1")))
        cache.discard("c1")

        reloaded = ProposalCache(path)
        assert reloaded.load() == 0

    def test_unreadable_entries_ignored(self, tmp_path):
        path = tmp_path / "proposals.yaml"
        path.write_text("proposals:\n  c1:\n    summary: no ids\n", encoding="utf-8")
        assert ProposalCache(path).load() == 0

    def test_load_without_file(self, tmp_path):
        assert ProposalCache(tmp_path / "missing.yaml").load() == 0

"""Shared fixtures for the Browser Forge test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from browser_forge.models import (
    Candidate,
    CandidateSource,
    CandidateStatus,
    SelectorStat,
    WorkflowStat,
)


T0 = datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)


def at(minutes: int = 0) -> str:
    return (T0 + timedelta(minutes=minutes)).isoformat().replace("+00:00", "Z")


@pytest.fixture
def fixed_clock():
    return lambda: T0


@pytest.fixture
def make_candidate():
    """Factory for valid candidates; keyword arguments override any field."""

    def _make(**overrides) -> Candidate:
        fields = dict(
            id="forge-shadow-shop-example-com",
            source=CandidateSource.SHADOW,
            created_at=T0,
            virtual_domain="shop.example.com",
            selectors=[
                SelectorStat(
                    selector=".buy-btn",
                    usage_count=12,
                    success_rate=0.9,
                    last_seen_at=T0,
                )
            ],
            workflows=[
                WorkflowStat(
                    name="checkout",
                    description="Buy the item in the cart",
                    steps=[
                        {"action": "goto", "target": "https://shop.example.com/cart"},
                        {"action": "click", "target": ".buy-btn"},
                        {"action": "click", "target": "#confirm"},
                    ],
                    success_rate=0.8,
                    failure_patterns=["timeout"],
                    attempts=10,
                )
            ],
            status=CandidateStatus.CANDIDATE,
        )
        fields.update(overrides)
        return Candidate(**fields)

    return _make


@pytest.fixture
def selector_records():
    """Factory for ``attempts`` selector records of which ``successes`` succeeded."""

    def _make(
        selector: str,
        successes: int,
        attempts: int,
        source: str = "shadow",
        domain: str | None = "shop.example.com",
        start: int = 0,
        **extra,
    ) -> list[dict]:
        records = []
        for i in range(attempts):
            record = {
                "source": source,
                "kind": "selector",
                "selector": selector,
                "success": i < successes,
                "timestamp": at(start + i),
                **extra,
            }
            if domain is not None:
                record["virtual_domain"] = domain
            records.append(record)
        return records

    return _make

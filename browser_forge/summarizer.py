"""Summarizer module for Browser Forge.

Builds the review-queue report (what is waiting for a reviewer, what is
approved but not merged yet) and sends it via the notifier.
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Dict, List

from loguru import logger

from .models import Candidate, CandidateStatus
from .notifier import send_review_summary
from .store import CandidateStore


def _fmt_candidate(candidate: Candidate) -> str:
    parts = [candidate.id]
    if candidate.virtual_domain:
        parts.append(f"({candidate.virtual_domain})")
    parts.append(
        f"– {len(candidate.selectors)} selectors, {len(candidate.workflows)} workflows"
    )
    return " ".join(parts)


def _bullets(candidates: List[Candidate]) -> str:
    return "\n".join(f"- {_fmt_candidate(c)}" for c in candidates) or "None"


def build_review_summary_payload(store: CandidateStore) -> Dict[str, Any]:
    """Build the payload expected by ``notifier.send_review_summary``."""
    candidates = store.list_all()
    counts = Counter(c.status for c in candidates)
    pending = [c for c in candidates if c.status is CandidateStatus.CANDIDATE]
    approved = [c for c in candidates if c.status is CandidateStatus.APPROVED]

    return {
        "pending": counts[CandidateStatus.CANDIDATE],
        "approved": counts[CandidateStatus.APPROVED],
        "merged": counts[CandidateStatus.MERGED],
        "rejected": counts[CandidateStatus.REJECTED],
        "total": len(candidates),
        "pending_list": _bullets(pending),
        "approved_list": _bullets(approved),
    }


def run_review_summary(store: CandidateStore) -> Dict[str, Any]:
    """Build and send the review summary notification."""
    payload = build_review_summary_payload(store)
    logger.info(
        "Sending review summary: pending={pending}, approved={approved}, total={total}",
        pending=payload["pending"],
        approved=payload["approved"],
        total=payload["total"],
    )
    send_review_summary(payload)
    return payload

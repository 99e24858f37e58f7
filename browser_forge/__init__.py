"""Top-level package for Browser Forge.

Browser Forge mines behavioral telemetry from a browser automation agent
(replayed shadow sessions, live sentinel monitoring, manual annotations) into
candidate skill updates, and synthesizes change proposals that a reviewer can
approve and merge into the skill registry.

High-level data flow:
- Telemetry providers → aggregator → candidate store
- Candidate store → synthesizer → proposal cache (on demand)
- Reviewer approves/rejects → application gateway merges → candidate merged
"""

from __future__ import annotations

from .errors import (
    ForgeError,
    GatewayError,
    InvalidTransitionError,
    NotFoundError,
    SynthesisError,
    ValidationError,
)
from .miner import AggregationResult, CandidateAggregator
from .models import (
    Candidate,
    CandidateSource,
    CandidateStatus,
    ChangeAction,
    ChangeProposal,
    SelectorChange,
    SelectorStat,
    WorkflowChange,
    WorkflowStat,
)
from .proposal_cache import ProposalCache
from .service import ForgeService
from .store import CandidateStore
from .synthesizer import resolve_skill_id, synthesize


__all__ = [
    "AggregationResult",
    "Candidate",
    "CandidateAggregator",
    "CandidateSource",
    "CandidateStatus",
    "CandidateStore",
    "ChangeAction",
    "ChangeProposal",
    "ForgeError",
    "ForgeService",
    "GatewayError",
    "InvalidTransitionError",
    "NotFoundError",
    "ProposalCache",
    "SelectorChange",
    "SelectorStat",
    "SynthesisError",
    "ValidationError",
    "WorkflowChange",
    "WorkflowStat",
    "resolve_skill_id",
    "synthesize",
]

"""Synthesizer module for Browser Forge.

Projects a ``Candidate`` into a ``ChangeProposal``. This module is pure: it
never touches the proposal cache or the candidate store, so synthesizing the
same candidate twice yields equal proposals (``generated_at`` aside).
"""

from __future__ import annotations

import hashlib
import re
from datetime import datetime
from typing import Callable

from loguru import logger

from .models import (
    Candidate,
    ChangeAction,
    ChangeProposal,
    SelectorChange,
    WorkflowChange,
    utcnow,
)


FALLBACK_PREFIX = "forge-skill-"

_NON_ALNUM_RUN = re.compile(r"[^A-Za-z0-9]+")


def normalize_domain(virtual_domain: str) -> str:
    """Replace every run of non-alphanumeric characters with a single hyphen."""
    return _NON_ALNUM_RUN.sub("-", virtual_domain)


def fallback_skill_id(candidate_id: str) -> str:
    """Collision-resistant skill id for a candidate with no target and no domain.

    Derived from the candidate's immutable id rather than the clock, so it is
    unique per candidate and stable across regenerations.
    """
    digest = hashlib.sha256(candidate_id.encode("utf-8")).hexdigest()[:16]
    return f"{FALLBACK_PREFIX}{digest}"


def resolve_skill_id(candidate: Candidate) -> str:
    """Return the skill id a proposal for ``candidate`` should create or update."""
    if candidate.target_skill_id:
        return candidate.target_skill_id
    if candidate.virtual_domain:
        return normalize_domain(candidate.virtual_domain)
    return fallback_skill_id(candidate.id)


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


def build_summary(candidate: Candidate, skill_id: str) -> str:
    target = skill_id
    if candidate.virtual_domain and candidate.virtual_domain != skill_id:
        target = f"{skill_id} ({candidate.virtual_domain})"
    return (
        f"Proposed skill updates for {target}: "
        f"{_plural(len(candidate.selectors), 'selector change')}, "
        f"{_plural(len(candidate.workflows), 'workflow change')}"
    )


def synthesize(
    candidate: Candidate,
    clock: Callable[[], datetime] = utcnow,
) -> ChangeProposal:
    """Build the change proposal for a candidate.

    Every selector and workflow maps 1:1, in order, to an add-or-update change.
    Raises ``ValidationError`` if the candidate breaks a data-model invariant.
    """
    candidate.validate()
    skill_id = resolve_skill_id(candidate)

    selector_changes = [
        SelectorChange(
            action=ChangeAction.ADD_OR_UPDATE,
            name=stat.name or stat.selector,
            selector=stat.selector,
            usage_count=stat.usage_count,
            success_rate=stat.success_rate,
        )
        for stat in candidate.selectors
    ]
    workflow_changes = [
        WorkflowChange(
            action=ChangeAction.ADD_OR_UPDATE,
            name=workflow.name,
            description=workflow.description,
            steps=list(workflow.steps),
            success_rate=workflow.success_rate,
            failure_patterns=list(workflow.failure_patterns),
        )
        for workflow in candidate.workflows
    ]

    proposal = ChangeProposal(
        candidate_id=candidate.id,
        target_skill_id=candidate.target_skill_id,
        new_skill_id=skill_id,
        summary=build_summary(candidate, skill_id),
        selector_changes=selector_changes,
        workflow_changes=workflow_changes,
        generated_at=clock(),
    )
    logger.debug(
        "Synthesized proposal for {cid} -> {skill}", cid=candidate.id, skill=skill_id
    )
    return proposal

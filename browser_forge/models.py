"""Shared data model for Browser Forge.

Candidates are mined from telemetry, reviewed, and eventually merged into the
skill registry. Change proposals are derived projections of a candidate and are
never stored on their own.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import ValidationError


class CandidateSource(str, Enum):
    SHADOW = "shadow"
    SENTINEL = "sentinel"
    MANUAL = "manual"


class CandidateStatus(str, Enum):
    CANDIDATE = "candidate"
    APPROVED = "approved"
    REJECTED = "rejected"
    MERGED = "merged"


class ChangeAction(str, Enum):
    """Tag carried by every change entry in a proposal."""

    ADD_OR_UPDATE = "add-or-update"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Coerce an ISO-8601 string, epoch seconds, or datetime into an aware UTC datetime.

    Raises ``ValueError`` or ``TypeError`` for anything else.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, bool):
        raise TypeError("boolean is not a timestamp")
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(float(value), tz=timezone.utc)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise TypeError(f"unsupported timestamp value: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def weighted_rate(rate_a: float, count_a: int, rate_b: float, count_b: int) -> float:
    """Combine two success rates weighted by the number of attempts behind each."""
    total = count_a + count_b
    if total <= 0:
        return 0.0
    return (rate_a * count_a + rate_b * count_b) / total


def _unique(items: List[str]) -> List[str]:
    seen: Dict[str, None] = {}
    for item in items:
        if item and item not in seen:
            seen[item] = None
    return list(seen)


@dataclass
class SelectorStat:
    """Usage statistics for one locator string."""

    selector: str
    usage_count: int = 0
    success_rate: float = 0.0
    last_seen_at: Optional[datetime] = None
    name: Optional[str] = None

    def absorb(self, other: "SelectorStat") -> None:
        """Fold evidence from a later aggregation pass into this stat."""
        self.success_rate = weighted_rate(
            self.success_rate, self.usage_count, other.success_rate, other.usage_count
        )
        self.usage_count += other.usage_count
        if other.last_seen_at is not None and (
            self.last_seen_at is None or other.last_seen_at > self.last_seen_at
        ):
            self.last_seen_at = other.last_seen_at
        if not self.name and other.name:
            self.name = other.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "selector": self.selector,
            "usage_count": self.usage_count,
            "success_rate": self.success_rate,
            "last_seen_at": format_timestamp(self.last_seen_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SelectorStat":
        last_seen = data.get("last_seen_at")
        return cls(
            selector=str(data["selector"]),
            usage_count=int(data.get("usage_count", 0)),
            success_rate=float(data.get("success_rate", 0.0)),
            last_seen_at=parse_timestamp(last_seen) if last_seen else None,
            name=data.get("name"),
        )


@dataclass
class WorkflowStat:
    """Outcome statistics for one named workflow.

    ``attempts`` is the number of observed runs behind ``success_rate`` and is
    what lets two aggregation passes be merged with correct weighting.
    """

    name: str
    description: str = ""
    steps: List[Any] = field(default_factory=list)
    success_rate: float = 0.0
    failure_patterns: List[str] = field(default_factory=list)
    attempts: int = 0

    def absorb(self, other: "WorkflowStat") -> None:
        self.success_rate = weighted_rate(
            self.success_rate, self.attempts, other.success_rate, other.attempts
        )
        self.attempts += other.attempts
        if other.steps:
            self.steps = list(other.steps)
        if not self.description and other.description:
            self.description = other.description
        self.failure_patterns = _unique(self.failure_patterns + other.failure_patterns)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "steps": list(self.steps),
            "success_rate": self.success_rate,
            "failure_patterns": list(self.failure_patterns),
            "attempts": self.attempts,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowStat":
        return cls(
            name=str(data["name"]),
            description=str(data.get("description") or ""),
            steps=list(data.get("steps") or []),
            success_rate=float(data.get("success_rate", 0.0)),
            failure_patterns=_unique([str(p) for p in data.get("failure_patterns") or []]),
            attempts=int(data.get("attempts", 0)),
        )


@dataclass
class Candidate:
    """A mined, unreviewed bundle of selector/workflow evidence for one skill."""

    id: str
    source: CandidateSource
    created_at: datetime
    selectors: List[SelectorStat] = field(default_factory=list)
    workflows: List[WorkflowStat] = field(default_factory=list)
    status: CandidateStatus = CandidateStatus.CANDIDATE
    virtual_domain: Optional[str] = None
    url_sample: Optional[str] = None
    snapshot_id: Optional[str] = None
    target_skill_id: Optional[str] = None
    notes: Optional[str] = None
    # newest telemetry timestamp already folded into this record
    ingested_through: Optional[datetime] = None

    def is_empty(self) -> bool:
        return not self.selectors and not self.workflows

    def validate(self) -> None:
        """Raise ``ValidationError`` if this candidate breaks a data-model invariant."""
        if not self.id:
            raise ValidationError("Candidate id must be non-empty")
        if self.is_empty():
            raise ValidationError(
                f"Candidate {self.id} carries no selectors and no workflows"
            )

        seen_selectors = set()
        for stat in self.selectors:
            if not stat.selector:
                raise ValidationError(f"Candidate {self.id} has an empty selector")
            if stat.selector in seen_selectors:
                raise ValidationError(
                    f"Candidate {self.id} lists selector {stat.selector!r} twice"
                )
            seen_selectors.add(stat.selector)
            if stat.usage_count < 0:
                raise ValidationError(f"Selector {stat.selector!r} has a negative usage count")
            if not 0.0 <= stat.success_rate <= 1.0:
                raise ValidationError(
                    f"Selector {stat.selector!r} success rate {stat.success_rate} outside [0, 1]"
                )

        seen_workflows = set()
        for workflow in self.workflows:
            if not workflow.name:
                raise ValidationError(f"Candidate {self.id} has an unnamed workflow")
            if workflow.name in seen_workflows:
                raise ValidationError(
                    f"Candidate {self.id} lists workflow {workflow.name!r} twice"
                )
            seen_workflows.add(workflow.name)
            if not 0.0 <= workflow.success_rate <= 1.0:
                raise ValidationError(
                    f"Workflow {workflow.name!r} success rate {workflow.success_rate} outside [0, 1]"
                )

    def absorb(self, other: "Candidate") -> None:
        """Merge a freshly mined candidate with the same id into this record.

        Identity, provenance, creation time and status are left alone; only the
        evidence is merged.
        """
        selectors = {stat.selector: stat for stat in self.selectors}
        for stat in other.selectors:
            existing = selectors.get(stat.selector)
            if existing is None:
                self.selectors.append(stat)
                selectors[stat.selector] = stat
            else:
                existing.absorb(stat)

        workflows = {wf.name: wf for wf in self.workflows}
        for workflow in other.workflows:
            existing_wf = workflows.get(workflow.name)
            if existing_wf is None:
                self.workflows.append(workflow)
                workflows[workflow.name] = workflow
            else:
                existing_wf.absorb(workflow)

        self.virtual_domain = self.virtual_domain or other.virtual_domain
        self.url_sample = self.url_sample or other.url_sample
        self.snapshot_id = self.snapshot_id or other.snapshot_id
        self.target_skill_id = self.target_skill_id or other.target_skill_id
        if other.notes:
            merged = _unique((self.notes or "").split(", ") + other.notes.split(", "))
            self.notes = ", ".join(merged)
        if other.ingested_through is not None and (
            self.ingested_through is None or other.ingested_through > self.ingested_through
        ):
            self.ingested_through = other.ingested_through

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source.value,
            "created_at": format_timestamp(self.created_at),
            "status": self.status.value,
            "virtual_domain": self.virtual_domain,
            "url_sample": self.url_sample,
            "snapshot_id": self.snapshot_id,
            "target_skill_id": self.target_skill_id,
            "notes": self.notes,
            "ingested_through": format_timestamp(self.ingested_through),
            "selectors": [s.to_dict() for s in self.selectors],
            "workflows": [w.to_dict() for w in self.workflows],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Candidate":
        return cls(
            id=str(data["id"]),
            source=CandidateSource(data["source"]),
            created_at=parse_timestamp(data["created_at"]),
            status=CandidateStatus(data.get("status", CandidateStatus.CANDIDATE.value)),
            virtual_domain=data.get("virtual_domain"),
            url_sample=data.get("url_sample"),
            snapshot_id=data.get("snapshot_id"),
            target_skill_id=data.get("target_skill_id"),
            notes=data.get("notes"),
            ingested_through=(
                parse_timestamp(data["ingested_through"])
                if data.get("ingested_through")
                else None
            ),
            selectors=[SelectorStat.from_dict(s) for s in data.get("selectors") or []],
            workflows=[WorkflowStat.from_dict(w) for w in data.get("workflows") or []],
        )


@dataclass
class SelectorChange:
    name: str
    selector: str
    usage_count: int
    success_rate: float
    action: ChangeAction = ChangeAction.ADD_OR_UPDATE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "name": self.name,
            "selector": self.selector,
            "usage_count": self.usage_count,
            "success_rate": self.success_rate,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SelectorChange":
        return cls(
            name=str(data["name"]),
            selector=str(data["selector"]),
            usage_count=int(data.get("usage_count", 0)),
            success_rate=float(data.get("success_rate", 0.0)),
            action=ChangeAction(data.get("action", ChangeAction.ADD_OR_UPDATE.value)),
        )


@dataclass
class WorkflowChange:
    name: str
    description: str
    steps: List[Any]
    success_rate: float
    failure_patterns: List[str]
    action: ChangeAction = ChangeAction.ADD_OR_UPDATE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "name": self.name,
            "description": self.description,
            "steps": list(self.steps),
            "success_rate": self.success_rate,
            "failure_patterns": list(self.failure_patterns),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowChange":
        return cls(
            name=str(data["name"]),
            description=str(data.get("description") or ""),
            steps=list(data.get("steps") or []),
            success_rate=float(data.get("success_rate", 0.0)),
            failure_patterns=[str(p) for p in data.get("failure_patterns") or []],
            action=ChangeAction(data.get("action", ChangeAction.ADD_OR_UPDATE.value)),
        )


@dataclass
class ChangeProposal:
    """Reviewable projection of a candidate into concrete skill changes.

    ``generated_at`` is excluded from equality so that two syntheses of the
    same candidate compare equal.
    """

    candidate_id: str
    new_skill_id: str
    summary: str
    selector_changes: List[SelectorChange]
    workflow_changes: List[WorkflowChange]
    target_skill_id: Optional[str] = None
    generated_at: datetime = field(default_factory=utcnow, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidate_id": self.candidate_id,
            "target_skill_id": self.target_skill_id,
            "new_skill_id": self.new_skill_id,
            "summary": self.summary,
            "selector_changes": [c.to_dict() for c in self.selector_changes],
            "workflow_changes": [c.to_dict() for c in self.workflow_changes],
            "generated_at": format_timestamp(self.generated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChangeProposal":
        return cls(
            candidate_id=str(data["candidate_id"]),
            target_skill_id=data.get("target_skill_id"),
            new_skill_id=str(data["new_skill_id"]),
            summary=str(data.get("summary") or ""),
            selector_changes=[
                SelectorChange.from_dict(c) for c in data.get("selector_changes") or []
            ],
            workflow_changes=[
                WorkflowChange.from_dict(c) for c in data.get("workflow_changes") or []
            ],
            generated_at=parse_timestamp(data["generated_at"]),
        )

"""Candidate aggregation for Browser Forge.

Folds a stream of raw telemetry items into ``Candidate`` records, one per
(source, skill target or virtual domain) group. Rates are always computed from
accumulated successes over accumulated attempts, never by averaging rates.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from loguru import logger

from .errors import ValidationError
from .models import (
    Candidate,
    CandidateSource,
    CandidateStatus,
    SelectorStat,
    WorkflowStat,
    utcnow,
)
from .telemetry import RecordKind, TelemetryRecord, expand_item, parse_record


_SLUG_RE = re.compile(r"[^A-Za-z0-9]+")

GroupKey = Tuple[CandidateSource, Optional[str]]


def candidate_id_for(source: CandidateSource, key: Optional[str]) -> str:
    """Deterministic candidate id for a grouping key, so re-mining hits the same record."""
    if not key:
        return f"forge-{source.value}-unscoped"
    slug = _SLUG_RE.sub("-", key).strip("-").lower() or "unscoped"
    return f"forge-{source.value}-{slug}"


@dataclass
class AggregationResult:
    candidates: List[Candidate]
    skipped: int = 0
    dropped_groups: int = 0
    already_ingested: int = 0


@dataclass
class _SelectorTally:
    name: Optional[str] = None
    attempts: int = 0
    successes: int = 0
    last_seen_at: Optional[datetime] = None


@dataclass
class _WorkflowTally:
    description: str = ""
    steps: List[Any] = field(default_factory=list)
    attempts: int = 0
    successes: int = 0
    failure_patterns: Dict[str, None] = field(default_factory=dict)


@dataclass
class _Group:
    source: CandidateSource
    key: Optional[str]
    virtual_domain: Optional[str] = None
    target_skill_id: Optional[str] = None
    url_sample: Optional[str] = None
    snapshot_id: Optional[str] = None
    latest: Optional[datetime] = None
    selectors: Dict[str, _SelectorTally] = field(default_factory=dict)
    workflows: Dict[str, _WorkflowTally] = field(default_factory=dict)

    def fold(self, record: TelemetryRecord) -> None:
        self.virtual_domain = self.virtual_domain or record.virtual_domain
        self.target_skill_id = self.target_skill_id or record.target_skill_id
        self.url_sample = self.url_sample or record.url
        self.snapshot_id = self.snapshot_id or record.snapshot_id
        if self.latest is None or record.timestamp > self.latest:
            self.latest = record.timestamp

        if record.kind is RecordKind.SELECTOR:
            tally = self.selectors.setdefault(record.selector, _SelectorTally())
            tally.attempts += 1
            tally.successes += int(record.success)
            tally.name = tally.name or record.selector_name
            if tally.last_seen_at is None or record.timestamp > tally.last_seen_at:
                tally.last_seen_at = record.timestamp
        elif record.kind is RecordKind.WORKFLOW:
            wf = self.workflows.setdefault(record.workflow, _WorkflowTally())
            wf.attempts += 1
            wf.successes += int(record.success)
            wf.description = wf.description or record.description
            # records are folded in timestamp order, so the newest steps win
            if record.steps:
                wf.steps = list(record.steps)
            if record.failure_signature:
                wf.failure_patterns[record.failure_signature] = None


class CandidateAggregator:
    """Turn raw telemetry into candidates.

    Parameters
    ----------
    min_usage:
        Selectors and workflows observed fewer times than this are treated as
        noise and dropped. A group left with nothing is not emitted.
    clock:
        Source of ``created_at`` for new candidates.
    """

    def __init__(self, min_usage: int = 1, clock: Callable[[], datetime] = utcnow) -> None:
        if min_usage < 1:
            raise ValueError("min_usage must be at least 1")
        self.min_usage = min_usage
        self._clock = clock

    def _parse_all(self, items: Iterable[Any]) -> Tuple[List[TelemetryRecord], int]:
        records: List[TelemetryRecord] = []
        skipped = 0
        for item in items:
            try:
                expanded = expand_item(item)
            except ValidationError as exc:
                skipped += 1
                logger.debug("Skipping malformed provider item: {err}", err=exc)
                continue
            for raw in expanded:
                try:
                    records.append(parse_record(raw))
                except ValidationError as exc:
                    skipped += 1
                    logger.debug("Skipping malformed telemetry record: {err}", err=exc)
        return records, skipped

    def _materialize(self, group: _Group, signals: Dict[str, None]) -> Optional[Candidate]:
        selectors = [
            SelectorStat(
                selector=selector,
                name=tally.name,
                usage_count=tally.attempts,
                success_rate=tally.successes / tally.attempts,
                last_seen_at=tally.last_seen_at,
            )
            for selector, tally in group.selectors.items()
            if tally.attempts >= self.min_usage
        ]
        workflows = [
            WorkflowStat(
                name=name,
                description=tally.description,
                steps=tally.steps,
                success_rate=tally.successes / tally.attempts,
                failure_patterns=list(tally.failure_patterns),
                attempts=tally.attempts,
            )
            for name, tally in group.workflows.items()
            if tally.attempts >= self.min_usage
        ]
        if not selectors and not workflows:
            return None

        return Candidate(
            id=candidate_id_for(group.source, group.key),
            source=group.source,
            created_at=self._clock(),
            status=CandidateStatus.CANDIDATE,
            virtual_domain=group.virtual_domain,
            url_sample=group.url_sample,
            snapshot_id=group.snapshot_id,
            target_skill_id=group.target_skill_id,
            selectors=selectors,
            workflows=workflows,
            notes=", ".join(signals) or None,
            ingested_through=group.latest,
        )

    def aggregate(
        self,
        items: Iterable[Any],
        watermarks: Optional[Mapping[str, datetime]] = None,
    ) -> AggregationResult:
        """Aggregate one telemetry window into candidates.

        Malformed items are skipped and counted; they never abort the batch.
        ``watermarks`` maps candidate ids to the newest timestamp already
        ingested for them; evidence at or before it is not counted again, so
        re-reading the same telemetry leaves the statistics unchanged.
        """
        records, skipped = self._parse_all(items)
        # stable sort: discovery order follows observation time
        records.sort(key=lambda r: r.timestamp)
        watermarks = watermarks or {}

        groups: Dict[GroupKey, _Group] = {}
        # sentinel signals annotate every candidate for the same domain
        signals_by_domain: Dict[Optional[str], Dict[str, None]] = {}
        already_ingested = 0

        for record in records:
            if record.kind is RecordKind.SIGNAL:
                signals_by_domain.setdefault(record.virtual_domain, {})[record.signal] = None
                continue
            watermark = watermarks.get(candidate_id_for(record.source, record.group_key))
            if watermark is not None and record.timestamp <= watermark:
                already_ingested += 1
                continue
            key: GroupKey = (record.source, record.group_key)
            group = groups.get(key)
            if group is None:
                group = groups[key] = _Group(source=record.source, key=record.group_key)
            group.fold(record)

        candidates: Dict[str, Candidate] = {}
        dropped = 0
        for group in groups.values():
            candidate = self._materialize(group, signals_by_domain.get(group.virtual_domain, {}))
            if candidate is None:
                dropped += 1
                logger.debug(
                    "Dropping group {source}/{key}: nothing above noise threshold",
                    source=group.source.value,
                    key=group.key,
                )
                continue
            existing = candidates.get(candidate.id)
            if existing is None:
                candidates[candidate.id] = candidate
            else:
                # two keys that slugify to the same id share one record
                existing.absorb(candidate)

        logger.info(
            "Aggregated {records} records into {n} candidates "
            "({skipped} skipped, {seen} already ingested, {dropped} groups dropped)",
            records=len(records),
            n=len(candidates),
            skipped=skipped,
            seen=already_ingested,
            dropped=dropped,
        )
        return AggregationResult(
            candidates=list(candidates.values()),
            skipped=skipped,
            dropped_groups=dropped,
            already_ingested=already_ingested,
        )

"""Telemetry ingestion for Browser Forge.

Providers hand us raw items in one of three shapes:

- generic records (``kind`` = selector / workflow / signal), used for manual
  annotations and anything already normalised upstream
- shadow flows: one replayed session with its steps and the selectors it used
- sentinel health events from live monitoring

``expand_item`` turns any of these into generic record mappings and
``parse_record`` validates one mapping into a ``TelemetryRecord``. Loading a
file never validates; malformed items are left for the aggregator to skip and
count.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from loguru import logger
from yaml import YAMLError, safe_load

from .errors import ValidationError
from .models import CandidateSource, parse_timestamp


SHADOW_DIVERGENCE = "shadow divergence"

_OUTCOME_WORDS = {
    "success": True,
    "succeeded": True,
    "ok": True,
    "pass": True,
    "failure": False,
    "failed": False,
    "fail": False,
    "error": False,
}


class RecordKind(str, Enum):
    SELECTOR = "selector"
    WORKFLOW = "workflow"
    # Observation with no outcome, e.g. a sentinel "popup-detected" event.
    SIGNAL = "signal"


@dataclass
class TelemetryRecord:
    """One normalised interaction observed by a telemetry provider."""

    source: CandidateSource
    kind: RecordKind
    timestamp: datetime
    success: bool = True
    virtual_domain: Optional[str] = None
    target_skill_id: Optional[str] = None
    url: Optional[str] = None
    snapshot_id: Optional[str] = None
    selector: Optional[str] = None
    selector_name: Optional[str] = None
    workflow: Optional[str] = None
    description: str = ""
    steps: List[Any] = field(default_factory=list)
    failure_signature: Optional[str] = None
    signal: Optional[str] = None

    @property
    def group_key(self) -> Optional[str]:
        return self.target_skill_id or self.virtual_domain


def _optional_str(data: Mapping[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = data.get(key)
        if value is None:
            continue
        if not isinstance(value, str):
            raise ValidationError(f"Field '{key}' must be a string, got {type(value).__name__}")
        value = value.strip()
        if value:
            return value
    return None


def _parse_outcome(data: Mapping[str, Any]) -> bool:
    if "success" in data:
        value = data["success"]
        if isinstance(value, bool):
            return value
        raise ValidationError(f"Field 'success' must be a boolean, got {value!r}")
    outcome = data.get("outcome")
    if isinstance(outcome, str) and outcome.strip().lower() in _OUTCOME_WORDS:
        return _OUTCOME_WORDS[outcome.strip().lower()]
    raise ValidationError(f"Record has no usable outcome: {outcome!r}")


def parse_record(data: Any) -> TelemetryRecord:
    """Validate one generic record mapping.

    Raises ``ValidationError`` describing the first problem found.
    """
    if not isinstance(data, Mapping):
        raise ValidationError(f"Telemetry record must be a mapping, got {type(data).__name__}")

    try:
        source = CandidateSource(data.get("source"))
    except ValueError:
        raise ValidationError(f"Unknown telemetry source: {data.get('source')!r}") from None

    try:
        kind = RecordKind(data.get("kind"))
    except ValueError:
        raise ValidationError(f"Unknown record kind: {data.get('kind')!r}") from None

    if data.get("timestamp") is None:
        raise ValidationError("Telemetry record is missing a timestamp")
    try:
        timestamp = parse_timestamp(data["timestamp"])
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Unparseable timestamp {data['timestamp']!r}: {exc}") from None

    record = TelemetryRecord(
        source=source,
        kind=kind,
        timestamp=timestamp,
        virtual_domain=_optional_str(data, "virtual_domain", "virtualDomain", "domain"),
        target_skill_id=_optional_str(data, "target_skill_id", "targetSkillId"),
        url=_optional_str(data, "url", "url_sample", "urlSample"),
        snapshot_id=_optional_str(data, "snapshot_id", "snapshotId"),
    )

    if kind is RecordKind.SELECTOR:
        record.selector = _optional_str(data, "selector")
        if record.selector is None:
            raise ValidationError("Selector record has no selector string")
        record.selector_name = _optional_str(data, "name", "selector_name")
        record.success = _parse_outcome(data)
    elif kind is RecordKind.WORKFLOW:
        record.workflow = _optional_str(data, "workflow", "name")
        if record.workflow is None:
            raise ValidationError("Workflow record has no workflow name")
        record.description = _optional_str(data, "description") or ""
        steps = data.get("steps") or []
        if not isinstance(steps, list):
            raise ValidationError("Workflow steps must be a list")
        record.steps = list(steps)
        record.success = _parse_outcome(data)
        record.failure_signature = _optional_str(data, "failure_signature", "failurePattern")
    else:
        record.signal = _optional_str(data, "signal", "type")
        if record.signal is None:
            raise ValidationError("Signal record has no signal name")

    return record


def _is_shadow_flow(item: Mapping[str, Any]) -> bool:
    return "kind" not in item and ("selectorsUsed" in item or "selectors_used" in item)


def _is_sentinel_event(item: Mapping[str, Any]) -> bool:
    return "kind" not in item and "type" in item


def expand_shadow_flow(flow: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """Turn one replayed shadow flow into generic records.

    Every selector the flow used becomes a selector record sharing the flow's
    outcome, and the flow itself becomes a workflow record named after its
    domain and id.
    """
    flow_id = flow.get("id")
    domain = flow.get("domain") or flow.get("virtualDomain")
    if not flow_id or not domain:
        raise ValidationError("Shadow flow needs both an id and a domain")
    success = flow.get("success")
    if not isinstance(success, bool):
        raise ValidationError(f"Shadow flow {flow_id} has no boolean success flag")

    timestamp = flow.get("timestamp") or flow.get("recordedAt")
    if timestamp is None:
        raise ValidationError(f"Shadow flow {flow_id} has no timestamp")
    common: Dict[str, Any] = {
        "source": CandidateSource.SHADOW.value,
        "virtual_domain": domain,
        "target_skill_id": flow.get("targetSkillId") or flow.get("target_skill_id"),
        "url": flow.get("urlSample") or flow.get("url_sample"),
        "snapshot_id": flow.get("snapshotId") or flow.get("snapshot_id"),
        "timestamp": timestamp,
        "success": success,
    }

    selectors = flow.get("selectorsUsed") or flow.get("selectors_used") or []
    if not isinstance(selectors, list):
        raise ValidationError(f"Shadow flow {flow_id} selectorsUsed must be a list")

    records: List[Dict[str, Any]] = [
        {**common, "kind": RecordKind.SELECTOR.value, "selector": selector}
        for selector in selectors
    ]
    records.append(
        {
            **common,
            "kind": RecordKind.WORKFLOW.value,
            "workflow": f"{domain}-workflow-{flow_id}",
            "description": f"Learned from shadow flow {flow_id}",
            "steps": list(flow.get("steps") or []),
            "failure_signature": None if success else SHADOW_DIVERGENCE,
        }
    )
    return records


def expand_sentinel_event(event: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """Turn one sentinel health event into generic records.

    A recoverable ``missing-selector`` event is evidence about that selector;
    everything else is kept only as an annotation signal.
    """
    event_type = event.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise ValidationError("Sentinel event has no type")

    meta = event.get("meta") if isinstance(event.get("meta"), Mapping) else {}
    selector = event.get("selector") or meta.get("selector")
    common: Dict[str, Any] = {
        "source": CandidateSource.SENTINEL.value,
        "virtual_domain": event.get("virtualDomain") or event.get("domain"),
        "target_skill_id": event.get("targetSkillId"),
        "url": event.get("url"),
        "snapshot_id": event.get("snapshotId"),
        "timestamp": event.get("timestamp"),
    }

    signal = f"{event_type}:{selector}" if selector else event_type
    records: List[Dict[str, Any]] = [
        {**common, "kind": RecordKind.SIGNAL.value, "signal": signal}
    ]
    if event_type == "missing-selector" and selector:
        records.append(
            {
                **common,
                "kind": RecordKind.SELECTOR.value,
                "selector": selector,
                "success": bool(event.get("recovered", False)),
            }
        )
    return records


def expand_item(item: Any) -> List[Any]:
    """Normalise one provider item into a list of generic record mappings.

    Items that are already generic records (or not mappings at all) pass
    through untouched so that ``parse_record`` can reject them.
    """
    if not isinstance(item, Mapping):
        return [item]
    if _is_shadow_flow(item):
        return expand_shadow_flow(item)
    if _is_sentinel_event(item):
        return expand_sentinel_event(item)
    return [item]


def _items_from_document(document: Any) -> List[Any]:
    if document is None:
        return []
    if isinstance(document, list):
        return document
    if isinstance(document, Mapping):
        for key in ("records", "events", "flows"):
            value = document.get(key)
            if isinstance(value, list):
                return value
        return [document]
    return [document]


def load_telemetry(path: str | Path) -> List[Any]:
    """Read raw provider items from a ``.jsonl``, ``.json`` or YAML file.

    Lines that are not valid JSON are returned as raw strings so they are
    counted as skipped during aggregation instead of aborting the load.
    """
    file_path = Path(path).expanduser()
    suffix = file_path.suffix.lower()
    text = file_path.read_text(encoding="utf-8")

    if suffix == ".jsonl":
        items: List[Any] = []
        for line_no, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                items.append(json.loads(line))
            except json.JSONDecodeError:
                logger.debug("Unparseable JSON on line {n} of {path}", n=line_no, path=file_path)
                items.append(line)
        logger.info("Loaded {n} telemetry items from {path}", n=len(items), path=file_path)
        return items

    if suffix == ".json":
        try:
            document = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Telemetry file {file_path} is not valid JSON: {exc}") from exc
    elif suffix in (".yaml", ".yml"):
        try:
            document = safe_load(text)
        except YAMLError as exc:
            raise ValidationError(f"Telemetry file {file_path} is not valid YAML: {exc}") from exc
    else:
        raise ValidationError(f"Unsupported telemetry file type: {file_path.name}")

    items = _items_from_document(document)
    logger.info("Loaded {n} telemetry items from {path}", n=len(items), path=file_path)
    return items

"""Application gateway boundary for Browser Forge.

The gateway is the component that actually merges an approved proposal into the
skill registry. This module defines the protocol the service talks to and a
reference ``SkillPackGateway`` that keeps one YAML skill pack per skill id
under a skills directory (``FORGE_SKILLS_DIR``, default
``~/.browser-forge/skills``).
"""

from __future__ import annotations

import difflib
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from loguru import logger
from yaml import YAMLError, safe_dump, safe_load

from .errors import GatewayError
from .models import ChangeProposal, format_timestamp, utcnow


GENERATED_BY = "browser-forge"

_SAFE_SKILL_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


@dataclass
class GatewayResult:
    skill_id: str
    applied: bool
    preview_diff: Optional[str] = None
    skill_path: Optional[Path] = None


class ApplicationGateway(Protocol):
    def apply(self, proposal: ChangeProposal, preview: bool = False) -> GatewayResult:
        """Merge ``proposal`` into the registry, or only describe the merge when ``preview``."""
        ...


def _skills_root(override: str | Path | None = None) -> Path:
    """Return the directory where skill packs are stored."""
    base = override or os.environ.get("FORGE_SKILLS_DIR") or "~/.browser-forge/skills"
    return Path(base).expanduser()


def _change_payload(change: Any) -> Dict[str, Any]:
    payload = change.to_dict()
    payload.pop("action", None)
    return payload


def merge_skill_pack(existing: Optional[Dict[str, Any]], proposal: ChangeProposal) -> Dict[str, Any]:
    """Return the skill pack that results from applying ``proposal`` to ``existing``.

    Selectors are matched by name or selector string and workflows by name;
    matches are updated in place and everything else is appended.
    """
    skill_id = proposal.target_skill_id or proposal.new_skill_id
    base: Dict[str, Any] = dict(existing) if existing else {
        "id": skill_id,
        "description": proposal.summary,
        "selectors": [],
        "workflows": [],
        "metadata": {},
    }

    selectors: List[Dict[str, Any]] = [dict(s) for s in base.get("selectors") or []]
    for change in proposal.selector_changes:
        payload = _change_payload(change)
        for idx, current in enumerate(selectors):
            if current.get("name") == change.name or current.get("selector") == change.selector:
                selectors[idx] = {**current, **payload}
                break
        else:
            selectors.append(payload)

    workflows: List[Dict[str, Any]] = [dict(w) for w in base.get("workflows") or []]
    for change in proposal.workflow_changes:
        payload = _change_payload(change)
        for idx, current in enumerate(workflows):
            if current.get("name") == change.name:
                workflows[idx] = {**current, **payload}
                break
        else:
            workflows.append(payload)

    metadata = dict(base.get("metadata") or {})
    metadata.update(
        {
            "generated_by": GENERATED_BY,
            "generated_at": format_timestamp(utcnow()),
            "candidate_id": proposal.candidate_id,
        }
    )

    return {
        **base,
        "id": base.get("id") or skill_id,
        "description": proposal.summary,
        "selectors": selectors,
        "workflows": workflows,
        "metadata": metadata,
    }


def _dump(pack: Optional[Dict[str, Any]]) -> str:
    return safe_dump(pack or {}, sort_keys=False, allow_unicode=True)


class SkillPackGateway:
    """Reference gateway writing ``<skill id>.skill.yaml`` files."""

    def __init__(self, skills_dir: str | Path | None = None) -> None:
        self.skills_dir = _skills_root(skills_dir)

    def pack_path(self, skill_id: str) -> Path:
        if not _SAFE_SKILL_ID.match(skill_id):
            raise GatewayError(f"Refusing unsafe skill id: {skill_id!r}")
        return self.skills_dir / f"{skill_id}.skill.yaml"

    def load_pack(self, skill_id: str) -> Optional[Dict[str, Any]]:
        path = self.pack_path(skill_id)
        if not path.exists():
            return None
        try:
            data = safe_load(path.read_text(encoding="utf-8"))
        except (OSError, YAMLError) as exc:
            raise GatewayError(f"Cannot read skill pack {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise GatewayError(f"Skill pack {path} is not a mapping")
        return data

    def apply(self, proposal: ChangeProposal, preview: bool = False) -> GatewayResult:
        skill_id = proposal.target_skill_id or proposal.new_skill_id
        existing = self.load_pack(skill_id)
        updated = merge_skill_pack(existing, proposal)

        if preview:
            diff = "".join(
                difflib.unified_diff(
                    _dump(existing).splitlines(keepends=True),
                    _dump(updated).splitlines(keepends=True),
                    fromfile="current",
                    tofile="proposed",
                )
            )
            return GatewayResult(skill_id=skill_id, applied=False, preview_diff=diff)

        path = self.pack_path(skill_id)
        try:
            self.skills_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(_dump(updated), encoding="utf-8")
        except OSError as exc:
            raise GatewayError(f"Cannot write skill pack {path}: {exc}") from exc

        logger.info("Wrote skill pack '{skill}' at {path}", skill=skill_id, path=path)
        return GatewayResult(skill_id=skill_id, applied=True, skill_path=path)

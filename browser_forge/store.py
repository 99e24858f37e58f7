"""Candidate store for Browser Forge.

Owns every ``Candidate`` and its lifecycle status. Reads and writes for one
candidate id are serialized by a per-id lock; different ids never wait on each
other. Callers always receive copies, so the only way to change a stored
candidate is through the store's own operations.

With a ``path`` the store keeps a YAML snapshot on disk: ``load()`` reads it at
startup and every mutation rewrites it atomically.
"""

from __future__ import annotations

import copy
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from loguru import logger
from yaml import YAMLError, safe_dump, safe_load

from .errors import InvalidTransitionError, NotFoundError, ValidationError
from .models import Candidate, CandidateStatus


ALLOWED_TRANSITIONS: Dict[CandidateStatus, frozenset] = {
    CandidateStatus.CANDIDATE: frozenset({CandidateStatus.APPROVED, CandidateStatus.REJECTED}),
    # merged is only reachable once the application gateway confirms the merge
    CandidateStatus.APPROVED: frozenset({CandidateStatus.MERGED}),
    CandidateStatus.REJECTED: frozenset(),
    CandidateStatus.MERGED: frozenset(),
}


def is_terminal(status: CandidateStatus) -> bool:
    return not ALLOWED_TRANSITIONS[status]


class CandidateStore:
    """Thread-safe candidate registry, in memory or backed by a YAML file."""

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path).expanduser() if path is not None else None
        self._records: Dict[str, Candidate] = {}
        self._locks: Dict[str, threading.Lock] = {}
        # guards membership of _records and _locks only
        self._registry_lock = threading.Lock()
        self._persist_lock = threading.Lock()

    def _lock_for(self, candidate_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(candidate_id)
            if lock is None:
                lock = self._locks[candidate_id] = threading.Lock()
            return lock

    def load(self) -> int:
        """Read the on-disk snapshot, replacing in-memory state. Returns the record count."""
        if self.path is None or not self.path.exists():
            return 0
        try:
            data = safe_load(self.path.read_text(encoding="utf-8")) or {}
        except YAMLError:
            logger.exception("Failed to parse candidate store at {path}", path=self.path)
            raise

        records: Dict[str, Candidate] = {}
        for raw in data.get("candidates") or []:
            try:
                candidate = Candidate.from_dict(raw)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Ignoring unreadable stored candidate: {err}", err=exc)
                continue
            records[candidate.id] = candidate

        with self._registry_lock:
            self._records = records
        logger.info("Loaded {n} candidates from {path}", n=len(records), path=self.path)
        return len(records)

    def _save(self) -> None:
        if self.path is None:
            return
        with self._persist_lock:
            snapshot = [c.to_dict() for c in self.list_all()]
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=str(self.path.parent), prefix=".candidates-", suffix=".yaml"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    safe_dump({"candidates": snapshot}, fh, sort_keys=False, allow_unicode=True)
                os.replace(tmp_name, self.path)
            except Exception:
                Path(tmp_name).unlink(missing_ok=True)
                logger.exception("Failed to write candidate store to {path}", path=self.path)
                raise

    def list_all(self) -> List[Candidate]:
        """Return copies of every candidate ordered by creation time, then id."""
        with self._registry_lock:
            ids = list(self._records)
        result: List[Candidate] = []
        for candidate_id in ids:
            with self._lock_for(candidate_id):
                candidate = self._records.get(candidate_id)
                if candidate is not None:
                    result.append(copy.deepcopy(candidate))
        result.sort(key=lambda c: (c.created_at, c.id))
        return result

    def get(self, candidate_id: str) -> Candidate:
        with self._lock_for(candidate_id):
            candidate = self._records.get(candidate_id)
            if candidate is None:
                raise NotFoundError("candidate", candidate_id)
            return copy.deepcopy(candidate)

    def contains(self, candidate_id: str) -> bool:
        with self._registry_lock:
            return candidate_id in self._records

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._records)

    def watermarks(self) -> Dict[str, datetime]:
        """Newest ingested telemetry timestamp per candidate id, for incremental mining."""
        return {
            c.id: c.ingested_through for c in self.list_all() if c.ingested_through is not None
        }

    def transition(
        self, candidate_id: str, status: CandidateStatus
    ) -> Tuple[CandidateStatus, Candidate]:
        """Move a candidate to ``status`` and return ``(previous status, updated copy)``.

        Raises ``NotFoundError`` for unknown ids and ``InvalidTransitionError``
        (leaving the status unchanged) for illegal moves.
        """
        with self._lock_for(candidate_id):
            candidate = self._records.get(candidate_id)
            if candidate is None:
                raise NotFoundError("candidate", candidate_id)
            previous = candidate.status
            if status not in ALLOWED_TRANSITIONS[previous]:
                raise InvalidTransitionError(candidate_id, previous.value, status.value)
            candidate.status = status
            updated = copy.deepcopy(candidate)
        self._save()
        return previous, updated

    def set_status(self, candidate_id: str, status: CandidateStatus) -> Candidate:
        """Move a candidate to ``status`` if the lifecycle allows it."""
        return self.transition(candidate_id, status)[1]

    def upsert(self, candidates: Iterable[Candidate]) -> List[Candidate]:
        """Insert freshly mined candidates, merging into existing records by id.

        Existing records keep their status and creation time; only their
        selector/workflow evidence is folded together. Raises
        ``ValidationError`` before touching anything if a candidate is invalid.
        """
        incoming = [copy.deepcopy(c) for c in candidates]
        for candidate in incoming:
            candidate.validate()

        stored: List[Candidate] = []
        for candidate in incoming:
            with self._lock_for(candidate.id):
                existing = self._records.get(candidate.id)
                if existing is None:
                    with self._registry_lock:
                        self._records[candidate.id] = candidate
                    stored.append(copy.deepcopy(candidate))
                else:
                    existing.absorb(candidate)
                    stored.append(copy.deepcopy(existing))
        if stored:
            self._save()
        return stored

    def add(self, candidate: Candidate) -> Candidate:
        """Insert one new candidate, e.g. a manual entry. Fails if the id exists."""
        candidate.validate()
        with self._lock_for(candidate.id):
            if candidate.id in self._records:
                raise ValidationError(f"Candidate {candidate.id} already exists")
            stored = copy.deepcopy(candidate)
            with self._registry_lock:
                self._records[candidate.id] = stored
            result = copy.deepcopy(stored)
        self._save()
        return result

    def remove(self, candidate_id: str) -> Optional[Candidate]:
        with self._lock_for(candidate_id):
            with self._registry_lock:
                removed = self._records.pop(candidate_id, None)
        if removed is not None:
            self._save()
        return removed

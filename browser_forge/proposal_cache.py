"""Latest-proposal cache, keyed by candidate id.

There is no TTL or size bound. A later ``put`` for the same id replaces the
earlier one.

With a ``path`` the cache keeps a YAML snapshot on disk, so the proposal a
reviewer looked at with one CLI invocation is the one a later ``apply`` hands
to the gateway.
"""

from __future__ import annotations

import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional

from loguru import logger
from yaml import YAMLError, safe_dump, safe_load

from .models import ChangeProposal


class ProposalCache:
    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path).expanduser() if path is not None else None
        self._entries: Dict[str, ChangeProposal] = {}
        self._lock = threading.Lock()
        self._persist_lock = threading.Lock()

    def load(self) -> int:
        """Read the on-disk snapshot, replacing in-memory entries. Returns the entry count."""
        if self.path is None or not self.path.exists():
            return 0
        try:
            data = safe_load(self.path.read_text(encoding="utf-8")) or {}
        except YAMLError:
            logger.exception("Failed to parse proposal cache at {path}", path=self.path)
            raise

        entries: Dict[str, ChangeProposal] = {}
        for candidate_id, raw in (data.get("proposals") or {}).items():
            try:
                entries[str(candidate_id)] = ChangeProposal.from_dict(raw)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Ignoring unreadable cached proposal {cid}: {err}", cid=candidate_id, err=exc)

        with self._lock:
            self._entries = entries
        return len(entries)

    def _save(self) -> None:
        if self.path is None:
            return
        with self._persist_lock:
            with self._lock:
                snapshot = {cid: p.to_dict() for cid, p in sorted(self._entries.items())}
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=str(self.path.parent), prefix=".proposals-", suffix=".yaml"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    safe_dump({"proposals": snapshot}, fh, sort_keys=False, allow_unicode=True)
                os.replace(tmp_name, self.path)
            except Exception:
                Path(tmp_name).unlink(missing_ok=True)
                logger.exception("Failed to write proposal cache to {path}", path=self.path)
                raise

    def put(self, candidate_id: str, proposal: ChangeProposal) -> None:
        with self._lock:
            self._entries[candidate_id] = proposal
        self._save()

    def get(self, candidate_id: str) -> Optional[ChangeProposal]:
        """Return the latest proposal for ``candidate_id``, or None."""
        with self._lock:
            return self._entries.get(candidate_id)

    def discard(self, candidate_id: str) -> None:
        with self._lock:
            removed = self._entries.pop(candidate_id, None)
        if removed is not None:
            self._save()

    def __contains__(self, candidate_id: object) -> bool:
        with self._lock:
            return candidate_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

"""Review-facing operations for Browser Forge.

``ForgeService`` ties the aggregator, candidate store, synthesizer and proposal
cache together and is the surface the CLI (or any other reviewer front end)
talks to:

- mining:      ``mine(items)``
- queries:     ``list_candidates()``, ``get_candidate(id)``
- proposals:   ``generate_proposal(id)``, ``get_cached_proposal(id)``
- lifecycle:   ``set_status(id, status)``, ``approve(id)``, ``reject(id)``
- merging:     ``apply_proposal(id, gateway)``
"""

from __future__ import annotations

import threading
from concurrent.futures import Future
from typing import Any, Callable, Dict, Iterable, List, Optional

from loguru import logger

from .errors import (
    ForgeError,
    GatewayError,
    InvalidTransitionError,
    NotFoundError,
    SynthesisError,
    ValidationError,
)
from .gateway import ApplicationGateway, GatewayResult
from .miner import AggregationResult, CandidateAggregator
from .models import Candidate, CandidateStatus, ChangeProposal
from .proposal_cache import ProposalCache
from .store import CandidateStore
from .synthesizer import synthesize


Notifier = Callable[..., None]


def _coerce_status(status: CandidateStatus | str) -> CandidateStatus:
    if isinstance(status, CandidateStatus):
        return status
    try:
        return CandidateStatus(status)
    except ValueError:
        raise ValidationError(f"Unknown candidate status: {status!r}") from None


class ForgeService:
    def __init__(
        self,
        store: CandidateStore,
        cache: Optional[ProposalCache] = None,
        aggregator: Optional[CandidateAggregator] = None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.store = store
        self.cache = cache if cache is not None else ProposalCache()
        self.aggregator = aggregator if aggregator is not None else CandidateAggregator()
        self._notifier = notifier
        self._inflight: Dict[str, Future] = {}
        self._inflight_lock = threading.Lock()
        # one mining pass at a time, so watermarks are read after the previous upsert
        self._mine_lock = threading.Lock()

    def _notify(self, event: str, **kwargs: Any) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier(event, **kwargs)
        except Exception:
            logger.exception("Notification for event '{event}' failed.", event=event)

    # -- mining -----------------------------------------------------------

    def mine(self, items: Iterable[Any]) -> AggregationResult:
        """Aggregate a telemetry window and merge the result into the store.

        Evidence older than what a candidate has already ingested is ignored,
        so mining the same files again does not inflate usage counts.
        """
        with self._mine_lock:
            result = self.aggregator.aggregate(items, watermarks=self.store.watermarks())
            self.store.upsert(result.candidates)
        self._notify("mined", candidates=len(result.candidates), skipped=result.skipped)
        return result

    # -- queries ----------------------------------------------------------

    def list_candidates(self) -> List[Candidate]:
        return self.store.list_all()

    def get_candidate(self, candidate_id: str) -> Candidate:
        return self.store.get(candidate_id)

    # -- proposals --------------------------------------------------------

    def generate_proposal(self, candidate_id: str) -> ChangeProposal:
        """Synthesize and cache the proposal for a candidate.

        A request arriving while a synthesis for the same id is in flight
        waits for and returns that result instead of starting another one.
        On any failure the cache keeps its previous entry.
        """
        with self._inflight_lock:
            future = self._inflight.get(candidate_id)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[candidate_id] = future
        if not owner:
            logger.debug("Joining in-flight synthesis for {cid}", cid=candidate_id)
            return future.result()

        try:
            candidate = self.store.get(candidate_id)
            try:
                proposal = synthesize(candidate)
            except ForgeError:
                raise
            except Exception as exc:
                raise SynthesisError(f"Synthesis failed for {candidate_id}: {exc}") from exc
            self.cache.put(candidate_id, proposal)
            future.set_result(proposal)
        except BaseException as exc:
            future.set_exception(exc)
            raise
        finally:
            with self._inflight_lock:
                self._inflight.pop(candidate_id, None)

        logger.info("Proposal ready for {cid}: {summary}", cid=candidate_id, summary=proposal.summary)
        self._notify("proposal_ready", candidate_id=candidate_id, summary=proposal.summary)
        return proposal

    def get_cached_proposal(self, candidate_id: str) -> ChangeProposal:
        """Return the latest cached proposal.

        Entries whose candidate has left the store are dropped and reported
        as not found.
        """
        if not self.store.contains(candidate_id):
            self.cache.discard(candidate_id)
            raise NotFoundError("candidate", candidate_id)
        proposal = self.cache.get(candidate_id)
        if proposal is None:
            raise NotFoundError("proposal", candidate_id)
        return proposal

    # -- lifecycle --------------------------------------------------------

    def set_status(self, candidate_id: str, status: CandidateStatus | str) -> Candidate:
        new_status = _coerce_status(status)
        previous, updated = self.store.transition(candidate_id, new_status)
        logger.info(
            "Candidate {cid} moved {prev} -> {status}",
            cid=candidate_id,
            prev=previous.value,
            status=new_status.value,
        )
        self._notify(
            "status_changed",
            candidate_id=candidate_id,
            previous=previous.value,
            status=new_status.value,
        )
        return updated

    def approve(self, candidate_id: str) -> Candidate:
        return self.set_status(candidate_id, CandidateStatus.APPROVED)

    def reject(self, candidate_id: str) -> Candidate:
        return self.set_status(candidate_id, CandidateStatus.REJECTED)

    def remove_candidate(self, candidate_id: str) -> None:
        if self.store.remove(candidate_id) is None:
            raise NotFoundError("candidate", candidate_id)
        self.cache.discard(candidate_id)

    # -- merging ----------------------------------------------------------

    def apply_proposal(
        self,
        candidate_id: str,
        gateway: ApplicationGateway,
        preview: bool = False,
    ) -> GatewayResult:
        """Hand the cached proposal of a candidate to the application gateway.

        Only approved candidates can be merged. A confirmed merge moves the
        candidate to ``merged``; a failure is raised as ``GatewayError`` and the
        candidate stays approved. Nothing is retried here.
        """
        candidate = self.store.get(candidate_id)
        if not preview and candidate.status is not CandidateStatus.APPROVED:
            raise InvalidTransitionError(
                candidate_id, candidate.status.value, CandidateStatus.MERGED.value
            )
        proposal = self.get_cached_proposal(candidate_id)

        try:
            result = gateway.apply(proposal, preview=preview)
        except Exception as exc:
            logger.exception("Gateway failed to apply proposal for {cid}", cid=candidate_id)
            self._notify("merge_failed", candidate_id=candidate_id, error=str(exc))
            if isinstance(exc, GatewayError):
                raise
            raise GatewayError(f"Gateway failed for {candidate_id}: {exc}") from exc

        if preview:
            return result

        if not result.applied:
            self._notify(
                "merge_failed", candidate_id=candidate_id, error="gateway did not confirm the merge"
            )
            raise GatewayError(f"Gateway did not confirm the merge for {candidate_id}")

        self.set_status(candidate_id, CandidateStatus.MERGED)
        self._notify("merged", candidate_id=candidate_id, skill_id=result.skill_id)
        return result

"""Error types raised by Browser Forge.

Library code raises these; the CLI catches ``ForgeError`` and reports it.
"""

from __future__ import annotations


class ForgeError(Exception):
    """Base class for all Browser Forge errors."""


class ValidationError(ForgeError):
    """A telemetry record or candidate does not satisfy the data model."""


class NotFoundError(ForgeError):
    """No candidate (or cached proposal) exists for the given id."""

    def __init__(self, kind: str, key: str) -> None:
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key


class InvalidTransitionError(ForgeError):
    """A lifecycle status change is not permitted from the current status."""

    def __init__(self, candidate_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"Cannot move candidate {candidate_id} from '{current}' to '{requested}'"
        )
        self.candidate_id = candidate_id
        self.current = current
        self.requested = requested


class SynthesisError(ForgeError):
    """Proposal synthesis failed; the proposal cache was left untouched."""


class GatewayError(ForgeError):
    """The application gateway failed to merge a proposal into the registry."""

"""
Error Taxonomy for the Tiered Memory Subsystem

Every failure raised by the stores, the ports, or the orchestrator derives
from TieredMemoryError so callers can catch the whole family at once.

Fatal for a turn:
    StoreUnavailable   - short-term backing store unreachable or failing
    GenerationFailed   - the Generation Port could not answer

Non-fatal (degraded by the orchestrator):
    EmbeddingFailed, IndexWriteFailed, MalformedRetrievalResult
"""

from __future__ import annotations


class TieredMemoryError(Exception):
    """Base class for all memory subsystem errors."""


class StoreUnavailable(TieredMemoryError):
    """A backing store (key-value or search) cannot be reached or failed."""


class EmbeddingUnavailable(TieredMemoryError):
    """Raised by an Embedding Port adapter when it cannot produce a vector."""


class EmbeddingFailed(TieredMemoryError):
    """Vectorization failed while storing or querying long-term memory."""


class GenerationFailed(TieredMemoryError):
    """The Generation Port failed to produce text."""


class GenerationUnavailable(GenerationFailed):
    """The generation backend is unreachable or returned an error."""


class GenerationTimeout(GenerationFailed):
    """The generation backend did not answer in time."""


class IndexWriteFailed(TieredMemoryError):
    """A long-term record could not be persisted in the search store."""


class MalformedRetrievalResult(TieredMemoryError):
    """The search store returned a hit that cannot be parsed into a record."""


class TurnCancelled(TieredMemoryError):
    """The turn was cancelled at a suspension point."""

    def __init__(self, session_id: str, stage: str):
        super().__init__(f"Turn for session {session_id!r} cancelled before {stage}")
        self.session_id = session_id
        self.stage = stage

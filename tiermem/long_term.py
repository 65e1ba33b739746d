"""
Long-Term Store - Write-once semantic records with hybrid retrieval

Records are embedded through the Embedding Port and indexed in a search
backend. Retrieval embeds the query and runs a hybrid (lexical OR vector)
search; hits are parsed into MemoryRecord objects sorted by relevance.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional

from tiermem.embedder import MemoryEmbedder
from tiermem.errors import (
    EmbeddingFailed,
    EmbeddingUnavailable,
    MalformedRetrievalResult,
)
from tiermem.search_backend import SearchBackend
from tiermem.types import MemoryRecord

logger = logging.getLogger(__name__)


def _new_record_id() -> str:
    return f"LTM-{uuid.uuid4().hex[:12]}"


class LongTermStore:
    """Embedding + search backend composition for long-term facts."""

    def __init__(self, backend: SearchBackend, embedder: MemoryEmbedder, top_k: int = 5):
        self._backend = backend
        self._embedder = embedder
        self.top_k = top_k

    @property
    def embedder(self) -> MemoryEmbedder:
        return self._embedder

    def _embed(self, text: str) -> List[float]:
        try:
            vector = self._embedder.embed_text(text)
        except EmbeddingUnavailable as e:
            raise EmbeddingFailed(f"Embedding failed: {e}") from e
        if not vector:
            raise EmbeddingFailed("Embedding backend returned an empty vector")
        return list(vector)

    def store(self, content: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        """
        Embed and persist one record.

        Returns:
            The new record id.

        Raises:
            EmbeddingFailed: The Embedding Port failed; nothing was written.
            IndexWriteFailed: The search backend rejected the write.
        """
        vector = self._embed(content)
        record_id = _new_record_id()
        self._backend.ensure_index(len(vector))
        self._backend.upsert(record_id, content, vector, dict(metadata or {}))
        logger.info(f"Stored long-term record {record_id} ({len(content)} chars)")
        return record_id

    def retrieve(self, query: str, top_k: Optional[int] = None) -> List[MemoryRecord]:
        """
        Return the records most relevant to *query*, best first.

        An empty or missing index yields ``[]``.
        """
        k = self.top_k if top_k is None else top_k
        if k <= 0:
            return []
        vector = self._embed(query)
        hits = self._backend.hybrid_search(query, vector, k)
        records = [self._parse_hit(hit) for hit in hits]
        # stable sort keeps backend order on exact ties
        records.sort(key=lambda r: r.relevance_score, reverse=True)
        logger.debug(f"Retrieved {len(records)} long-term records for {query[:40]!r}")
        return records[:k]

    @staticmethod
    def _parse_hit(hit: Any) -> MemoryRecord:
        try:
            source = hit["_source"]
            record_id = hit["_id"]
            score = float(hit["_score"])
            content = source["content"]
            embedding = [float(x) for x in source.get("content_vector") or []]
            metadata = source.get("metadata") or {}
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedRetrievalResult(f"Cannot parse search hit: {e}") from e
        if not isinstance(record_id, str) or not isinstance(content, str):
            raise MalformedRetrievalResult(f"Search hit has invalid id/content: {hit!r:.120}")
        if not isinstance(metadata, dict):
            raise MalformedRetrievalResult(f"Search hit {record_id} has non-object metadata")
        return MemoryRecord(
            id=record_id,
            content=content,
            embedding=embedding,
            metadata=metadata,
            relevance_score=score,
        )

    def drop_all(self) -> bool:
        """Tear down the whole index; returns whether one existed."""
        return self._backend.drop_index()

    def count(self) -> int:
        return self._backend.count()

"""
FAISS Vector Index

Thin wrapper around faiss.IndexFlatIP for cosine similarity search.
Vectors are L2-normalized before insertion so that inner product equals
cosine similarity. The index maps integer ordinals back to record ids via
a parallel list.
"""

from __future__ import annotations

import logging
from typing import List, Tuple

import faiss
import numpy as np

logger = logging.getLogger(__name__)


class FaissIndex:
    """Exact inner-product index over L2-normalized vectors."""

    def __init__(self, dimension: int):
        """
        Args:
            dimension: Vector dimension (must match embedding model output).
        """
        self._dimension = dimension
        self._index = faiss.IndexFlatIP(dimension)
        self._ids: List[str] = []  # ordinal -> record id

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def ntotal(self) -> int:
        """Number of vectors currently in the index."""
        return self._index.ntotal

    def _as_matrix(self, vectors: List[List[float]]) -> np.ndarray:
        mat = np.array(vectors, dtype=np.float32)
        if mat.ndim != 2 or mat.shape[1] != self._dimension:
            raise ValueError(
                f"Dimension mismatch: index is {self._dimension}d, got shape {mat.shape}"
            )
        faiss.normalize_L2(mat)
        return mat

    def add(self, record_id: str, vector: List[float]) -> None:
        """Add a single vector."""
        self._index.add(self._as_matrix([vector]))
        self._ids.append(record_id)

    def add_batch(self, ids: List[str], vectors: List[List[float]]) -> None:
        """Add a batch of vectors."""
        if not ids:
            return
        self._index.add(self._as_matrix(vectors))
        self._ids.extend(ids)

    def search(self, query_vec: List[float], k: int) -> List[Tuple[str, float]]:
        """Return top-k (record_id, cosine_similarity) pairs."""
        if self._index.ntotal == 0 or k <= 0:
            return []
        k = min(k, self._index.ntotal)
        scores, indices = self._index.search(self._as_matrix([query_vec]), k)
        results: List[Tuple[str, float]] = []
        for score, idx in zip(scores[0], indices[0]):
            if idx < 0:
                continue  # FAISS sentinel for missing results
            results.append((self._ids[idx], float(score)))
        return results

    def reset(self) -> None:
        """Clear the index."""
        self._index.reset()
        self._ids.clear()

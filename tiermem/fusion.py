"""
Hybrid Fusion - Combines lexical (BM25) and vector similarity rankings

A record is a candidate if it appears in either ranking (lexical OR
vector); its combined score is computed by one of two strategies:

    weighted: lexical_weight * bm25 / max(bm25) + vector_weight * max(0, cosine)
    rrf:      sum over rankings of 1 / (rrf_k + rank)

Candidates whose combined score does not exceed ``min_score`` are dropped.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class FusionStrategy(str, Enum):
    """Strategy for combining lexical and vector search results."""

    WEIGHTED = "weighted"
    RRF = "rrf"


@dataclass
class FusedHit:
    """One fused candidate."""

    doc_id: str
    combined_score: float
    lexical_score: Optional[float] = None
    lexical_rank: Optional[int] = None
    vector_score: Optional[float] = None
    vector_rank: Optional[int] = None
    matched_terms: List[str] = field(default_factory=list)

    def __repr__(self) -> str:
        return f"<FusedHit {self.doc_id} score={self.combined_score:.3f}>"


def _collect(
    lexical: List[Tuple[str, float, List[str]]],
    vector: List[Tuple[str, float]],
) -> Dict[str, FusedHit]:
    hits: Dict[str, FusedHit] = {}
    for rank, (doc_id, score, terms) in enumerate(lexical, 1):
        hits[doc_id] = FusedHit(
            doc_id=doc_id, combined_score=0.0,
            lexical_score=score, lexical_rank=rank, matched_terms=list(terms),
        )
    for rank, (doc_id, score) in enumerate(vector, 1):
        hit = hits.setdefault(doc_id, FusedHit(doc_id=doc_id, combined_score=0.0))
        hit.vector_score = score
        hit.vector_rank = rank
    return hits


def fuse(
    lexical: List[Tuple[str, float, List[str]]],
    vector: List[Tuple[str, float]],
    k: int,
    strategy: FusionStrategy = FusionStrategy.WEIGHTED,
    lexical_weight: float = 0.5,
    vector_weight: float = 0.5,
    rrf_k: int = 60,
    min_score: float = 0.0,
) -> List[FusedHit]:
    """
    Fuse a lexical ranking and a vector ranking into one list.

    Args:
        lexical: (doc_id, bm25_score, matched_terms), best first
        vector: (doc_id, cosine_similarity), best first
        k: Maximum number of fused hits
        strategy: FusionStrategy.WEIGHTED or FusionStrategy.RRF
        min_score: Hits must score strictly above this

    Returns:
        Fused hits sorted by combined score (descending). Exact ties keep
        lexical-then-vector discovery order.
    """
    strategy = FusionStrategy(strategy)
    hits = _collect(lexical, vector)

    if strategy == FusionStrategy.WEIGHTED:
        bm25_max = max((s for _, s, _ in lexical), default=1.0) or 1.0
        for hit in hits.values():
            if hit.lexical_score is not None:
                hit.combined_score += lexical_weight * (hit.lexical_score / bm25_max)
            if hit.vector_score is not None:
                hit.combined_score += vector_weight * max(0.0, hit.vector_score)
    elif strategy == FusionStrategy.RRF:
        for hit in hits.values():
            if hit.lexical_rank is not None:
                hit.combined_score += 1.0 / (rrf_k + hit.lexical_rank)
            if hit.vector_rank is not None:
                hit.combined_score += 1.0 / (rrf_k + hit.vector_rank)
    else:
        raise ValueError(f"Unknown fusion strategy: {strategy}")

    kept = [h for h in hits.values() if h.combined_score > min_score]
    kept.sort(key=lambda h: h.combined_score, reverse=True)
    return kept[:k]

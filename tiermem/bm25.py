"""
BM25 Index - Sparse keyword search for hybrid long-term retrieval

Implements BM25 (Best Matching 25) over the ``content`` field of long-term
records, complementing vector similarity search. Used directly by the
in-memory search backend; the SQLite backend relies on FTS5's bm25() with
the same tokenization rules (porter stemming, unicode61).
"""

import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Set, Tuple

logger = logging.getLogger(__name__)


@dataclass
class BM25Document:
    """A document in the BM25 index."""

    doc_id: str
    tokens: List[str] = field(default_factory=list)
    token_count: int = 0

    def __post_init__(self):
        self.token_count = len(self.tokens)


@dataclass
class BM25SearchResult:
    """Result from BM25 search."""

    doc_id: str
    score: float
    matched_terms: List[str] = field(default_factory=list)

    def __repr__(self) -> str:
        return f"<BM25Result {self.doc_id} score={self.score:.3f}>"


class Tokenizer:
    """
    Tokenizer for conversational text.

    Lowercases, strips punctuation, drops English stop words and applies
    light suffix stripping so "works" and "worked" meet on "work".
    """

    STOP_WORDS = {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
        "of", "with", "by", "from", "as", "is", "was", "are", "were", "been",
        "be", "have", "has", "had", "do", "does", "did", "will", "would",
        "could", "should", "may", "might", "must", "shall", "can", "need",
        "this", "that", "these", "those", "it", "its", "if", "then", "than",
        "so", "such", "no", "not", "only", "own", "same", "how", "what",
        "when", "where", "who", "which", "why", "me", "you", "your", "i",
    }

    SUFFIXES = ["ies", "ing", "est", "es", "ed", "er", "ly", "s"]  # longest first

    def __init__(self, min_length: int = 2, use_stemming: bool = True):
        """
        Args:
            min_length: Minimum token length
            use_stemming: Whether to apply simple suffix stripping
        """
        self.min_length = min_length
        self.use_stemming = use_stemming

    def tokenize(self, text: str) -> List[str]:
        """Tokenize text into normalized tokens."""
        text = re.sub(r"[^\w\s]", " ", text or "")
        words = re.split(r"\s+", text.lower())

        tokens = []
        for word in words:
            if len(word) < self.min_length:
                continue
            if word in self.STOP_WORDS:
                continue
            if self.use_stemming:
                word = self._simple_stem(word)
            tokens.append(word)
        return tokens

    def _simple_stem(self, word: str) -> str:
        """Apply simple suffix stripping."""
        for suffix in self.SUFFIXES:
            if word.endswith(suffix) and len(word) > len(suffix) + 2:
                return word[:-len(suffix)]
        return word


class BM25Index:
    """
    BM25 index over record contents.

    Not thread-safe on its own; callers hold their own lock.
    """

    def __init__(self, k1: float = 1.5, b: float = 0.75, tokenizer: Tokenizer = None):
        """
        Args:
            k1: Term frequency saturation parameter (typical: 1.2-2.0)
            b: Document length normalization (0=none, 1=full)
            tokenizer: Custom tokenizer (uses default if None)
        """
        self.k1 = k1
        self.b = b
        self.tokenizer = tokenizer or Tokenizer()

        self.documents: Dict[str, BM25Document] = {}
        self.inverted_index: Dict[str, Set[str]] = {}  # term -> doc_ids
        self.term_frequencies: Dict[str, Dict[str, int]] = {}  # term -> {doc_id: count}

        self.total_docs = 0
        self.avg_doc_length = 0.0
        self.total_tokens = 0

    def add(self, doc_id: str, text: str) -> None:
        """Tokenize and index *text* under *doc_id* (records are write-once)."""
        if doc_id in self.documents:
            logger.debug(f"BM25: {doc_id} already indexed, skipping")
            return
        doc = BM25Document(doc_id=doc_id, tokens=self.tokenizer.tokenize(text))
        self.documents[doc_id] = doc
        self.total_docs += 1
        self.total_tokens += doc.token_count

        for term, count in Counter(doc.tokens).items():
            self.inverted_index.setdefault(term, set()).add(doc_id)
            self.term_frequencies.setdefault(term, {})[doc_id] = count

        self.avg_doc_length = self.total_tokens / self.total_docs

    def search(self, query: str, k: int = 10) -> List[BM25SearchResult]:
        """
        Search the index using BM25 scoring.

        Returns:
            Up to *k* BM25SearchResult sorted by score (descending)
        """
        if self.total_docs == 0:
            return []

        query_tokens = self.tokenizer.tokenize(query)
        if not query_tokens:
            return []

        scores: Dict[str, Tuple[float, List[str]]] = {}
        avg_len = self.avg_doc_length or 1.0

        for term in set(query_tokens):
            if term not in self.inverted_index:
                continue

            df = len(self.inverted_index[term])
            idf = math.log((self.total_docs - df + 0.5) / (df + 0.5) + 1)

            for doc_id in self.inverted_index[term]:
                doc = self.documents[doc_id]
                tf = self.term_frequencies[term].get(doc_id, 0)

                numerator = tf * (self.k1 + 1)
                denominator = tf + self.k1 * (1 - self.b + self.b * doc.token_count / avg_len)
                term_score = idf * numerator / denominator

                current_score, matched = scores.get(doc_id, (0.0, []))
                scores[doc_id] = (current_score + term_score, matched + [term])

        ranked = sorted(scores.items(), key=lambda x: x[1][0], reverse=True)[:k]
        return [
            BM25SearchResult(doc_id=doc_id, score=score, matched_terms=sorted(set(matched)))
            for doc_id, (score, matched) in ranked
        ]

    def clear(self) -> None:
        self.documents.clear()
        self.inverted_index.clear()
        self.term_frequencies.clear()
        self.total_docs = 0
        self.avg_doc_length = 0.0
        self.total_tokens = 0

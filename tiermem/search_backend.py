"""
Search Backing Store for Long-Term Memory

Document store with a text field (``content``), a dense vector field
(``content_vector``) and free-form ``metadata``, queried by hybrid search:
a record is a candidate when it matches lexically OR is among the nearest
vectors, and candidates are ranked by a fused score (see fusion.py).

Backends:
    InMemorySearchBackend - BM25Index + FaissIndex under one lock
    SQLiteSearchBackend   - FTS5 (bm25) + vectors stored as float32 blobs,
                            searched through a FaissIndex cache

Hits are returned as plain dicts:
    {"_id": str, "_score": float,
     "_source": {"content": str, "content_vector": [...], "metadata": {...}}}

A document becomes searchable only once its text and vector are both
committed. Write failures raise IndexWriteFailed, read failures
StoreUnavailable.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import numpy as np

from tiermem.bm25 import BM25Index, Tokenizer
from tiermem.errors import IndexWriteFailed, StoreUnavailable
from tiermem.fusion import FusedHit, FusionStrategy, fuse
from tiermem.vector_index import FaissIndex

logger = logging.getLogger(__name__)


class SearchBackend(Protocol):
    """Protocol for search backing stores."""

    def ensure_index(self, dimension: int) -> None:
        ...

    def index_exists(self) -> bool:
        ...

    def upsert(self, doc_id: str, content: str, vector: List[float], metadata: Dict[str, Any]) -> None:
        ...

    def hybrid_search(self, text: str, vector: List[float], k: int) -> List[Dict[str, Any]]:
        ...

    def drop_index(self) -> bool:
        """Delete the whole index; return whether it existed."""
        ...

    def count(self) -> int:
        ...

    def close(self) -> None:
        ...


def _make_hit(hit: FusedHit, content: str, vector: List[float], metadata: Any) -> Dict[str, Any]:
    return {
        "_id": hit.doc_id,
        "_score": hit.combined_score,
        "_source": {
            "content": content,
            "content_vector": vector,
            "metadata": metadata,
        },
    }


class _FusingBackend:
    """Shared fusion settings for concrete backends."""

    def __init__(
        self,
        strategy: FusionStrategy = FusionStrategy.WEIGHTED,
        lexical_weight: float = 0.5,
        vector_weight: float = 0.5,
        rrf_k: int = 60,
        min_score: float = 0.0,
        candidate_multiplier: int = 2,
    ):
        self.strategy = FusionStrategy(strategy)
        self.lexical_weight = lexical_weight
        self.vector_weight = vector_weight
        self.rrf_k = rrf_k
        self.min_score = min_score
        self.candidate_multiplier = max(1, candidate_multiplier)

    def _fuse(self, lexical, vector, k: int) -> List[FusedHit]:
        return fuse(
            lexical, vector, k,
            strategy=self.strategy,
            lexical_weight=self.lexical_weight,
            vector_weight=self.vector_weight,
            rrf_k=self.rrf_k,
            min_score=self.min_score,
        )


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------

class InMemorySearchBackend(_FusingBackend):
    """Process-local hybrid index (BM25 + FAISS)."""

    def __init__(self, **fusion_kwargs: Any):
        super().__init__(**fusion_kwargs)
        self._lock = threading.Lock()
        self._docs: Dict[str, Dict[str, Any]] = {}
        self._bm25 = BM25Index()
        self._vectors: Optional[FaissIndex] = None

    def ensure_index(self, dimension: int) -> None:
        with self._lock:
            self._ensure_locked(dimension)

    def _ensure_locked(self, dimension: int) -> None:
        if self._vectors is None:
            self._vectors = FaissIndex(dimension)
            logger.info(f"Created in-memory search index (dim={dimension})")
        elif self._vectors.dimension != dimension:
            raise IndexWriteFailed(
                f"Index dimension is {self._vectors.dimension}, vector has {dimension}"
            )

    def index_exists(self) -> bool:
        with self._lock:
            return self._vectors is not None

    def upsert(self, doc_id: str, content: str, vector: List[float], metadata: Dict[str, Any]) -> None:
        with self._lock:
            self._ensure_locked(len(vector))
            if doc_id in self._docs:
                raise IndexWriteFailed(f"Record {doc_id} already exists (records are write-once)")
            try:
                self._vectors.add(doc_id, vector)
            except ValueError as e:
                raise IndexWriteFailed(f"Vector rejected for {doc_id}: {e}") from e
            self._bm25.add(doc_id, content)
            self._docs[doc_id] = {
                "content": content,
                "vector": list(vector),
                "metadata": dict(metadata),
            }

    def hybrid_search(self, text: str, vector: List[float], k: int) -> List[Dict[str, Any]]:
        with self._lock:
            if self._vectors is None or not self._docs:
                return []
            n = k * self.candidate_multiplier
            lexical = [(r.doc_id, r.score, r.matched_terms) for r in self._bm25.search(text, n)]
            try:
                nearest = self._vectors.search(vector, n)
            except ValueError as e:
                raise StoreUnavailable(f"Vector search failed: {e}") from e
            fused = self._fuse(lexical, nearest, k)
            return [
                _make_hit(
                    h,
                    self._docs[h.doc_id]["content"],
                    list(self._docs[h.doc_id]["vector"]),
                    dict(self._docs[h.doc_id]["metadata"]),
                )
                for h in fused
            ]

    def drop_index(self) -> bool:
        with self._lock:
            existed = self._vectors is not None
            self._docs.clear()
            self._bm25.clear()
            self._vectors = None
        if existed:
            logger.info("Dropped in-memory search index")
        return existed

    def count(self) -> int:
        with self._lock:
            return len(self._docs)

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# SQLite backend
# ---------------------------------------------------------------------------

_INDEX_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SQLiteSearchBackend(_FusingBackend):
    """
    SQLite hybrid index.

    Documents, their FTS5 rows and their vectors are inserted in one
    transaction. Vector search runs on a FaissIndex cache that is rebuilt
    from the table whenever its size disagrees with the committed row count
    (e.g. rows written by another process).
    """

    def __init__(
        self,
        db_path: str = ":memory:",
        index_name: str = "tiermem_memory",
        fts_tokenizer: str = "porter unicode61",
        **fusion_kwargs: Any,
    ):
        super().__init__(**fusion_kwargs)
        if not _INDEX_NAME_RE.match(index_name):
            raise ValueError(f"Invalid index name: {index_name!r}")
        self._db_path = db_path
        self._index = index_name
        self._fts_tokenizer = fts_tokenizer
        self._tokenizer = Tokenizer(use_stemming=False)
        self._lock = threading.Lock()
        self._vectors: Optional[FaissIndex] = None
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Cannot open search store at {db_path}: {e}") from e

    @property
    def _docs_table(self) -> str:
        return f"{self._index}_docs"

    @property
    def _fts_table(self) -> str:
        return f"{self._index}_fts"

    @property
    def _meta_table(self) -> str:
        return f"{self._index}_meta"

    # -- Administration ------------------------------------------------------

    def _exists_locked(self) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
            (self._docs_table,),
        ).fetchone()
        return row is not None

    def _dimension_locked(self) -> Optional[int]:
        row = self._conn.execute(
            f"SELECT value FROM {self._meta_table} WHERE key = 'dimension'"
        ).fetchone()
        return int(row[0]) if row else None

    def index_exists(self) -> bool:
        try:
            with self._lock:
                return self._exists_locked()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Index existence check failed: {e}") from e

    def ensure_index(self, dimension: int) -> None:
        try:
            with self._lock:
                self._ensure_locked(dimension)
        except sqlite3.Error as e:
            raise IndexWriteFailed(f"Cannot create index {self._index}: {e}") from e

    def _ensure_locked(self, dimension: int) -> None:
        if self._exists_locked():
            current = self._dimension_locked()
            if current is not None and current != dimension:
                raise IndexWriteFailed(
                    f"Index {self._index} has dimension {current}, vector has {dimension}"
                )
            return
        with self._conn:
            self._conn.execute(
                f"CREATE TABLE IF NOT EXISTS {self._docs_table} ("
                "seq INTEGER PRIMARY KEY AUTOINCREMENT, "
                "id TEXT UNIQUE NOT NULL, "
                "content TEXT NOT NULL, "
                "vector BLOB NOT NULL, "
                "metadata TEXT NOT NULL, "
                "created_at REAL NOT NULL)"
            )
            self._conn.execute(
                f"CREATE VIRTUAL TABLE IF NOT EXISTS {self._fts_table} "
                f"USING fts5(id UNINDEXED, content, tokenize='{self._fts_tokenizer}')"
            )
            self._conn.execute(
                f"CREATE TABLE IF NOT EXISTS {self._meta_table} (key TEXT PRIMARY KEY, value TEXT)"
            )
            self._conn.execute(
                f"INSERT OR REPLACE INTO {self._meta_table} (key, value) VALUES ('dimension', ?)",
                (str(dimension),),
            )
        self._vectors = None
        logger.info(f"Created search index {self._index} (dim={dimension})")

    def drop_index(self) -> bool:
        try:
            with self._lock:
                existed = self._exists_locked()
                with self._conn:
                    for table in (self._fts_table, self._docs_table, self._meta_table):
                        self._conn.execute(f"DROP TABLE IF EXISTS {table}")
                self._vectors = None
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Dropping index {self._index} failed: {e}") from e
        if existed:
            logger.info(f"Dropped search index {self._index}")
        else:
            logger.info(f"Index {self._index} does not exist, nothing to drop")
        return existed

    def count(self) -> int:
        try:
            with self._lock:
                if not self._exists_locked():
                    return 0
                return self._conn.execute(f"SELECT COUNT(*) FROM {self._docs_table}").fetchone()[0]
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Count failed: {e}") from e

    # -- Writes --------------------------------------------------------------

    def upsert(self, doc_id: str, content: str, vector: List[float], metadata: Dict[str, Any]) -> None:
        blob = np.asarray(vector, dtype=np.float32).tobytes()
        try:
            meta_json = json.dumps(metadata, ensure_ascii=False, default=str)
        except (TypeError, ValueError) as e:
            raise IndexWriteFailed(f"Metadata for {doc_id} is not serializable: {e}") from e
        try:
            with self._lock:
                self._ensure_locked(len(vector))
                with self._conn:
                    self._conn.execute(
                        f"INSERT INTO {self._docs_table} (id, content, vector, metadata, created_at) "
                        "VALUES (?, ?, ?, ?, ?)",
                        (doc_id, content, blob, meta_json, time.time()),
                    )
                    self._conn.execute(
                        f"INSERT INTO {self._fts_table} (id, content) VALUES (?, ?)",
                        (doc_id, content),
                    )
                if self._vectors is not None:
                    self._vectors.add(doc_id, list(vector))
        except sqlite3.IntegrityError as e:
            raise IndexWriteFailed(f"Record {doc_id} already exists (records are write-once): {e}") from e
        except sqlite3.Error as e:
            raise IndexWriteFailed(f"Writing {doc_id} failed: {e}") from e

    # -- Search --------------------------------------------------------------

    def _match_query(self, text: str) -> str:
        words = re.findall(r"\w+", (text or "").lower())
        terms = []
        for w in words:
            if len(w) < self._tokenizer.min_length or w in Tokenizer.STOP_WORDS:
                continue
            if w not in terms:
                terms.append(w)
        return " OR ".join(f'"{t}"' for t in terms)

    def _vector_index_locked(self, dimension: int) -> FaissIndex:
        """Return the vector cache, reloading it if it lags the table."""
        committed = self._conn.execute(f"SELECT COUNT(*) FROM {self._docs_table}").fetchone()[0]
        if self._vectors is not None and self._vectors.ntotal == committed:
            return self._vectors
        index = FaissIndex(dimension)
        rows = self._conn.execute(f"SELECT id, vector FROM {self._docs_table} ORDER BY seq").fetchall()
        if rows:
            index.add_batch(
                [r[0] for r in rows],
                [np.frombuffer(r[1], dtype=np.float32).tolist() for r in rows],
            )
        self._vectors = index
        logger.debug(f"Loaded {index.ntotal} vectors from {self._docs_table}")
        return index

    def hybrid_search(self, text: str, vector: List[float], k: int) -> List[Dict[str, Any]]:
        n = k * self.candidate_multiplier
        try:
            with self._lock:
                if not self._exists_locked():
                    return []
                dimension = self._dimension_locked() or len(vector)

                lexical = []
                match = self._match_query(text)
                if match:
                    rows = self._conn.execute(
                        f"SELECT id, bm25({self._fts_table}) AS score FROM {self._fts_table} "
                        f"WHERE {self._fts_table} MATCH ? ORDER BY score LIMIT ?",
                        (match, n),
                    ).fetchall()
                    lexical = [(r[0], -float(r[1]), []) for r in rows]

                nearest = self._vector_index_locked(dimension).search(vector, n)
                fused = self._fuse(lexical, nearest, k)
                if not fused:
                    return []

                marks = ",".join("?" for _ in fused)
                rows = self._conn.execute(
                    f"SELECT id, content, vector, metadata FROM {self._docs_table} WHERE id IN ({marks})",
                    [h.doc_id for h in fused],
                ).fetchall()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Hybrid search failed: {e}") from e
        except ValueError as e:
            raise StoreUnavailable(f"Vector search failed: {e}") from e

        by_id = {r[0]: r for r in rows}
        hits = []
        for h in fused:
            row = by_id.get(h.doc_id)
            if row is None:
                continue
            try:
                metadata = json.loads(row[3])
            except ValueError:
                metadata = row[3]  # left for the record parser to reject
            vec = np.frombuffer(row[2], dtype=np.float32).tolist()
            hits.append(_make_hit(h, row[1], vec, metadata))
        return hits

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def create_search_backend(
    kind: str,
    location: str = "",
    index_name: str = "tiermem_memory",
    **fusion_kwargs: Any,
) -> SearchBackend:
    """Create a search backend from a parsed endpoint."""
    if kind == "memory":
        return InMemorySearchBackend(**fusion_kwargs)
    elif kind == "sqlite":
        return SQLiteSearchBackend(db_path=location or ":memory:", index_name=index_name, **fusion_kwargs)
    else:
        raise ValueError(f"Unknown search backend: {kind!r}")

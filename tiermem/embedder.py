"""
Embedding Port and Backends

Provides:
- MockEmbedder:                Deterministic hash embeddings for tests (no external deps)
- OllamaEmbedder:              Real embeddings via the Ollama /api/embed endpoint
- SentenceTransformerEmbedder: Local embeddings via sentence-transformers
- OpenAIEmbedder:              Remote embeddings via an OpenAI-compatible API

All implement the same interface: embed_text() -> List[float],
embed_batch() -> List[List[float]], dimension and model_name properties.
Backend failures surface as EmbeddingUnavailable.
"""

from __future__ import annotations

import hashlib
import logging
import math
import os
import struct
from typing import List, Optional, Protocol

import requests

from tiermem.errors import EmbeddingUnavailable

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol (interface)
# ---------------------------------------------------------------------------

class MemoryEmbedder(Protocol):
    """Protocol for embedding backends (the Embedding Port)."""

    def embed_text(self, text: str) -> List[float]:
        """Generate embedding vector for a single text."""
        ...

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for a batch of texts."""
        ...

    @property
    def dimension(self) -> int:
        """Embedding vector dimension."""
        ...

    @property
    def model_name(self) -> str:
        """Model identifier string."""
        ...


# ---------------------------------------------------------------------------
# Mock Embedder (deterministic, for tests)
# ---------------------------------------------------------------------------

class MockEmbedder:
    """
    Deterministic embedding backend using hashing.

    Identical texts map to identical unit vectors; different texts map to
    unrelated ones. Suitable for unit tests and offline runs.
    """

    def __init__(self, dimension: int = 768, seed: int = 42):
        self._dimension = dimension
        self._seed = seed

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return f"mock-{self._dimension}d-seed{self._seed}"

    def embed_text(self, text: str) -> List[float]:
        """Generate a deterministic pseudo-embedding from the text hash."""
        h = hashlib.sha256(f"{self._seed}:{text}".encode("utf-8")).digest()
        raw = bytearray()
        block = h
        while len(raw) < self._dimension * 4:
            raw.extend(block)
            block = hashlib.sha256(block).digest()
        floats = []
        for i in range(self._dimension):
            # unsigned ints avoid NaN/inf bit patterns
            val = struct.unpack_from("I", raw, i * 4)[0] / 0xFFFFFFFF * 2.0 - 1.0
            floats.append(val)
        norm = math.sqrt(sum(x * x for x in floats)) or 1.0
        return [x / norm for x in floats]

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        return [self.embed_text(t) for t in texts]


# ---------------------------------------------------------------------------
# Ollama Embedder (real backend)
# ---------------------------------------------------------------------------

class OllamaEmbedder:
    """
    Embedding backend using the Ollama API.

    Requires a running Ollama instance with an embedding model
    (e.g. nomic-embed-text, mxbai-embed-large).
    """

    def __init__(
        self,
        model: str = "nomic-embed-text",
        dimension: int = 768,
        base_url: str = "http://localhost:11434",
        timeout: int = 30,
    ):
        self._model = model
        self._dimension = dimension
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    @property
    def dimension(self) -> int:
        """Return embedding vector dimension (updated after the first call)."""
        return self._dimension

    @property
    def model_name(self) -> str:
        return self._model

    def embed_text(self, text: str) -> List[float]:
        """Generate embedding via the Ollama /api/embed endpoint."""
        try:
            resp = requests.post(
                f"{self._base_url}/api/embed",
                json={"model": self._model, "input": text},
                timeout=self._timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise EmbeddingUnavailable(
                f"Ollama embedding failed at {self._base_url} ({self._model}): {e}"
            ) from e
        # Ollama returns {"embeddings": [[...]]}
        embeddings = data.get("embeddings", [])
        if not embeddings or not embeddings[0]:
            raise EmbeddingUnavailable(f"Empty embedding response from Ollama for model {self._model}")
        vec = embeddings[0]
        if len(vec) != self._dimension:
            logger.info(f"Updating dimension from {self._dimension} to {len(vec)}")
            self._dimension = len(vec)
        return vec

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Batch embedding (sequential calls to Ollama)."""
        return [self.embed_text(t) for t in texts]


# ---------------------------------------------------------------------------
# Sentence Transformer Embedder (local, no server needed)
# ---------------------------------------------------------------------------

class SentenceTransformerEmbedder:
    """
    Embedding backend using the sentence-transformers library.

    Loads a model locally on first use. Load and encode errors (missing
    weights, CUDA out of memory, ...) surface as EmbeddingUnavailable.
    Requires: pip install sentence-transformers
    """

    def __init__(self, model: str = "all-MiniLM-L6-v2", dimension: int = 384):
        self._model_name = model
        self._dimension = dimension
        self._model = None  # lazy load

    def _load(self):
        if self._model is not None:
            return
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            raise EmbeddingUnavailable(
                "sentence-transformers not installed. "
                "Install with: pip install tiermem[sentence-transformers]"
            )
        try:
            model = SentenceTransformer(self._model_name)
            self._dimension = model.get_sentence_embedding_dimension()
        except Exception as e:
            raise EmbeddingUnavailable(
                f"Cannot load sentence-transformers model {self._model_name}: {e}"
            ) from e
        self._model = model
        logger.info(
            f"SentenceTransformerEmbedder loaded: {self._model_name} "
            f"(dim={self._dimension})"
        )

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return self._model_name

    def embed_text(self, text: str) -> List[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        self._load()
        try:
            vecs = self._model.encode(texts, normalize_embeddings=True)
        except Exception as e:
            raise EmbeddingUnavailable(f"{self._model_name} encode failed: {e}") from e
        return [v.tolist() for v in vecs]


# ---------------------------------------------------------------------------
# OpenAI-compatible Embedder (remote API)
# ---------------------------------------------------------------------------

class OpenAIEmbedder:
    """
    Embedding backend for the OpenAI embeddings API.

    Any server speaking the same protocol works too (set base_url, e.g. a
    vLLM or SiliconFlow endpoint serving Qwen3-Embedding-8B).

    Requires:
        pip install tiermem[openai]
        export OPENAI_API_KEY="sk-..."
    """

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        dimension: int = 1536,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: int = 30,
    ):
        self._model = model
        self._dimension = dimension
        api_key = api_key or os.environ.get("OPENAI_API_KEY")
        base_url = base_url or os.environ.get("OPENAI_BASE_URL")

        if not api_key:
            raise ValueError(
                "OpenAI API key required. Set OPENAI_API_KEY environment "
                "variable or pass api_key parameter."
            )

        try:
            import openai
        except ImportError:
            raise ImportError(
                "openai package required for OpenAI embeddings. "
                "Install with: pip install tiermem[openai]"
            )
        self._openai = openai
        self._client = openai.OpenAI(api_key=api_key, base_url=base_url, timeout=timeout)
        logger.info(f"Initialized OpenAIEmbedder with model: {model}")

    @property
    def dimension(self) -> int:
        """Return embedding vector dimension (updated after the first call)."""
        return self._dimension

    @property
    def model_name(self) -> str:
        return self._model

    def embed_text(self, text: str) -> List[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed all texts in one request; results come back in input order."""
        try:
            response = self._client.embeddings.create(model=self._model, input=list(texts))
        except self._openai.OpenAIError as e:
            raise EmbeddingUnavailable(f"OpenAI embedding failed ({self._model}): {e}") from e

        data = sorted(response.data, key=lambda d: d.index)
        if len(data) != len(texts) or not all(d.embedding for d in data):
            raise EmbeddingUnavailable(
                f"OpenAI returned {len(data)} embeddings for {len(texts)} inputs ({self._model})"
            )
        vecs = [list(d.embedding) for d in data]
        if len(vecs[0]) != self._dimension:
            logger.info(f"Updating dimension from {self._dimension} to {len(vecs[0])}")
            self._dimension = len(vecs[0])
        return vecs


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def create_embedder(
    backend: str = "mock",
    model: str = "nomic-embed-text",
    dimension: int = 768,
    base_url: Optional[str] = None,
    timeout: int = 30,
    mock_seed: int = 42,
    api_key: Optional[str] = None,
) -> MemoryEmbedder:
    """Create an embedder instance from config parameters."""
    if backend == "mock":
        return MockEmbedder(dimension=dimension, seed=mock_seed)
    elif backend == "ollama":
        return OllamaEmbedder(
            model=model,
            dimension=dimension,
            base_url=base_url or "http://localhost:11434",
            timeout=timeout,
        )
    elif backend == "sentence-transformers":
        return SentenceTransformerEmbedder(model=model, dimension=dimension)
    elif backend == "openai":
        return OpenAIEmbedder(
            model=model,
            dimension=dimension,
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
        )
    else:
        raise ValueError(f"Unknown embedder backend: {backend!r}")

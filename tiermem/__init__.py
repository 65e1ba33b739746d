"""
tiermem - Tiered Conversational Memory

Short-term per-session logs with a bounded window and rolling summary,
long-term write-once facts with hybrid (BM25 + vector) retrieval, and an
orchestrator that runs one conversational turn across both tiers.

Architecture:
    types.py          - Data model (Message, Summary, ContextWindow, MemoryRecord)
    errors.py         - Error taxonomy
    config.py         - Configuration dataclasses, YAML loader, env overrides
    kv_backend.py     - Key-value backing stores (in-memory, SQLite)
    short_term.py     - Session log, window and cached summary
    embedder.py       - Embedding Port (mock, Ollama, sentence-transformers, OpenAI)
    bm25.py           - BM25 keyword index
    vector_index.py   - FAISS cosine index
    fusion.py         - Lexical/vector score fusion (weighted, RRF)
    search_backend.py - Search backing stores (in-memory, SQLite FTS5)
    long_term.py      - Long-term record store and retrieval
    llm_backends.py   - Generation Port (Ollama, OpenAI-compatible)
    prompts.py        - Prompt templates
    summarizer.py     - Rolling summary trigger and generation
    triggers.py       - Long-term read/write cues
    orchestrator.py   - Turn pipeline, per-session serialization
    factory.py        - Build a system from MemoryConfig
"""

from tiermem.config import MemoryConfig, load_config
from tiermem.errors import (
    EmbeddingFailed,
    EmbeddingUnavailable,
    GenerationFailed,
    GenerationTimeout,
    GenerationUnavailable,
    IndexWriteFailed,
    MalformedRetrievalResult,
    StoreUnavailable,
    TieredMemoryError,
    TurnCancelled,
)
from tiermem.factory import MemorySystem, create_memory_system
from tiermem.long_term import LongTermStore
from tiermem.orchestrator import MemoryOrchestrator, SerializedOrchestrator, TurnResult
from tiermem.short_term import ShortTermStore
from tiermem.types import ContextWindow, MemoryRecord, Message, Summary

__version__ = "0.1.0"

__all__ = [
    "MemoryConfig",
    "load_config",
    "TieredMemoryError",
    "StoreUnavailable",
    "EmbeddingUnavailable",
    "EmbeddingFailed",
    "GenerationFailed",
    "GenerationUnavailable",
    "GenerationTimeout",
    "IndexWriteFailed",
    "MalformedRetrievalResult",
    "TurnCancelled",
    "MemorySystem",
    "create_memory_system",
    "ShortTermStore",
    "LongTermStore",
    "MemoryOrchestrator",
    "SerializedOrchestrator",
    "TurnResult",
    "Message",
    "Summary",
    "ContextWindow",
    "MemoryRecord",
]

"""
Wiring - Build a complete memory system from a MemoryConfig
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

from tiermem.config import MemoryConfig, parse_endpoint
from tiermem.embedder import MemoryEmbedder, create_embedder
from tiermem.kv_backend import KVBackend, create_kv_backend
from tiermem.llm_backends import BaseLLM, create_llm_backend
from tiermem.long_term import LongTermStore
from tiermem.orchestrator import MemoryOrchestrator, SerializedOrchestrator
from tiermem.search_backend import SearchBackend, create_search_backend
from tiermem.short_term import ShortTermStore
from tiermem.summarizer import Summarizer
from tiermem.triggers import KeywordTrigger

logger = logging.getLogger(__name__)


@dataclass
class MemorySystem:
    """All components of a configured memory subsystem."""
    config: MemoryConfig
    kv_backend: KVBackend
    search_backend: SearchBackend
    short_term: ShortTermStore
    long_term: LongTermStore
    orchestrator: Union[MemoryOrchestrator, SerializedOrchestrator]

    def close(self) -> None:
        self.kv_backend.close()
        self.search_backend.close()


def create_memory_system(
    config: Optional[MemoryConfig] = None,
    llm: Optional[BaseLLM] = None,
    embedder: Optional[MemoryEmbedder] = None,
    serialized: bool = False,
) -> MemorySystem:
    """
    Build stores, ports and the orchestrator.

    Args:
        config: Memory configuration (defaults when None)
        llm: Generation Port override (built from config.llm when None)
        embedder: Embedding Port override (built from config.embedder when None)
        serialized: Wrap the orchestrator in SerializedOrchestrator
    """
    config = config or MemoryConfig()

    kv_kind, kv_location = parse_endpoint(config.short_term.endpoint)
    kv_backend = create_kv_backend(kv_kind, kv_location)

    lt = config.long_term
    search_kind, search_location = parse_endpoint(lt.endpoint)
    search_backend = create_search_backend(
        search_kind,
        search_location,
        index_name=lt.index_name,
        strategy=lt.fusion,
        lexical_weight=lt.lexical_weight,
        vector_weight=lt.vector_weight,
        rrf_k=lt.rrf_k,
        min_score=lt.min_score,
        candidate_multiplier=lt.candidate_multiplier,
    )

    if embedder is None:
        ec = config.embedder
        embedder = create_embedder(
            backend=ec.backend,
            model=ec.model,
            dimension=ec.dimension,
            base_url=ec.base_url,
            timeout=ec.timeout,
            mock_seed=ec.mock_seed,
            api_key=ec.api_key,
        )

    if llm is None:
        lc = config.llm
        llm = create_llm_backend(
            lc.backend,
            lc.model,
            base_url=lc.base_url,
            api_key=lc.api_key,
            temperature=lc.temperature,
            max_tokens=lc.max_tokens,
            timeout=lc.timeout,
        )

    short_term = ShortTermStore(
        kv_backend,
        window_size=config.short_term.window_size,
        key_prefix=config.short_term.key_prefix,
        access_ttl_days=config.short_term.access_ttl_days,
    )
    long_term = LongTermStore(search_backend, embedder, top_k=lt.top_k)
    summarizer = Summarizer(llm, mode=config.summary.mode) if config.summary.enabled else None

    orchestrator = MemoryOrchestrator(
        short_term,
        long_term,
        llm,
        trigger=KeywordTrigger(config.triggers),
        summarizer=summarizer,
    )
    if serialized:
        orchestrator = SerializedOrchestrator(orchestrator)

    logger.info(
        f"Memory system ready: short-term={kv_kind}, long-term={search_kind}, "
        f"embedder={embedder.model_name}, llm={llm.model_name}, W={short_term.window_size}"
    )
    return MemorySystem(
        config=config,
        kv_backend=kv_backend,
        search_backend=search_backend,
        short_term=short_term,
        long_term=long_term,
        orchestrator=orchestrator,
    )

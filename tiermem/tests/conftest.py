"""
Shared fixtures for tiermem tests.

Provides a scripted generation backend, in-memory and SQLite stores, and a
ready-to-use orchestrator wired with MockEmbedder.
"""

import pytest

from tiermem.embedder import MockEmbedder
from tiermem.kv_backend import InMemoryKVBackend, SQLiteKVBackend
from tiermem.long_term import LongTermStore
from tiermem.orchestrator import MemoryOrchestrator
from tiermem.search_backend import InMemorySearchBackend, SQLiteSearchBackend
from tiermem.short_term import ShortTermStore
from tiermem.summarizer import Summarizer

from tiermem.tests.fakes import ScriptedLLM


@pytest.fixture
def llm():
    return ScriptedLLM()


@pytest.fixture
def embedder():
    return MockEmbedder(dimension=32, seed=42)


@pytest.fixture
def kv():
    return InMemoryKVBackend()


@pytest.fixture
def sqlite_kv():
    backend = SQLiteKVBackend(db_path=":memory:")
    yield backend
    backend.close()


@pytest.fixture
def search():
    return InMemorySearchBackend()


@pytest.fixture
def sqlite_search(tmp_path):
    backend = SQLiteSearchBackend(db_path=str(tmp_path / "search.db"))
    yield backend
    backend.close()


@pytest.fixture
def short_term(kv):
    return ShortTermStore(kv, window_size=2)


@pytest.fixture
def long_term(search, embedder):
    return LongTermStore(search, embedder, top_k=5)


@pytest.fixture
def orchestrator(short_term, long_term, llm):
    return MemoryOrchestrator(short_term, long_term, llm, summarizer=Summarizer(llm))

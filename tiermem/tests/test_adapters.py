"""
Tests for the Embedding Port and Generation Port adapters
(embedder.py, llm_backends.py).

Network calls are replaced by monkeypatched requests functions and stand-in
client modules; no Ollama or OpenAI server is needed.
"""

import math
import sys
import types

import pytest
import requests

from tiermem import embedder as embedder_module
from tiermem import llm_backends
from tiermem.embedder import (
    MockEmbedder,
    OllamaEmbedder,
    OpenAIEmbedder,
    SentenceTransformerEmbedder,
    create_embedder,
)
from tiermem.errors import EmbeddingUnavailable, GenerationTimeout, GenerationUnavailable
from tiermem.llm_backends import OllamaLLM, OpenAILLM, create_llm_backend


class FakeResponse:
    def __init__(self, payload, status=200):
        self._payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def json(self):
        return self._payload


# ---------------------------------------------------------------------------
# Embedders
# ---------------------------------------------------------------------------

class TestMockEmbedder:
    def test_deterministic_and_normalized(self):
        e = MockEmbedder(dimension=64, seed=3)
        a = e.embed_text("hello")
        assert a == e.embed_text("hello")
        assert len(a) == 64
        assert math.isclose(math.sqrt(sum(x * x for x in a)), 1.0, rel_tol=1e-9)
        assert all(math.isfinite(x) for x in a)

    def test_seed_changes_vectors(self):
        assert MockEmbedder(16, seed=1).embed_text("x") != MockEmbedder(16, seed=2).embed_text("x")

    def test_batch(self):
        e = MockEmbedder(dimension=8)
        assert e.embed_batch(["a", "b"]) == [e.embed_text("a"), e.embed_text("b")]

class TestOllamaEmbedder:
    def test_success_updates_dimension(self, monkeypatch):
        captured = {}

        def fake_post(url, json, timeout):
            captured["url"] = url
            captured["json"] = json
            return FakeResponse({"embeddings": [[0.1, 0.2, 0.3]]})

        monkeypatch.setattr(embedder_module.requests, "post", fake_post)
        e = OllamaEmbedder(model="nomic-embed-text", dimension=768, base_url="http://ollama:11434/")
        assert e.embed_text("hi") == [0.1, 0.2, 0.3]
        assert e.dimension == 3
        assert captured["url"] == "http://ollama:11434/api/embed"
        assert captured["json"] == {"model": "nomic-embed-text", "input": "hi"}

    def test_connection_error(self, monkeypatch):
        def fake_post(*args, **kwargs):
            raise requests.ConnectionError("refused")

        monkeypatch.setattr(embedder_module.requests, "post", fake_post)
        with pytest.raises(EmbeddingUnavailable):
            OllamaEmbedder().embed_text("hi")

    def test_empty_response(self, monkeypatch):
        monkeypatch.setattr(
            embedder_module.requests, "post", lambda *a, **k: FakeResponse({"embeddings": []})
        )
        with pytest.raises(EmbeddingUnavailable):
            OllamaEmbedder().embed_text("hi")


class FakeOpenAIError(Exception):
    pass


def _fake_openai_module(answer):
    """Stand-in ``openai`` module; embeddings.create delegates to *answer*."""
    calls = {}

    class Embeddings:
        def create(self, model, input):
            calls["request"] = (model, input)
            return answer(input)

    class OpenAI:
        def __init__(self, api_key, base_url, timeout):
            calls["client"] = (api_key, base_url, timeout)
            self.embeddings = Embeddings()

    module = types.ModuleType("openai")
    module.OpenAI = OpenAI
    module.OpenAIError = FakeOpenAIError
    return module, calls


def _embedding_response(vectors):
    # served in reverse order to check that results follow input order
    data = [types.SimpleNamespace(index=i, embedding=v) for i, v in enumerate(vectors)]
    return types.SimpleNamespace(data=list(reversed(data)))


class TestOpenAIEmbedder:
    def test_batch_in_input_order(self, monkeypatch):
        module, calls = _fake_openai_module(
            lambda texts: _embedding_response([[float(len(t)), 1.0] for t in texts])
        )
        monkeypatch.setitem(sys.modules, "openai", module)
        e = OpenAIEmbedder(
            model="Qwen3-Embedding-8B", dimension=4096, api_key="sk-test",
            base_url="https://api.example.com/v1",
        )
        assert e.embed_batch(["a", "bbb"]) == [[1.0, 1.0], [3.0, 1.0]]
        assert e.dimension == 2
        assert e.model_name == "Qwen3-Embedding-8B"
        assert calls["request"] == ("Qwen3-Embedding-8B", ["a", "bbb"])
        assert calls["client"][:2] == ("sk-test", "https://api.example.com/v1")

    def test_key_and_url_from_environment(self, monkeypatch):
        module, calls = _fake_openai_module(lambda texts: _embedding_response([[0.5]]))
        monkeypatch.setitem(sys.modules, "openai", module)
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        monkeypatch.setenv("OPENAI_BASE_URL", "http://vllm:8000/v1")
        assert OpenAIEmbedder().embed_text("hi") == [0.5]
        assert calls["client"][:2] == ("sk-env", "http://vllm:8000/v1")

    def test_api_error(self, monkeypatch):
        def fail(texts):
            raise FakeOpenAIError("401 invalid key")

        module, _ = _fake_openai_module(fail)
        monkeypatch.setitem(sys.modules, "openai", module)
        with pytest.raises(EmbeddingUnavailable):
            OpenAIEmbedder(api_key="sk-test").embed_text("hi")

    def test_short_response(self, monkeypatch):
        module, _ = _fake_openai_module(lambda texts: _embedding_response([]))
        monkeypatch.setitem(sys.modules, "openai", module)
        with pytest.raises(EmbeddingUnavailable):
            OpenAIEmbedder(api_key="sk-test").embed_text("hi")

    def test_requires_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ValueError):
            OpenAIEmbedder()


def _fake_sentence_transformers(model_class):
    module = types.ModuleType("sentence_transformers")
    module.SentenceTransformer = model_class
    return module


class TestSentenceTransformerEmbedder:
    def test_load_failure(self, monkeypatch):
        class MissingWeights:
            def __init__(self, name):
                raise OSError("model weights not found")

        monkeypatch.setitem(
            sys.modules, "sentence_transformers", _fake_sentence_transformers(MissingWeights)
        )
        with pytest.raises(EmbeddingUnavailable):
            SentenceTransformerEmbedder("all-MiniLM-L6-v2").embed_text("hi")

    def test_encode_failure(self, monkeypatch):
        class OutOfMemory:
            def __init__(self, name):
                pass

            def get_sentence_embedding_dimension(self):
                return 384

            def encode(self, texts, normalize_embeddings):
                raise RuntimeError("CUDA out of memory")

        monkeypatch.setitem(
            sys.modules, "sentence_transformers", _fake_sentence_transformers(OutOfMemory)
        )
        with pytest.raises(EmbeddingUnavailable):
            SentenceTransformerEmbedder("all-MiniLM-L6-v2").embed_batch(["a", "b"])


class TestCreateEmbedder:
    def test_backends(self):
        assert isinstance(create_embedder("mock", dimension=16), MockEmbedder)
        assert isinstance(create_embedder("ollama"), OllamaEmbedder)
        st = create_embedder("sentence-transformers", model="all-MiniLM-L6-v2", dimension=384)
        assert isinstance(st, SentenceTransformerEmbedder)
        assert st.model_name == "all-MiniLM-L6-v2"

    def test_openai(self, monkeypatch):
        module, calls = _fake_openai_module(lambda texts: _embedding_response([[1.0]]))
        monkeypatch.setitem(sys.modules, "openai", module)
        e = create_embedder("openai", model="text-embedding-3-small", api_key="sk-test")
        assert isinstance(e, OpenAIEmbedder)
        assert calls["client"][0] == "sk-test"

    def test_unknown(self):
        with pytest.raises(ValueError):
            create_embedder("word2vec")


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

class TestOllamaLLM:
    def test_generate(self, monkeypatch):
        def fake_post(url, json, timeout):
            assert url == "http://localhost:11434/api/chat"
            assert json["stream"] is False
            assert json["messages"][0]["content"] == "hi"
            return FakeResponse({
                "message": {"content": "  hello  "},
                "prompt_eval_count": 3,
                "eval_count": 2,
            })

        monkeypatch.setattr(llm_backends.requests, "post", fake_post)
        llm = OllamaLLM("qwen2.5:7b")
        assert llm.generate([{"role": "user", "content": "hi"}]) == "hello"
        _, stats = llm.generate_with_stats([{"role": "user", "content": "hi"}])
        assert stats["total_tokens"] == 5

    def test_timeout(self, monkeypatch):
        def fake_post(*args, **kwargs):
            raise requests.Timeout("slow")

        monkeypatch.setattr(llm_backends.requests, "post", fake_post)
        with pytest.raises(GenerationTimeout):
            OllamaLLM("qwen2.5:7b", timeout=1).generate([{"role": "user", "content": "hi"}])

    def test_unavailable(self, monkeypatch):
        monkeypatch.setattr(
            llm_backends.requests, "post", lambda *a, **k: FakeResponse({}, status=500)
        )
        with pytest.raises(GenerationUnavailable):
            OllamaLLM("qwen2.5:7b").generate([{"role": "user", "content": "hi"}])

    def test_unexpected_shape(self, monkeypatch):
        monkeypatch.setattr(
            llm_backends.requests, "post", lambda *a, **k: FakeResponse({"done": True})
        )
        with pytest.raises(GenerationUnavailable):
            OllamaLLM("qwen2.5:7b").generate([{"role": "user", "content": "hi"}])

    def test_is_available(self, monkeypatch):
        monkeypatch.setattr(
            llm_backends.requests, "get",
            lambda *a, **k: FakeResponse({"models": [{"name": "qwen2.5:7b"}]}),
        )
        assert OllamaLLM("qwen2.5:7b").is_available() is True
        assert OllamaLLM("llama3").is_available() is False


class TestCreateLLMBackend:
    def test_ollama_ignores_openai_only_options(self):
        llm = create_llm_backend("ollama", "qwen2.5:7b", api_key="x", max_tokens=10, timeout=5)
        assert isinstance(llm, OllamaLLM)
        assert llm.model_name == "qwen2.5:7b"
        assert llm.timeout == 5

    def test_openai_requires_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ValueError):
            OpenAILLM(model="gpt-4o-mini")

    def test_unknown(self):
        with pytest.raises(ValueError):
            create_llm_backend("claude-local")

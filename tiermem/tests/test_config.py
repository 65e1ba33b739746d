"""
Tests for configuration (config.py).

Validates:
- Flat options in snake_case and camelCase
- Model reference and endpoint parsing
- Invalid values fall back to defaults with a warning
- YAML loading, environment overrides, save/load round trip with masked keys
"""

import logging

import pytest
import yaml

from tiermem.config import (
    MemoryConfig,
    load_config,
    parse_endpoint,
    parse_model_ref,
    save_config,
)


class TestFromOptions:
    def test_defaults(self):
        config = MemoryConfig.from_options({})
        assert config.short_term.window_size == 10
        assert config.long_term.top_k == 5
        assert config.short_term.endpoint == "memory://"

    def test_snake_case(self):
        config = MemoryConfig.from_options({
            "window_size": 4,
            "top_k": 3,
            "backing_store_endpoint": "sqlite:///tmp/stm.db",
            "search_store_endpoint": "sqlite:///tmp/ltm.db",
            "embedding_model_ref": "ollama:mxbai-embed-large",
            "generation_model_ref": "openai:gpt-4o-mini",
        })
        assert config.short_term.window_size == 4
        assert config.long_term.top_k == 3
        assert config.short_term.endpoint == "sqlite:///tmp/stm.db"
        assert config.long_term.endpoint == "sqlite:///tmp/ltm.db"
        assert (config.embedder.backend, config.embedder.model) == ("ollama", "mxbai-embed-large")
        assert (config.llm.backend, config.llm.model) == ("openai", "gpt-4o-mini")

    def test_camel_case(self):
        config = MemoryConfig.from_options({
            "windowSize": 6,
            "topK": 2,
            "embeddingModelRef": "mock",
            "generationModelRef": "qwen2.5:7b",
        })
        assert config.short_term.window_size == 6
        assert config.long_term.top_k == 2
        assert config.embedder.backend == "mock"
        assert (config.llm.backend, config.llm.model) == ("ollama", "qwen2.5:7b")

    def test_openai_embedding_ref_is_kept(self):
        config = MemoryConfig.from_options({"embeddingModelRef": "openai:text-embedding-3-small"})
        assert config.embedder.backend == "openai"
        assert config.embedder.model == "text-embedding-3-small"

    def test_unknown_option_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="tiermem.config"):
            MemoryConfig.from_options({"colour": "blue"})
        assert "colour" in caplog.text

    def test_invalid_values_reset(self, caplog):
        with caplog.at_level(logging.WARNING, logger="tiermem.config"):
            config = MemoryConfig.from_options({"window_size": 0, "top_k": -1})
        assert config.short_term.window_size == 10
        assert config.long_term.top_k == 5
        assert "window_size" in caplog.text


class TestParsing:
    @pytest.mark.parametrize("ref, expected", [
        ("mock", ("mock", "")),
        ("ollama:nomic-embed-text", ("ollama", "nomic-embed-text")),
        ("openai:gpt-4o-mini", ("openai", "gpt-4o-mini")),
        ("sentence-transformers:all-MiniLM-L6-v2", ("sentence-transformers", "all-MiniLM-L6-v2")),
        ("qwen2.5:7b", ("ollama", "qwen2.5:7b")),
    ])
    def test_model_ref(self, ref, expected):
        assert parse_model_ref(ref) == expected

    @pytest.mark.parametrize("endpoint, expected", [
        ("memory://", ("memory", "")),
        ("", ("memory", "")),
        ("sqlite:///var/lib/tiermem/stm.db", ("sqlite", "/var/lib/tiermem/stm.db")),
        ("sqlite://:memory:", ("sqlite", ":memory:")),
        ("sqlite://", ("sqlite", ":memory:")),
        ("/tmp/stm.db", ("sqlite", "/tmp/stm.db")),
    ])
    def test_endpoint(self, endpoint, expected):
        assert parse_endpoint(endpoint) == expected


class TestLoadConfig:
    def test_yaml_file(self, tmp_path):
        path = tmp_path / "tiermem.yaml"
        path.write_text(yaml.safe_dump({
            "short_term": {"window_size": 3},
            "long_term": {"fusion": "rrf", "top_k": 7},
            "summary": {"mode": "incremental"},
        }))
        config = load_config(path)
        assert config.short_term.window_size == 3
        assert config.long_term.fusion == "rrf"
        assert config.long_term.top_k == 7
        assert config.summary.mode == "incremental"

    def test_env_overrides(self, tmp_path, monkeypatch):
        path = tmp_path / "tiermem.yaml"
        path.write_text(yaml.safe_dump({"short_term": {"window_size": 3}}))
        monkeypatch.setenv("TIERMEM_WINDOW_SIZE", "8")
        monkeypatch.setenv("TIERMEM_GENERATION_MODEL", "openai:gpt-4o")
        monkeypatch.setenv("TIERMEM_SUMMARY_MODE", "INCREMENTAL")
        config = load_config(path)
        assert config.short_term.window_size == 8
        assert (config.llm.backend, config.llm.model) == ("openai", "gpt-4o")
        assert config.summary.mode == "incremental"

    def test_invalid_file_uses_defaults(self, tmp_path):
        path = tmp_path / "tiermem.yaml"
        path.write_text("short_term: {window_size: [unclosed")
        config = load_config(path)
        assert config.short_term.window_size == 10

    def test_invalid_enum_resets(self, tmp_path):
        path = tmp_path / "tiermem.yaml"
        path.write_text(yaml.safe_dump({"summary": {"mode": "sometimes"}}))
        assert load_config(path).summary.mode == "full"

    def test_save_masks_api_key(self, tmp_path):
        config = MemoryConfig()
        config.llm.api_key = "sk-secret"
        config.embedder.api_key = "sk-embed-secret"
        path = tmp_path / "out" / "tiermem.yaml"
        save_config(config, path)
        text = path.read_text()
        assert "sk-secret" not in text
        assert "sk-embed-secret" not in text
        reloaded = load_config(path)
        assert reloaded.short_term.window_size == config.short_term.window_size

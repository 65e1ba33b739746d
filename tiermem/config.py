"""
Tiered Memory Configuration

Nested dataclasses for every memory component (short-term store, long-term
store, embedder, generation backend, summarization, triggers, logging), a
flat-options constructor, and a YAML loader with environment overrides.

Recognized flat options (snake_case or camelCase):
    window_size, top_k, backing_store_endpoint, search_store_endpoint,
    embedding_model_ref, generation_model_ref
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Component configuration
# ---------------------------------------------------------------------------

@dataclass
class ShortTermConfig:
    """Short-term (per-session) store configuration."""
    window_size: int = 10  # rounds kept verbatim
    # "memory://" for the in-process backend, "sqlite:///path" or a bare path
    endpoint: str = "memory://"
    access_ttl_days: int = 30  # TTL of the advisory last-access key
    key_prefix: str = "session"


@dataclass
class LongTermConfig:
    """Long-term (semantic) store configuration."""
    top_k: int = 5
    endpoint: str = "memory://"
    index_name: str = "tiermem_memory"
    fusion: Literal["weighted", "rrf"] = "weighted"
    lexical_weight: float = 0.5
    vector_weight: float = 0.5
    rrf_k: int = 60
    min_score: float = 0.0  # hits must score strictly above this
    candidate_multiplier: int = 2  # per-signal candidates = k * multiplier


@dataclass
class EmbedderConfig:
    """Embedding backend configuration."""
    backend: Literal["ollama", "sentence-transformers", "openai", "mock"] = "mock"
    model: str = "nomic-embed-text"
    dimension: int = 768
    base_url: Optional[str] = None  # backend default when None
    api_key: Optional[str] = None  # openai: falls back to OPENAI_API_KEY
    timeout: int = 30
    mock_seed: int = 42


@dataclass
class LLMConfig:
    """Generation backend configuration."""
    backend: Literal["ollama", "openai"] = "ollama"
    model: str = "qwen2.5:7b"
    base_url: Optional[str] = None  # backend default when None
    api_key: Optional[str] = None  # openai: falls back to OPENAI_API_KEY
    temperature: float = 0.7
    max_tokens: int = 1024
    timeout: int = 120


@dataclass
class SummaryConfig:
    """Rolling summary configuration."""
    mode: Literal["full", "incremental"] = "full"
    enabled: bool = True


@dataclass
class TriggerConfig:
    """Keyword trigger cues (regular expressions, case-insensitive)."""
    recall_patterns: List[str] = field(default_factory=lambda: [
        r"\bremember\b",
        r"\brecall\b",
        r"\bmy\b",
        r"\bdo\s+you\s+know\b",
        r"记住",
        r"我的",
    ])
    persist_patterns: List[str] = field(default_factory=lambda: [
        r"^\s*(?:please\s+)?remember\s*(?:that\b|:|：)\s*",
        r"^\s*(?:please\s+)?keep\s+in\s+mind\s*(?:that\b|:|：)\s*",
        r"^\s*请记住\s*[:：]?\s*",
    ])


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


@dataclass
class MemoryConfig:
    """Top-level memory subsystem configuration."""
    short_term: ShortTermConfig = field(default_factory=ShortTermConfig)
    long_term: LongTermConfig = field(default_factory=LongTermConfig)
    embedder: EmbedderConfig = field(default_factory=EmbedderConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    summary: SummaryConfig = field(default_factory=SummaryConfig)
    triggers: TriggerConfig = field(default_factory=TriggerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> MemoryConfig:
        """Build config from a nested dict (e.g. YAML/JSON)."""
        return cls(
            short_term=ShortTermConfig(**d.get("short_term", {})),
            long_term=LongTermConfig(**d.get("long_term", {})),
            embedder=EmbedderConfig(**d.get("embedder", {})),
            llm=LLMConfig(**d.get("llm", {})),
            summary=SummaryConfig(**d.get("summary", {})),
            triggers=TriggerConfig(**d.get("triggers", {})),
            logging=LoggingConfig(**d.get("logging", {})),
        )

    @classmethod
    def from_options(cls, options: Dict[str, Any]) -> MemoryConfig:
        """
        Build config from the flat static options object.

        Unknown keys are ignored with a warning.
        """
        config = cls()
        for raw_key, value in options.items():
            key = _snake_case(raw_key)
            if key == "window_size":
                config.short_term.window_size = int(value)
            elif key == "top_k":
                config.long_term.top_k = int(value)
            elif key == "backing_store_endpoint":
                config.short_term.endpoint = str(value)
            elif key == "search_store_endpoint":
                config.long_term.endpoint = str(value)
            elif key == "embedding_model_ref":
                backend, model = parse_model_ref(str(value), default_backend="ollama")
                config.embedder.backend = backend
                if model:
                    config.embedder.model = model
            elif key == "generation_model_ref":
                backend, model = parse_model_ref(str(value), default_backend="ollama")
                config.llm.backend = backend
                if model:
                    config.llm.model = model
            else:
                logger.warning(f"Ignoring unknown memory option {raw_key!r}")
        _validate_config(config)
        return config

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        for section in ("llm", "embedder"):
            if d[section].get("api_key"):
                d[section]["api_key"] = "*** SET VIA ENVIRONMENT VARIABLE ***"
        return d


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _snake_case(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def parse_model_ref(ref: str, default_backend: str = "ollama") -> Tuple[str, str]:
    """
    Split a model reference ``backend:model`` into its parts.

    ``"mock"`` has no model part. A reference without a known backend
    prefix is taken as a model name for *default_backend* (Ollama tags such
    as ``qwen2.5:7b`` contain a colon too).
    """
    ref = ref.strip()
    if ref == "mock":
        return "mock", ""
    known = ("ollama", "openai", "sentence-transformers", "mock")
    head, sep, tail = ref.partition(":")
    if sep and head in known:
        return head, tail
    return default_backend, ref


def parse_endpoint(endpoint: str) -> Tuple[str, str]:
    """
    Resolve a store endpoint into ``(kind, location)``.

    ``memory://`` -> ("memory", ""), ``sqlite:///tmp/x.db`` -> ("sqlite",
    "/tmp/x.db"), ``sqlite://:memory:`` and ``:memory:`` -> ("sqlite",
    ":memory:"), anything else is a SQLite file path.
    """
    endpoint = (endpoint or "").strip()
    if not endpoint or endpoint.startswith("memory://"):
        return "memory", ""
    if endpoint.startswith("sqlite://"):
        location = endpoint[len("sqlite://"):]
        if location.startswith("/:memory:"):
            location = ":memory:"
        return "sqlite", location or ":memory:"
    return "sqlite", endpoint


def configure_logging(config: Optional[LoggingConfig] = None) -> None:
    """Configure the root logger once from a LoggingConfig."""
    config = config or LoggingConfig()
    level = getattr(logging, config.level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=config.format)
    logging.getLogger("tiermem").setLevel(level)


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def find_config_file(start_path: Optional[Path] = None) -> Optional[Path]:
    """
    Find tiermem.yaml by searching upward from start_path, then in
    ~/.config/tiermem/.
    """
    current = Path(start_path or Path.cwd()).resolve()
    for _ in range(10):
        for candidate in (current / "tiermem.yaml", current / ".tiermem" / "tiermem.yaml"):
            if candidate.exists():
                return candidate
        if current.parent == current:
            break
        current = current.parent

    user_config = Path.home() / ".config" / "tiermem" / "tiermem.yaml"
    if user_config.exists():
        return user_config
    return None


def load_config(config_path: Optional[Path] = None) -> MemoryConfig:
    """
    Load configuration from YAML with environment variable overrides.

    Environment variables override file values:
    - TIERMEM_WINDOW_SIZE       -> short_term.window_size
    - TIERMEM_TOP_K             -> long_term.top_k
    - TIERMEM_BACKING_STORE     -> short_term.endpoint
    - TIERMEM_SEARCH_STORE      -> long_term.endpoint
    - TIERMEM_EMBEDDING_MODEL   -> embedder.backend/model (model ref)
    - TIERMEM_GENERATION_MODEL  -> llm.backend/model (model ref)
    - TIERMEM_LLM_BASE_URL      -> llm.base_url
    - TIERMEM_SUMMARY_MODE      -> summary.mode
    - TIERMEM_LOG_LEVEL         -> logging.level
    """
    config = MemoryConfig()

    if config_path is None:
        config_path = find_config_file()

    if config_path and Path(config_path).exists():
        logger.info(f"Loading memory config from: {config_path}")
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            config = MemoryConfig.from_dict(data)
        except (OSError, yaml.YAMLError, TypeError) as e:
            logger.warning(f"Failed to load config: {e}, using defaults")
    else:
        logger.info("No memory config file found, using defaults")

    config = _apply_env_overrides(config)
    _validate_config(config)
    return config


def save_config(config: MemoryConfig, path: Path) -> None:
    """Save configuration to a YAML file (API keys are masked)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)
    logger.info(f"Memory configuration saved to: {path}")


def _apply_env_overrides(config: MemoryConfig) -> MemoryConfig:
    """Apply TIERMEM_* environment overrides."""
    env = os.environ

    if env.get("TIERMEM_WINDOW_SIZE"):
        config.short_term.window_size = int(env["TIERMEM_WINDOW_SIZE"])

    if env.get("TIERMEM_TOP_K"):
        config.long_term.top_k = int(env["TIERMEM_TOP_K"])

    if env.get("TIERMEM_BACKING_STORE"):
        config.short_term.endpoint = env["TIERMEM_BACKING_STORE"]

    if env.get("TIERMEM_SEARCH_STORE"):
        config.long_term.endpoint = env["TIERMEM_SEARCH_STORE"]

    if env.get("TIERMEM_EMBEDDING_MODEL"):
        backend, model = parse_model_ref(env["TIERMEM_EMBEDDING_MODEL"])
        config.embedder.backend = backend
        if model:
            config.embedder.model = model

    if env.get("TIERMEM_GENERATION_MODEL"):
        backend, model = parse_model_ref(env["TIERMEM_GENERATION_MODEL"])
        config.llm.backend = backend
        if model:
            config.llm.model = model

    if env.get("TIERMEM_LLM_BASE_URL"):
        config.llm.base_url = env["TIERMEM_LLM_BASE_URL"]

    if env.get("TIERMEM_SUMMARY_MODE"):
        config.summary.mode = env["TIERMEM_SUMMARY_MODE"].lower()

    if env.get("TIERMEM_LOG_LEVEL"):
        config.logging.level = env["TIERMEM_LOG_LEVEL"].upper()

    return config


def _validate_config(config: MemoryConfig) -> None:
    """Validate configuration; invalid values are logged and reset to defaults."""
    if config.short_term.window_size < 1:
        logger.warning(
            f"window_size must be >= 1 (got {config.short_term.window_size}), using 10"
        )
        config.short_term.window_size = 10

    if config.long_term.top_k < 1:
        logger.warning(f"top_k must be >= 1 (got {config.long_term.top_k}), using 5")
        config.long_term.top_k = 5

    if config.long_term.fusion not in ("weighted", "rrf"):
        logger.warning(f"Unknown fusion strategy '{config.long_term.fusion}', defaulting to 'weighted'")
        config.long_term.fusion = "weighted"

    if config.summary.mode not in ("full", "incremental"):
        logger.warning(f"Unknown summary mode '{config.summary.mode}', defaulting to 'full'")
        config.summary.mode = "full"

    if config.embedder.backend not in ("ollama", "sentence-transformers", "openai", "mock"):
        logger.warning(f"Unknown embedder backend '{config.embedder.backend}', defaulting to 'mock'")
        config.embedder.backend = "mock"

    if config.llm.backend not in ("ollama", "openai"):
        logger.warning(f"Unknown LLM backend '{config.llm.backend}', defaulting to 'ollama'")
        config.llm.backend = "ollama"

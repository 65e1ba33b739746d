"""
Generation Port and LLM Backends

1. OllamaLLM  - local generation through the Ollama /api/chat endpoint
2. OpenAILLM  - any OpenAI-compatible chat completion endpoint

Both take a list of chat messages ({"role", "content"}) and return text.
Transport failures surface as GenerationUnavailable, deadline overruns as
GenerationTimeout; both are GenerationFailed.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import requests

from tiermem.errors import GenerationFailed, GenerationTimeout, GenerationUnavailable

logger = logging.getLogger(__name__)


# =============================================================================
# Base LLM Interface
# =============================================================================

class BaseLLM(ABC):
    """
    Abstract base class for generation backends.

    All backends must implement:
        - generate(): produce a reply from a list of chat messages
        - model_name: identifier of the model in use
    """

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model name being used."""

    @abstractmethod
    def generate(self, messages: List[Dict[str, str]]) -> str:
        """
        Generate a response.

        Args:
            messages: List of {"role": "system"|"user"|"assistant", "content": "..."}

        Returns:
            Generated text response
        """


# =============================================================================
# Ollama Backend
# =============================================================================

class OllamaLLM(BaseLLM):
    """
    Ollama backend, local execution.

    Requires Ollama running locally:
        ollama serve

    Example:
        llm = OllamaLLM("qwen2.5:7b")
        reply = llm.generate([{"role": "user", "content": "Hello"}])
    """

    def __init__(
        self,
        model: str,
        base_url: Optional[str] = None,
        temperature: float = 0.7,
        timeout: int = 120,
    ):
        self.model = model
        self.base_url = (base_url or "http://localhost:11434").rstrip("/")
        self.temperature = temperature
        self.timeout = timeout
        logger.info(f"Initialized OllamaLLM with model: {model}")

    @property
    def model_name(self) -> str:
        return self.model

    def generate(self, messages: List[Dict[str, str]]) -> str:
        response, stats = self.generate_with_stats(messages)
        logger.debug(
            f"OllamaLLM {self.model}: {stats['prompt_tokens']} prompt + "
            f"{stats['completion_tokens']} completion tokens"
        )
        return response

    def generate_with_stats(self, messages: List[Dict[str, str]]) -> Tuple[str, Dict[str, Any]]:
        """
        Generate response with token statistics.

        Returns:
            Tuple of (response_text, stats_dict)
        """
        payload = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "options": {"temperature": self.temperature},
        }

        try:
            r = requests.post(f"{self.base_url}/api/chat", json=payload, timeout=self.timeout)
            r.raise_for_status()
            data = r.json()
        except requests.Timeout as e:
            raise GenerationTimeout(f"Ollama did not answer within {self.timeout}s: {e}") from e
        except (requests.RequestException, ValueError) as e:
            raise GenerationUnavailable(f"Ollama generation failed at {self.base_url}: {e}") from e

        try:
            content = data["message"]["content"]
        except (KeyError, TypeError) as e:
            raise GenerationUnavailable(f"Unexpected Ollama response shape: {e}") from e

        stats = {
            "prompt_tokens": data.get("prompt_eval_count", 0),
            "completion_tokens": data.get("eval_count", 0),
            "total_duration_ns": data.get("total_duration", 0),
        }
        stats["total_tokens"] = stats["prompt_tokens"] + stats["completion_tokens"]
        return content.strip(), stats

    def is_available(self) -> bool:
        """Check if Ollama is running and the model is pulled."""
        try:
            r = requests.get(f"{self.base_url}/api/tags", timeout=5)
            if r.status_code == 200:
                models = [m["name"] for m in r.json().get("models", [])]
                return any(self.model in m for m in models)
        except requests.RequestException:
            pass
        return False


# =============================================================================
# OpenAI-compatible Backend
# =============================================================================

class OpenAILLM(BaseLLM):
    """
    OpenAI-compatible chat completion backend.

    Works with the OpenAI API and with any server exposing the same
    protocol (set base_url, e.g. a vLLM or SiliconFlow endpoint).

    Requires:
        pip install tiermem[openai]
        export OPENAI_API_KEY="sk-..."
    """

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
        timeout: int = 120,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._api_key = api_key or os.environ.get("OPENAI_API_KEY")
        base_url = base_url or os.environ.get("OPENAI_BASE_URL")

        if not self._api_key:
            raise ValueError(
                "OpenAI API key required. Set OPENAI_API_KEY environment "
                "variable or pass api_key parameter."
            )

        try:
            import openai
        except ImportError:
            raise ImportError(
                "openai package required for OpenAI backend. "
                "Install with: pip install tiermem[openai]"
            )
        self._openai = openai
        self._client = openai.OpenAI(api_key=self._api_key, base_url=base_url, timeout=timeout)
        logger.info(f"Initialized OpenAILLM with model: {model}")

    @property
    def model_name(self) -> str:
        return self.model

    def generate(self, messages: List[Dict[str, str]]) -> str:
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except self._openai.APITimeoutError as e:
            raise GenerationTimeout(f"OpenAI request timed out: {e}") from e
        except self._openai.OpenAIError as e:
            raise GenerationUnavailable(f"OpenAI generation failed: {e}") from e

        content = response.choices[0].message.content
        if content is None:
            raise GenerationFailed("OpenAI returned an empty completion")
        return content.strip()


# =============================================================================
# Factory Function
# =============================================================================

def create_llm_backend(
    backend: str = "ollama",
    model: Optional[str] = None,
    **kwargs: Any,
) -> BaseLLM:
    """
    Create a generation backend.

    Args:
        backend: "ollama" or "openai"
        model: Model name (backend default when None)
        **kwargs: Backend-specific arguments (base_url, temperature, ...)
    """
    backend = backend.lower()

    if backend == "ollama":
        kwargs.pop("api_key", None)
        kwargs.pop("max_tokens", None)
        return OllamaLLM(model=model or "qwen2.5:7b", **kwargs)

    elif backend in ("openai", "gpt"):
        return OpenAILLM(model=model or "gpt-4o-mini", **kwargs)

    else:
        raise ValueError(f"Unknown backend: {backend}. Supported: ollama, openai")

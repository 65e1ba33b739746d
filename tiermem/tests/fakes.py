"""
Test doubles shared across tiermem tests.
"""

import threading
import time
from typing import Callable, Dict, List, Optional

from tiermem.errors import GenerationUnavailable
from tiermem.llm_backends import BaseLLM
from tiermem.prompts import SUMMARY_SYSTEM_PROMPT

INPUT_MARKER = "Current user input: "


def is_summary_request(messages: List[Dict[str, str]]) -> bool:
    return bool(messages) and messages[0]["content"] == SUMMARY_SYSTEM_PROMPT


def user_input_of(messages: List[Dict[str, str]]) -> str:
    """Extract the raw query from a conversation prompt."""
    content = messages[-1]["content"]
    return content.split(INPUT_MARKER, 1)[1]


class ScriptedLLM(BaseLLM):
    """
    Fake generation backend.

    Replies "reply to: <query>" to conversation prompts and
    "summary #<n>" to summary prompts. Failures can be switched on per kind.
    """

    def __init__(self, delay: float = 0.0, on_generate: Optional[Callable] = None):
        self.calls: List[List[Dict[str, str]]] = []
        self.summary_calls: List[List[Dict[str, str]]] = []
        self.fail_chat = False
        self.fail_summary = False
        self.delay = delay
        self.on_generate = on_generate
        self._lock = threading.Lock()

    @property
    def model_name(self) -> str:
        return "scripted"

    def generate(self, messages: List[Dict[str, str]]) -> str:
        if self.on_generate is not None:
            self.on_generate(messages)
        if self.delay:
            time.sleep(self.delay)
        if is_summary_request(messages):
            if self.fail_summary:
                raise GenerationUnavailable("summary backend down")
            with self._lock:
                self.summary_calls.append(messages)
                return f"summary #{len(self.summary_calls)}"
        if self.fail_chat:
            raise GenerationUnavailable("chat backend down")
        with self._lock:
            self.calls.append(messages)
        return f"reply to: {user_input_of(messages)}"

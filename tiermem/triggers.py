"""
Memory Triggers - Decide when to read from and write to long-term memory

A trigger inspects the raw user query and answers two questions:
  1. should_recall  - is long-term context worth fetching for this query?
  2. should_persist - does the query ask to remember a durable fact, and
                      which text is the fact?

KeywordTrigger is the default: regular-expression cues, configurable via
TriggerConfig. Any object with the same two methods can replace it
(e.g. an LLM-backed intent classifier).
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Protocol, Tuple

from tiermem.config import TriggerConfig

logger = logging.getLogger(__name__)


class RecallTrigger(Protocol):
    """Protocol for long-term read/write triggers."""

    def should_recall(self, query: str) -> bool:
        ...

    def should_persist(self, query: str) -> Tuple[bool, str]:
        """Return (True, fact_text) when the query asks to store a fact."""
        ...


class KeywordTrigger:
    """
    Regex-cue trigger.

    Recall fires when any recall pattern matches anywhere in the query.
    Persist fires when a persist pattern matches at the start of the query;
    the fact is the query with the matched cue stripped. A persist cue with
    nothing after it stores nothing.
    """

    def __init__(self, config: Optional[TriggerConfig] = None):
        config = config or TriggerConfig()
        self._recall = self._compile(config.recall_patterns)
        self._persist = self._compile(config.persist_patterns)

    @staticmethod
    def _compile(patterns: List[str]) -> List[re.Pattern]:
        compiled = []
        for p in patterns:
            try:
                compiled.append(re.compile(p, re.IGNORECASE))
            except re.error as e:
                logger.warning(f"Ignoring invalid trigger pattern {p!r}: {e}")
        return compiled

    def should_recall(self, query: str) -> bool:
        return any(p.search(query or "") for p in self._recall)

    def should_persist(self, query: str) -> Tuple[bool, str]:
        text = query or ""
        for p in self._persist:
            m = p.match(text)
            if m:
                fact = text[m.end():].strip()
                if fact:
                    return True, fact
        return False, ""

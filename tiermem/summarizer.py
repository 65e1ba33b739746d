"""
Rolling Summary - Compress rounds that aged out of the short-term window

Trigger (SummaryPolicy): after a round is appended, a summary is due when
``total_rounds > window_size`` and there is no cached summary or the cached
one was generated at fewer rounds than exist now.

Modes (Summarizer):
    full        - summarize every aged message from scratch
    incremental - feed the previous summary plus only the messages that aged
                  out since it was generated; falls back to full when there
                  is no usable previous summary
"""

from __future__ import annotations

import logging
from typing import List, Optional

from tiermem.llm_backends import BaseLLM
from tiermem.prompts import build_summary_messages
from tiermem.short_term import ShortTermStore
from tiermem.types import Message, Summary

logger = logging.getLogger(__name__)

SUMMARY_MODES = ("full", "incremental")


class SummaryPolicy:
    """Decides whether a session's summary must be (re)generated."""

    def __init__(self, window_size: int):
        self.window_size = window_size

    def is_due(self, total_rounds: int, summary: Optional[Summary]) -> bool:
        if total_rounds <= self.window_size:
            return False
        return summary is None or summary.is_stale(total_rounds)


class Summarizer:
    """Generates and caches rolling summaries through the Generation Port."""

    def __init__(self, llm: BaseLLM, mode: str = "full"):
        if mode not in SUMMARY_MODES:
            raise ValueError(f"Unknown summary mode: {mode!r} (expected one of {SUMMARY_MODES})")
        self._llm = llm
        self.mode = mode

    def _incremental_input(
        self,
        aged: List[Message],
        previous: Optional[Summary],
        window_size: int,
    ) -> Optional[List[Message]]:
        """Messages aged out since *previous* was generated, or None to fall back."""
        if previous is None or not previous.text:
            return None
        already = 2 * (previous.generated_at_turn_count - window_size)
        if already <= 0 or already > len(aged):
            return None
        return aged[already:]

    def summarize(self, store: ShortTermStore, session_id: str) -> Summary:
        """
        Regenerate and save the summary of *session_id*.

        Raises:
            GenerationFailed: The Generation Port failed; the cached summary
                is left untouched.
        """
        total = store.count_rounds(session_id)
        aged = store.get_aged_messages(session_id)
        previous = store.get_summary(session_id)

        newer = None
        if self.mode == "incremental":
            newer = self._incremental_input(aged, previous, store.window_size)

        if newer is None:
            messages = build_summary_messages(aged)
            logger.debug(f"Session {session_id}: full summary over {len(aged)} messages")
        else:
            messages = build_summary_messages(newer, previous_summary=previous.text)
            logger.debug(
                f"Session {session_id}: incremental summary, {len(newer)} newly aged messages"
            )

        text = self._llm.generate(messages)
        summary = store.save_summary(session_id, text, turn_count=total)
        logger.info(f"Session {session_id}: summary regenerated at round {total}")
        return summary

    def summarize_if_needed(self, store: ShortTermStore, session_id: str) -> bool:
        """Run the trigger check and regenerate when due. Returns whether it ran."""
        policy = SummaryPolicy(store.window_size)
        if not policy.is_due(store.count_rounds(session_id), store.get_summary(session_id)):
            return False
        self.summarize(store, session_id)
        return True

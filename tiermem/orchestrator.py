"""
Memory Orchestrator - One conversational turn across both memory tiers

    ReadShortTerm -> ConditionalReadLongTerm -> ComposePrompt -> Generate
    -> PersistShortTerm -> MaybeSummarize -> ConditionalWriteLongTerm

Failure policy:
  - short-term read/write and generation failures abort the turn (raised)
  - long-term read failures degrade to "no long-term context" (logged)
  - summarization failures are logged; the next eligible turn retries
  - long-term write failures are reported in TurnResult.warnings

The three degradable steps catch any exception, not only TieredMemoryError:
adapter libraries (sentence-transformers, faiss) raise their own errors.

MemoryOrchestrator gives no ordering guarantee between concurrent turns of
the same session; wrap it in SerializedOrchestrator for that.
"""

from __future__ import annotations

import logging
import threading
import time
import weakref
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from tiermem.errors import StoreUnavailable, TurnCancelled
from tiermem.llm_backends import BaseLLM
from tiermem.long_term import LongTermStore
from tiermem.prompts import build_conversation_messages
from tiermem.short_term import ShortTermStore
from tiermem.summarizer import Summarizer
from tiermem.triggers import KeywordTrigger, RecallTrigger
from tiermem.types import ContextWindow, MemoryRecord

logger = logging.getLogger(__name__)


@dataclass
class TurnResult:
    """Outcome of one run_turn call."""
    session_id: str
    query: str
    response: str
    recalled: List[MemoryRecord] = field(default_factory=list)
    summary_updated: bool = False
    fact_id: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "query": self.query,
            "response": self.response,
            "recalled": [r.to_dict() for r in self.recalled],
            "summary_updated": self.summary_updated,
            "fact_id": self.fact_id,
            "warnings": list(self.warnings),
        }


class MemoryOrchestrator:
    """Composes the short-term store, long-term store and Generation Port."""

    def __init__(
        self,
        short_term: ShortTermStore,
        long_term: LongTermStore,
        llm: BaseLLM,
        trigger: Optional[RecallTrigger] = None,
        summarizer: Optional[Summarizer] = None,
    ):
        """
        Args:
            short_term: Session log store
            long_term: Semantic fact store
            llm: Generation Port used for replies
            trigger: Long-term read/write decisions (KeywordTrigger if None)
            summarizer: Rolling summary generator; None disables summaries
        """
        self.short_term = short_term
        self.long_term = long_term
        self.llm = llm
        self.trigger = trigger or KeywordTrigger()
        self.summarizer = summarizer

    @staticmethod
    def _checkpoint(cancel_event: Optional[threading.Event], session_id: str, stage: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            logger.info(f"Session {session_id}: turn cancelled before {stage}")
            raise TurnCancelled(session_id, stage)

    # -- Reusable steps ------------------------------------------------------

    def compose_prompt(
        self,
        context: ContextWindow,
        records: List[MemoryRecord],
        query: str,
    ) -> List[Dict[str, str]]:
        """Merge summary, recent dialogue, long-term facts and the query into chat messages."""
        return build_conversation_messages(context.summary, context.messages, records, query)

    def _try_summarize(self, session_id: str, warnings: List[str]) -> bool:
        if self.summarizer is None:
            return False
        try:
            return self.summarizer.summarize_if_needed(self.short_term, session_id)
        except Exception as e:
            msg = f"summary generation failed: {e}"
            logger.warning(f"Session {session_id}: {msg} (will retry next turn)", exc_info=True)
            warnings.append(msg)
            return False

    def summarize_if_needed(self, session_id: str) -> bool:
        """Regenerate the session summary when due. Failures are logged, not raised."""
        return self._try_summarize(session_id, [])

    def clear_session(self, session_id: str) -> None:
        self.short_term.clear_session(session_id)

    # -- Turn ----------------------------------------------------------------

    def run_turn(
        self,
        session_id: str,
        query: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> TurnResult:
        """
        Run one conversational turn.

        Raises:
            StoreUnavailable: The short-term store failed.
            GenerationFailed: The Generation Port failed; nothing was persisted.
            TurnCancelled: *cancel_event* was set at a checkpoint.
        """
        t0 = time.time()
        warnings: List[str] = []

        # 1. Short-term context
        self._checkpoint(cancel_event, session_id, "read_short_term")
        context = self.short_term.get_context(session_id)
        try:
            self.short_term.touch_access_time(session_id)
        except StoreUnavailable as e:
            logger.warning(f"Session {session_id}: access time not updated: {e}")

        # 2. Long-term context
        recalled: List[MemoryRecord] = []
        if self.trigger.should_recall(query):
            self._checkpoint(cancel_event, session_id, "read_long_term")
            try:
                recalled = self.long_term.retrieve(query)
            except Exception as e:
                msg = f"long-term retrieval failed: {e}"
                logger.warning(f"Session {session_id}: {msg}", exc_info=True)
                warnings.append(msg)

        # 3-4. Compose and generate
        messages = self.compose_prompt(context, recalled, query)
        self._checkpoint(cancel_event, session_id, "generate")
        response = self.llm.generate(messages)

        # 5. Persist the round
        self._checkpoint(cancel_event, session_id, "persist_user")
        self.short_term.append_message(session_id, "user", query)
        self._checkpoint(cancel_event, session_id, "persist_assistant")
        self.short_term.append_message(session_id, "assistant", response)

        # 6. Rolling summary
        self._checkpoint(cancel_event, session_id, "summarize")
        summary_updated = self._try_summarize(session_id, warnings)

        # 7. Durable fact
        fact_id = None
        persist, fact = self.trigger.should_persist(query)
        if persist:
            self._checkpoint(cancel_event, session_id, "write_long_term")
            try:
                fact_id = self.long_term.store(fact, {
                    "session_id": session_id,
                    "kind": "user_fact",
                    "timestamp": int(time.time()),
                })
            except Exception as e:
                msg = f"long-term write failed: {e}"
                logger.warning(f"Session {session_id}: {msg}", exc_info=True)
                warnings.append(msg)

        logger.info(
            f"Session {session_id}: turn done in {time.time() - t0:.2f}s "
            f"(recalled={len(recalled)}, summary={summary_updated}, fact={fact_id})"
        )
        return TurnResult(
            session_id=session_id,
            query=query,
            response=response,
            recalled=recalled,
            summary_updated=summary_updated,
            fact_id=fact_id,
            warnings=warnings,
        )


class SerializedOrchestrator:
    """
    Per-session serialization around a MemoryOrchestrator.

    At most one turn per session is in flight; turns of different sessions
    still run concurrently. A session lock lives only while some call holds
    or waits on it.
    """

    def __init__(self, orchestrator: MemoryOrchestrator):
        self.orchestrator = orchestrator
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._guard = threading.Lock()

    def _session_lock(self, session_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = self._locks[session_id] = threading.Lock()
            return lock

    def run_turn(
        self,
        session_id: str,
        query: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> TurnResult:
        with self._session_lock(session_id):
            return self.orchestrator.run_turn(session_id, query, cancel_event=cancel_event)

    def summarize_if_needed(self, session_id: str) -> bool:
        with self._session_lock(session_id):
            return self.orchestrator.summarize_if_needed(session_id)

    def clear_session(self, session_id: str) -> None:
        with self._session_lock(session_id):
            self.orchestrator.clear_session(session_id)

    def compose_prompt(self, context, records, query):
        return self.orchestrator.compose_prompt(context, records, query)

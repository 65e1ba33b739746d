"""
Short-Term Store - Per-session conversation log with a bounded window

Each session owns three keys in the key-value backend:

    {prefix}:{session_id}:messages     append-only list of Message JSON
    {prefix}:{session_id}:summary      cached Summary JSON
    {prefix}:{session_id}:last_access  advisory access time (TTL)

A round is the pair (messages[2i], messages[2i+1]); a trailing unpaired
message (a user message whose reply was never written) joins the last
round. ``get_context`` exposes the last ``window_size`` rounds verbatim and
the cached summary only when older rounds exist. Nothing here summarizes.
"""

from __future__ import annotations

import logging
import time
from typing import List, Optional

from tiermem.kv_backend import KVBackend
from tiermem.types import ContextWindow, Message, Summary

logger = logging.getLogger(__name__)

_DAY_SECONDS = 24 * 3600


class ShortTermStore:
    """Session log, cached summary and access time on top of a KVBackend."""

    def __init__(
        self,
        backend: KVBackend,
        window_size: int = 10,
        key_prefix: str = "session",
        access_ttl_days: int = 30,
    ):
        if window_size < 1:
            raise ValueError(f"window_size must be >= 1, got {window_size}")
        self._backend = backend
        self.window_size = window_size
        self._prefix = key_prefix
        self._access_ttl = access_ttl_days * _DAY_SECONDS if access_ttl_days else None

    # -- Keys ----------------------------------------------------------------

    def _messages_key(self, session_id: str) -> str:
        return f"{self._prefix}:{session_id}:messages"

    def _summary_key(self, session_id: str) -> str:
        return f"{self._prefix}:{session_id}:summary"

    def _access_key(self, session_id: str) -> str:
        return f"{self._prefix}:{session_id}:last_access"

    # -- Log -----------------------------------------------------------------

    def append_message(self, session_id: str, role: str, content: str) -> Message:
        """Append one message; the session is created implicitly."""
        message = Message(role=role, content=content)
        length = self._backend.rpush(self._messages_key(session_id), message.to_json())
        logger.debug(f"Session {session_id}: appended {role} message (#{length})")
        return message

    def _decode(self, session_id: str, raw: List[bytes], offset: int = 0) -> List[Message]:
        """Decode log entries, skipping (and logging) any that are unreadable."""
        messages = []
        for i, item in enumerate(raw, offset):
            try:
                messages.append(Message.from_json(item))
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(f"Session {session_id}: skipping corrupted message #{i} ({e})")
        return messages

    def get_messages(self, session_id: str) -> List[Message]:
        """Return the full log in insertion order."""
        return self._decode(session_id, self._backend.lrange(self._messages_key(session_id)))

    def count_rounds(self, session_id: str) -> int:
        return self._backend.llen(self._messages_key(session_id)) // 2

    def _window_start(self, total_rounds: int) -> int:
        """Index of the first message kept verbatim."""
        if total_rounds <= self.window_size:
            return 0
        return 2 * (total_rounds - self.window_size)

    def get_aged_messages(self, session_id: str) -> List[Message]:
        """Messages of every round older than the retained window."""
        total = self.count_rounds(session_id)
        start = self._window_start(total)
        if start == 0:
            return []
        return self._decode(
            session_id, self._backend.lrange(self._messages_key(session_id), 0, start - 1)
        )

    def get_context(self, session_id: str) -> ContextWindow:
        """
        Return the bounded context of a session.

        Unknown sessions yield an empty context. The summary is included only
        when rounds have aged out of the window and a summary is cached.
        Rounds are counted by log position, so a corrupted entry is dropped
        from the window without shifting it.
        """
        raw = self._backend.lrange(self._messages_key(session_id))
        total = len(raw) // 2
        start = self._window_start(total)
        recent = self._decode(session_id, raw[start:], offset=start)

        summary_text = None
        if total > self.window_size:
            summary = self.get_summary(session_id)
            if summary is not None:
                summary_text = summary.text

        return ContextWindow(
            session_id=session_id,
            messages=recent,
            summary=summary_text,
            total_rounds=total,
            window_size=self.window_size,
        )

    # -- Summary -------------------------------------------------------------

    def get_summary(self, session_id: str) -> Optional[Summary]:
        raw = self._backend.get(self._summary_key(session_id))
        if raw is None:
            return None
        try:
            return Summary.from_json(raw)
        except (ValueError, TypeError) as e:
            logger.warning(f"Session {session_id}: discarding unreadable summary ({e})")
            return None

    def save_summary(
        self, session_id: str, text: str, turn_count: Optional[int] = None
    ) -> Summary:
        """Replace the cached summary (turn_count defaults to the current round count)."""
        if turn_count is None:
            turn_count = self.count_rounds(session_id)
        summary = Summary(text=text, generated_at_turn_count=turn_count)
        self._backend.set(self._summary_key(session_id), summary.to_json())
        logger.debug(f"Session {session_id}: summary saved at round {turn_count}")
        return summary

    # -- Session lifecycle ---------------------------------------------------

    def clear_session(self, session_id: str) -> None:
        """Delete log, summary and access time. Clearing an unknown session is a no-op."""
        removed = self._backend.delete(
            self._messages_key(session_id),
            self._summary_key(session_id),
            self._access_key(session_id),
        )
        logger.info(f"Session {session_id} cleared ({removed} keys removed)")

    def touch_access_time(self, session_id: str, now: Optional[float] = None) -> None:
        now = time.time() if now is None else now
        self._backend.set(
            self._access_key(session_id), str(int(now)).encode("ascii"), ttl=self._access_ttl
        )

    def get_access_time(self, session_id: str) -> int:
        """Last access time in epoch seconds, 0 when unknown or expired."""
        raw = self._backend.get(self._access_key(session_id))
        if raw is None:
            return 0
        try:
            return int(raw)
        except ValueError:
            return 0

    def session_age(self, session_id: str, now: Optional[float] = None) -> float:
        """Seconds since last access, 0 when unknown."""
        last = self.get_access_time(session_id)
        if not last:
            return 0.0
        now = time.time() if now is None else now
        return max(0.0, now - last)

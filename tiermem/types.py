"""
Data Model for the Tiered Memory Subsystem

    Message       - one immutable entry of a session log
    Summary       - rolling compression of rounds older than the window
    ContextWindow - what the short-term store exposes for one session
    MemoryRecord  - one write-once long-term fact
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

Role = Literal["user", "assistant"]


@dataclass(frozen=True)
class Message:
    """A single conversation message. Immutable once written."""
    role: Role
    content: str
    timestamp: int = field(default_factory=lambda: int(time.time()))

    def to_json(self) -> bytes:
        """Serialize to the wire format stored in the key-value backend."""
        payload = {"role": self.role, "content": self.content, "time": self.timestamp}
        return json.dumps(payload, ensure_ascii=False).encode("utf-8")

    @classmethod
    def from_json(cls, raw: bytes) -> Message:
        data = json.loads(raw)
        return cls(
            role=data["role"],
            content=data["content"],
            timestamp=int(data.get("time", 0)),
        )

    def to_dict(self) -> Dict[str, str]:
        """Chat-message form (role/content only) used in prompts."""
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class Summary:
    """Cached summary of every round older than the retained window."""
    text: str
    generated_at_turn_count: int

    def to_json(self) -> bytes:
        payload = {"text": self.text, "generated_at_turn_count": self.generated_at_turn_count}
        return json.dumps(payload, ensure_ascii=False).encode("utf-8")

    @classmethod
    def from_json(cls, raw: bytes) -> Summary:
        data = json.loads(raw)
        return cls(
            text=data.get("text", ""),
            generated_at_turn_count=int(data.get("generated_at_turn_count", 0)),
        )

    def is_stale(self, total_rounds: int) -> bool:
        """True when more rounds have aged out of the window since generation."""
        return total_rounds > self.generated_at_turn_count


@dataclass
class ContextWindow:
    """
    Short-term context of one session.

    ``messages`` holds the most recent ``min(total_rounds, window_size)``
    rounds verbatim, plus a trailing unpaired message when the log has odd
    length. ``summary`` is set only when rounds have aged out of the window
    and a summary is cached.
    """
    session_id: str
    messages: List[Message] = field(default_factory=list)
    summary: Optional[str] = None
    total_rounds: int = 0
    window_size: int = 0

    @property
    def has_aged_rounds(self) -> bool:
        return self.total_rounds > self.window_size

    @property
    def needs_summary(self) -> bool:
        """True when rounds aged out but no summary was returned with them."""
        return self.has_aged_rounds and not self.summary

    def rounds(self) -> List[List[Message]]:
        """Group the visible messages into rounds (dangling message joins the last one)."""
        grouped: List[List[Message]] = []
        for i in range(0, len(self.messages) - 1, 2):
            grouped.append([self.messages[i], self.messages[i + 1]])
        if len(self.messages) % 2:
            if grouped:
                grouped[-1].append(self.messages[-1])
            else:
                grouped.append([self.messages[-1]])
        return grouped

    def is_empty(self) -> bool:
        return not self.messages and not self.summary


@dataclass
class MemoryRecord:
    """A long-term fact. ``relevance_score`` is only set on retrieval."""
    id: str
    content: str
    embedding: List[float] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    relevance_score: Optional[float] = None

    def to_dict(self, include_embedding: bool = False) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "id": self.id,
            "content": self.content,
            "metadata": dict(self.metadata),
            "relevance_score": self.relevance_score,
        }
        if include_embedding:
            d["embedding"] = list(self.embedding)
        return d

    def __repr__(self) -> str:
        score = f"{self.relevance_score:.3f}" if self.relevance_score is not None else "-"
        return f"<MemoryRecord {self.id} score={score} {self.content[:40]!r}>"

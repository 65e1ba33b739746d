"""
Prompt templates for turn generation and rolling summaries.

All formatting is deterministic: the same context, records and query
always produce the same messages.
"""

from typing import Dict, List, Optional, Sequence

from tiermem.types import MemoryRecord, Message

CONVERSATION_SYSTEM_PROMPT = (
    "You are a helpful assistant with two kinds of memory. "
    "Short-term memory holds the recent dialogue of this conversation and a "
    "summary of older turns. Long-term memory holds durable facts about the user. "
    "Use both to give a coherent, personalized answer."
)

CONVERSATION_USER_TEMPLATE = """Short-term memory (conversation history):
{short_term_history}

Long-term memory (user facts):
{long_term_memory}

Current user input: {user_input}"""

SUMMARY_SYSTEM_PROMPT = (
    "You summarize conversations. Condense the dialogue below into concise "
    "bullet points, keeping key facts, decisions and context."
)

SUMMARY_USER_TEMPLATE = "Summarize the following conversation history:\n\n{transcript}"

INCREMENTAL_SUMMARY_USER_TEMPLATE = """Here is the summary of the conversation so far:

{previous_summary}

Update it with the following newer messages and return the complete summary:

{transcript}"""


def format_transcript(messages: Sequence[Message]) -> str:
    """One ``role: content`` line per message."""
    return "".join(f"{m.role}: {m.content}\n" for m in messages)


def format_short_term(summary: Optional[str], messages: Sequence[Message]) -> str:
    parts = []
    if summary:
        parts.append(f"[Conversation summary]\n{summary}\n\n")
    parts.append("[Recent dialogue]\n")
    parts.append(format_transcript(messages))
    return "".join(parts)


def format_long_term(records: Sequence[MemoryRecord]) -> str:
    if not records:
        return ""
    lines = ["Relevant stored information:"]
    for i, r in enumerate(records, 1):
        lines.append(f"{i}. {r.content}")
    return "\n".join(lines) + "\n"


def build_conversation_messages(
    summary: Optional[str],
    recent: Sequence[Message],
    records: Sequence[MemoryRecord],
    query: str,
) -> List[Dict[str, str]]:
    user = CONVERSATION_USER_TEMPLATE.format(
        short_term_history=format_short_term(summary, recent),
        long_term_memory=format_long_term(records),
        user_input=query,
    )
    return [
        {"role": "system", "content": CONVERSATION_SYSTEM_PROMPT},
        {"role": "user", "content": user},
    ]


def build_summary_messages(
    messages: Sequence[Message],
    previous_summary: Optional[str] = None,
) -> List[Dict[str, str]]:
    transcript = format_transcript(messages)
    if previous_summary:
        user = INCREMENTAL_SUMMARY_USER_TEMPLATE.format(
            previous_summary=previous_summary, transcript=transcript
        )
    else:
        user = SUMMARY_USER_TEMPLATE.format(transcript=transcript)
    return [
        {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
        {"role": "user", "content": user},
    ]

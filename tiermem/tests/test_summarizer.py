"""
Tests for rolling summaries (summarizer.py, prompts.py).

Validates:
- SummaryPolicy trigger: only past the window, regenerate when stale
- Full mode summarizes every aged message, never the previous summary
- Incremental mode feeds previous summary + newly aged messages only
- Incremental mode falls back to full without a previous summary
- Generation failures leave the cached summary untouched
"""

import pytest

from tiermem.errors import GenerationFailed
from tiermem.kv_backend import InMemoryKVBackend
from tiermem.prompts import format_transcript
from tiermem.short_term import ShortTermStore
from tiermem.summarizer import Summarizer, SummaryPolicy
from tiermem.types import Message, Summary

from tiermem.tests.fakes import ScriptedLLM


def _round(store, session_id, i):
    store.append_message(session_id, "user", f"q{i}")
    store.append_message(session_id, "assistant", f"a{i}")


@pytest.fixture
def store():
    return ShortTermStore(InMemoryKVBackend(), window_size=2)


class TestSummaryPolicy:
    @pytest.mark.parametrize("total, summary, due", [
        (0, None, False),
        (2, None, False),
        (3, None, True),
        (3, Summary("s", 3), False),
        (4, Summary("s", 3), True),
        (4, Summary("s", 5), False),
    ])
    def test_is_due(self, total, summary, due):
        assert SummaryPolicy(window_size=2).is_due(total, summary) is due


class TestFullMode:
    def test_summarizes_all_aged_messages(self, store):
        llm = ScriptedLLM()
        summarizer = Summarizer(llm, mode="full")
        for i in range(1, 4):
            _round(store, "s1", i)
        assert summarizer.summarize_if_needed(store, "s1") is True
        _round(store, "s1", 4)
        assert summarizer.summarize_if_needed(store, "s1") is True

        last = llm.summary_calls[-1][-1]["content"]
        assert "user: q1\nassistant: a1\nuser: q2\nassistant: a2\n" in last
        assert "summary #1" not in last

    def test_not_due_does_nothing(self, store):
        llm = ScriptedLLM()
        _round(store, "s1", 1)
        assert Summarizer(llm).summarize_if_needed(store, "s1") is False
        assert llm.summary_calls == []

    def test_up_to_date_summary_is_kept(self, store):
        llm = ScriptedLLM()
        summarizer = Summarizer(llm)
        for i in range(1, 4):
            _round(store, "s1", i)
        summarizer.summarize_if_needed(store, "s1")
        assert summarizer.summarize_if_needed(store, "s1") is False
        assert len(llm.summary_calls) == 1


class TestIncrementalMode:
    def test_feeds_previous_summary_and_new_messages(self, store):
        llm = ScriptedLLM()
        summarizer = Summarizer(llm, mode="incremental")
        for i in range(1, 4):
            _round(store, "s1", i)
        summarizer.summarize_if_needed(store, "s1")
        first = llm.summary_calls[-1][-1]["content"]
        assert "user: q1\n" in first

        _round(store, "s1", 4)
        _round(store, "s1", 5)
        summarizer.summarize_if_needed(store, "s1")
        second = llm.summary_calls[-1][-1]["content"]
        assert "summary #1" in second
        assert "user: q2\n" in second
        assert "user: q3\n" in second
        assert "q1" not in second
        assert store.get_summary("s1").generated_at_turn_count == 5

    def test_falls_back_to_full_without_previous(self, store):
        llm = ScriptedLLM()
        for i in range(1, 5):
            _round(store, "s1", i)
        Summarizer(llm, mode="incremental").summarize(store, "s1")
        content = llm.summary_calls[-1][-1]["content"]
        assert content.startswith("Summarize the following conversation history")
        assert "user: q1\n" in content and "user: q2\n" in content


class TestFailures:
    def test_generation_failure_keeps_cached_summary(self, store):
        llm = ScriptedLLM()
        for i in range(1, 4):
            _round(store, "s1", i)
        store.save_summary("s1", "old digest", turn_count=3)
        _round(store, "s1", 4)
        llm.fail_summary = True
        with pytest.raises(GenerationFailed):
            Summarizer(llm).summarize_if_needed(store, "s1")
        assert store.get_summary("s1").text == "old digest"

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            Summarizer(ScriptedLLM(), mode="sometimes")


def test_format_transcript():
    msgs = [Message("user", "hi", 1), Message("assistant", "hello", 2)]
    assert format_transcript(msgs) == "user: hi\nassistant: hello\n"

#!/usr/bin/env python3
"""
tiermem Demo - Short-term window, rolling summary and long-term recall

Runs a short conversation through the memory orchestrator:
- the last W rounds stay verbatim, older ones are summarized
- "Please remember: ..." stores a durable fact
- questions about "my ..." recall it from long-term memory

Uses a local Ollama model when one is reachable, otherwise a canned
echo backend so the demo runs offline. Embeddings are deterministic mock
vectors unless tiermem.yaml says otherwise.

Usage:
    python examples/memory_demo.py [--window 3] [--sqlite DIR]
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List

# Add parent directory for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from tiermem import create_memory_system, load_config
from tiermem.config import configure_logging
from tiermem.llm_backends import BaseLLM, OllamaLLM
from tiermem.prompts import SUMMARY_SYSTEM_PROMPT

QUERIES = [
    "I am a Go developer",
    "I like using Redis and Milvus",
    "Lately I have been learning AI agent development",
    "Please remember: my work experience is 5 years",
    "What did I just say?",
    "How many years of work experience do I have? Check my profile.",
]


class EchoLLM(BaseLLM):
    """Offline stand-in that echoes what it was given."""

    @property
    def model_name(self) -> str:
        return "echo"

    def generate(self, messages: List[Dict[str, str]]) -> str:
        prompt = messages[-1]["content"]
        if messages[0]["content"] == SUMMARY_SYSTEM_PROMPT:
            lines = [line for line in prompt.splitlines() if line.startswith("user: ")]
            return "- " + "\n- ".join(line[len("user: "):] for line in lines)
        facts = [line for line in prompt.splitlines() if line[:1].isdigit() and ". " in line]
        reply = "Noted."
        if facts:
            reply += " I remember: " + "; ".join(f.split(". ", 1)[1] for f in facts)
        return reply


def main():
    parser = argparse.ArgumentParser(description="tiermem conversation demo")
    parser.add_argument("--window", type=int, default=3, help="rounds kept verbatim")
    parser.add_argument("--sqlite", type=Path, help="store both tiers in SQLite files under DIR")
    args = parser.parse_args()

    config = load_config()
    config.short_term.window_size = args.window
    if args.sqlite:
        config.short_term.endpoint = f"sqlite://{args.sqlite.resolve()}/short_term.db"
        config.long_term.endpoint = f"sqlite://{args.sqlite.resolve()}/long_term.db"
    configure_logging(config.logging)
    logging.getLogger("tiermem").setLevel(logging.WARNING)

    ollama = OllamaLLM(config.llm.model, base_url=config.llm.base_url)
    llm = ollama if ollama.is_available() else EchoLLM()

    system = create_memory_system(config, llm=llm)
    orchestrator = system.orchestrator
    session_id = "demo-session"
    orchestrator.clear_session(session_id)

    print("=" * 70)
    print(f"tiermem demo - W={config.short_term.window_size}, LLM={llm.model_name}")
    print("=" * 70)

    for i, query in enumerate(QUERIES, 1):
        print(f"\n--- [round {i}] user: {query}")
        result = orchestrator.run_turn(session_id, query)
        print(f"assistant: {result.response}")
        if result.recalled:
            print(f"  recalled: {[r.content for r in result.recalled]}")
        if result.summary_updated:
            print("  summary regenerated")
        if result.fact_id:
            print(f"  stored long-term fact {result.fact_id}")
        for w in result.warnings:
            print(f"  warning: {w}")

    ctx = system.short_term.get_context(session_id)
    print("\n" + "=" * 70)
    print(f"Rounds: {ctx.total_rounds}, verbatim: {len(ctx.rounds())}")
    if ctx.summary:
        print(f"Summary:\n{ctx.summary}")
    print("=" * 70)

    system.close()


if __name__ == "__main__":
    main()

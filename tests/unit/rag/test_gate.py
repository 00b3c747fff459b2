"""Tests for the prompt augmentation gate."""

from __future__ import annotations

import pytest

from localpilot.rag.gate import (
    AugmentationGate,
    RetrievedChunk,
    augment_prompt,
    build_context,
    should_skip_retrieval,
)

LONG_PROMPT = "How does the session pool evict sequences?"


# ------------------------------------------------------------------
# should_skip_retrieval
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "session_id, prompt",
    [
        ("complexity-session", LONG_PROMPT),
        ("system-lint", LONG_PROMPT),
        ("chat", "hello there, how are you doing today?"),
        ("chat", "  Hey can you explain this file to me"),
        ("chat", "HOLA amigo, what does this function do"),
        ("chat", "explain"),
        ("chat", "   short   "),
    ],
)
def test_skip_cases(session_id, prompt):
    assert should_skip_retrieval(session_id, prompt)


@pytest.mark.parametrize("prompt", [LONG_PROMPT, "Write a binary search in C++"])
def test_regular_prompts_are_augmented(prompt):
    assert not should_skip_retrieval("chat", prompt)


# ------------------------------------------------------------------
# build_context / augment_prompt
# ------------------------------------------------------------------


def test_build_context_format():
    chunks = [
        RetrievedChunk(text="alpha", source="a.py", score=0.9),
        RetrievedChunk(text="beta", source="b.md", score=0.8),
    ]
    assert build_context(chunks) == "[Source: a.py]\nalpha\n\n[Source: b.md]\nbeta"


def test_build_context_hard_truncates():
    chunks = [RetrievedChunk(text="x" * 5000, source="big.txt", score=1.0)]
    assert len(build_context(chunks, 4000)) == 4000


def test_augment_prompt_template():
    out = augment_prompt("Explain X", "[Source: a]\nctx")
    assert out.startswith("Relevant Context:\n---------------------\n[Source: a]\nctx\n")
    assert out.endswith(
        "Instruction: Use the context above if relevant, otherwise use your general "
        "knowledge. Respond to: Explain X"
    )


# ------------------------------------------------------------------
# AugmentationGate
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_gate_augments_with_retrieved_chunks():
    calls = []

    async def _query(text, k):
        calls.append((text, k))
        return [RetrievedChunk(text="pool code", source="pool.py", score=0.7)]

    gate = AugmentationGate(_query, top_k=3)
    out = await gate.augment("chat", LONG_PROMPT)

    assert calls == [(LONG_PROMPT, 3)]
    assert "[Source: pool.py]\npool code" in out
    assert out.endswith(f"Respond to: {LONG_PROMPT}")


@pytest.mark.asyncio
async def test_gate_skips_without_querying():
    async def _query(text, k):
        raise AssertionError("should not be called")

    gate = AugmentationGate(_query)
    assert await gate.augment("system-x", LONG_PROMPT) == LONG_PROMPT


@pytest.mark.asyncio
async def test_gate_returns_prompt_when_no_chunks():
    async def _query(text, k):
        return []

    assert await AugmentationGate(_query).augment("chat", LONG_PROMPT) == LONG_PROMPT


@pytest.mark.asyncio
async def test_gate_swallows_retrieval_errors():
    async def _query(text, k):
        raise RuntimeError("index exploded")

    assert await AugmentationGate(_query).augment("chat", LONG_PROMPT) == LONG_PROMPT

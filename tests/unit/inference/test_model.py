"""Tests for ModelLifecycle, InferenceContext and Sequence."""

from __future__ import annotations

import asyncio

import pytest

from conftest import FakeLlama, FakeLoader
from localpilot.errors import ModelLoadError, ResourceExhaustedError, SequenceDisposedError
from localpilot.inference.model import (
    InferenceContext,
    ModelHandle,
    ModelLifecycle,
    estimate_tokens,
    load_llama,
)


def _context(llm=None, capacity: int = 2, context_size: int = 2048) -> InferenceContext:
    return InferenceContext(ModelHandle("m.gguf", llm or FakeLlama()), capacity, context_size)


# ------------------------------------------------------------------
# InferenceContext / Sequence
# ------------------------------------------------------------------


def test_context_capacity_accounting():
    ctx = _context(capacity=2)
    a = ctx.get_sequence()
    ctx.get_sequence()
    assert ctx.sequences_left == 0
    assert ctx.occupancy == 2

    with pytest.raises(ResourceExhaustedError):
        ctx.get_sequence()

    a.dispose()
    assert ctx.sequences_left == 1


def test_context_rejects_zero_capacity():
    with pytest.raises(ValueError):
        _context(capacity=0)


def test_dispose_is_idempotent():
    ctx = _context(capacity=1)
    seq = ctx.get_sequence()
    seq.dispose()
    seq.dispose()
    assert ctx.occupancy == 0
    assert seq.disposed


def test_closed_context_refuses_allocation_and_disposes_lanes():
    ctx = _context()
    seq = ctx.get_sequence()
    ctx.close()

    assert seq.disposed
    assert ctx.sequences_left == 0
    with pytest.raises(SequenceDisposedError):
        ctx.get_sequence()


@pytest.mark.asyncio
async def test_prompt_uses_system_prompt_and_keeps_history():
    llm = FakeLlama(reply=lambda messages: f"echo {messages[-1]['content']}")
    seq = _context(llm).get_sequence()

    first = await seq.prompt("one", system_prompt="be brief")
    second = await seq.prompt("two", system_prompt="be brief")

    assert first == "echo one"
    assert second == "echo two"
    messages = llm.chat_calls[1]["messages"]
    assert messages[0] == {"role": "system", "content": "be brief"}
    assert [m["content"] for m in messages[1:]] == ["one", "echo one", "two"]


@pytest.mark.asyncio
async def test_prompt_after_dispose_raises():
    seq = _context().get_sequence()
    seq.dispose()
    with pytest.raises(SequenceDisposedError):
        await seq.prompt("hello")


@pytest.mark.asyncio
async def test_dispose_while_queued_raises_for_the_waiter():
    llm = FakeLlama()
    ctx = _context(llm)
    seq = ctx.get_sequence()

    async with ctx._compute_lock:
        task = asyncio.create_task(seq.prompt("queued"))
        await asyncio.sleep(0)
        seq.dispose()

    with pytest.raises(SequenceDisposedError):
        await task
    assert llm.chat_calls == []


@pytest.mark.asyncio
async def test_complete_passes_sampling_options():
    llm = FakeLlama(completion=" x + 1")
    seq = _context(llm).get_sequence()

    text = await seq.complete("prefix", max_tokens=50, temperature=0.1, stop=["\n"])

    assert text == " x + 1"
    assert llm.completion_calls[0] == {
        "prompt": "prefix",
        "max_tokens": 50,
        "temperature": 0.1,
        "stop": ["\n"],
    }


@pytest.mark.asyncio
async def test_history_trimmed_to_fit_context_window():
    llm = FakeLlama(reply="r" * 400)
    # 256-token window, 128 reserved for the reply → ~128 tokens of prompt
    seq = _context(llm, context_size=256).get_sequence()

    for i in range(5):
        await seq.prompt(f"question {i} " + "q" * 100, max_tokens=128)

    sent = llm.chat_calls[-1]["messages"]
    total = sum(estimate_tokens(m["content"]) for m in sent)
    assert total <= 128
    assert sent[-1]["content"].startswith("question 4")


def test_estimate_tokens_minimum_one():
    assert estimate_tokens("") == 1
    assert estimate_tokens("abcdefgh") == 2


def test_load_llama_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_llama(str(tmp_path / "missing.gguf"), 2048, 0)


# ------------------------------------------------------------------
# ModelLifecycle
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_ensure_model_loads_once(fake_loader):
    lifecycle = ModelLifecycle(loader=fake_loader, sequences=3, context_size=1024)

    ctx1 = await lifecycle.ensure_model("a.gguf")
    ctx2 = await lifecycle.ensure_model("a.gguf")

    assert ctx1 is ctx2
    assert ctx1.capacity == 3
    assert fake_loader.calls == [("a.gguf", 1024, -1)]


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_load():
    loader = FakeLoader(delay=0.05)
    lifecycle = ModelLifecycle(loader=loader)

    contexts = await asyncio.gather(*(lifecycle.ensure_model("a.gguf") for _ in range(5)))

    assert len(loader.calls) == 1
    assert all(c is contexts[0] for c in contexts)


@pytest.mark.asyncio
async def test_failed_load_is_raised_to_all_waiters_and_can_be_retried():
    loader = FakeLoader(fail_times=1, delay=0.02)
    lifecycle = ModelLifecycle(loader=loader)

    results = await asyncio.gather(
        lifecycle.ensure_model("a.gguf"),
        lifecycle.ensure_model("a.gguf"),
        return_exceptions=True,
    )
    assert all(isinstance(r, ModelLoadError) for r in results)
    assert len(loader.calls) == 1
    assert lifecycle.context is None

    ctx = await lifecycle.ensure_model("a.gguf")
    assert ctx is lifecycle.context
    assert len(loader.calls) == 2


@pytest.mark.asyncio
async def test_path_change_resets_context_and_notifies(fake_loader):
    lifecycle = ModelLifecycle(loader=fake_loader)
    resets = []
    lifecycle.add_reset_listener(lambda: resets.append(True))

    old = await lifecycle.ensure_model("a.gguf")
    seq = old.get_sequence()
    before = len(resets)
    new = await lifecycle.ensure_model("b.gguf")

    assert new is not old
    assert old.closed
    assert seq.disposed
    assert lifecycle.path == "b.gguf"
    assert len(resets) == before + 1


@pytest.mark.asyncio
async def test_unload_drops_everything(fake_loader):
    lifecycle = ModelLifecycle(loader=fake_loader)
    ctx = await lifecycle.ensure_model("a.gguf")

    lifecycle.unload()

    assert ctx.closed
    assert lifecycle.context is None
    assert lifecycle.path is None


@pytest.mark.asyncio
async def test_unload_during_load_fails_the_waiter():
    lifecycle = ModelLifecycle(loader=FakeLoader(delay=0.05))
    task = asyncio.create_task(lifecycle.ensure_model("a.gguf"))
    await asyncio.sleep(0.01)

    lifecycle.unload()

    with pytest.raises(ModelLoadError, match="superseded"):
        await task
    assert lifecycle.context is None
    assert lifecycle.path is None


@pytest.mark.asyncio
async def test_path_change_during_load_fails_old_waiter_only():
    loader = FakeLoader(delay=0.05)
    lifecycle = ModelLifecycle(loader=loader)
    old = asyncio.create_task(lifecycle.ensure_model("a.gguf"))
    await asyncio.sleep(0.01)

    ctx = await lifecycle.ensure_model("b.gguf")

    with pytest.raises(ModelLoadError):
        await old
    assert ctx is lifecycle.context
    assert not ctx.closed
    assert lifecycle.path == "b.gguf"

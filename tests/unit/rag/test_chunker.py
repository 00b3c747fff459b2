"""Tests for the sentence-greedy chunker."""

from __future__ import annotations

import re

import pytest

from localpilot.rag.chunker import SentenceChunker, chunk_text


def _words(text: str) -> list[str]:
    return re.findall(r"\w+", text)


def test_rejects_non_positive_max_len():
    with pytest.raises(ValueError):
        SentenceChunker(0)


@pytest.mark.parametrize("text", ["", "   ", "\n\t  \n"])
def test_whitespace_only_yields_no_chunks(text):
    assert chunk_text(text, 100) == []


def test_short_text_is_one_chunk():
    assert chunk_text("Hello world. Second sentence!", 100) == [
        "Hello world. Second sentence!"
    ]


def test_flushes_before_overflow():
    text = "Aaaa aaaa. Bbbb bbbb. Cccc cccc."
    chunks = chunk_text(text, 22)

    assert chunks == ["Aaaa aaaa. Bbbb bbbb.", "Cccc cccc."]
    assert all(len(c) <= 22 for c in chunks)


def test_overlong_sentence_becomes_its_own_chunk():
    long_sentence = "x" * 50 + "."
    chunks = chunk_text(f"Short one. {long_sentence} Tail.", 20)

    assert chunks == ["Short one.", long_sentence, "Tail."]


def test_text_without_terminator_kept():
    assert chunk_text("no terminator here", 5) == ["no terminator here"]


def test_only_terminators_still_produce_a_chunk():
    assert chunk_text("...", 10) == ["..."]


def test_never_drops_a_sentence():
    sentences = [f"Sentence number {i} has some words in it{'!' if i % 3 else '?'}" for i in range(40)]
    text = " ".join(sentences)

    chunks = chunk_text(text, 120)

    assert _words(" ".join(chunks)) == _words(text)
    assert len(chunks) > 1

"""Prompt augmentation gate: decide whether and how to add retrieved context."""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from loguru import logger

RESERVED_ANALYSIS_SESSION = "complexity-session"
SYSTEM_SESSION_PREFIX = "system-"

_GREETING_RE = re.compile(r"^(hi|hello|hey|hola|yo|hello there)", re.IGNORECASE)

_AUGMENTED_TEMPLATE = """\
Relevant Context:
---------------------
{context}
---------------------
Instruction: Use the context above if relevant, otherwise use your general knowledge. \
Respond to: {prompt}"""


@dataclass(frozen=True)
class RetrievedChunk:
    """A stored chunk returned by a similarity query (score = 1 - cosine distance)."""

    text: str
    source: str
    score: float


def should_skip_retrieval(session_id: str, prompt: str, min_chars: int = 10) -> bool:
    """True for internal sessions, greetings and very short prompts."""
    if session_id == RESERVED_ANALYSIS_SESSION:
        return True
    if session_id.startswith(SYSTEM_SESSION_PREFIX):
        return True
    trimmed = prompt.strip()
    if _GREETING_RE.match(trimmed):
        return True
    return len(trimmed) < min_chars


def build_context(chunks: Sequence[RetrievedChunk], max_chars: int = 4_000) -> str:
    """Format chunks as ``[Source: S]\\ntext`` blocks, hard-truncated to *max_chars*."""
    joined = "\n\n".join(f"[Source: {c.source}]\n{c.text}" for c in chunks)
    return joined[:max_chars]


def augment_prompt(prompt: str, context: str) -> str:
    return _AUGMENTED_TEMPLATE.format(context=context, prompt=prompt)


class AugmentationGate:
    """Wraps a query callable; failures degrade to the unmodified prompt."""

    def __init__(
        self,
        query: Callable[[str, int], Awaitable[list[RetrievedChunk]]],
        *,
        top_k: int = 3,
        max_context_chars: int = 4_000,
        min_prompt_chars: int = 10,
    ) -> None:
        self._query = query
        self.top_k = top_k
        self.max_context_chars = max_context_chars
        self.min_prompt_chars = min_prompt_chars

    async def augment(self, session_id: str, prompt: str) -> str:
        if should_skip_retrieval(session_id, prompt, self.min_prompt_chars):
            return prompt
        try:
            chunks = await self._query(prompt, self.top_k)
        except Exception as exc:
            logger.warning("Retrieval failed, continuing without context: {}", exc)
            return prompt
        if not chunks:
            return prompt
        logger.debug("Augmenting prompt with {} retrieved chunks", len(chunks))
        return augment_prompt(prompt, build_context(chunks, self.max_context_chars))

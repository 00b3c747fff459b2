"""Bounded acquisition retry.

A failed acquisition first tries to *recover* capacity (evict something); if
nothing could be freed it backs off before the next attempt. After
``max_retries`` failed retries the last ResourceExhaustedError propagates.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from loguru import logger

from localpilot.errors import ResourceExhaustedError

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and linear backoff (``base_delay × attempt`` seconds)."""

    max_retries: int = 3
    base_delay: float = 0.2

    def backoff(self, attempt: int) -> float:
        return self.base_delay * attempt


async def retry_acquire(
    acquire: Callable[[], T],
    recover: Callable[[], bool],
    policy: RetryPolicy = RetryPolicy(),
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Call *acquire* until it succeeds or the retry budget is spent.

    Args:
        acquire: Allocation attempt; raises ResourceExhaustedError when full.
        recover: Frees capacity; returns False when there was nothing to free.
        policy: Retry budget and backoff schedule.
        sleep: Injected for tests.
    """
    attempt = 0
    while True:
        try:
            return acquire()
        except ResourceExhaustedError:
            if attempt >= policy.max_retries:
                raise
            attempt += 1
            logger.warning("No sequences left (attempt {}). Recycling...", attempt)
            if not recover():
                delay = policy.backoff(attempt)
                logger.warning("Nothing to recycle; waiting {:.1f}s for a free sequence", delay)
                await sleep(delay)

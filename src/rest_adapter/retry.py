"""Exponential back-off for transient failures."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, TypeVar

from .errors import AdapterError


logger = logging.getLogger(__name__)

T = TypeVar("T")


def compute_backoff(attempt: int, base_delay: float, max_delay: float, jitter: float = 0.0) -> float:
    """Delay before retry number ``attempt + 1`` (``attempt`` counts from zero)."""
    return min(base_delay * (2 ** attempt) + jitter, max_delay)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    jitter: float = 1.0

    def delay_for(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        return compute_backoff(attempt, self.base_delay, self.max_delay, rng() * self.jitter)


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: Callable[[], float] = random.random,
    label: Optional[str] = None,
) -> Tuple[T, int]:
    """Run ``fn`` until it succeeds or a non-retryable error surfaces.

    Returns the result together with the number of attempts made.
    """
    attempt = 0
    while True:
        try:
            return await fn(), attempt + 1
        except AdapterError as exc:
            if not exc.retryable or attempt >= policy.max_retries:
                raise
            delay = policy.delay_for(attempt, rng)
            logger.warning(
                "Call failed (attempt %s/%s, %s). Retrying in %.2fs. target=%s",
                attempt + 1,
                policy.max_retries,
                exc.kind,
                delay,
                label,
            )
            attempt += 1
            await sleep(delay)

"""Async retry with exponential backoff and jitter for adapter calls."""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from indexsync.config.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Attempts include the first call. Delay = base_delay * 2**attempt, capped at max_delay."""

    attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    jitter: bool = True

    def delay_for(self, attempt: int) -> float:
        delay = min(self.base_delay * (2**attempt), self.max_delay)
        if self.jitter:
            delay = delay * (0.5 + random.random() * 0.5)
        return delay


async def retry_async(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    context: str,
) -> T:
    """
    Call func until it succeeds or attempts run out. Only exceptions with a truthy
    `retryable` attribute (AdapterConnectionError) are retried; anything else, and the
    last retryable failure, propagates to the caller.
    """
    for attempt in range(policy.attempts):
        try:
            return await func()
        except Exception as e:
            if not getattr(e, "retryable", False) or attempt == policy.attempts - 1:
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "Adapter call failed, retrying",
                extra={
                    "context": context,
                    "attempt": attempt + 1,
                    "max_attempts": policy.attempts,
                    "delay": round(delay, 3),
                    "error": str(e),
                },
            )
            await asyncio.sleep(delay)
    raise RuntimeError("retry_async called with a policy of zero attempts")

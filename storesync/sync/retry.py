"""
Retry with Exponential Backoff

Bounded retries for transient platform failures. Only
``TransientFetchError`` is retried; everything else propagates on the first
attempt.
"""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, TypeVar

import structlog

from storesync.sync.errors import TransientFetchError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Retry bounds for one operation"""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: bool = True


@dataclass
class RetryStats:
    """Tracks retry statistics for a single operation."""
    attempts: int = 0
    total_delay_seconds: float = 0.0
    errors: List[str] = field(default_factory=list)

    def record_attempt(self, error: Optional[Exception] = None, delay: float = 0.0) -> None:
        self.attempts += 1
        self.total_delay_seconds += delay
        if error is not None:
            self.errors.append(f"{type(error).__name__}: {error}")


def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter: bool = True,
) -> float:
    """
    Calculate delay for exponential backoff.

    Args:
        attempt: Attempt that just failed (1-indexed)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap
        jitter: Add 0-25% randomness to spread retries across tenants

    Returns:
        Delay in seconds
    """
    delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
    if jitter:
        delay += delay * random.uniform(0, 0.25)
    return delay


async def with_retry(
    operation: Callable[[int], Awaitable[T]],
    policy: RetryPolicy,
    stats: Optional[RetryStats] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    **log_context,
) -> T:
    """
    Run ``operation(attempt)`` until it succeeds or attempts are exhausted.

    A ``retry_after`` carried by the error is used as the delay floor.
    After the last attempt the final ``TransientFetchError`` propagates.
    """
    stats = stats if stats is not None else RetryStats()

    for attempt in range(1, policy.max_attempts + 1):
        try:
            result = await operation(attempt)
            stats.record_attempt()
            return result
        except TransientFetchError as e:
            if attempt >= policy.max_attempts:
                stats.record_attempt(e)
                logger.warning(
                    "Retries exhausted",
                    attempts=attempt,
                    error=str(e),
                    **log_context,
                )
                raise

            delay = calculate_backoff(attempt, policy.base_delay, policy.max_delay, policy.jitter)
            if e.retry_after is not None:
                delay = max(delay, e.retry_after)
            stats.record_attempt(e, delay)

            logger.info(
                "Transient failure, retrying",
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay_seconds=round(delay, 2),
                error=str(e),
                **log_context,
            )
            await sleep(delay)

    # max_attempts < 1
    raise ValueError("RetryPolicy.max_attempts must be at least 1")

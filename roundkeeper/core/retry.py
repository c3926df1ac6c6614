"""Retry with exponential backoff.

The single retry utility used by oracle fetches, batch submission and
broadcast publishing. Callers pass a predicate that separates retryable
failures from fatal ones; fatal failures propagate on first sight.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from roundkeeper.core.deadline import Deadline
from roundkeeper.core.errors import is_retryable
from roundkeeper.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Bounded retry schedule: ``max_retries`` extra attempts after the first.

    Delay before retry *n* (1-based) is ``base_delay * multiplier**(n-1)``,
    capped at ``max_delay``.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        multiplier: float = 2.0,
        max_delay: float = 30.0,
    ) -> None:
        if max_retries < 0:
            msg = f"max_retries must be >= 0, got {max_retries}"
            raise ValueError(msg)
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.max_delay = max_delay

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, retry_number: int) -> float:
        delay = self.base_delay * (self.multiplier ** (retry_number - 1))
        return min(delay, self.max_delay)

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(max_retries={self.max_retries}, base_delay={self.base_delay}, "
            f"multiplier={self.multiplier}, max_delay={self.max_delay})"
        )


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    retryable: Callable[[BaseException], bool] = is_retryable,
    label: str = "operation",
    deadline: Deadline | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Call ``fn`` until it succeeds, fails fatally, or attempts run out.

    Args:
        fn: Zero-argument coroutine factory; called once per attempt.
        policy: Retry schedule.
        retryable: Predicate deciding whether an exception may be retried.
        label: Name used in log events.
        deadline: When expired, no further retry is started.
        sleep: Injected for tests.

    Returns:
        The first successful result.

    Raises:
        The last exception seen when retries are exhausted, or the first
        non-retryable exception.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except Exception as exc:
            if not retryable(exc):
                raise
            if attempt >= policy.max_attempts:
                logger.warning(
                    "retry.exhausted",
                    label=label,
                    attempts=attempt,
                    error=str(exc)[:200],
                )
                raise
            if deadline is not None and deadline.expired:
                logger.warning("retry.deadline_expired", label=label, attempts=attempt)
                raise
            delay = policy.delay_for(attempt)
            if deadline is not None:
                delay = deadline.clamp(delay)
            logger.info(
                "retry.backoff",
                label=label,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay=round(delay, 3),
                error=str(exc)[:200],
            )
            await sleep(delay)

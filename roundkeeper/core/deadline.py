"""Invocation deadline: cooperative cancellation for one keeper run."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from roundkeeper.core.errors import DeadlineExceededError

T = TypeVar("T")


class Deadline:
    """Overall time budget for a single keeper invocation.

    Work checks ``expired`` (or calls ``check``) before starting a new unit
    such as a batch or a transition. Reads and oracle calls go through
    ``run`` so their timeout never outlives the budget. Submissions
    already in flight are allowed to finish.
    """

    def __init__(
        self,
        seconds: float | None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._budget = seconds
        self._expires_at = None if seconds is None else clock() + seconds

    @classmethod
    def unbounded(cls) -> Deadline:
        return cls(None)

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at

    def remaining(self) -> float | None:
        """Seconds left, or None when unbounded. Never negative."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    def clamp(self, timeout: float | None) -> float | None:
        """Shrink a per-call timeout so it never outlives the deadline."""
        remaining = self.remaining()
        if remaining is None:
            return timeout
        if timeout is None:
            return remaining
        return min(timeout, remaining)

    def check(self, label: str = "work") -> None:
        """Raise DeadlineExceededError when the budget is already spent."""
        if self.expired:
            msg = f"invocation deadline expired before {label}"
            raise DeadlineExceededError(msg)

    async def run(
        self,
        fn: Callable[[], Awaitable[T]],
        timeout: float | None = None,
        *,
        label: str = "call",
    ) -> T:
        """Await ``fn()`` with a per-call timeout clamped to the deadline.

        Raises:
            DeadlineExceededError: The budget ran out before or during the
                call. A plain TimeoutError means ``timeout`` itself elapsed.
        """
        self.check(label)
        limit = self.clamp(timeout)
        try:
            return await asyncio.wait_for(fn(), timeout=limit)
        except TimeoutError as exc:
            if limit is not None and (timeout is None or limit < timeout):
                msg = f"invocation deadline expired during {label}"
                raise DeadlineExceededError(msg) from exc
            raise

    def __repr__(self) -> str:
        return f"Deadline(budget={self._budget}, remaining={self.remaining()})"

"""Circuit breaker for ledger submissions.

Stops new batches from starting after N consecutive batch failures. Each
keeper invocation gets its own breaker, so an outage seen by one run
never blocks the next. The half-open cooldown only matters for a single
invocation that outlives it.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from enum import Enum

from roundkeeper.core.logging import get_logger

logger = get_logger(__name__)


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """Consecutive-failure breaker.

    States:
        CLOSED   : batches flow normally
        OPEN     : no new batch may start
        HALF_OPEN: cooldown elapsed, one trial batch allowed
    """

    def __init__(
        self,
        max_failures: int = 5,
        cooldown_seconds: float = 60.0,
        *,
        name: str = "submissions",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_failures < 1:
            msg = f"max_failures must be >= 1, got {max_failures}"
            raise ValueError(msg)
        self._name = name
        self._max_failures = max_failures
        self._cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._failure_count = 0
        self._state = CircuitState.CLOSED
        self._opened_at: float | None = None

    @property
    def state(self) -> CircuitState:
        self._check_recovery()
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def can_execute(self) -> bool:
        self._check_recovery()
        return self._state is not CircuitState.OPEN

    def record_success(self) -> None:
        if self._state is CircuitState.HALF_OPEN:
            logger.info("breaker.closed", name=self._name, previous_failures=self._failure_count)
        self._failure_count = 0
        self._state = CircuitState.CLOSED
        self._opened_at = None

    def record_failure(self) -> None:
        self._failure_count += 1
        # a failed trial re-opens immediately
        if self._state is CircuitState.HALF_OPEN or self._failure_count >= self._max_failures:
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()
            logger.warning(
                "breaker.opened",
                name=self._name,
                failure_count=self._failure_count,
                cooldown=self._cooldown_seconds,
            )

    def reset(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED
        self._opened_at = None

    def _check_recovery(self) -> None:
        if (
            self._state is CircuitState.OPEN
            and self._opened_at is not None
            and self._clock() - self._opened_at >= self._cooldown_seconds
        ):
            self._state = CircuitState.HALF_OPEN
            logger.info("breaker.half_open", name=self._name, cooldown=self._cooldown_seconds)

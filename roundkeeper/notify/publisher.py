"""Lifecycle event publisher. Never raises into the keeper."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any

from roundkeeper.core.deadline import Deadline
from roundkeeper.core.logging import get_logger
from roundkeeper.core.retry import RetryPolicy, retry_async
from roundkeeper.interfaces import Broadcaster
from roundkeeper.notify.formatter import render

logger = get_logger(__name__)


class NotificationPublisher:
    """Formats lifecycle events and hands them to a broadcaster.

    With no broadcaster configured every event is logged and dropped.
    """

    def __init__(
        self,
        broadcaster: Broadcaster | None,
        *,
        base_url: str = "",
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._broadcaster = broadcaster
        self._base_url = base_url
        self._policy = RetryPolicy(
            max_retries=max(0, max_attempts - 1),
            base_delay=backoff_seconds,
            max_delay=max(backoff_seconds, 30.0),
        )
        self._sleep = sleep

    @property
    def enabled(self) -> bool:
        return self._broadcaster is not None

    async def publish(
        self,
        event_kind: str,
        payload: dict[str, Any],
        *,
        deadline: Deadline | None = None,
    ) -> str | None:
        """Post one event. Returns the post id, or None on any failure.

        Each post attempt is bounded by ``deadline``; once it has expired
        the event is dropped without contacting the broadcaster.
        """
        try:
            text = render(event_kind, payload, self._base_url)
        except (KeyError, TypeError, ValueError) as exc:
            logger.error("notify.format_failed", event=event_kind, error=str(exc))
            return None

        if self._broadcaster is None:
            logger.info("notify.skipped", event=event_kind, round_id=payload.get("round_id"))
            return None

        deadline = deadline or Deadline.unbounded()
        if deadline.expired:
            logger.warning("notify.skipped_deadline", event=event_kind, round_id=payload.get("round_id"))
            return None

        label = f"notify:{event_kind}"
        try:
            post_id = await retry_async(
                partial(deadline.run, partial(self._broadcaster.post, text), label=label),
                policy=self._policy,
                label=label,
                deadline=deadline,
                sleep=self._sleep,
            )
        except Exception as exc:
            logger.warning(
                "notify.publish_failed",
                event=event_kind,
                round_id=payload.get("round_id"),
                error=str(exc)[:200],
            )
            return None

        logger.info(
            "notify.published",
            event=event_kind,
            round_id=payload.get("round_id"),
            post_id=post_id,
        )
        return post_id

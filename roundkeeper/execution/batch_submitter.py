"""Bounded, retryable batch submission with per-operation failure isolation."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from functools import partial

from roundkeeper.core.deadline import Deadline
from roundkeeper.core.logging import get_logger, log_ledger_event
from roundkeeper.core.retry import RetryPolicy, retry_async
from roundkeeper.execution.circuit_breaker import CircuitBreaker
from roundkeeper.interfaces import OperationSender
from roundkeeper.ledger.instructions import Operation
from roundkeeper.models.reports import BatchReport

logger = get_logger(__name__)


def chunk(operations: list[Operation], size: int) -> list[list[Operation]]:
    if size < 1:
        msg = f"batch size must be >= 1, got {size}"
        raise ValueError(msg)
    return [operations[i:i + size] for i in range(0, len(operations), size)]


class BatchSubmitter:
    """Submits operations in size-bounded transactions.

    A failing batch is retried with exponential backoff. When a multi-op
    batch still fails, its operations are re-sent one per transaction so
    the healthy ones land. A failed batch never aborts the run; the next
    batch is attempted unless the deadline expired or the breaker opened.

    The breaker is scoped to one keeper invocation: callers share one from
    ``new_breaker`` across their calls, and a call without one gets a
    fresh breaker of its own.
    """

    def __init__(
        self,
        sender: OperationSender,
        *,
        breaker_max_failures: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        isolate_failures: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._sender = sender
        self._breaker_max_failures = breaker_max_failures
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._isolate = isolate_failures
        self._sleep = sleep

    def new_breaker(self) -> CircuitBreaker:
        return CircuitBreaker(max_failures=self._breaker_max_failures)

    async def submit_batches(
        self,
        operations: list[Operation],
        batch_size: int = 5,
        max_retries: int = 3,
        *,
        deadline: Deadline | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> BatchReport:
        """Submit ``operations`` and report which keys landed.

        The counts are advisory: callers re-read ledger state to learn
        what actually completed. A batch counts against the breaker only
        when none of its operations landed.
        """
        report = BatchReport()
        if not operations:
            return report
        deadline = deadline or Deadline.unbounded()
        breaker = breaker or self.new_breaker()
        policy = RetryPolicy(
            max_retries=max_retries,
            base_delay=self._base_delay,
            max_delay=self._max_delay,
        )
        batches = chunk(operations, batch_size)

        for n, batch in enumerate(batches):
            stop = None
            if deadline.expired:
                stop = "deadline"
            elif not breaker.can_execute():
                stop = "circuit_open"
            if stop is not None:
                remaining = [op.key for b in batches[n:] for op in b]
                report.skipped.extend(remaining)
                report.stopped_reason = stop
                logger.warning(
                    "batch.stopped",
                    reason=stop,
                    batch=n,
                    skipped=len(remaining),
                )
                break

            report.batches_attempted += 1
            try:
                signature = await self._send(batch, policy, deadline)
            except Exception as exc:
                logger.warning(
                    "batch.failed",
                    batch=n,
                    keys=[op.key for op in batch],
                    error=str(exc)[:200],
                )
                landed = 0
                if self._isolate and len(batch) > 1:
                    landed = await self._isolate_batch(batch, policy, deadline, report)
                else:
                    self._record_failure(batch, exc, report)
                if landed:
                    breaker.record_success()
                else:
                    breaker.record_failure()
                continue

            breaker.record_success()
            self._record_success(batch, signature, report)

        logger.info(
            "batch.summary",
            total=len(operations),
            processed=report.processed_count,
            failed=len(report.failed),
            skipped=len(report.skipped),
            batches=report.batches_attempted,
        )
        return report

    async def _send(self, ops: list[Operation], policy: RetryPolicy, deadline: Deadline) -> str:
        return await retry_async(
            partial(self._sender.send, ops),
            policy=policy,
            label=ops[0].key if len(ops) == 1 else f"{ops[0].key}..{ops[-1].key}",
            deadline=deadline,
            sleep=self._sleep,
        )

    async def _isolate_batch(
        self,
        batch: list[Operation],
        policy: RetryPolicy,
        deadline: Deadline,
        report: BatchReport,
    ) -> int:
        """Re-send each operation alone. Returns how many landed."""
        logger.info("batch.isolating", keys=[op.key for op in batch])
        landed = 0
        for op in batch:
            try:
                signature = await self._send([op], policy, deadline)
            except Exception as exc:
                self._record_failure([op], exc, report)
                continue
            self._record_success([op], signature, report)
            landed += 1
        return landed

    @staticmethod
    def _record_success(ops: list[Operation], signature: str, report: BatchReport) -> None:
        report.signatures.append(signature)
        for op in ops:
            report.processed.append(op.key)
            log_ledger_event(
                op.kind,
                op.round_id,
                key=op.key,
                bet_index=op.bet_index,
                signature=signature,
            )

    @staticmethod
    def _record_failure(ops: list[Operation], exc: Exception, report: BatchReport) -> None:
        for op in ops:
            report.failed.append(op.key)
            report.errors[op.key] = str(exc)[:200]
            log_ledger_event(
                op.kind,
                op.round_id,
                key=op.key,
                bet_index=op.bet_index,
                error=str(exc)[:200],
            )

"""Execution layer: transaction signing, batch submission, circuit breaker."""

from __future__ import annotations

from roundkeeper.execution.batch_submitter import BatchSubmitter
from roundkeeper.execution.circuit_breaker import CircuitBreaker
from roundkeeper.execution.transaction_sender import TransactionSender, load_keypair

__all__ = [
    "BatchSubmitter",
    "CircuitBreaker",
    "TransactionSender",
    "load_keypair",
]

"""Error taxonomy shared by the codec, ledger, oracle and keeper layers.

Every error carries a ``retryable`` flag consumed by the retry utility.
Local components raise these upward; only the keeper decides whether a
failure aborts the current transition or just narrows its scope.
"""

from __future__ import annotations


class KeeperError(Exception):
    """Base class for all round keeper errors."""

    retryable: bool = False

    def __init__(self, message: str, *, retryable: bool | None = None) -> None:
        super().__init__(message)
        if retryable is not None:
            self.retryable = retryable


class DecodeError(KeeperError):
    """Malformed account record. Fatal for that record, not for the run."""

    def __init__(self, message: str, *, record: str = "", length: int = 0) -> None:
        super().__init__(message, retryable=False)
        self.record = record
        self.length = length


class RecordTooShortError(DecodeError):
    """Record is too short to contain its mandatory fields."""


class TrailingDataError(DecodeError):
    """Record carries unknown non-zero data after its last field."""

    def __init__(
        self,
        message: str,
        *,
        record: str = "",
        length: int = 0,
        trailing_bytes: int = 0,
    ) -> None:
        super().__init__(message, record=record, length=length)
        self.trailing_bytes = trailing_bytes


class AccountNotFoundError(KeeperError):
    """An expected ledger account does not exist (yet)."""

    def __init__(self, kind: str, address: str) -> None:
        super().__init__(f"{kind} account not found: {address}", retryable=False)
        self.kind = kind
        self.address = address


class LedgerRpcError(KeeperError):
    """Ledger RPC transport or protocol failure."""

    retryable = True


class OracleError(KeeperError):
    """Price fetch failed. Aborts only the current transition attempt."""

    retryable = True


class OracleNoDataError(OracleError):
    """Oracle answered, but without a usable price."""

    retryable = False


class SubmissionError(KeeperError):
    """The ledger rejected or failed to confirm an operation."""

    retryable = True

    def __init__(
        self,
        message: str,
        *,
        retryable: bool | None = None,
        signature: str | None = None,
    ) -> None:
        super().__init__(message, retryable=retryable)
        self.signature = signature


class RaceConditionError(KeeperError):
    """State advanced past the expected point by a concurrent invocation.

    Treated by the keeper as success-by-other-party, never as a failure.
    """

    def __init__(self, message: str, *, expected: int | None = None, observed: int | None = None) -> None:
        super().__init__(message, retryable=False)
        self.expected = expected
        self.observed = observed


class BroadcastError(KeeperError):
    """The broadcast channel refused or failed to accept a post."""

    retryable = True

    def __init__(
        self,
        message: str,
        *,
        retryable: bool | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, retryable=retryable)
        self.status_code = status_code


class DeadlineExceededError(KeeperError):
    """The invocation's overall deadline elapsed before or during a call."""


def is_retryable(exc: BaseException) -> bool:
    """Default retry predicate: typed errors decide, timeouts retry."""
    if isinstance(exc, KeeperError):
        return exc.retryable
    return isinstance(exc, (TimeoutError, ConnectionError))

"""Result models returned by the oracle, batch submitter and keeper."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

PRICE_DECIMALS = 8


class FixedPointPrice(BaseModel):
    """Oracle price normalized to 8 implied decimals."""

    feed_id: str
    value: int
    confidence: int
    publish_time: int = 0

    @property
    def as_decimal(self) -> Decimal:
        return Decimal(self.value).scaleb(-PRICE_DECIMALS)

    model_config = {"frozen": True}


class BatchReport(BaseModel):
    """Outcome of one ``submit_batches`` call. Advisory only."""

    processed: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    signatures: list[str] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)
    batches_attempted: int = 0
    stopped_reason: str | None = None

    @property
    def processed_count(self) -> int:
        return len(self.processed)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed and not self.skipped


class ActionKind(str, Enum):
    START_ROUND = "start_round"
    SETTLE_ROUND = "settle_round"
    PROCESS_PAYOUTS = "process_payouts"
    WAIT = "wait"
    ANNOUNCE = "announce"


class ActionStatus(str, Enum):
    DONE = "done"
    PARTIAL = "partial"
    FAILED = "failed"
    RACED = "raced"
    SKIPPED = "skipped"


class ActionReport(BaseModel):
    action: ActionKind
    round_id: int | None = None
    status: ActionStatus = ActionStatus.DONE
    signatures: list[str] = Field(default_factory=list)
    detail: str = ""
    payouts: BatchReport | None = None
    expected_payouts: dict[int, int] = Field(default_factory=dict)


class PayoutMismatch(BaseModel):
    """A round whose payouts did not all land during this invocation."""

    round_id: int
    bet_count: int
    payouts_processed: int


class KeeperReport(BaseModel):
    """Everything one keeper invocation did, for logs and the HTTP trigger."""

    now: int
    actions: list[ActionReport] = Field(default_factory=list)
    active_round_id: int | None = None
    wait_seconds: int | None = None
    payout_mismatches: list[PayoutMismatch] = Field(default_factory=list)
    invariant_violations: dict[int, list[str]] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)

    @property
    def operations_submitted(self) -> int:
        """Ledger writes that actually landed in this invocation."""
        total = 0
        for action in self.actions:
            if action.payouts is not None:
                total += action.payouts.processed_count
            elif action.action in (ActionKind.START_ROUND, ActionKind.SETTLE_ROUND) and (
                action.status is ActionStatus.DONE
            ):
                total += 1
        return total

    def record(self, action: ActionReport) -> ActionReport:
        self.actions.append(action)
        return action

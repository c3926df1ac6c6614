"""Pure round lifecycle decision.

Given the latest round, the live config and the current time, decide the
single next legal transition. No I/O; the keeper re-reads state and calls
this again after every mutation.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from roundkeeper.models.accounts import MarketConfig, Round, RoundStatus


class DecisionKind(str, Enum):
    START_FIRST = "START_FIRST"
    WAIT = "WAIT"
    SETTLE = "SETTLE"
    PROCESS_PAYOUTS = "PROCESS_PAYOUTS"
    START_NEXT = "START_NEXT"
    NONE = "NONE"


@dataclass(frozen=True)
class Decision:
    kind: DecisionKind
    round_id: int | None = None
    wait_seconds: int | None = None
    reason: str = ""


def decide(round_: Round | None, config: MarketConfig, now: int) -> Decision:
    """Next transition for the latest round.

    ``round_`` must be the round with id ``config.round_counter - 1`` (or
    None when no round exists yet).
    """
    if config.round_counter == 0 or round_ is None:
        if config.round_counter == 0:
            return Decision(DecisionKind.START_FIRST, round_id=0)
        return Decision(
            DecisionKind.NONE,
            round_id=config.latest_round_id,
            reason="latest round account not readable",
        )

    if round_.round_id != config.latest_round_id:
        return Decision(
            DecisionKind.NONE,
            round_id=round_.round_id,
            reason=f"round {round_.round_id} is not the latest ({config.latest_round_id})",
        )

    if round_.status.accepts_settlement:
        if not round_.has_ended(now):
            return Decision(
                DecisionKind.WAIT,
                round_id=round_.round_id,
                wait_seconds=round_.seconds_remaining(now),
            )
        return Decision(DecisionKind.SETTLE, round_id=round_.round_id)

    if round_.status is RoundStatus.SETTLING and not round_.payouts_complete:
        return Decision(DecisionKind.PROCESS_PAYOUTS, round_id=round_.round_id)

    if round_.is_finished:
        return Decision(DecisionKind.START_NEXT, round_id=config.round_counter)

    return Decision(DecisionKind.NONE, round_id=round_.round_id, reason="no legal transition")


def recovery_action(round_: Round, now: int) -> DecisionKind:
    """What an older (non-latest) round still needs: SETTLE, PROCESS_PAYOUTS or NONE."""
    if round_.status.accepts_settlement and round_.has_ended(now):
        return DecisionKind.SETTLE
    if round_.status is RoundStatus.SETTLING and not round_.payouts_complete:
        return DecisionKind.PROCESS_PAYOUTS
    return DecisionKind.NONE


def betting_just_closed(round_: Round, now: int) -> bool:
    """Betting window over but the round has not ended yet."""
    return (
        round_.status.accepts_settlement
        and round_.betting_closed(now)
        and not round_.has_ended(now)
    )

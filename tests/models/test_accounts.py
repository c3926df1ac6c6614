"""Tests for ledger account models and report models."""

from __future__ import annotations

from decimal import Decimal

import pytest
from conftest import BETTING_WINDOW, T0, make_config, make_round
from pydantic import ValidationError

from roundkeeper.models.accounts import PoolTotals, RoundStatus, Side
from roundkeeper.models.reports import (
    ActionKind,
    ActionReport,
    ActionStatus,
    BatchReport,
    FixedPointPrice,
    KeeperReport,
)


class TestEnums:
    def test_side_opposite(self) -> None:
        assert Side.SHORT.opposite is Side.LONG
        assert Side.LONG.opposite is Side.SHORT

    def test_status_settlement(self) -> None:
        assert RoundStatus.OPEN.accepts_settlement
        assert RoundStatus.LOCKED.accepts_settlement
        assert not RoundStatus.SETTLING.accepts_settlement
        assert RoundStatus.SETTLED.is_terminal


class TestRound:
    def test_frozen(self) -> None:
        with pytest.raises(ValidationError):
            make_round(0).round_id = 5  # type: ignore[misc]

    def test_pools(self) -> None:
        round_ = make_round(0, short_pool=2, long_pool=3, short_weighted_pool=3, long_weighted_pool=4)
        assert round_.raw_pools == PoolTotals(short=2, long=3)
        assert round_.weighted_pools.for_side(Side.LONG) == 4
        assert round_.total_pool == 5

    def test_finished(self) -> None:
        assert make_round(0, status=RoundStatus.SETTLING, winning_side=Side.LONG).is_finished
        assert not make_round(
            0, status=RoundStatus.SETTLING, winning_side=Side.LONG, bet_count=2, payouts_processed=1,
        ).is_finished
        assert not make_round(0).is_finished
        assert make_round(0, status=RoundStatus.SETTLED, bet_count=2, payouts_processed=1).is_finished

    def test_betting_closed_by_time_or_status(self) -> None:
        round_ = make_round(0)
        assert not round_.betting_closed(T0)
        assert round_.betting_closed(T0 + BETTING_WINDOW)
        assert make_round(0, status=RoundStatus.LOCKED).betting_closed(T0)

    def test_remaining_payouts(self) -> None:
        round_ = make_round(0, bet_count=5, payouts_processed=2)
        assert round_.remaining_payouts == 3

    def test_clean_round_has_no_violations(self) -> None:
        assert make_round(0).invariant_violations() == []

    def test_violations(self) -> None:
        round_ = make_round(
            0,
            status=RoundStatus.SETTLED,
            bet_count=1,
            payouts_processed=2,
            short_pool=10,
            short_weighted_pool=5,
            betting_end_time=T0 - 1,
        )
        problems = round_.invariant_violations()
        assert len(problems) == 4
        assert any("payouts_processed" in p for p in problems)
        assert any("winning_side" in p for p in problems)

    def test_config_latest_round(self) -> None:
        assert make_config(round_counter=0).latest_round_id is None
        assert make_config(round_counter=4).latest_round_id == 3


class TestReports:
    def test_price_as_decimal(self) -> None:
        price = FixedPointPrice(feed_id="ab", value=250_000_000, confidence=1)
        assert price.as_decimal == Decimal("2.5")

    def test_batch_report(self) -> None:
        report = BatchReport(processed=["a", "b"], failed=["c"])
        assert report.processed_count == 2
        assert report.all_succeeded is False
        assert BatchReport(processed=["a"]).all_succeeded is True

    def test_operations_submitted(self) -> None:
        report = KeeperReport(now=0)
        report.record(ActionReport(action=ActionKind.SETTLE_ROUND, round_id=1))
        report.record(ActionReport(
            action=ActionKind.PROCESS_PAYOUTS, round_id=1,
            payouts=BatchReport(processed=["payout:1:0", "payout:1:1"], failed=["payout:1:2"]),
        ))
        report.record(ActionReport(action=ActionKind.START_ROUND, round_id=2, status=ActionStatus.RACED))
        report.record(ActionReport(action=ActionKind.WAIT, round_id=2, status=ActionStatus.SKIPPED))
        assert report.operations_submitted == 3

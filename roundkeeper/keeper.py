"""Round keeper: drives the market's lifecycle from live ledger state.

One invocation reads the config and latest round, asks the pure decision
function what to do, performs that transition, re-reads, and repeats
until nothing further is legal. Overlapping invocations are tolerated by
re-reading state before every write (optimistic check-then-act); a write
that loses the race is reported as done by another party.
"""

from __future__ import annotations

import asyncio
import random
import signal
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any, TypeVar

from roundkeeper.config.loader import ConfigLoader
from roundkeeper.config.settings import (
    Credentials,
    KeeperSettings,
    load_settings,
    require_credentials,
)
from roundkeeper.core.deadline import Deadline
from roundkeeper.core.errors import (
    AccountNotFoundError,
    KeeperError,
    OracleError,
    RaceConditionError,
)
from roundkeeper.core.logging import get_logger
from roundkeeper.core.retry import RetryPolicy, retry_async
from roundkeeper.data.price_oracle import PythPriceOracle
from roundkeeper.engine.asset_selector import choose_asset
from roundkeeper.engine.lifecycle import (
    DecisionKind,
    betting_just_closed,
    decide,
    recovery_action,
)
from roundkeeper.engine.payout_calculator import (
    determine_winning_side,
    implied_odds,
    net_stake,
    potential_payout,
    round_payouts,
    tie_winner_from_setting,
)
from roundkeeper.engine.weights import weight_for_elapsed
from roundkeeper.execution.batch_submitter import BatchSubmitter
from roundkeeper.execution.circuit_breaker import CircuitBreaker
from roundkeeper.execution.transaction_sender import TransactionSender, load_keypair
from roundkeeper.interfaces import LedgerView, PriceSource
from roundkeeper.ledger.addresses import AddressDeriver
from roundkeeper.ledger.instructions import InstructionBuilder, Operation
from roundkeeper.ledger.reader import LedgerReader
from roundkeeper.ledger.rpc import LedgerRpcClient
from roundkeeper.models.accounts import Bet, MarketConfig, Round, RoundStatus, Side
from roundkeeper.models.reports import (
    ActionKind,
    ActionReport,
    ActionStatus,
    BatchReport,
    FixedPointPrice,
    KeeperReport,
    PayoutMismatch,
)
from roundkeeper.notify.broadcaster import XBroadcaster
from roundkeeper.notify.formatter import (
    EVENT_BETTING_CLOSED,
    EVENT_ROUND_SETTLED,
    EVENT_ROUND_STARTED,
    LAMPORTS_PER_SOL,
)
from roundkeeper.notify.publisher import NotificationPublisher

logger = get_logger(__name__)

T = TypeVar("T")

# settle -> payouts -> start next, plus slack for re-reads
_MAX_TRANSITIONS = 6


@dataclass
class _Invocation:
    """State scoped to one keeper invocation; nothing here outlives it."""

    now: int
    deadline: Deadline
    report: KeeperReport
    breaker: CircuitBreaker


class RoundKeeper:
    """Executes lifecycle transitions for the latest round and its predecessors."""

    def __init__(
        self,
        settings: KeeperSettings,
        *,
        ledger: LedgerView,
        builder: InstructionBuilder,
        submitter: BatchSubmitter,
        oracle: PriceSource,
        publisher: NotificationPublisher,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._ledger = ledger
        self._builder = builder
        self._submitter = submitter
        self._oracle = oracle
        self._publisher = publisher
        self._clock = clock
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._tie_winner = tie_winner_from_setting(settings.settlement.tie_winner)
        self._oracle_policy = RetryPolicy(
            max_retries=settings.oracle.max_retries,
            base_delay=settings.oracle.backoff_seconds,
        )
        self._closers: list[Callable[[], Awaitable[None]]] = []

    @property
    def settings(self) -> KeeperSettings:
        return self._settings

    def add_closer(self, closer: Callable[[], Awaitable[None]]) -> None:
        self._closers.append(closer)

    async def close(self) -> None:
        for closer in self._closers:
            await closer()
        self._closers.clear()

    def _begin(self, now: int | None) -> _Invocation:
        now = int(self._clock()) if now is None else now
        return _Invocation(
            now=now,
            deadline=Deadline(self._settings.keeper.invocation_deadline_seconds),
            report=KeeperReport(now=now),
            breaker=self._submitter.new_breaker(),
        )

    async def _read(self, inv: _Invocation, fn: Callable[[], Awaitable[T]], label: str) -> T:
        """Ledger read bounded by the invocation deadline."""
        return await inv.deadline.run(fn, label=label)

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    async def run_once(self, now: int | None = None) -> KeeperReport:
        """One keeper invocation. Safe to call concurrently and repeatedly.

        Failures after the first config read end the invocation early but
        are returned in the report, together with every action that
        already landed.
        """
        inv = self._begin(now)
        report = inv.report
        logger.info("keeper.invocation_start", now=inv.now, deadline=repr(inv.deadline))

        config = await self._read(inv, self._ledger.read_config, "read config")
        self._check_config(config)
        try:
            await self._recovery_sweep(config, inv)
        except KeeperError as exc:
            self._note_error(inv, "recovery sweep", exc)

        for _ in range(_MAX_TRANSITIONS):
            if inv.deadline.expired:
                report.errors.append("invocation deadline expired")
                logger.warning("keeper.deadline_expired", now=inv.now)
                break

            try:
                config = await self._read(inv, self._ledger.read_config, "read config")
                latest = await self._read_latest(config, inv)
            except KeeperError as exc:
                self._note_error(inv, "read latest state", exc)
                break
            decision = decide(latest, config, inv.now)
            logger.info(
                "keeper.decision",
                decision=decision.kind.value,
                round_id=decision.round_id,
                wait_seconds=decision.wait_seconds,
                reason=decision.reason or None,
            )

            if decision.kind is DecisionKind.WAIT:
                report.active_round_id = decision.round_id
                report.wait_seconds = decision.wait_seconds
                report.record(ActionReport(
                    action=ActionKind.WAIT,
                    round_id=decision.round_id,
                    status=ActionStatus.SKIPPED,
                    detail=f"{decision.wait_seconds}s remaining",
                ))
                break

            if decision.kind is DecisionKind.SETTLE:
                assert latest is not None
                if not await self._settle_and_pay(latest, inv):
                    break
                continue

            if decision.kind is DecisionKind.PROCESS_PAYOUTS:
                assert latest is not None
                _, fresh = await self._process_payouts(latest.round_id, inv)
                if fresh is None or not fresh.payouts_complete:
                    break
                continue

            if decision.kind in (DecisionKind.START_FIRST, DecisionKind.START_NEXT):
                assert decision.round_id is not None
                await self._start_round(decision.round_id, inv)
                break

            if decision.reason:
                report.errors.append(decision.reason)
            break

        logger.info(
            "keeper.invocation_done",
            actions=[(a.action.value, a.round_id, a.status.value) for a in report.actions],
            operations=report.operations_submitted,
            mismatches=len(report.payout_mismatches),
            errors=len(report.errors),
        )
        return report

    async def _read_latest(self, config: MarketConfig, inv: _Invocation) -> Round | None:
        if config.latest_round_id is None:
            return None
        try:
            latest = await self._read(
                inv, partial(self._ledger.read_round, config.latest_round_id), "read latest round",
            )
        except AccountNotFoundError as exc:
            logger.warning("keeper.latest_round_missing", round_id=config.latest_round_id)
            inv.report.errors.append(str(exc))
            return None
        self._note_violations(latest, inv.report)
        inv.report.active_round_id = latest.round_id
        return latest

    @staticmethod
    def _check_config(config: MarketConfig) -> None:
        if config.trailing_bytes:
            logger.warning("keeper.config_trailing_bytes", trailing_bytes=config.trailing_bytes)

    @staticmethod
    def _note_violations(round_: Round, report: KeeperReport) -> None:
        problems = round_.invariant_violations()
        if problems:
            report.invariant_violations[round_.round_id] = problems
            logger.warning("keeper.invariant_violation", round_id=round_.round_id, problems=problems)

    @staticmethod
    def _note_error(inv: _Invocation, step: str, exc: KeeperError, round_id: int | None = None) -> None:
        prefix = step if round_id is None else f"round {round_id}: {step}"
        inv.report.errors.append(f"{prefix}: {exc}")
        logger.error(
            "keeper.step_failed",
            step=step,
            round_id=round_id,
            error=str(exc),
            error_type=type(exc).__name__,
            retryable=exc.retryable,
        )

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    async def _recovery_sweep(self, config: MarketConfig, inv: _Invocation) -> None:
        """Settle or pay out older rounds left behind by failed invocations."""
        latest_id = config.latest_round_id
        lookback = self._settings.keeper.recovery_lookback
        if latest_id is None or lookback <= 0:
            return
        ids = list(range(max(0, latest_id - lookback), latest_id))
        rounds = await self._read(inv, partial(self._ledger.read_rounds, ids), "read recent rounds")
        for rid in ids:
            round_ = rounds.get(rid)
            if round_ is None or inv.deadline.expired:
                continue
            self._note_violations(round_, inv.report)
            action = recovery_action(round_, inv.now)
            if action is DecisionKind.NONE:
                continue
            logger.info("keeper.recovery", round_id=rid, action=action.value, status=round_.status.name)
            if action is DecisionKind.SETTLE:
                await self._settle_and_pay(round_, inv)
            else:
                await self._process_payouts(rid, inv)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _fetch_price(self, symbol: str, deadline: Deadline) -> FixedPointPrice:
        asset = self._settings.asset(symbol)
        if asset is None:
            msg = f"asset {symbol} is not in the catalog"
            raise OracleError(msg, retryable=False)
        label = f"oracle:{asset.symbol}"
        return await retry_async(
            partial(
                deadline.run,
                partial(self._oracle.fetch_price, asset.feed_id),
                self._settings.oracle.timeout_seconds,
                label=label,
            ),
            policy=self._oracle_policy,
            label=label,
            deadline=deadline,
            sleep=self._sleep,
        )

    async def _submit_one(self, op: Operation, inv: _Invocation) -> BatchReport:
        return await self._submitter.submit_batches(
            [op],
            batch_size=1,
            max_retries=self._settings.execution.max_retries,
            deadline=inv.deadline,
            breaker=inv.breaker,
        )

    async def _settle_and_pay(self, round_: Round, inv: _Invocation) -> bool:
        """Settle an ended round, pay it out and announce it.

        Returns True when the round is out of the way: finished here, or
        settled by another invocation. A failed read ends the transition;
        whatever already landed stays in the report.
        """
        report = inv.report
        rid = round_.round_id
        try:
            price = await self._fetch_price(round_.asset_symbol, inv.deadline)
            fresh = await self._read(inv, partial(self._ledger.read_round, rid), "re-read before settle")
        except KeeperError as exc:
            report.record(ActionReport(
                action=ActionKind.SETTLE_ROUND, round_id=rid,
                status=ActionStatus.FAILED, detail=str(exc),
            ))
            self._note_error(inv, "settle", exc, rid)
            return False

        if not fresh.status.accepts_settlement:
            report.record(ActionReport(
                action=ActionKind.SETTLE_ROUND, round_id=rid,
                status=ActionStatus.RACED, detail=f"already {fresh.status.name}",
            ))
            logger.info("keeper.settle_raced", round_id=rid, status=fresh.status.name)
            return True

        expected = determine_winning_side(fresh.start_price, price.value, self._tie_winner)
        batch = await self._submit_one(self._builder.settle_round(rid, price.value), inv)
        if batch.failed or batch.skipped:
            detail = "; ".join(batch.errors.values()) or (batch.stopped_reason or "")
            try:
                after = await self._read(inv, partial(self._ledger.read_round, rid), "re-read after settle")
            except KeeperError as exc:
                report.record(ActionReport(
                    action=ActionKind.SETTLE_ROUND, round_id=rid,
                    status=ActionStatus.FAILED, detail=detail,
                ))
                self._note_error(inv, "re-read after failed settle", exc, rid)
                return False
            raced = not after.status.accepts_settlement
            report.record(ActionReport(
                action=ActionKind.SETTLE_ROUND, round_id=rid,
                status=ActionStatus.RACED if raced else ActionStatus.FAILED,
                detail=detail,
            ))
            if not raced:
                report.errors.append(f"round {rid}: settlement failed")
            return raced

        report.record(ActionReport(
            action=ActionKind.SETTLE_ROUND, round_id=rid,
            signatures=batch.signatures, detail=f"end_price={price.value}",
        ))
        logger.info(
            "keeper.round_settled",
            round_id=rid,
            start_price=fresh.start_price,
            end_price=price.value,
            expected_winner=expected.name,
            signature=batch.signatures[0] if batch.signatures else None,
        )

        await self._sleep(self._settings.keeper.settle_refresh_delay_seconds)
        try:
            settled = await self._read(inv, partial(self._ledger.read_round, rid), "re-read settled round")
        except KeeperError as exc:
            self._note_error(inv, "re-read settled round", exc, rid)
            return False
        if settled.winning_side is not None and settled.winning_side is not expected:
            logger.warning(
                "keeper.winner_mismatch",
                round_id=rid,
                ledger_winner=settled.winning_side.name,
                expected_winner=expected.name,
            )

        paid_bets, after = await self._process_payouts(rid, inv)
        final = after or settled
        winners_paid = sum(
            1 for b in paid_bets
            if final.winning_side is not None and b.side is final.winning_side
        )
        await self._publisher.publish(EVENT_ROUND_SETTLED, {
            "round_id": rid,
            "symbol": final.asset_symbol,
            "start_price": final.start_price,
            "end_price": final.end_price or price.value,
            "winning_side": (final.winning_side or expected).name,
            "total_pool": final.total_pool,
            "winners_paid": winners_paid,
        }, deadline=inv.deadline)
        return after is not None and final.is_finished

    async def _process_payouts(self, round_id: int, inv: _Invocation) -> tuple[list[Bet], Round | None]:
        """Pay every unpaid bet of a settling round.

        Returns:
            (bets that landed as paid in this call, the re-read round or
            None when it could not be re-read)
        """
        report = inv.report
        try:
            snap = await self._read(inv, partial(self._ledger.snapshot, round_id), "read round bets")
        except KeeperError as exc:
            report.record(ActionReport(
                action=ActionKind.PROCESS_PAYOUTS, round_id=round_id,
                status=ActionStatus.FAILED, detail=str(exc),
            ))
            self._note_error(inv, "read bets", exc, round_id)
            return [], None

        unpaid = sorted(snap.unpaid, key=lambda b: b.bet_index)
        ops = [self._builder.process_payout(round_id, b.bet_index, b.bettor) for b in unpaid]
        expected: dict[int, int] = {}
        if snap.round.winning_side is not None and unpaid:
            expected = round_payouts(
                unpaid, snap.round.winning_side, snap.round.raw_pools, snap.round.weighted_pools,
            )

        batch = await self._submitter.submit_batches(
            ops,
            batch_size=self._settings.execution.batch_size,
            max_retries=self._settings.execution.max_retries,
            deadline=inv.deadline,
            breaker=inv.breaker,
        )

        fresh: Round | None = None
        reread_failed = False
        try:
            fresh = await self._read(inv, partial(self._ledger.read_round, round_id), "re-read after payouts")
        except AccountNotFoundError:
            fresh = None
        except KeeperError as exc:
            reread_failed = True
            self._note_error(inv, "re-read after payouts", exc, round_id)

        if fresh is not None and not fresh.payouts_complete:
            report.payout_mismatches.append(PayoutMismatch(
                round_id=round_id,
                bet_count=fresh.bet_count,
                payouts_processed=fresh.payouts_processed,
            ))
            logger.warning(
                "keeper.payouts_incomplete",
                round_id=round_id,
                bet_count=fresh.bet_count,
                payouts_processed=fresh.payouts_processed,
                remaining=fresh.remaining_payouts,
                failed=batch.failed,
                missing=snap.missing_indices,
            )

        complete = fresh is not None and fresh.payouts_complete
        if not ops:
            done = complete or (fresh is None and not reread_failed)
            status = ActionStatus.DONE if done else ActionStatus.FAILED
        elif not batch.processed:
            status = ActionStatus.FAILED
        elif batch.failed or batch.skipped or (fresh is not None and not complete):
            status = ActionStatus.PARTIAL
        else:
            status = ActionStatus.DONE

        report.record(ActionReport(
            action=ActionKind.PROCESS_PAYOUTS,
            round_id=round_id,
            status=status,
            signatures=batch.signatures,
            detail=f"{batch.processed_count}/{len(ops)} unpaid bets paid",
            payouts=batch,
            expected_payouts=expected,
        ))
        processed_keys = set(batch.processed)
        paid_now = [
            b for b in unpaid if f"payout:{round_id}:{b.bet_index}" in processed_keys
        ]
        return paid_now, fresh

    async def _start_round(self, round_id: int, inv: _Invocation) -> None:
        report = inv.report
        try:
            recent = await self._read(
                inv,
                partial(self._ledger.recent_assets, round_id, self._settings.keeper.cooldown_rounds),
                "read recent assets",
            )
            asset = choose_asset(self._settings.assets, recent, self._rng)
            price = await self._fetch_price(asset.symbol, inv.deadline)
            await self._ensure_counter(round_id, inv)
        except RaceConditionError as exc:
            report.record(ActionReport(
                action=ActionKind.START_ROUND, round_id=round_id,
                status=ActionStatus.RACED, detail=str(exc),
            ))
            logger.info("keeper.start_raced", round_id=round_id, observed=exc.observed)
            return
        except KeeperError as exc:
            report.record(ActionReport(
                action=ActionKind.START_ROUND, round_id=round_id,
                status=ActionStatus.FAILED, detail=str(exc),
            ))
            self._note_error(inv, f"start round {round_id}", exc)
            return

        batch = await self._submit_one(self._builder.start_round(round_id, asset.symbol, price.value), inv)
        if batch.failed or batch.skipped:
            detail = "; ".join(batch.errors.values()) or (batch.stopped_reason or "")
            try:
                await self._ensure_counter(round_id, inv)
                status = ActionStatus.FAILED
                report.errors.append(f"start round {round_id}: submission failed")
            except RaceConditionError:
                status = ActionStatus.RACED
            except KeeperError as exc:
                status = ActionStatus.FAILED
                self._note_error(inv, f"start round {round_id} re-read", exc)
            report.record(ActionReport(
                action=ActionKind.START_ROUND, round_id=round_id, status=status, detail=detail,
            ))
            return

        report.active_round_id = round_id
        report.record(ActionReport(
            action=ActionKind.START_ROUND, round_id=round_id,
            signatures=batch.signatures,
            detail=f"{asset.symbol} @ {price.value}",
        ))
        logger.info(
            "keeper.round_started",
            round_id=round_id,
            asset=asset.symbol,
            start_price=price.value,
            signature=batch.signatures[0] if batch.signatures else None,
        )
        await self._publisher.publish(EVENT_ROUND_STARTED, {
            "round_id": round_id,
            "symbol": asset.symbol,
            "name": asset.name,
            "start_price": price.value,
            "betting_hours": self._settings.round.betting_window_seconds // 3600,
        }, deadline=inv.deadline)

    async def _ensure_counter(self, expected: int, inv: _Invocation) -> None:
        """The live counter must still name ``expected`` as the next round."""
        config = await self._read(inv, self._ledger.read_config, "re-read config")
        if config.round_counter != expected:
            msg = f"round counter moved: expected {expected}, observed {config.round_counter}"
            raise RaceConditionError(msg, expected=expected, observed=config.round_counter)

    # ------------------------------------------------------------------
    # Other entry points
    # ------------------------------------------------------------------

    async def announce_betting_closed(self, now: int | None = None) -> ActionReport:
        """Publish the pool split once the latest round's betting window closes."""
        inv = self._begin(now)
        config = await self._read(inv, self._ledger.read_config, "read config")
        if config.latest_round_id is None:
            return ActionReport(action=ActionKind.ANNOUNCE, status=ActionStatus.SKIPPED, detail="no rounds")
        round_ = await self._read(
            inv, partial(self._ledger.read_round, config.latest_round_id), "read latest round",
        )
        if not betting_just_closed(round_, inv.now):
            return ActionReport(
                action=ActionKind.ANNOUNCE, round_id=round_.round_id,
                status=ActionStatus.SKIPPED,
                detail=f"betting not closed ({round_.status.name})",
            )
        try:
            price = await self._fetch_price(round_.asset_symbol, inv.deadline)
        except KeeperError as exc:
            logger.error("keeper.announce_price_failed", round_id=round_.round_id, error=str(exc))
            return ActionReport(
                action=ActionKind.ANNOUNCE, round_id=round_.round_id,
                status=ActionStatus.FAILED, detail=str(exc),
            )
        post_id = await self._publisher.publish(EVENT_BETTING_CLOSED, {
            "round_id": round_.round_id,
            "symbol": round_.asset_symbol,
            "start_price": round_.start_price,
            "current_price": price.value,
            "long_pool": round_.long_pool,
            "short_pool": round_.short_pool,
            "hours_to_end": round_.seconds_remaining(inv.now) // 3600,
        }, deadline=inv.deadline)
        return ActionReport(
            action=ActionKind.ANNOUNCE,
            round_id=round_.round_id,
            status=ActionStatus.DONE if post_id else ActionStatus.FAILED,
            detail=post_id or "publish failed",
        )

    async def resume_payouts(self, round_id: int) -> KeeperReport:
        """Pay out one specific settling round."""
        inv = self._begin(None)
        round_ = await self._read(inv, partial(self._ledger.read_round, round_id), "read round")
        self._note_violations(round_, inv.report)
        if round_.status is not RoundStatus.SETTLING or round_.payouts_complete:
            inv.report.record(ActionReport(
                action=ActionKind.PROCESS_PAYOUTS, round_id=round_id,
                status=ActionStatus.SKIPPED, detail=f"round is {round_.status.name}",
            ))
            return inv.report
        await self._process_payouts(round_id, inv)
        return inv.report

    async def describe_round(self, round_id: int, now: int | None = None) -> dict[str, Any]:
        """Decoded round with its bets, per-bet payouts and, while betting is
        open, a quote for a 1 SOL stake on either side."""
        now = int(self._clock()) if now is None else now
        snap = await self._ledger.snapshot(round_id)
        round_ = snap.round
        preview: dict[int, int] = {}
        if round_.winning_side is not None:
            preview = round_payouts(snap.bets, round_.winning_side, round_.raw_pools, round_.weighted_pools)
        described: dict[str, Any] = {
            "round": round_.model_dump(mode="json"),
            "bets": [
                {**b.model_dump(mode="json"), "payout": preview.get(b.bet_index)}
                for b in snap.bets
            ],
            "missing_indices": snap.missing_indices,
            "invariant_violations": round_.invariant_violations(),
            "pool_share": {
                side.name: float(share) for side, share in implied_odds(round_.raw_pools).items()
            },
        }
        if not round_.betting_closed(now):
            described["quote"] = await self._quote(round_, now)
        return described

    async def _quote(self, round_: Round, now: int) -> dict[str, Any]:
        config = await self._ledger.read_config()
        contribution, _, _ = net_stake(LAMPORTS_PER_SOL, config.fee_bps)
        weight = weight_for_elapsed(now - round_.start_time, round_.betting_end_time - round_.start_time)
        return {
            "amount": LAMPORTS_PER_SOL,
            "pool_contribution": contribution,
            "weight": weight,
            "payout_if_win": {
                side.name: potential_payout(
                    contribution, weight, side, round_.raw_pools, round_.weighted_pools,
                )
                for side in Side
            },
        }



# ----------------------------------------------------------------------
# Wiring
# ----------------------------------------------------------------------


def create_keeper(settings: KeeperSettings, credentials: Credentials) -> RoundKeeper:
    """Build a keeper with real network clients."""
    keypair = load_keypair(credentials.admin_keypair)
    deriver = AddressDeriver(settings.ledger.program_id)
    rpc = LedgerRpcClient(
        settings.ledger.rpc_url,
        commitment=settings.ledger.commitment,
        timeout_seconds=settings.ledger.request_timeout_seconds,
    )
    sender = TransactionSender(
        rpc,
        keypair,
        confirm_timeout_seconds=settings.ledger.confirm_timeout_seconds,
        confirm_poll_seconds=settings.ledger.confirm_poll_seconds,
    )
    submitter = BatchSubmitter(
        sender,
        breaker_max_failures=settings.execution.breaker_max_failures,
        base_delay=settings.execution.backoff_seconds,
        max_delay=settings.execution.backoff_max_seconds,
        isolate_failures=settings.execution.isolate_failures,
    )
    oracle = PythPriceOracle(
        settings.oracle.hermes_url,
        timeout_seconds=settings.oracle.timeout_seconds,
    )
    broadcaster = None
    if settings.notify.enabled and credentials.broadcast_token:
        broadcaster = XBroadcaster(
            credentials.broadcast_token,
            api_url=settings.notify.api_url,
            timeout_seconds=settings.notify.timeout_seconds,
        )
    publisher = NotificationPublisher(
        broadcaster,
        base_url=settings.notify.base_url,
        max_attempts=settings.notify.max_attempts,
        backoff_seconds=settings.notify.backoff_seconds,
    )
    keeper = RoundKeeper(
        settings,
        ledger=LedgerReader(rpc, deriver),
        builder=InstructionBuilder(deriver, keypair.pubkey()),
        submitter=submitter,
        oracle=oracle,
        publisher=publisher,
    )
    keeper.add_closer(rpc.close)
    keeper.add_closer(oracle.close)
    if broadcaster is not None:
        keeper.add_closer(broadcaster.close)
    logger.info(
        "keeper.init",
        rpc_url=settings.ledger.rpc_url[:40],
        program_id=settings.ledger.program_id,
        admin=str(keypair.pubkey()),
        assets=[a.symbol for a in settings.assets],
        notify=publisher.enabled,
    )
    return keeper


class KeeperDaemon:
    """Periodic keeper loop with graceful SIGINT/SIGTERM shutdown."""

    def __init__(self, keeper: RoundKeeper, poll_interval_seconds: float = 60.0) -> None:
        self._keeper = keeper
        self._poll_interval = poll_interval_seconds
        self._shutdown_event = asyncio.Event()
        self._announced: set[int] = set()

    async def start(self) -> int:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._request_shutdown, sig)
        logger.info("daemon.ready", poll_interval=self._poll_interval)
        try:
            await self._main_loop()
        except asyncio.CancelledError:
            logger.info("daemon.cancelled")
        finally:
            await self._keeper.close()
            logger.info("daemon.shutdown")
        return 0

    def _request_shutdown(self, sig: signal.Signals) -> None:
        logger.info("shutdown_requested", signal=sig.name)
        self._shutdown_event.set()

    async def _main_loop(self) -> None:
        while not self._shutdown_event.is_set():
            wait = self._poll_interval
            try:
                report = await self._keeper.run_once()
                if report.wait_seconds is not None:
                    wait = max(1.0, min(wait, float(report.wait_seconds)))
                await self._maybe_announce(report.active_round_id)
            except Exception:
                # one bad tick must not stop the daemon
                logger.exception("daemon.tick_error")

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=wait)
                break
            except TimeoutError:
                continue

    async def _maybe_announce(self, round_id: int | None) -> None:
        """Announce the betting close once per round."""
        if round_id is None or round_id in self._announced:
            return
        result = await self._keeper.announce_betting_closed()
        if result.status is ActionStatus.DONE and result.round_id is not None:
            self._announced.add(result.round_id)


def _load(config_dir: str | Path, env: str | None, **need: bool) -> tuple[KeeperSettings, Credentials]:
    loader = ConfigLoader(config_dir=config_dir, env=env)
    loader.load()
    settings = load_settings(loader)
    credentials = require_credentials(**need)
    return settings, credentials


def run_keeper(
    mode: str,
    config_dir: str | Path = "config",
    env: str | None = None,
    round_id: int | None = None,
) -> dict[str, Any] | int:
    """Synchronous entry for the CLI: ``once``, ``daemon``, ``inspect`` or ``payouts``."""
    settings, credentials = _load(config_dir, env)
    keeper = create_keeper(settings, credentials)

    async def _run() -> dict[str, Any] | int:
        if mode == "daemon":
            return await KeeperDaemon(keeper, settings.keeper.poll_interval_seconds).start()
        try:
            if mode == "once":
                return (await keeper.run_once()).model_dump(mode="json")
            if mode == "inspect":
                assert round_id is not None
                return await keeper.describe_round(round_id)
            if mode == "payouts":
                assert round_id is not None
                return (await keeper.resume_payouts(round_id)).model_dump(mode="json")
            msg = f"unknown keeper mode: {mode}"
            raise ValueError(msg)
        finally:
            await keeper.close()

    return asyncio.run(_run())

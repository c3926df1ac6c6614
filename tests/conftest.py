"""Shared test fixtures."""

from __future__ import annotations

import struct
from pathlib import Path  # noqa: TCH003

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from roundkeeper.config.loader import ConfigLoader
from roundkeeper.config.settings import KeeperSettings, load_settings
from roundkeeper.core.errors import AccountNotFoundError, OracleError, SubmissionError
from roundkeeper.execution.batch_submitter import BatchSubmitter
from roundkeeper.keeper import RoundKeeper
from roundkeeper.ledger.addresses import AddressDeriver
from roundkeeper.ledger.instructions import InstructionBuilder, Operation
from roundkeeper.models.accounts import Bet, MarketConfig, Round, RoundSnapshot, RoundStatus, Side
from roundkeeper.models.reports import FixedPointPrice
from roundkeeper.notify.publisher import NotificationPublisher

PROGRAM_ID = "81K7nKnv7JiRhBCRNmagKot27Yu82eRWeeNA7dtGGaX6"
T0 = 1_700_000_000
BETTING_WINDOW = 43_200
ROUND_DURATION = 86_400

FEEDS = {
    "WIF": "4ca4beeca86f0d164160323817a4e42b10010a724c2217c6ee41b54cd4cc61fc",
    "BONK": "72b021217ca3fe68922a19aaf990109cb9d84e9ad004b4d2025ad6f529314419",
    "SOL": "ef0d8b6fda2ceba41da15d4095d1da392a0d2f8ed0c6c7bc0f4cfac8c280b56d",
    "BTC": "e62df6c8b4a85fe1a67db44dc12de5db330f7ac66b72dc658afedf0f4a415b43",
}


async def no_sleep(_: float) -> None:
    return None


def new_key() -> str:
    return str(Pubkey.new_unique())


@pytest.fixture()
def config_dir(tmp_path: Path) -> Path:
    """Create a temp config directory with default.toml."""
    config = tmp_path / "config"
    config.mkdir()

    assets = "".join(
        f'\n[[assets]]\nsymbol = "{symbol}"\nname = "{symbol.title()}"\nfeed_id = "0x{feed}"\n'
        for symbol, feed in FEEDS.items()
    )
    default_toml = config / "default.toml"
    default_toml.write_text(
        f"""\
[ledger]
rpc_url = "https://rpc.test"
program_id = "{PROGRAM_ID}"
commitment = "confirmed"
request_timeout_seconds = 5.0
confirm_timeout_seconds = 10.0
confirm_poll_seconds = 0.0

[oracle]
hermes_url = "https://hermes.test"
timeout_seconds = 5.0
max_retries = 2
backoff_seconds = 0.0

[round]
betting_window_seconds = {BETTING_WINDOW}
round_duration_seconds = {ROUND_DURATION}

[keeper]
cooldown_rounds = 2
recovery_lookback = 5
invocation_deadline_seconds = 240.0
settle_refresh_delay_seconds = 0.0
poll_interval_seconds = 60.0

[execution]
batch_size = 5
max_retries = 3
backoff_seconds = 0.0
backoff_max_seconds = 0.0
breaker_max_failures = 5
isolate_failures = true

[settlement]
tie_winner = "short"

[notify]
enabled = false
base_url = "https://microperps.test"
max_attempts = 2
backoff_seconds = 0.0
{assets}"""
    )
    return config


@pytest.fixture()
def config_loader(config_dir: Path) -> ConfigLoader:
    """ConfigLoader with test config."""
    loader = ConfigLoader(config_dir=config_dir, env="test")
    loader.load()
    return loader


@pytest.fixture()
def settings(config_loader: ConfigLoader) -> KeeperSettings:
    return load_settings(config_loader)


def make_config(**overrides: object) -> MarketConfig:
    fields: dict[str, object] = {
        "admin": new_key(),
        "fee_bps": 250,
        "referrer_fee_bps": 50,
        "min_bet": 10_000_000,
        "max_bet": 100_000_000_000,
        "treasury": new_key(),
        "round_counter": 0,
        "bump": 254,
    }
    fields.update(overrides)
    return MarketConfig(**fields)


def make_round(round_id: int = 0, **overrides: object) -> Round:
    fields: dict[str, object] = {
        "round_id": round_id,
        "asset_symbol": "SOL",
        "start_price": 250_000_000,
        "end_price": 0,
        "start_time": T0,
        "betting_end_time": T0 + BETTING_WINDOW,
        "end_time": T0 + ROUND_DURATION,
        "status": RoundStatus.OPEN,
        "bump": 253,
    }
    fields.update(overrides)
    return Round(**fields)


def make_bet(round_id: int, bet_index: int, side: Side, amount: int, weight: int = 100, **overrides: object) -> Bet:
    fields: dict[str, object] = {
        "round_id": round_id,
        "bettor": new_key(),
        "side": side,
        "amount": amount,
        "original_amount": amount,
        "bet_time": T0 + 60,
        "weight": weight,
        "bet_index": bet_index,
        "bump": 252,
    }
    fields.update(overrides)
    return Bet(**fields)


@pytest.fixture()
def sample_round() -> Round:
    return make_round(
        7,
        asset_symbol="BONK",
        short_pool=1_000_000_000,
        long_pool=4_000_000_000,
        short_weighted_pool=1_300_000_000,
        long_weighted_pool=6_000_000_000,
        bet_count=3,
    )


@pytest.fixture()
def sample_bet() -> Bet:
    return make_bet(7, 2, Side.LONG, 1_000_000_000, weight=150, referrer=new_key())


# ----------------------------------------------------------------------
# In-memory market: a fake ledger plus a sender that applies operations
# to it the way the program would.
# ----------------------------------------------------------------------


class FakeMarket:
    """Ledger state shared by FakeLedger and FakeSender."""

    def __init__(self, config: MarketConfig | None = None) -> None:
        self.config = config or make_config()
        self.rounds: dict[int, Round] = {}
        self.bets: dict[tuple[int, int], Bet] = {}
        self.now = T0

    def add_round(self, round_: Round, bets: list[Bet] | None = None) -> None:
        self.rounds[round_.round_id] = round_
        for bet in bets or []:
            self.bets[(bet.round_id, bet.bet_index)] = bet
        counter = max(self.config.round_counter, round_.round_id + 1)
        self.config = self.config.model_copy(update={"round_counter": counter})

    def apply(self, op: Operation) -> None:
        data = bytes(op.instruction.data)
        if op.kind == "start_round":
            if op.round_id != self.config.round_counter:
                msg = f"start_round {op.round_id}: counter is {self.config.round_counter}"
                raise SubmissionError(msg, retryable=False)
            (length,) = struct.unpack_from("<I", data, 8)
            symbol = data[12:12 + length].decode()
            (price,) = struct.unpack_from("<q", data, 12 + length)
            self.rounds[op.round_id] = make_round(
                op.round_id,
                asset_symbol=symbol,
                start_price=price,
                start_time=self.now,
                betting_end_time=self.now + BETTING_WINDOW,
                end_time=self.now + ROUND_DURATION,
            )
            self.config = self.config.model_copy(update={"round_counter": op.round_id + 1})
        elif op.kind == "settle_round":
            round_ = self.rounds[op.round_id]
            if not round_.status.accepts_settlement:
                msg = f"round {op.round_id} already settled"
                raise SubmissionError(msg, retryable=False)
            (end_price,) = struct.unpack_from("<q", data, 8)
            winner = Side.LONG if end_price > round_.start_price else Side.SHORT
            self.rounds[op.round_id] = round_.model_copy(update={
                "end_price": end_price,
                "status": RoundStatus.SETTLING,
                "winning_side": winner,
            })
        elif op.kind == "process_payout":
            assert op.bet_index is not None
            bet = self.bets[(op.round_id, op.bet_index)]
            if bet.paid_out:
                msg = f"bet {op.key} already paid"
                raise SubmissionError(msg, retryable=False)
            self.bets[(op.round_id, op.bet_index)] = bet.model_copy(update={"paid_out": True})
            round_ = self.rounds[op.round_id]
            processed = round_.payouts_processed + 1
            status = RoundStatus.SETTLED if processed >= round_.bet_count else round_.status
            self.rounds[op.round_id] = round_.model_copy(
                update={"payouts_processed": processed, "status": status},
            )
        else:
            msg = f"unsupported op {op.kind}"
            raise AssertionError(msg)


class FakeLedger:
    """LedgerView over a FakeMarket."""

    def __init__(self, market: FakeMarket) -> None:
        self.market = market

    async def read_config(self) -> MarketConfig:
        return self.market.config

    async def read_round(self, round_id: int) -> Round:
        try:
            return self.market.rounds[round_id]
        except KeyError:
            raise AccountNotFoundError("round", f"round-{round_id}") from None

    async def read_rounds(self, round_ids: list[int]) -> dict[int, Round]:
        return {rid: self.market.rounds[rid] for rid in round_ids if rid in self.market.rounds}

    async def read_bets(self, round_id: int, count: int) -> tuple[list[Bet], list[int]]:
        bets, missing = [], []
        for i in range(count):
            bet = self.market.bets.get((round_id, i))
            if bet is None:
                missing.append(i)
            else:
                bets.append(bet)
        return bets, missing

    async def read_bet(self, round_id: int, bet_index: int) -> Bet:
        try:
            return self.market.bets[(round_id, bet_index)]
        except KeyError:
            raise AccountNotFoundError("bet", f"bet-{round_id}-{bet_index}") from None

    async def snapshot(self, round_id: int) -> RoundSnapshot:
        round_ = await self.read_round(round_id)
        bets, missing = await self.read_bets(round_id, round_.bet_count)
        return RoundSnapshot(round=round_, bets=bets, missing_indices=missing)

    async def recent_assets(self, before_round: int, window: int) -> list[str]:
        ids = range(max(0, before_round - window), before_round)
        return [self.market.rounds[i].asset_symbol for i in ids if i in self.market.rounds]


class FakeSender:
    """Applies each transaction atomically; keys in ``fail_keys`` always fail."""

    def __init__(self, market: FakeMarket | None = None) -> None:
        self.market = market
        self.fail_keys: set[str] = set()
        self.calls: list[list[str]] = []

    async def send(self, operations: list[Operation]) -> str:
        keys = [op.key for op in operations]
        self.calls.append(keys)
        bad = [k for k in keys if k in self.fail_keys]
        if bad:
            msg = f"simulated failure for {bad}"
            raise SubmissionError(msg)
        if self.market is not None:
            for op in operations:
                self.market.apply(op)
        return f"sig-{len(self.calls)}"

    @property
    def sent_keys(self) -> list[str]:
        return [k for call in self.calls for k in call]


class FakeOracle:
    def __init__(self, prices: dict[str, int] | None = None) -> None:
        self.prices = prices or {}
        self.calls: list[str] = []
        self.error: Exception | None = None

    async def fetch_price(self, feed_id: str) -> FixedPointPrice:
        self.calls.append(feed_id)
        if self.error is not None:
            raise self.error
        bare = feed_id.removeprefix("0x")
        symbol = next(s for s, f in FEEDS.items() if f == bare)
        if symbol not in self.prices:
            msg = f"no price for {symbol}"
            raise OracleError(msg, retryable=False)
        return FixedPointPrice(feed_id=bare, value=self.prices[symbol], confidence=10_000)


class FakeBroadcaster:
    def __init__(self) -> None:
        self.posts: list[str] = []
        self.fail_times = 0

    async def post(self, text: str) -> str:
        if self.fail_times > 0:
            self.fail_times -= 1
            msg = "broadcast down"
            raise ConnectionError(msg)
        self.posts.append(text)
        return f"post-{len(self.posts)}"


@pytest.fixture()
def market() -> FakeMarket:
    return FakeMarket()


@pytest.fixture()
def sender(market: FakeMarket) -> FakeSender:
    return FakeSender(market)


@pytest.fixture()
def oracle() -> FakeOracle:
    return FakeOracle({"WIF": 250_000_000, "BONK": 2_500, "SOL": 15_000_000_000, "BTC": 6_700_000_000_000})


@pytest.fixture()
def broadcaster() -> FakeBroadcaster:
    return FakeBroadcaster()


@pytest.fixture()
def builder() -> InstructionBuilder:
    return InstructionBuilder(AddressDeriver(PROGRAM_ID), Keypair().pubkey())


def build_keeper(
    settings: KeeperSettings,
    market: FakeMarket,
    sender: FakeSender,
    oracle: FakeOracle,
    broadcaster: FakeBroadcaster,
    builder: InstructionBuilder,
    ledger: FakeLedger | None = None,
) -> RoundKeeper:
    return RoundKeeper(
        settings,
        ledger=ledger or FakeLedger(market),
        builder=builder,
        submitter=BatchSubmitter(sender, sleep=no_sleep, base_delay=0.0, max_delay=0.0),
        oracle=oracle,
        publisher=NotificationPublisher(broadcaster, base_url="https://microperps.test", sleep=no_sleep),
        clock=lambda: float(market.now),
        sleep=no_sleep,
    )


@pytest.fixture()
def keeper(
    settings: KeeperSettings,
    market: FakeMarket,
    sender: FakeSender,
    oracle: FakeOracle,
    broadcaster: FakeBroadcaster,
    builder: InstructionBuilder,
) -> RoundKeeper:
    return build_keeper(settings, market, sender, oracle, broadcaster, builder)

"""Typed settings built from the merged TOML config plus secrets from env."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field, field_validator

from roundkeeper.config.loader import ConfigError, ConfigLoader

ADMIN_KEYPAIR_ENV = "RK_ADMIN_KEYPAIR"
CRON_SECRET_ENV = "RK_CRON_SECRET"
BROADCAST_TOKEN_ENV = "RK_BROADCAST_TOKEN"


class AssetSpec(BaseModel):
    """One tradable asset: ticker, display name and Pyth feed id."""

    symbol: str
    name: str = ""
    feed_id: str

    @field_validator("symbol")
    @classmethod
    def _upper_symbol(cls, v: str) -> str:
        return v.strip().upper()

    model_config = {"frozen": True}


class LedgerSettings(BaseModel):
    rpc_url: str = "https://api.devnet.solana.com"
    program_id: str = "81K7nKnv7JiRhBCRNmagKot27Yu82eRWeeNA7dtGGaX6"
    commitment: str = "confirmed"
    request_timeout_seconds: float = 15.0
    confirm_timeout_seconds: float = 60.0
    confirm_poll_seconds: float = 2.0


class OracleSettings(BaseModel):
    hermes_url: str = "https://hermes.pyth.network"
    timeout_seconds: float = 10.0
    max_retries: int = 3
    backoff_seconds: float = 1.0


class RoundSettings(BaseModel):
    betting_window_seconds: int = 12 * 60 * 60
    round_duration_seconds: int = 24 * 60 * 60


class KeeperSection(BaseModel):
    cooldown_rounds: int = 2
    recovery_lookback: int = 5
    invocation_deadline_seconds: float = 240.0
    settle_refresh_delay_seconds: float = 5.0
    poll_interval_seconds: float = 60.0


class ExecutionSettings(BaseModel):
    batch_size: int = 5
    max_retries: int = 3
    backoff_seconds: float = 1.0
    backoff_max_seconds: float = 10.0
    breaker_max_failures: int = 5
    isolate_failures: bool = True


class SettlementSettings(BaseModel):
    tie_winner: str = "short"

    @field_validator("tie_winner")
    @classmethod
    def _lower_tie(cls, v: str) -> str:
        return v.lower()


class NotifySettings(BaseModel):
    enabled: bool = False
    api_url: str = "https://api.x.com/2/tweets"
    base_url: str = "https://microperps.fun"
    max_attempts: int = 3
    backoff_seconds: float = 2.0
    timeout_seconds: float = 10.0


class ApiSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8100
    allow_unauthenticated: bool = False


class KeeperSettings(BaseModel):
    """Everything one keeper invocation needs, minus the secrets."""

    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    oracle: OracleSettings = Field(default_factory=OracleSettings)
    round: RoundSettings = Field(default_factory=RoundSettings)
    keeper: KeeperSection = Field(default_factory=KeeperSection)
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)
    settlement: SettlementSettings = Field(default_factory=SettlementSettings)
    notify: NotifySettings = Field(default_factory=NotifySettings)
    api: ApiSettings = Field(default_factory=ApiSettings)
    assets: list[AssetSpec] = Field(default_factory=list)

    def asset(self, symbol: str) -> AssetSpec | None:
        wanted = symbol.strip().upper()
        for spec in self.assets:
            if spec.symbol == wanted:
                return spec
        return None


class Credentials(BaseModel):
    """Secrets read from the environment. Never logged."""

    admin_keypair: str
    cron_secret: str = ""
    broadcast_token: str = ""

    def __repr__(self) -> str:
        return "Credentials(admin_keypair=***, cron_secret=***, broadcast_token=***)"


def load_settings(loader: ConfigLoader) -> KeeperSettings:
    """Validate ranges and build typed settings from a loaded ConfigLoader."""
    loader.validate_ranges()
    try:
        return KeeperSettings.model_validate(loader.config)
    except ValueError as exc:
        msg = f"Invalid keeper configuration: {exc}"
        raise ConfigError(msg) from exc


def require_credentials(
    *,
    need_cron_secret: bool = False,
    need_broadcast_token: bool = False,
) -> Credentials:
    """Read secrets from the environment, failing before any I/O happens."""
    admin = os.environ.get(ADMIN_KEYPAIR_ENV, "").strip()
    cron_secret = os.environ.get(CRON_SECRET_ENV, "").strip()
    token = os.environ.get(BROADCAST_TOKEN_ENV, "").strip()

    missing: list[str] = []
    if not admin:
        missing.append(ADMIN_KEYPAIR_ENV)
    if need_cron_secret and not cron_secret:
        missing.append(CRON_SECRET_ENV)
    if need_broadcast_token and not token:
        missing.append(BROADCAST_TOKEN_ENV)
    if missing:
        msg = f"Missing required credentials: {', '.join(missing)}"
        raise ConfigError(msg)

    return Credentials(admin_keypair=admin, cron_secret=cron_secret, broadcast_token=token)

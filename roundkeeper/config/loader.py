"""TOML config loader with environment variable overrides."""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

from roundkeeper.core.errors import KeeperError


class ConfigError(KeeperError):
    """Raised when config loading or validation fails."""


_TIE_WINNERS = ("short", "long")


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base, returning a new dict."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _apply_env_overrides(config: dict[str, Any], prefix: str = "RK") -> dict[str, Any]:
    """Apply environment variable overrides.

    Env var naming: RK__section__key=value (double underscore separator).
    Nested keys: RK__execution__batch_size=3
    """
    result = dict(config)
    env_prefix = f"{prefix}__"

    for env_key, env_value in os.environ.items():
        if not env_key.startswith(env_prefix):
            continue

        parts = env_key[len(env_prefix) :].lower().split("__")
        target = result
        for part in parts[:-1]:
            if part not in target:
                target[part] = {}
            if isinstance(target[part], dict):
                target[part] = dict(target[part])
                target = target[part]
            else:
                break
        else:
            target[parts[-1]] = _coerce_value(env_value)

    return result


def _coerce_value(value: str) -> Any:
    """Coerce string env var value to appropriate Python type.

    Numeric conversion is attempted BEFORE boolean so "0"/"1" stay integers.
    """
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False
    return value


class ConfigLoader:
    """Load and merge TOML config files with env var overrides."""

    def __init__(
        self,
        config_dir: str | Path = "config",
        env: str | None = None,
    ) -> None:
        self._config_dir = Path(config_dir)
        self._env = env or os.environ.get("RK_ENV", "development")
        self._config: dict[str, Any] = {}

    @property
    def env(self) -> str:
        return self._env

    def load(self) -> dict[str, Any]:
        """Load config: default.toml → {env}.toml → env vars."""
        default_path = self._config_dir / "default.toml"
        if not default_path.exists():
            msg = f"Default config not found: {default_path}"
            raise ConfigError(msg)

        self._config = self._load_toml(default_path)

        env_path = self._config_dir / f"{self._env}.toml"
        if env_path.exists():
            env_config = self._load_toml(env_path)
            self._config = _deep_merge(self._config, env_config)

        self._config = _apply_env_overrides(self._config)
        return self._config

    def get(self, dotted_key: str, default: Any = None) -> Any:
        """Get a config value using dotted notation: 'execution.batch_size'."""
        if not self._config:
            self.load()

        parts = dotted_key.split(".")
        current: Any = self._config
        for part in parts:
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default
        return current

    def require(self, dotted_key: str) -> Any:
        """Get a config value, raising ConfigError if missing."""
        value = self.get(dotted_key)
        if value is None:
            msg = f"Required config key missing: {dotted_key}"
            raise ConfigError(msg)
        return value

    def validate_keys(self, required_keys: list[str]) -> None:
        """Validate that all required keys exist."""
        missing = [k for k in required_keys if self.get(k) is None]
        if missing:
            msg = f"Missing required config keys: {', '.join(missing)}"
            raise ConfigError(msg)

    def validate_ranges(self) -> None:
        """Validate ranges for the parameters that bound ledger work.

        Raises:
            ConfigError: If any execution/keeper parameter is out of range.
        """
        if not self._config:
            self.load()

        errors: list[str] = []

        batch_size = self.get("execution.batch_size")
        if batch_size is not None and not (1 <= batch_size <= 20):
            errors.append(f"execution.batch_size must be in [1, 20], got {batch_size}")

        max_retries = self.get("execution.max_retries")
        if max_retries is not None and max_retries < 0:
            errors.append(f"execution.max_retries must be >= 0, got {max_retries}")

        breaker = self.get("execution.breaker_max_failures")
        if breaker is not None and breaker < 1:
            errors.append(f"execution.breaker_max_failures must be >= 1, got {breaker}")

        cooldown = self.get("keeper.cooldown_rounds")
        if cooldown is not None and cooldown < 0:
            errors.append(f"keeper.cooldown_rounds must be >= 0, got {cooldown}")

        lookback = self.get("keeper.recovery_lookback")
        if lookback is not None and lookback < 0:
            errors.append(f"keeper.recovery_lookback must be >= 0, got {lookback}")

        deadline = self.get("keeper.invocation_deadline_seconds")
        if deadline is not None and deadline <= 0:
            errors.append(f"keeper.invocation_deadline_seconds must be > 0, got {deadline}")

        for key in ("ledger.request_timeout_seconds", "oracle.timeout_seconds"):
            timeout = self.get(key)
            if timeout is not None and timeout <= 0:
                errors.append(f"{key} must be > 0, got {timeout}")

        window = self.get("round.betting_window_seconds")
        if window is not None and window <= 0:
            errors.append(f"round.betting_window_seconds must be > 0, got {window}")

        tie = self.get("settlement.tie_winner")
        if tie is not None and str(tie).lower() not in _TIE_WINNERS:
            errors.append(f"settlement.tie_winner must be one of {_TIE_WINNERS}, got {tie!r}")

        assets = self.get("assets", [])
        if not isinstance(assets, list):
            errors.append("assets must be an array of tables")
        else:
            for i, asset in enumerate(assets):
                if not isinstance(asset, dict) or not asset.get("symbol") or not asset.get("feed_id"):
                    errors.append(f"assets[{i}] needs both 'symbol' and 'feed_id'")

        if errors:
            msg = "Config validation failed:\n  " + "\n  ".join(errors)
            raise ConfigError(msg)

    @property
    def config(self) -> dict[str, Any]:
        if not self._config:
            self.load()
        return self._config

    @staticmethod
    def _load_toml(path: Path) -> dict[str, Any]:
        with open(path, "rb") as f:
            return tomllib.load(f)

"""
core/config.py
Configuration: environment settings via pydantic-settings, plus the
trading config document (risk / guard / execution sections).

Settings come from the environment / .env file. The trading config is a
JSON document; every field is optional and falls back to its default.
The TradingConfig object is built once at startup and handed to the
Guard Engine, Risk Manager and Executor explicitly.
"""

import json
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings

from core.errors import ConfigurationError


class Settings(BaseSettings):
    """Process settings loaded from environment variables / .env file."""

    # --- Execution mode: anything but a truthy value means dry-run ---
    LIVE_TRADING: bool = False

    # --- Storage ---
    DATA_DIR: str = "./data"
    CONFIG_PATH: str = "./config.json"
    STATIONS_PATH: str = "./data/stations.json"

    # --- Kalshi ---
    KALSHI_API_KEY_ID: str = ""
    KALSHI_PRIVATE_KEY_PATH: str = "./kalshi_private_key.pem"
    KALSHI_USE_DEMO: bool = True

    # --- Observations ---
    NWS_USER_AGENT: str = "guarded-ledger/1.0 (prediction market trading core)"

    LOG_LEVEL: str = "INFO"

    model_config = {
        "env_file": ".env",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Singleton access to process settings (outer surface only)."""
    return Settings()


# ---------------------------------------------------------------------------
# Trading config document
# ---------------------------------------------------------------------------

class _Section(BaseModel):
    # Accept both snake_case and the camelCase keys of hand-written documents
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class RiskConfig(_Section):
    """Bankroll-relative risk limits (risk.*)."""

    max_daily_loss_pct: float = Field(default=0.05, ge=0.0, le=1.0)
    max_open_positions: int = Field(default=5, ge=0)
    max_position_pct: float = Field(default=0.05, ge=0.0, le=1.0)
    max_station_exposure: float = Field(default=0.10, ge=0.0, le=1.0)
    drawdown_pct: float = Field(default=0.20, ge=0.0, le=1.0)
    peak_bankroll: float = Field(default=1000.0, ge=0.0)
    max_per_station: int = Field(default=3, ge=0)
    initial_bankroll: float = Field(default=1000.0, ge=0.0)


class GuardConfig(_Section):
    """Hard admission thresholds (guard.*)."""

    max_model_spread: float = 3.0
    min_sigma_gap: float = 1.5
    max_trades_per_day_per_station: int = 1
    hard_max_contracts: int = 20
    clim_outlier_range: float = 15.0
    max_station_exposure_pct: float = 0.05
    max_bid_ask_spread: float = 0.10
    calibration_months: tuple[int, ...] = (12, 1, 2)


class ExecutionConfig(_Section):
    """Auto-execution and sizing knobs (execution.*)."""

    auto_max_contracts: int = Field(default=5, ge=1)
    kelly_fraction: float = Field(default=0.25, gt=0.0, le=1.0)
    transaction_cost: float = Field(default=0.04, ge=0.0)
    max_position_pct: float = Field(default=0.05, gt=0.0, le=1.0)
    max_trades_per_session: int = Field(default=1, ge=1)


class TradingConfig(_Section):
    """The full config document."""

    risk: RiskConfig = RiskConfig()
    guard: GuardConfig = GuardConfig()
    execution: ExecutionConfig = ExecutionConfig()


def load_trading_config(path: str | Path) -> TradingConfig:
    """
    Load the trading config document.

    A missing file yields the defaults; a malformed one raises
    ConfigurationError rather than silently trading on defaults.
    """
    path = Path(path)
    if not path.exists():
        return TradingConfig()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        return TradingConfig.model_validate(raw)
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ConfigurationError(f"Invalid trading config {path}: {exc}") from exc

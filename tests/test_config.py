"""
tests/test_config.py
Tests for the trading config document and process settings.
"""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from core.config import Settings, TradingConfig, load_trading_config
from core.errors import ConfigurationError


class TestLoadTradingConfig:
    def test_missing_file_gives_defaults(self, tmp_path: Path):
        config = load_trading_config(tmp_path / "nope.json")
        assert config == TradingConfig()
        assert config.guard.hard_max_contracts == 20
        assert config.guard.calibration_months == (12, 1, 2)
        assert config.execution.kelly_fraction == pytest.approx(0.25)
        assert config.risk.drawdown_pct == pytest.approx(0.20)

    def test_camel_case_overrides(self, tmp_path: Path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "risk": {"maxDailyLossPct": 0.02},
            "guard": {"minSigmaGap": 2.0, "calibrationMonths": [11, 12]},
            "execution": {"autoMaxContracts": 3},
        }))

        config = load_trading_config(path)

        assert config.risk.max_daily_loss_pct == pytest.approx(0.02)
        assert config.risk.max_open_positions == 5
        assert config.guard.min_sigma_gap == pytest.approx(2.0)
        assert config.guard.calibration_months == (11, 12)
        assert config.execution.auto_max_contracts == 3
        assert config.execution.transaction_cost == pytest.approx(0.04)

    def test_snake_case_also_accepted(self, tmp_path: Path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"guard": {"hard_max_contracts": 10}}))
        assert load_trading_config(path).guard.hard_max_contracts == 10

    def test_malformed_json_fails_fast(self, tmp_path: Path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        with pytest.raises(ConfigurationError):
            load_trading_config(path)

    def test_invalid_value_fails_fast(self, tmp_path: Path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"risk": {"maxPositionPct": 3}}))
        with pytest.raises(ConfigurationError):
            load_trading_config(path)

    def test_config_is_immutable(self):
        config = TradingConfig()
        with pytest.raises(ValidationError):
            config.guard.hard_max_contracts = 50


class TestSettings:
    def test_dry_run_by_default(self, monkeypatch):
        monkeypatch.delenv("LIVE_TRADING", raising=False)
        assert Settings(_env_file=None).LIVE_TRADING is False

    def test_live_trading_from_env(self, monkeypatch):
        monkeypatch.setenv("LIVE_TRADING", "1")
        assert Settings(_env_file=None).LIVE_TRADING is True

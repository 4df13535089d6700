"""
tests/conftest.py
Shared fixtures for the test suite.
"""

from datetime import date
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from app.dependencies import build_core
from app.services.executor import Executor
from app.services.guard import GuardEngine
from app.services.observation import Observation
from app.services.risk_manager import RiskManager
from app.services.stations import StationRegistry
from core.config import Settings, TradingConfig
from storage.history import HistoryLog
from storage.ledger import LedgerStore
from storage.pending import PendingStore

STATIONS = {
    "KNYC": {
        "city": "NY",
        "tier": "A",
        "observationStation": "KNYC",
        "baseSigma": 3.0,
        "correlationGroup": "northeast",
        "climNormalHigh": {"1": 39, "2": 42, "6": 80, "7": 85},
    },
    "KPHL": {
        "city": "PHIL",
        "tier": "A",
        "baseSigma": 3.2,
        "correlationGroup": "northeast",
        "climNormalHigh": {"1": 41, "7": 88},
    },
    "KDFW": {
        "city": "DAL",
        "tier": "B",
        "baseSigma": 3.6,
        "correlationGroup": "texas_oklahoma",
        "climNormalHigh": {"1": 57, "7": 96},
    },
    "KMDW": {
        "city": "CHI",
        "tier": "C",
        "enabled": False,
        "climNormalHigh": {"1": 32, "7": 85},
    },
}


# ------------------------------------------------------------------
# Fakes
# ------------------------------------------------------------------

class FakeKalshiClient:
    """In-memory stand-in for KalshiClient."""

    def __init__(self, balance: float = 500.0, market_status: str = "open") -> None:
        self.balance = balance
        self.market_status = market_status
        self.orders: list[dict] = []
        self.order_error: Exception | None = None
        self.balance_error: Exception | None = None
        self.market_error: Exception | None = None

    async def __aenter__(self) -> "FakeKalshiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        return None

    async def get_balance(self) -> float:
        if self.balance_error is not None:
            raise self.balance_error
        return self.balance

    async def get_market(self, ticker: str) -> dict:
        if self.market_error is not None:
            raise self.market_error
        return {"ticker": ticker, "status": self.market_status}

    async def place_order(self, order: dict) -> dict:
        if self.order_error is not None:
            raise self.order_error
        self.orders.append(order)
        return {"order_id": f"ord-{len(self.orders)}", "status": "resting"}


class FakeObservationFeed:
    """Observation feed returning fixed values per station."""

    def __init__(self, values: dict[str, float] | None = None) -> None:
        self.values = dict(values or {})
        self.failing: set[str] = set()
        self.calls: list[tuple[str, date]] = []

    async def fetch(self, station: str, on: date) -> Observation | None:
        self.calls.append((station, on))
        if station in self.failing:
            raise httpx.ConnectError(f"NWS unreachable for {station}")
        value = self.values.get(station)
        if value is None:
            return None
        return Observation(station=station, date=on, value=value, count=24)


# ------------------------------------------------------------------
# Core components
# ------------------------------------------------------------------

@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Temporary DATA_DIR for ledger, pending and history files."""
    return tmp_path / "data"


@pytest.fixture
def trading_config() -> TradingConfig:
    """All-defaults trading config."""
    return TradingConfig()


@pytest.fixture
def stations() -> StationRegistry:
    """Small in-memory station registry (two correlated northeast stations)."""
    return StationRegistry.from_dict(STATIONS)


@pytest.fixture
def ledger(data_dir: Path) -> LedgerStore:
    return LedgerStore(data_dir / "ledger.json")


@pytest.fixture
def pending_store(data_dir: Path) -> PendingStore:
    return PendingStore(data_dir / "pending_trades.json")


@pytest.fixture
def history(data_dir: Path) -> HistoryLog:
    return HistoryLog(data_dir / "history")


@pytest.fixture
def guard(trading_config: TradingConfig, stations: StationRegistry, ledger: LedgerStore) -> GuardEngine:
    return GuardEngine(trading_config.guard, stations, ledger)


@pytest.fixture
def risk_manager(trading_config: TradingConfig, ledger: LedgerStore) -> RiskManager:
    return RiskManager(trading_config.risk, ledger)


@pytest.fixture
def kalshi() -> FakeKalshiClient:
    return FakeKalshiClient()


@pytest.fixture
def executor(trading_config, guard, risk_manager, ledger, pending_store, history, kalshi) -> Executor:
    """Dry-run executor."""
    return Executor(
        trading_config, guard, risk_manager, ledger, pending_store,
        history=history, client_factory=lambda: kalshi, live=False,
    )


@pytest.fixture
def live_executor(trading_config, guard, risk_manager, ledger, pending_store, history, kalshi) -> Executor:
    """Live-mode executor talking to the fake exchange client."""
    return Executor(
        trading_config, guard, risk_manager, ledger, pending_store,
        history=history, client_factory=lambda: kalshi, live=True,
    )


@pytest.fixture
def feed() -> FakeObservationFeed:
    return FakeObservationFeed()


# ------------------------------------------------------------------
# HTTP surface
# ------------------------------------------------------------------

@pytest.fixture
def core(data_dir: Path, trading_config: TradingConfig, stations: StationRegistry, feed: FakeObservationFeed):
    """A TradingCore wired to temp files and fake collaborators."""
    settings = Settings(DATA_DIR=str(data_dir), LIVE_TRADING=False)
    return build_core(settings, config=trading_config, stations=stations, feed=feed)


@pytest.fixture
def client(core):
    """FastAPI TestClient whose lifespan reuses the test core."""
    from app.main import app

    app.state.core = core
    with TestClient(app) as test_client:
        yield test_client
    app.state.core = None

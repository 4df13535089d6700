"""
app/dependencies.py
Component wiring — builds the trading core once at startup and hands it
to route handlers through a FastAPI dependency.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from fastapi import Request

from app.services.executor import Executor
from app.services.guard import GuardEngine
from app.services.kalshi_client import KalshiClient
from app.services.observation import NwsObservationFeed, ObservationFeed
from app.services.risk_manager import RiskManager
from app.services.settlement import SettlementEngine
from app.services.stations import StationRegistry
from core.config import Settings, TradingConfig, load_trading_config
from storage.history import HistoryLog
from storage.ledger import LedgerStore
from storage.pending import PendingStore

logger = logging.getLogger(__name__)

LEDGER_FILE = "ledger.json"
PENDING_FILE = "pending_trades.json"
HISTORY_DIR = "history"


@dataclass
class TradingCore:
    """Every long-lived component, built from one config and one data dir."""
    config: TradingConfig
    stations: StationRegistry
    ledger: LedgerStore
    pending: PendingStore
    history: HistoryLog
    guard: GuardEngine
    risk: RiskManager
    executor: Executor
    settlement: SettlementEngine
    feed: ObservationFeed | None = None
    live: bool = False


def build_core(
    settings: Settings,
    config: TradingConfig | None = None,
    stations: StationRegistry | None = None,
    feed: ObservationFeed | None = None,
) -> TradingCore:
    """Assemble the core from settings; any piece can be injected for tests."""
    data_dir = Path(settings.DATA_DIR)
    config = config or load_trading_config(settings.CONFIG_PATH)
    stations = stations or StationRegistry.from_json(settings.STATIONS_PATH)

    ledger = LedgerStore(data_dir / LEDGER_FILE, initial_balance=config.risk.initial_bankroll)
    pending = PendingStore(data_dir / PENDING_FILE)
    history = HistoryLog(data_dir / HISTORY_DIR)
    guard = GuardEngine(config.guard, stations, ledger)
    risk = RiskManager(config.risk, ledger)

    if feed is None:
        obs_ids = {}
        for station_id in stations.station_ids:
            info = stations.get(station_id)
            if info is not None and info.observation_station:
                obs_ids[station_id] = info.observation_station
        feed = NwsObservationFeed(obs_ids, settings.NWS_USER_AGENT)

    executor = Executor(
        config,
        guard,
        risk,
        ledger,
        pending,
        history=history,
        client_factory=lambda: KalshiClient.from_settings(settings),
        live=settings.LIVE_TRADING,
    )

    logger.info(
        "Trading core ready: %d stations (%d tradeable), data dir %s, %s",
        len(stations.station_ids), len(stations.tradeable), data_dir,
        "LIVE" if settings.LIVE_TRADING else "DRY RUN",
    )
    return TradingCore(
        config=config,
        stations=stations,
        ledger=ledger,
        pending=pending,
        history=history,
        guard=guard,
        risk=risk,
        executor=executor,
        settlement=SettlementEngine(ledger, feed, history=history),
        feed=feed,
        live=settings.LIVE_TRADING,
    )


def get_core(request: Request) -> TradingCore:
    """FastAPI dependency: the core built in the application lifespan."""
    return request.app.state.core

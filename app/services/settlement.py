"""
app/services/settlement.py
Settlement — fetches realized observations, resolves open trades against
the threshold/bracket in their contract ids and updates the ledger.

A failed fetch for one station is logged and that station is skipped.
If no observation at all comes back the run is a no-op: nothing is
guessed and the ledger is not touched.
"""

import logging
from dataclasses import dataclass, field
from datetime import date

import httpx

from app.services.observation import ObservationFeed
from storage.history import HistoryLog
from storage.ledger import LedgerStore, SettlementReport, TradeOutcome, iter_resolvable

logger = logging.getLogger(__name__)

NO_OBSERVATIONS = "No observations available"


@dataclass
class SettlementResult:
    """What a verify/settle run saw and did."""
    date: date
    actuals: dict[str, float] = field(default_factory=dict)
    outcomes: list[TradeOutcome] = field(default_factory=list)
    anomalies: list[str] = field(default_factory=list)
    fetch_errors: dict[str, str] = field(default_factory=dict)
    error: str | None = None
    applied: bool = False
    balance: float | None = None

    @property
    def count(self) -> int:
        return len(self.outcomes)

    @property
    def total_pnl(self) -> float:
        return round(sum(o.pnl for o in self.outcomes), 2)


class SettlementEngine:
    """Resolves a date's open trades exactly once each."""

    def __init__(
        self,
        ledger: LedgerStore,
        feed: ObservationFeed,
        history: HistoryLog | None = None,
    ) -> None:
        self._ledger = ledger
        self._feed = feed
        self._history = history

    async def fetch_actuals(self, on: date, stations: list[str]) -> tuple[dict[str, float], dict[str, str]]:
        """Observed value per station; failures are collected, not raised."""
        actuals: dict[str, float] = {}
        errors: dict[str, str] = {}
        for station in stations:
            try:
                obs = await self._feed.fetch(station, on)
            except (httpx.HTTPError, KeyError, ValueError) as exc:
                logger.error("Failed to fetch observation for %s on %s: %s", station, on, exc)
                errors[station] = str(exc)
                continue
            if obs is not None:
                actuals[station] = obs.value
        return actuals, errors

    async def verify(self, on: date) -> SettlementResult:
        """Preview how open trades would settle, without touching the ledger."""
        state = self._ledger.snapshot()
        stations = sorted({t.station for t in state.open_trades()})
        actuals, errors = await self.fetch_actuals(on, stations)

        result = SettlementResult(date=on, actuals=actuals, fetch_errors=errors)
        if not actuals:
            result.error = NO_OBSERVATIONS
            return result

        resolved, anomalies = iter_resolvable(state.trades, on, actuals)
        result.outcomes = [outcome for _, outcome in resolved]
        result.anomalies = anomalies
        result.balance = state.balance
        return result

    async def settle(self, on: date) -> SettlementResult:
        """Fetch actuals and settle the ledger for `on`."""
        preview = await self.verify(on)
        if preview.error:
            logger.warning("Settlement %s skipped: %s", on.isoformat(), preview.error)
            return preview

        report: SettlementReport = self._ledger.settle_date(on, preview.actuals)
        result = SettlementResult(
            date=on,
            actuals=preview.actuals,
            outcomes=report.settled,
            anomalies=report.anomalies,
            fetch_errors=preview.fetch_errors,
            applied=True,
            balance=report.balance,
        )
        self._record_observations(result)
        return result

    def _record_observations(self, result: SettlementResult) -> None:
        if self._history is None:
            return
        trades = {t.id: t for t in self._ledger.snapshot().trades}
        for outcome in result.outcomes:
            trade = trades[outcome.trade_id]
            forecast = trade.metadata.get("forecast_high")
            error = outcome.actual - forecast if forecast is not None else None
            self._history.append_observation(outcome.station, outcome.actual, error, on=result.date)

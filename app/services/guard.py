"""
app/services/guard.py
Pre-trade guard — enforces every trading rule as a hard block.

Every trade must pass ALL guards before execution. The engine does not
short-circuit: each failing rule contributes one reason, so the operator
sees every violation at once.

Rules (in order):
  1. Station whitelist
  2. Model spread <= max_model_spread
  3. Market sigma - our sigma >= min_sigma_gap
  4. Max N open trades per station per day
  5. Quantity <= hard_max_contracts
  6. Forecast within clim_outlier_range of the climatological normal
  7. No open trade on a correlated station the same day
  8. Cumulative open exposure on the station <= fraction of balance
  9. Bid-ask spread <= max_bid_ask_spread (when known)
Plus a non-blocking warning when trading outside the calibration window.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from app.services.stations import StationRegistry
from core.config import GuardConfig
from storage.ledger import LedgerStore
from storage.models import LedgerState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GuardCandidate:
    """Everything the guards need to know about a proposed trade."""
    station: str
    qty: int | None = None
    forecast_spread: float | None = None   # model disagreement
    market_sigma: float | None = None      # market-implied uncertainty
    forecast_high: float | None = None     # model point estimate
    target_date: date | None = None        # contract event date, defaults to today
    bid_ask_spread: float | None = None
    our_sigma: float | None = None         # override for the station sigma model


@dataclass
class GuardResult:
    """Outcome of one guard evaluation."""
    passed: bool
    reasons: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.passed


class GuardEngine:
    """Runs the fixed guard battery against a ledger snapshot."""

    def __init__(
        self,
        config: GuardConfig,
        stations: StationRegistry,
        ledger: LedgerStore | None = None,
    ) -> None:
        self._cfg = config
        self._stations = stations
        self._ledger = ledger

    def evaluate(self, candidate: GuardCandidate, snapshot: LedgerState | None = None) -> GuardResult:
        """
        Run every guard.

        Pure with respect to `snapshot`: identical candidate + unchanged
        snapshot gives an identical result. When no snapshot is passed one
        is loaded from the ledger store.
        """
        if snapshot is None:
            if self._ledger is None:
                raise ValueError("GuardEngine needs a ledger snapshot or a ledger store")
            snapshot = self._ledger.snapshot()

        cfg = self._cfg
        station = candidate.station
        target = candidate.target_date or datetime.now(timezone.utc).date()
        month = target.month
        known = station in self._stations
        open_trades = snapshot.open_trades()
        reasons: list[str] = []
        warnings: list[str] = []

        # 1. Station whitelist
        if not self._stations.is_tradeable(station):
            allowed = ", ".join(sorted(self._stations.tradeable))
            reasons.append(f"Station {station} not in tradeable whitelist [{allowed}]")

        # 2. Model spread
        if candidate.forecast_spread is not None and candidate.forecast_spread > cfg.max_model_spread:
            reasons.append(
                f"Model spread {candidate.forecast_spread:.1f}°F exceeds {cfg.max_model_spread}°F limit "
                f"— forecast models disagree too much"
            )

        # 3. Market sigma gap
        if known or candidate.our_sigma is not None:
            our_sigma = candidate.our_sigma
            if our_sigma is None:
                our_sigma = self._stations.effective_sigma(station, month)
            if candidate.market_sigma is None:
                reasons.append("No market σ data — implied volatility must be computed first")
            else:
                gap = candidate.market_sigma - our_sigma
                if gap < cfg.min_sigma_gap:
                    reasons.append(
                        f"Market σ ({candidate.market_sigma:.1f}°F) - our σ ({our_sigma:.1f}°F) "
                        f"= gap {gap:.1f}°F < required {cfg.min_sigma_gap}°F"
                    )

        # 4. Max open trades per station per day
        same_day = [t for t in open_trades if t.station == station and t.event_day == target]
        if len(same_day) >= cfg.max_trades_per_day_per_station:
            reasons.append(
                f"Already {len(same_day)} open trade(s) for {station} on {target.isoformat()} "
                f"(max {cfg.max_trades_per_day_per_station})"
            )

        # 5. Hard contract cap
        if candidate.qty is not None and candidate.qty > cfg.hard_max_contracts:
            reasons.append(
                f"Quantity {candidate.qty} exceeds hard max {cfg.hard_max_contracts} contracts"
            )

        # 6. Climatological outlier
        if candidate.forecast_high is not None and known:
            normal = self._stations.clim_normal(station, month)
            if normal is not None:
                dev = abs(candidate.forecast_high - normal)
                if dev > cfg.clim_outlier_range:
                    reasons.append(
                        f"Forecast {candidate.forecast_high:g}°F is {dev:.0f}°F from normal "
                        f"{normal:g}°F (limit: {cfg.clim_outlier_range:g}°F)"
                    )

        # 7. Correlated stations
        correlated = self._stations.correlated_with(station)
        if correlated:
            for trade in open_trades:
                if trade.station in correlated and trade.event_day == target:
                    reasons.append(
                        f"Cannot trade {station} same day as {trade.station} — correlated "
                        f"weather systems (existing trade: {trade.id})"
                    )

        # 8. Cumulative station exposure
        exposure = sum(t.cost for t in open_trades if t.station == station and t.cost > 0)
        max_exposure = snapshot.balance * cfg.max_station_exposure_pct
        if exposure > max_exposure:
            reasons.append(
                f"Cumulative exposure on {station}: ${exposure:.2f} exceeds "
                f"{cfg.max_station_exposure_pct * 100:g}% of bankroll (${max_exposure:.2f})"
            )

        # 9. Bid-ask spread
        if candidate.bid_ask_spread is not None and candidate.bid_ask_spread > cfg.max_bid_ask_spread:
            reasons.append(
                f"Bid-ask spread ${candidate.bid_ask_spread:.2f} exceeds "
                f"${cfg.max_bid_ask_spread:.2f} limit — illiquid contract"
            )

        # Calibration window (warning only)
        window = self._stations.calibration_months(station) or cfg.calibration_months
        if window and month not in window:
            months = ", ".join(str(m) for m in window)
            warnings.append(
                f"⚠ {station}: trading in month {month}, outside the calibration window "
                f"(months {months}) — sigma may be misestimated"
            )

        result = GuardResult(passed=not reasons, reasons=reasons, warnings=warnings)
        if not result.passed:
            logger.info("Guards BLOCKED %s: %d reason(s)", station, len(reasons))
        return result

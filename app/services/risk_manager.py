"""
app/services/risk_manager.py
Risk limits, circuit breakers and status reporting.

All checks are recomputed from the ledger on every call, so the drawdown
circuit breaker stays tripped exactly as long as balance sits at or below
the floor — no manual reset.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from core.config import RiskConfig
from storage.ledger import LedgerStore
from storage.models import LedgerState

logger = logging.getLogger(__name__)


@dataclass
class RiskCheck:
    """Outcome of check_limits()."""
    allowed: bool
    violations: list[str] = field(default_factory=list)


@dataclass
class RiskStatus:
    """Snapshot for the risk dashboard."""
    balance: float
    total_pnl: float
    daily_pnl: float
    open_positions: int
    max_open_positions: int
    positions_per_station: dict[str, int]
    peak_bankroll: float
    drawdown_pct: float
    drawdown_floor: float
    max_daily_loss: float
    max_position_pct: float
    trading_allowed: bool
    violations: list[str]


def _today() -> date:
    return datetime.now(timezone.utc).date()


class RiskManager:
    """Bankroll-health checks against the ledger."""

    def __init__(self, config: RiskConfig, ledger: LedgerStore) -> None:
        self._cfg = config
        self._ledger = ledger

    # ------------------------------------------------------------------
    # Derived figures
    # ------------------------------------------------------------------

    def peak_bankroll(self, state: LedgerState) -> float:
        return max(self._cfg.peak_bankroll, self._cfg.initial_bankroll, state.peak_balance, state.balance)

    def drawdown_floor(self, state: LedgerState) -> float:
        return round(self.peak_bankroll(state) * (1.0 - self._cfg.drawdown_pct), 2)

    def max_daily_loss(self, state: LedgerState) -> float:
        """Daily loss floor as a (negative) dollar amount."""
        return -(state.balance * self._cfg.max_daily_loss_pct)

    @staticmethod
    def daily_pnl(state: LedgerState, on: date | None = None) -> float:
        """
        Realized P&L of trades PLACED on `on` (not settled on it), so that
        yesterday's trades settling overnight never block today's trading.
        """
        on = on or _today()
        return round(sum(
            t.pnl for t in state.trades
            if t.settled and t.pnl is not None and t.trade_date == on
        ), 2)

    @staticmethod
    def positions_per_station(state: LedgerState) -> dict[str, int]:
        return dict(Counter(t.station for t in state.open_trades()))

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def check_limits(
        self,
        station: str | None = None,
        proposed_cost: float = 0.0,
        snapshot: LedgerState | None = None,
        today: date | None = None,
    ) -> RiskCheck:
        """Run every risk check; violations are reported independently."""
        cfg = self._cfg
        state = snapshot if snapshot is not None else self._ledger.snapshot()
        open_trades = state.open_trades()
        daily = self.daily_pnl(state, today)
        max_loss = self.max_daily_loss(state)
        floor = self.drawdown_floor(state)
        violations: list[str] = []

        if daily <= max_loss:
            violations.append(
                f"Daily P&L ${daily:.2f} exceeds max loss of ${max_loss:.2f}"
            )

        if len(open_trades) >= cfg.max_open_positions:
            violations.append(
                f"{len(open_trades)} open positions (max {cfg.max_open_positions})"
            )

        position_cap = state.balance * cfg.max_position_pct
        if proposed_cost > 0 and proposed_cost > position_cap:
            violations.append(
                f"Trade cost ${proposed_cost:.2f} exceeds {cfg.max_position_pct * 100:g}% "
                f"of bankroll (${position_cap:.2f})"
            )

        if state.balance <= floor:
            violations.append(
                f"Bankroll ${state.balance:.2f} at or below drawdown floor ${floor:.2f} — CIRCUIT BREAKER"
            )

        if station:
            count = sum(1 for t in open_trades if t.station == station)
            if count >= cfg.max_per_station:
                violations.append(f"{count} positions on {station} (max {cfg.max_per_station})")

            station_cost = sum(t.cost for t in open_trades if t.station == station)
            max_exposure = state.balance * cfg.max_station_exposure
            if station_cost > max_exposure:
                violations.append(
                    f"Station {station} exposure ${station_cost:.2f} exceeds "
                    f"{cfg.max_station_exposure * 100:g}% of bankroll (${max_exposure:.2f})"
                )

        if violations:
            logger.warning("Risk limits violated: %s", "; ".join(violations))
        return RiskCheck(allowed=not violations, violations=violations)

    def status(self, today: date | None = None) -> RiskStatus:
        """Full risk dashboard from one ledger snapshot."""
        state = self._ledger.snapshot()
        peak = self.peak_bankroll(state)
        drawdown = (peak - state.balance) / peak * 100 if peak > 0 else 0.0
        check = self.check_limits(snapshot=state, today=today)
        total_pnl = sum(t.pnl for t in state.trades if t.settled and t.pnl is not None)

        return RiskStatus(
            balance=state.balance,
            total_pnl=round(total_pnl, 2),
            daily_pnl=self.daily_pnl(state, today),
            open_positions=len(state.open_trades()),
            max_open_positions=self._cfg.max_open_positions,
            positions_per_station=self.positions_per_station(state),
            peak_bankroll=peak,
            drawdown_pct=round(drawdown, 1),
            drawdown_floor=self.drawdown_floor(state),
            max_daily_loss=round(self.max_daily_loss(state), 2),
            max_position_pct=self._cfg.max_position_pct,
            trading_allowed=check.allowed,
            violations=check.violations,
        )

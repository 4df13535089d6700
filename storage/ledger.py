"""
storage/ledger.py
Paper-trading ledger: one balance, the ordered list of every trade and a
log of settlement runs, persisted as a single JSON document.

Balance changes in exactly two places: execute_trade() debits the trade
cost and settle_date() credits the payout. Each call is one
load -> mutate -> persist cycle. There is no file locking, so a single
process must own the ledger file.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

from core.constants import CONTRACT_FACE_VALUE, INITIAL_BALANCE
from core.contracts import ContractTerms, parse_contract
from core.errors import InsufficientFundsError, RecordNotFoundError
from storage.models import (
    LedgerState,
    PositionSide,
    SettlementRun,
    Strategy,
    Trade,
)

logger = logging.getLogger(__name__)


def _as_side(side: PositionSide | str) -> PositionSide:
    if isinstance(side, PositionSide):
        return side
    return PositionSide(side.lower())


def _cents(amount: float) -> float:
    return round(amount, 2)


# ---------------------------------------------------------------------------
# Outcome resolution (pure)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TradeOutcome:
    """How one trade resolves against an observed value."""
    trade_id: int
    station: str
    contract: str
    side: PositionSide
    qty: int
    cost: float
    terms: ContractTerms
    actual: float
    won: bool
    payout: float
    pnl: float


def resolve_trade(trade: Trade, actual: float, terms: ContractTerms | None = None) -> TradeOutcome | None:
    """
    Resolve win/loss for a trade given the observed value.

    Returns None if the contract identifier carries no threshold/bracket.
    """
    terms = terms or parse_contract(trade.contract)
    if terms is None:
        return None

    yes_wins = terms.yes_wins(actual)
    won = yes_wins if trade.side == PositionSide.YES else not yes_wins
    payout = trade.qty * CONTRACT_FACE_VALUE if won else 0.0

    return TradeOutcome(
        trade_id=trade.id,
        station=trade.station,
        contract=trade.contract,
        side=trade.side,
        qty=trade.qty,
        cost=trade.cost,
        terms=terms,
        actual=actual,
        won=won,
        payout=payout,
        pnl=_cents(payout - trade.cost),
    )


@dataclass
class SettlementReport:
    """Result of one settle_date() run."""
    date: date
    settled: list[TradeOutcome] = field(default_factory=list)
    # Trades whose contract id encodes neither a threshold nor a bracket
    anomalies: list[str] = field(default_factory=list)
    balance: float = 0.0

    @property
    def count(self) -> int:
        return len(self.settled)

    @property
    def total_pnl(self) -> float:
        return _cents(sum(o.pnl for o in self.settled))


def iter_resolvable(
    trades: list[Trade],
    settle_date: date,
    actuals: dict[str, float],
) -> tuple[list[tuple[Trade, TradeOutcome]], list[str]]:
    """
    Pair every unsettled trade that can be resolved on `settle_date` with
    its outcome.

    A trade is skipped if it is already settled, has no observation for its
    station, or its contract (or recorded target date) is for a different
    day. Contracts with
    neither a threshold nor a bracket are reported as anomalies.
    """
    resolved: list[tuple[Trade, TradeOutcome]] = []
    anomalies: list[str] = []

    for trade in trades:
        if trade.settled:
            continue
        actual = actuals.get(trade.station)
        if actual is None:
            continue

        terms = parse_contract(trade.contract)
        if terms is None:
            anomalies.append(
                f"Trade {trade.id}: contract {trade.contract} has no threshold or bracket"
            )
            continue
        event_date = terms.event_date or trade.target_date
        if event_date is not None and event_date != settle_date:
            continue

        outcome = resolve_trade(trade, actual, terms)
        resolved.append((trade, outcome))

    return resolved, anomalies


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class LedgerStore:
    """Owns the ledger file. All balance mutations go through here."""

    def __init__(self, path: str | Path, initial_balance: float = INITIAL_BALANCE) -> None:
        self._path = Path(path)
        self._initial_balance = initial_balance

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> LedgerState:
        """Load the ledger, or a fresh one at the initial balance."""
        if not self._path.exists():
            return LedgerState(
                balance=self._initial_balance,
                peak_balance=self._initial_balance,
            )
        return LedgerState.model_validate_json(self._path.read_text(encoding="utf-8"))

    def _save(self, state: LedgerState) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(state.model_dump_json(indent=2), encoding="utf-8")
        tmp.replace(self._path)

    def snapshot(self) -> LedgerState:
        """A read-only copy for guards and risk checks."""
        return self.load()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def execute_trade(
        self,
        station: str,
        contract: str,
        side: PositionSide | str,
        qty: int,
        price: float,
        strategy: Strategy | str = Strategy.WEATHER,
        metadata: dict[str, Any] | None = None,
        target_date: date | None = None,
        now: datetime | None = None,
    ) -> Trade:
        """
        Record a paper trade and debit its cost.

        Raises
        ------
        InsufficientFundsError
            If the cost exceeds the current balance.
        """
        state = self.load()
        cost = _cents(qty * price)

        if cost > state.balance:
            raise InsufficientFundsError(cost, state.balance)

        trade = Trade(
            id=max((t.id for t in state.trades), default=0) + 1,
            timestamp=now or datetime.now(timezone.utc),
            strategy=Strategy(strategy),
            station=station,
            contract=contract,
            side=_as_side(side),
            qty=qty,
            price=price,
            cost=cost,
            target_date=target_date,
            metadata=dict(metadata or {}),
        )

        state.balance = _cents(state.balance - cost)
        state.trades.append(trade)
        self._save(state)

        logger.info(
            "Trade %d opened: %s %s %dx %s @ %.2f cost=$%.2f balance=$%.2f",
            trade.id, trade.station, trade.side.value, trade.qty,
            trade.contract, trade.price, trade.cost, state.balance,
        )
        return trade

    def settle_date(
        self,
        settle_date: date,
        actuals: dict[str, float],
        now: datetime | None = None,
    ) -> SettlementReport:
        """
        Settle every open trade resolvable against `actuals` (station -> value).

        Already-settled trades are skipped, so re-running for the same date
        never double-credits the balance.
        """
        state = self.load()
        settled_at = now or datetime.now(timezone.utc)
        resolved, anomalies = iter_resolvable(state.trades, settle_date, actuals)

        for trade, outcome in resolved:
            trade.settled = True
            trade.pnl = outcome.pnl
            trade.settled_at = settled_at
            trade.actual_outcome = outcome.actual
            state.balance = _cents(state.balance + outcome.payout)

        state.peak_balance = max(state.peak_balance, state.balance)
        state.settlements.append(
            SettlementRun(date=settle_date, settled_at=settled_at, count=len(resolved))
        )
        self._save(state)

        for anomaly in anomalies:
            logger.warning("Settlement %s: %s", settle_date.isoformat(), anomaly)
        logger.info(
            "Settled %d trades for %s, balance=$%.2f",
            len(resolved), settle_date.isoformat(), state.balance,
        )

        return SettlementReport(
            date=settle_date,
            settled=[outcome for _, outcome in resolved],
            anomalies=anomalies,
            balance=state.balance,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def open_positions(self) -> list[Trade]:
        return self.load().open_trades()

    def total_pnl(self) -> float:
        return _cents(sum(t.pnl for t in self.load().trades if t.settled and t.pnl is not None))

    def get_trade(self, trade_id: int) -> Trade:
        for trade in self.load().trades:
            if trade.id == trade_id:
                return trade
        raise RecordNotFoundError(f"Trade {trade_id} not found")

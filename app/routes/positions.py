"""
app/routes/positions.py
Ledger position endpoints — list open positions, look up a trade and
summarize the paper portfolio.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from app.dependencies import TradingCore, get_core
from storage.models import Trade

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/positions", tags=["positions"])

_STATUS_FILTERS = ("open", "settled", "all")


# ------------------------------------------------------------------
# Response models
# ------------------------------------------------------------------

class PositionRow(BaseModel):
    """A single ledger trade."""
    id: int
    strategy: str
    station: str
    contract: str
    side: str
    qty: int
    price: float
    cost: float
    settled: bool
    pnl: float | None
    actual_outcome: float | None
    opened_at: str
    settled_at: str | None


class PositionsResponse(BaseModel):
    """Response for GET /positions."""
    count: int
    balance: float
    positions: list[PositionRow]


class PortfolioSummary(BaseModel):
    """Response for GET /positions/summary."""
    balance: float
    peak_balance: float
    total_trades: int
    open_positions: int
    settled_trades: int
    open_exposure: float
    total_pnl: float
    win_rate: float | None
    best_trade_pnl: float | None
    worst_trade_pnl: float | None


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _trade_to_row(t: Trade) -> PositionRow:
    return PositionRow(
        id=t.id,
        strategy=t.strategy.value,
        station=t.station,
        contract=t.contract,
        side=t.side.value,
        qty=t.qty,
        price=t.price,
        cost=t.cost,
        settled=t.settled,
        pnl=t.pnl,
        actual_outcome=t.actual_outcome,
        opened_at=t.timestamp.isoformat(),
        settled_at=t.settled_at.isoformat() if t.settled_at else None,
    )


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.get("", response_model=PositionsResponse)
async def list_positions(
    status: str = Query("open", description="Filter: open, settled, all"),
    station: str | None = Query(None, description="Filter by settlement station"),
    core: TradingCore = Depends(get_core),
) -> PositionsResponse:
    """List ledger trades, open ones by default."""
    if status not in _STATUS_FILTERS:
        raise HTTPException(status_code=400, detail=f"Unknown status filter: {status}")

    state = core.ledger.snapshot()
    trades = state.trades
    if status == "open":
        trades = state.open_trades()
    elif status == "settled":
        trades = [t for t in trades if t.settled]
    if station:
        trades = [t for t in trades if t.station == station.upper()]

    positions = [_trade_to_row(t) for t in sorted(trades, key=lambda t: t.id, reverse=True)]
    return PositionsResponse(count=len(positions), balance=state.balance, positions=positions)


@router.get("/summary", response_model=PortfolioSummary)
async def portfolio_summary(core: TradingCore = Depends(get_core)) -> PortfolioSummary:
    """Portfolio summary: balance, exposure, P&L, win rate."""
    state = core.ledger.snapshot()
    open_trades = state.open_trades()
    settled = [t for t in state.trades if t.settled and t.pnl is not None]

    pnls = [t.pnl for t in settled]
    wins = [p for p in pnls if p > 0]

    return PortfolioSummary(
        balance=state.balance,
        peak_balance=state.peak_balance,
        total_trades=len(state.trades),
        open_positions=len(open_trades),
        settled_trades=len(settled),
        open_exposure=round(sum(t.cost for t in open_trades), 2),
        total_pnl=round(sum(pnls), 2),
        win_rate=round(len(wins) / len(pnls), 4) if pnls else None,
        best_trade_pnl=max(pnls) if pnls else None,
        worst_trade_pnl=min(pnls) if pnls else None,
    )


@router.get("/{trade_id}", response_model=PositionRow)
async def get_position(trade_id: int, core: TradingCore = Depends(get_core)) -> PositionRow:
    """A single trade by id (404 if unknown)."""
    return _trade_to_row(core.ledger.get_trade(trade_id))

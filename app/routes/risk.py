"""
app/routes/risk.py
Risk dashboard endpoint.
"""

from dataclasses import asdict

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.dependencies import TradingCore, get_core

router = APIRouter(prefix="/risk", tags=["risk"])


class RiskStatusResponse(BaseModel):
    """Response for GET /risk."""
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


@router.get("", response_model=RiskStatusResponse)
async def risk_status(core: TradingCore = Depends(get_core)) -> RiskStatusResponse:
    """Current bankroll health and whether trading is allowed."""
    return RiskStatusResponse(**asdict(core.risk.status()))

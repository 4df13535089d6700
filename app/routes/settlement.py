"""
app/routes/settlement.py
Settlement endpoints — settle a date against observed outcomes, or
preview what settling would do.
"""

import logging
from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.dependencies import TradingCore, get_core
from app.services.settlement import SettlementResult

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/settlement", tags=["settlement"])


class OutcomeRow(BaseModel):
    """How one trade resolved (or would resolve)."""
    trade_id: int
    station: str
    contract: str
    side: str
    qty: int
    cost: float
    actual: float
    won: bool
    payout: float
    pnl: float


class SettlementResponse(BaseModel):
    """Response for settle and preview."""
    date: str
    applied: bool
    count: int
    total_pnl: float
    balance: float | None
    actuals: dict[str, float]
    outcomes: list[OutcomeRow]
    anomalies: list[str]
    fetch_errors: dict[str, str]
    error: str | None


def _to_response(result: SettlementResult) -> SettlementResponse:
    return SettlementResponse(
        date=result.date.isoformat(),
        applied=result.applied,
        count=result.count,
        total_pnl=result.total_pnl,
        balance=result.balance,
        actuals=result.actuals,
        outcomes=[
            OutcomeRow(
                trade_id=o.trade_id,
                station=o.station,
                contract=o.contract,
                side=o.side.value,
                qty=o.qty,
                cost=o.cost,
                actual=o.actual,
                won=o.won,
                payout=o.payout,
                pnl=o.pnl,
            )
            for o in result.outcomes
        ],
        anomalies=result.anomalies,
        fetch_errors=result.fetch_errors,
        error=result.error,
    )


@router.post("/{settle_date}", response_model=SettlementResponse)
async def settle_date(settle_date: date, core: TradingCore = Depends(get_core)) -> SettlementResponse:
    """Settle every open trade for a date. Safe to re-run."""
    logger.info("Settlement triggered for %s", settle_date.isoformat())
    return _to_response(await core.settlement.settle(settle_date))


@router.get("/{settle_date}/preview", response_model=SettlementResponse)
async def preview_settlement(settle_date: date, core: TradingCore = Depends(get_core)) -> SettlementResponse:
    """Outcomes settling would produce, without touching the ledger."""
    return _to_response(await core.settlement.verify(settle_date))

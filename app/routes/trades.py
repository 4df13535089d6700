"""
app/routes/trades.py
Trade endpoints — guarded paper trades, the pending-recommendation
workflow (propose / approve / reject) and batch auto-execution.
"""

import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from app.dependencies import TradingCore, get_core
from app.routes.positions import PositionRow, _trade_to_row
from app.services.executor import TradeRequest
from storage.models import PendingRecommendation, PositionSide, Strategy

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/trades", tags=["trades"])


# ------------------------------------------------------------------
# Request models
# ------------------------------------------------------------------

class TradeBody(BaseModel):
    """A trade plus the inputs the guards evaluate."""
    station: str
    contract: str
    side: PositionSide
    qty: int = Field(gt=0)
    price: float = Field(gt=0.0, lt=1.0)
    strategy: Strategy = Strategy.WEATHER
    forecast_spread: float | None = None
    market_sigma: float | None = None
    forecast_high: float | None = None
    target_date: date | None = None
    bid_ask_spread: float | None = None
    our_sigma: float | None = None


class ProposeBody(BaseModel):
    """Body for POST /trades/pending."""
    contract: str
    side: PositionSide
    qty: int = Field(gt=0)
    price: float = Field(gt=0.0, lt=1.0)
    edge: float = 0.0
    reasoning: str = ""
    strategy: Strategy = Strategy.WEATHER
    station: str | None = None


class BatchItem(TradeBody):
    """A scored opportunity; qty is Kelly-sized when omitted."""
    qty: int | None = Field(default=None, ge=0)
    p_win: float = Field(ge=0.0, le=1.0, description="Probability the chosen side pays out")
    volume: int | None = Field(default=None, ge=0)


class BatchBody(BaseModel):
    """Body for POST /trades/batch."""
    candidates: list[BatchItem]
    blocked: int = Field(default=0, ge=0, description="Opportunities already blocked upstream")
    session_id: str | None = None


# ------------------------------------------------------------------
# Response models
# ------------------------------------------------------------------

class TradeDecisionResponse(BaseModel):
    """Response for POST /trades."""
    placed: bool
    trade: PositionRow | None
    reasons: list[str]
    warnings: list[str]


class PendingRow(BaseModel):
    """A single pending recommendation."""
    id: str
    strategy: str
    station: str | None
    contract: str
    side: str
    qty: int
    price: float
    cost: float
    edge: float
    reasoning: str
    status: str
    created_at: str
    expires_at: str
    fill: dict | None


class PendingListResponse(BaseModel):
    """Response for GET /trades/pending."""
    count: int
    pending: list[PendingRow]


class ExecutionResponse(BaseModel):
    """Response for POST /trades/pending/{id}/approve."""
    record: PendingRow
    dry_run: bool
    order: dict
    response: dict | None


class SessionResponse(BaseModel):
    """Response for POST /trades/batch."""
    session_id: str
    placed: int
    blocked: int
    failed: int
    total_risk: float
    trades: list[PositionRow]
    messages: list[str]
    aborted: str | None


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _pending_to_row(r: PendingRecommendation) -> PendingRow:
    return PendingRow(
        id=r.id,
        strategy=r.strategy.value,
        station=r.station,
        contract=r.contract,
        side=r.side.value,
        qty=r.qty,
        price=r.price,
        cost=r.cost,
        edge=r.edge,
        reasoning=r.reasoning,
        status=r.status.value,
        created_at=r.created_at.isoformat(),
        expires_at=r.expires_at.isoformat(),
        fill=r.fill,
    )


def _resolve_station(core: TradingCore, station: str) -> str:
    return core.stations.resolve(station) or station.upper()


def _to_request(core: TradingCore, body: TradeBody, qty: int) -> TradeRequest:
    return TradeRequest(
        station=_resolve_station(core, body.station),
        contract=body.contract,
        side=body.side,
        qty=qty,
        price=body.price,
        strategy=body.strategy,
        forecast_spread=body.forecast_spread,
        market_sigma=body.market_sigma,
        forecast_high=body.forecast_high,
        target_date=body.target_date,
        bid_ask_spread=body.bid_ask_spread,
        our_sigma=body.our_sigma,
    )


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.post("", response_model=TradeDecisionResponse)
async def execute_trade(body: TradeBody, core: TradingCore = Depends(get_core)) -> TradeDecisionResponse:
    """Run guards and risk checks, then record a paper trade."""
    decision = core.executor.execute_trade(_to_request(core, body, body.qty))
    return TradeDecisionResponse(
        placed=decision.placed,
        trade=_trade_to_row(decision.trade) if decision.trade else None,
        reasons=decision.reasons,
        warnings=decision.warnings,
    )


@router.get("/pending", response_model=PendingListResponse)
async def list_pending(
    include_all: bool = False,
    core: TradingCore = Depends(get_core),
) -> PendingListResponse:
    """Still-pending recommendations (expired ones are swept on read)."""
    records = core.pending.list_all() if include_all else core.pending.list_pending()
    rows = [_pending_to_row(r) for r in records]
    return PendingListResponse(count=len(rows), pending=rows)


@router.post("/pending", response_model=PendingRow, status_code=201)
async def propose_trade(body: ProposeBody, core: TradingCore = Depends(get_core)) -> PendingRow:
    """Store a recommendation awaiting approval."""
    rec = core.executor.propose(
        body.contract,
        body.side,
        body.qty,
        body.price,
        edge=body.edge,
        reasoning=body.reasoning,
        strategy=body.strategy,
        station=_resolve_station(core, body.station) if body.station else None,
    )
    return _pending_to_row(rec)


@router.post("/pending/{rec_id}/approve", response_model=ExecutionResponse)
async def approve_trade(rec_id: str, core: TradingCore = Depends(get_core)) -> ExecutionResponse:
    """Approve a recommendation and execute it (dry-run unless LIVE_TRADING)."""
    result = await core.executor.approve(rec_id)
    return ExecutionResponse(
        record=_pending_to_row(result.record),
        dry_run=result.dry_run,
        order=result.order,
        response=result.response,
    )


@router.post("/pending/{rec_id}/execute", response_model=ExecutionResponse)
async def execute_approved(rec_id: str, core: TradingCore = Depends(get_core)) -> ExecutionResponse:
    """Retry execution of an already-approved recommendation."""
    result = await core.executor.execute(rec_id)
    return ExecutionResponse(
        record=_pending_to_row(result.record),
        dry_run=result.dry_run,
        order=result.order,
        response=result.response,
    )


@router.post("/pending/{rec_id}/reject", response_model=PendingRow)
async def reject_trade(rec_id: str, core: TradingCore = Depends(get_core)) -> PendingRow:
    """Reject a pending recommendation."""
    return _pending_to_row(core.executor.reject(rec_id))


@router.post("/batch", response_model=SessionResponse)
async def execute_batch(body: BatchBody, core: TradingCore = Depends(get_core)) -> SessionResponse:
    """Auto-execute scored opportunities on the paper ledger."""
    if not body.candidates and body.blocked == 0:
        raise HTTPException(status_code=400, detail="No candidates supplied")

    bankroll = core.ledger.snapshot().balance
    candidates = []
    for item in body.candidates:
        request = _to_request(core, item, item.qty or 0)
        candidate = core.executor.size_candidate(request, item.p_win, item.volume, bankroll=bankroll)
        if item.qty:
            request.qty = item.qty
            candidate.dollar_risk = round(item.qty * item.price, 2)
        candidates.append(candidate)

    summary = core.executor.execute_batch(candidates, blocked=body.blocked, session_id=body.session_id)
    return SessionResponse(
        session_id=summary.session_id,
        placed=summary.placed,
        blocked=summary.blocked,
        failed=summary.failed,
        total_risk=summary.total_risk,
        trades=[_trade_to_row(t) for t in summary.trades],
        messages=summary.messages,
        aborted=summary.aborted,
    )

"""
app/main.py
FastAPI entry point for the guarded trading core.
"""

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from app.dependencies import TradingCore, build_core, get_core
from app.routes.positions import router as positions_router
from app.routes.risk import router as risk_router
from app.routes.settlement import router as settlement_router
from app.routes.trades import router as trades_router
from core.config import get_settings
from core.constants import SYSTEM_VERSION
from core.errors import (
    ExchangeError,
    InsufficientFundsError,
    InvalidStateError,
    PreflightError,
    RecordNotFoundError,
    TradingError,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup: configure logging and build the trading core once."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if getattr(app.state, "core", None) is None:
        app.state.core = build_core(settings)
    yield
    close = getattr(app.state.core.feed, "close", None)
    if close is not None:
        await close()


app = FastAPI(
    title="Guarded Trading Core API",
    version=SYSTEM_VERSION,
    lifespan=lifespan,
)

app.include_router(trades_router)
app.include_router(positions_router)
app.include_router(settlement_router)
app.include_router(risk_router)


# ------------------------------------------------------------------
# Error mapping
# ------------------------------------------------------------------

def _status_for(exc: TradingError) -> int:
    if isinstance(exc, RecordNotFoundError):
        return 404
    if isinstance(exc, PreflightError):
        return 409
    if isinstance(exc, ExchangeError):
        return 502
    if isinstance(exc, (InvalidStateError, InsufficientFundsError)):
        return 400
    return 500


@app.exception_handler(TradingError)
async def trading_error_handler(_request: Request, exc: TradingError) -> JSONResponse:
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error("Unhandled trading error: %s", exc)
    content = {"detail": str(exc)}
    if isinstance(exc, PreflightError):
        content["reason"] = exc.reason
    return JSONResponse(status_code=status_code, content=content)


@app.get("/health")
async def health_check(core: TradingCore = Depends(get_core)) -> dict:
    """Prove the API is alive and the ledger file is readable."""
    try:
        state = core.ledger.snapshot()
        return {
            "status": "healthy",
            "mode": "live" if core.live else "dry_run",
            "balance": state.balance,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    except Exception as exc:
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "ledger": str(exc),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )

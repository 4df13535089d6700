"""
storage/models.py
Persisted pydantic models for the ledger and pending-recommendation files.
"""

from datetime import date, datetime, timezone
from datetime import date as calendar_date
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from core.constants import INITIAL_BALANCE
from core.contracts import parse_event_date


def _utcnow() -> datetime:
    """Timezone-aware UTC now (replaces the deprecated utcnow call)."""
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Strategy(str, Enum):
    WEATHER = "weather"
    CRYPTO = "crypto"
    GAS = "gas"
    FLIGHTS = "flights"
    PRECIPITATION = "precipitation"


class PositionSide(str, Enum):
    YES = "yes"
    NO = "no"


class PendingStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    EXECUTED = "executed"


# ---------------------------------------------------------------------------
# Trade — one ledger entry, from execution through settlement
# ---------------------------------------------------------------------------

class Trade(BaseModel):
    """A trade recorded in the ledger."""

    id: int
    timestamp: datetime = Field(default_factory=_utcnow)
    strategy: Strategy = Strategy.WEATHER

    # What was bought
    station: str
    contract: str
    side: PositionSide
    qty: int = Field(gt=0)
    price: float = Field(gt=0.0, lt=1.0)
    cost: float = Field(ge=0.0)
    target_date: calendar_date | None = None   # event date the contract settles on

    # Settlement (set exactly once)
    settled: bool = False
    pnl: float | None = None
    settled_at: datetime | None = None
    actual_outcome: float | None = None

    # expected_edge, p_est, market_sigma, our_sigma, ...
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _pnl_iff_settled(self) -> "Trade":
        if self.settled != (self.pnl is not None):
            raise ValueError("pnl must be set if and only if the trade is settled")
        return self

    @property
    def trade_date(self) -> date:
        """Calendar (UTC) date the trade was placed."""
        return self.timestamp.date()

    @property
    def event_day(self) -> date:
        """Date the trade settles on: explicit target, the contract date, else the placement date."""
        return self.target_date or parse_event_date(self.contract) or self.trade_date


class SettlementRun(BaseModel):
    """One invocation of settle_date."""
    date: calendar_date
    settled_at: datetime = Field(default_factory=_utcnow)
    count: int


class LedgerState(BaseModel):
    """The whole ledger document: balance, trades, settlement runs."""

    balance: float = INITIAL_BALANCE
    peak_balance: float = INITIAL_BALANCE
    trades: list[Trade] = Field(default_factory=list)
    settlements: list[SettlementRun] = Field(default_factory=list)

    def open_trades(self) -> list[Trade]:
        return [t for t in self.trades if not t.settled]


# ---------------------------------------------------------------------------
# PendingRecommendation — a proposal awaiting approval
# ---------------------------------------------------------------------------

class PendingRecommendation(BaseModel):
    """A proposed trade awaiting human (or automatic) approval."""

    id: str
    strategy: Strategy = Strategy.WEATHER
    station: str | None = None
    contract: str
    side: PositionSide
    qty: int = Field(gt=0)
    price: float = Field(gt=0.0, lt=1.0)
    edge: float = 0.0
    reasoning: str = ""

    status: PendingStatus = PendingStatus.PENDING
    created_at: datetime = Field(default_factory=_utcnow)
    expires_at: datetime
    updated_at: datetime | None = None

    # Filled on execution: {"dry_run": bool, "order": {...}, "response": {...}}
    fill: dict[str, Any] | None = None

    @property
    def cost(self) -> float:
        return round(self.qty * self.price, 2)

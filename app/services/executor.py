"""
app/services/executor.py
Trade execution — guarded paper trades, approved-recommendation orders
and the batch auto-execution session.

DRY RUN by default. Only LIVE_TRADING=1 places real Kalshi orders; in
dry-run the attempt is logged and the recommendation is marked executed
with a dry_run fill. A live pre-flight failure leaves the recommendation
approved (not executed) so it can be retried.
"""

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

import httpx

from app.services.guard import GuardCandidate, GuardEngine, GuardResult
from app.services.kalshi_client import KalshiClient, build_order
from app.services.risk_manager import RiskManager
from core.config import TradingConfig
from core.contracts import parse_event_date
from core.errors import ExchangeError, InvalidStateError, PreflightError, TradingError
from core.sizing import position_size
from storage.history import HistoryLog
from storage.ledger import LedgerStore
from storage.models import (
    PendingRecommendation,
    PendingStatus,
    PositionSide,
    Strategy,
    Trade,
)
from storage.pending import PendingStore

logger = logging.getLogger(__name__)

MARKET_OPEN_STATUSES = frozenset({"open", "active"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Requests and results
# ---------------------------------------------------------------------------

@dataclass
class TradeRequest:
    """A trade to place on the paper ledger, with its guard inputs."""
    station: str
    contract: str
    side: PositionSide
    qty: int
    price: float
    strategy: Strategy = Strategy.WEATHER
    forecast_spread: float | None = None
    market_sigma: float | None = None
    forecast_high: float | None = None
    target_date: date | None = None
    bid_ask_spread: float | None = None
    our_sigma: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def guard_candidate(self, qty: int | None = None) -> GuardCandidate:
        return GuardCandidate(
            station=self.station,
            qty=self.qty if qty is None else qty,
            forecast_spread=self.forecast_spread,
            market_sigma=self.market_sigma,
            forecast_high=self.forecast_high,
            target_date=self.target_date or parse_event_date(self.contract),
            bid_ask_spread=self.bid_ask_spread,
            our_sigma=self.our_sigma,
        )


@dataclass
class TradeDecision:
    """Outcome of execute_trade(): placed, or blocked with reasons."""
    placed: bool
    trade: Trade | None = None
    reasons: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class BatchCandidate:
    """A scored, sized trade handed to the auto-execution session."""
    request: TradeRequest          # request.qty is the Kelly-sized contract count
    edge: float
    dollar_risk: float
    p_est: float | None = None


@dataclass
class SessionSummary:
    """Accumulated result of one execute_batch() session."""
    session_id: str
    placed: int = 0
    blocked: int = 0
    failed: int = 0
    total_risk: float = 0.0
    trades: list[Trade] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)
    aborted: str | None = None


@dataclass
class ExecutionResult:
    """Outcome of executing an approved recommendation."""
    record: PendingRecommendation
    dry_run: bool
    order: dict[str, Any]
    response: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------

class Executor:
    """Places trades after re-checking guards and risk limits."""

    def __init__(
        self,
        config: TradingConfig,
        guard: GuardEngine,
        risk: RiskManager,
        ledger: LedgerStore,
        pending: PendingStore,
        history: HistoryLog | None = None,
        client_factory: Callable[[], KalshiClient] | None = None,
        live: bool = False,
    ) -> None:
        self._cfg = config
        self._guard = guard
        self._risk = risk
        self._ledger = ledger
        self._pending = pending
        self._history = history
        self._client_factory = client_factory or KalshiClient
        self._live = live

    @property
    def dry_run(self) -> bool:
        return not self._live

    def _log_execution(self, entry: dict[str, Any]) -> None:
        if self._history is not None:
            self._history.append_execution(entry)

    def _log_decision(self, station: str, action: str, reasons: list[str], net_edge: float | None = None) -> None:
        if self._history is not None:
            self._history.append_decision(station, action, reasons, net_edge)

    # ------------------------------------------------------------------
    # Direct paper trade (execute-trade)
    # ------------------------------------------------------------------

    def execute_trade(self, request: TradeRequest) -> TradeDecision:
        """
        Guard-check, risk-check and record a paper trade.

        Admission failures come back as a blocked TradeDecision.
        InsufficientFundsError propagates from the ledger.
        """
        snapshot = self._ledger.snapshot()
        guard_result: GuardResult = self._guard.evaluate(request.guard_candidate(), snapshot)
        if not guard_result.passed:
            logger.warning("Trade BLOCKED by guards: %s", "; ".join(guard_result.reasons))
            self._log_decision(request.station, "blocked_guard", guard_result.reasons)
            return TradeDecision(
                placed=False, reasons=guard_result.reasons, warnings=guard_result.warnings,
            )

        cost = round(request.qty * request.price, 2)
        risk_check = self._risk.check_limits(request.station, cost, snapshot=snapshot)
        if not risk_check.allowed:
            self._log_decision(request.station, "blocked_risk", risk_check.violations)
            return TradeDecision(
                placed=False, reasons=risk_check.violations, warnings=guard_result.warnings,
            )

        trade = self._ledger.execute_trade(
            request.station,
            request.contract,
            request.side,
            request.qty,
            request.price,
            strategy=request.strategy,
            metadata=self._trade_metadata(request),
            target_date=request.target_date,
        )
        self._log_decision(request.station, "placed", [])
        self._record_trade(request, trade.qty)
        return TradeDecision(placed=True, trade=trade, warnings=guard_result.warnings)

    @staticmethod
    def _trade_metadata(request: TradeRequest, **extra: Any) -> dict[str, Any]:
        meta = {
            "market_sigma": request.market_sigma,
            "our_sigma": request.our_sigma,
            "forecast_high": request.forecast_high,
            "forecast_spread": request.forecast_spread,
            **request.metadata,
            **extra,
        }
        return {k: v for k, v in meta.items() if v is not None}

    def _record_trade(self, request: TradeRequest, qty: int, expected_edge: float | None = None) -> None:
        if self._history is None:
            return
        self._history.append_trade({
            "date": (request.target_date or _utcnow().date()).isoformat(),
            "station": request.station,
            "contract": request.contract,
            "side": request.side.value,
            "qty": qty,
            "price": request.price,
            "expected_edge": expected_edge,
            "market_sigma": request.market_sigma,
            "our_sigma": request.our_sigma,
        })

    # ------------------------------------------------------------------
    # Pending recommendations
    # ------------------------------------------------------------------

    def propose(
        self,
        contract: str,
        side: PositionSide,
        qty: int,
        price: float,
        edge: float = 0.0,
        reasoning: str = "",
        strategy: Strategy = Strategy.WEATHER,
        station: str | None = None,
    ) -> PendingRecommendation:
        return self._pending.add(
            contract, side, qty, price,
            edge=edge, reasoning=reasoning, strategy=strategy, station=station,
        )

    def reject(self, rec_id: str) -> PendingRecommendation:
        return self._pending.update_status(rec_id, PendingStatus.REJECTED)

    async def approve(self, rec_id: str) -> ExecutionResult:
        """Approve a pending recommendation and execute it immediately."""
        self._pending.update_status(rec_id, PendingStatus.APPROVED)
        return await self.execute(rec_id)

    async def execute(self, rec_id: str, now: datetime | None = None) -> ExecutionResult:
        """
        Execute an approved recommendation.

        Raises
        ------
        InvalidStateError
            Not approved, or approved but past its expiry.
        PreflightError
            Live mode only: risk limits, funds or market status failed.
            The record stays approved.
        ExchangeError
            Live mode only: the exchange was unreachable or rejected the
            order. Logged as an "error" execution; the record stays approved.
        """
        now = now or _utcnow()
        rec = self._pending.find(rec_id, now=now)
        if rec.status != PendingStatus.APPROVED:
            raise InvalidStateError(f"Trade {rec_id} is {rec.status.value}, must be approved")
        if rec.expires_at <= now:
            raise InvalidStateError(f"Trade {rec_id} has expired")

        order = build_order(rec.contract, rec.side.value, rec.qty, rec.price)
        entry: dict[str, Any] = {
            "trade_id": rec_id,
            "order": order,
            "dry_run": self.dry_run,
        }

        if self.dry_run:
            logger.info(
                "DRY RUN — would place order: %s %dx %s @ %d¢",
                rec.side.value.upper(), rec.qty, rec.contract, round(rec.price * 100),
            )
            entry["result"] = "dry_run"
            self._log_execution(entry)
            record = self._pending.mark_executed(rec_id, {"dry_run": True, "order": order}, now=now)
            return ExecutionResult(record=record, dry_run=True, order=order)

        try:
            response = await self._place_live(rec, order, entry)
        except TradingError:
            raise
        except Exception as exc:
            # Credentials, balance lookup or session setup; the record stays approved
            logger.error("Live execution failed for %s: %s", rec_id, exc)
            entry["result"] = "error"
            entry["error"] = str(exc)
            self._log_execution(entry)
            raise ExchangeError(f"Live execution failed for {rec_id}: {exc}") from exc

        record = self._pending.mark_executed(
            rec_id, {"dry_run": False, "order": order, "response": response}, now=now,
        )
        return ExecutionResult(record=record, dry_run=False, order=order, response=response)

    def _preflight_failed(self, entry: dict[str, Any], reason: str, message: str) -> PreflightError:
        logger.warning("Pre-flight failed for %s: %s", entry["trade_id"], message)
        entry["result"] = reason
        entry["error"] = message
        self._log_execution(entry)
        return PreflightError(reason, message)

    async def _place_live(
        self,
        rec: PendingRecommendation,
        order: dict[str, Any],
        entry: dict[str, Any],
    ) -> dict[str, Any]:
        if rec.station:
            risk_check = self._risk.check_limits(rec.station, rec.cost)
            if not risk_check.allowed:
                raise self._preflight_failed(entry, PreflightError.RISK_LIMITS, "; ".join(risk_check.violations))

        async with self._client_factory() as client:
            balance = await client.get_balance()
            if balance < rec.cost:
                raise self._preflight_failed(
                    entry,
                    PreflightError.INSUFFICIENT_FUNDS,
                    f"Insufficient funds: need ${rec.cost:.2f}, have ${balance:.2f}",
                )

            try:
                market = await client.get_market(rec.contract)
            except httpx.HTTPError as exc:
                # The order itself will fail if the market is invalid
                logger.warning("Market lookup for %s failed, proceeding: %s", rec.contract, exc)
                market = {}
            status = str(market.get("status") or "").lower()
            if status and status not in MARKET_OPEN_STATUSES:
                raise self._preflight_failed(
                    entry,
                    PreflightError.MARKET_CLOSED,
                    f"Market {rec.contract} is {status}, not open",
                )

            logger.info(
                "LIVE ORDER: %s %dx %s @ %d¢",
                rec.side.value.upper(), rec.qty, rec.contract, round(rec.price * 100),
            )
            try:
                response = await client.place_order(order)
            except httpx.HTTPError as exc:
                entry["result"] = "error"
                entry["error"] = str(exc)
                self._log_execution(entry)
                raise ExchangeError(f"Order placement failed for {rec.id}: {exc}") from exc

        entry["result"] = "placed"
        entry["order_response"] = response
        self._log_execution(entry)
        logger.info("Order placed for %s: %s", rec.id, response)
        return response

    # ------------------------------------------------------------------
    # Batch auto-execution
    # ------------------------------------------------------------------

    def size_candidate(
        self,
        request: TradeRequest,
        p_win: float,
        volume: int | None = None,
        bankroll: float | None = None,
    ) -> BatchCandidate:
        """
        Kelly-size a request. `p_win` is our probability that the chosen
        side pays out; request.price is what that side costs.
        """
        if bankroll is None:
            bankroll = self._ledger.snapshot().balance
        sizing = position_size(
            bankroll,
            p_win,
            request.price,
            max_fraction=self._cfg.execution.max_position_pct,
            volume=volume,
            kelly_multiplier=self._cfg.execution.kelly_fraction,
            hard_max=self._cfg.guard.hard_max_contracts,
        )
        request.qty = sizing.contracts
        return BatchCandidate(
            request=request,
            edge=round(p_win - request.price, 4),
            dollar_risk=sizing.dollar_risk,
            p_est=p_win,
        )

    def execute_batch(
        self,
        candidates: list[BatchCandidate],
        blocked: int = 0,
        session_id: str | None = None,
    ) -> SessionSummary:
        """
        Auto-execute scored trades on the paper ledger.

        Re-runs guards right before each trade, caps contracts at
        execution.auto_max_contracts and never aborts the batch because a
        single trade failed.
        """
        exec_cfg = self._cfg.execution
        summary = SessionSummary(session_id=session_id or uuid.uuid4().hex[:8], blocked=blocked)

        portfolio_risk = self._risk.check_limits()
        if not portfolio_risk.allowed:
            summary.aborted = "Blocked by risk limits: " + "; ".join(portfolio_risk.violations)
            logger.warning("Session %s: %s", summary.session_id, summary.aborted)
            return summary
        if self._live:
            summary.aborted = "Batch execution only works in paper trading mode"
            logger.warning("Session %s: %s", summary.session_id, summary.aborted)
            return summary

        executable = [
            c for c in candidates
            if (c.edge - exec_cfg.transaction_cost) > 0 and c.request.qty > 0
        ][:exec_cfg.max_trades_per_session]

        for candidate in executable:
            request = candidate.request
            try:
                trade_risk = self._risk.check_limits(request.station, candidate.dollar_risk)
                if not trade_risk.allowed:
                    self._block(summary, request.station, f"risk limits: {trade_risk.violations[0]}")
                    continue

                if request.strategy == Strategy.WEATHER:
                    if request.market_sigma is None:
                        self._block(summary, request.station, "no market σ data")
                        continue
                    final_guard = self._guard.evaluate(request.guard_candidate())
                    if not final_guard.passed:
                        self._block(summary, request.station, final_guard.reasons[0])
                        continue

                qty = min(request.qty, exec_cfg.auto_max_contracts)
                if qty < request.qty:
                    summary.messages.append(f"{request.contract}: capped {request.qty} → {qty} contracts")

                trade = self._ledger.execute_trade(
                    request.station,
                    request.contract,
                    request.side,
                    qty,
                    request.price,
                    strategy=request.strategy,
                    metadata=self._trade_metadata(
                        request, expected_edge=candidate.edge, p_est=candidate.p_est,
                    ),
                    target_date=request.target_date,
                )
            except Exception as exc:
                logger.error("Session %s: execution failed for %s: %s",
                             summary.session_id, request.contract, exc)
                summary.failed += 1
                summary.messages.append(f"{request.contract}: execution failed: {exc}")
                continue

            self._record_trade(request, qty, expected_edge=candidate.edge)
            net_edge = candidate.edge - exec_cfg.transaction_cost
            self._log_decision(request.station, "placed", [], net_edge)
            summary.placed += 1
            summary.total_risk = round(summary.total_risk + qty * request.price, 2)
            summary.trades.append(trade)
            summary.messages.append(
                f"{request.contract}: paper trade placed, expected value ${net_edge * qty:.2f}"
            )

        logger.info(
            "Session %s: %d placed, %d blocked, %d failed, $%.2f at risk",
            summary.session_id, summary.placed, summary.blocked, summary.failed, summary.total_risk,
        )
        return summary

    def _block(self, summary: SessionSummary, station: str, reason: str) -> None:
        summary.blocked += 1
        summary.messages.append(f"{station}: BLOCKED by {reason}")
        self._log_decision(station, "blocked", [reason])

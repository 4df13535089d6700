"""
tests/test_settlement.py
Tests for the settlement engine (observation fetch + ledger settlement).
"""

from datetime import date

import pytest

from app.services.settlement import NO_OBSERVATIONS, SettlementEngine
from storage.history import HistoryLog
from storage.ledger import LedgerStore

SETTLE = date(2026, 2, 10)


@pytest.fixture
def engine(ledger: LedgerStore, feed, history: HistoryLog) -> SettlementEngine:
    return SettlementEngine(ledger, feed, history=history)


def _open_two(ledger: LedgerStore):
    ledger.execute_trade(
        "KNYC", "KXHIGHNY-26FEB10-T45", "yes", 10, 0.40, metadata={"forecast_high": 46.0},
    )
    ledger.execute_trade("KPHL", "KXHIGHPHIL-26FEB10-T50", "yes", 5, 0.30)


@pytest.mark.asyncio
class TestSettle:
    async def test_settles_open_trades(self, engine, ledger, feed):
        _open_two(ledger)
        feed.values = {"KNYC": 47.0, "KPHL": 44.0}

        result = await engine.settle(SETTLE)

        assert result.applied
        assert result.error is None
        assert result.count == 2
        assert result.total_pnl == pytest.approx(4.50)
        assert result.balance == pytest.approx(1004.50)
        assert ledger.open_positions() == []

    async def test_only_fetches_stations_with_open_trades(self, engine, ledger, feed):
        _open_two(ledger)
        feed.values = {"KNYC": 47.0, "KPHL": 44.0}
        await engine.settle(SETTLE)
        assert sorted(s for s, _ in feed.calls) == ["KNYC", "KPHL"]

    async def test_no_observations_is_a_no_op(self, engine, ledger, feed):
        _open_two(ledger)
        before = ledger.snapshot()

        result = await engine.settle(SETTLE)

        assert result.error == NO_OBSERVATIONS
        assert result.count == 0
        assert not result.applied
        assert ledger.snapshot() == before

    async def test_total_fetch_failure_is_a_no_op(self, engine, ledger, feed):
        _open_two(ledger)
        feed.failing = {"KNYC", "KPHL"}

        result = await engine.settle(SETTLE)

        assert result.error == NO_OBSERVATIONS
        assert set(result.fetch_errors) == {"KNYC", "KPHL"}
        assert len(ledger.open_positions()) == 2

    async def test_partial_fetch_failure_settles_the_rest(self, engine, ledger, feed):
        _open_two(ledger)
        feed.values = {"KNYC": 47.0}
        feed.failing = {"KPHL"}

        result = await engine.settle(SETTLE)

        assert result.count == 1
        assert "KPHL" in result.fetch_errors
        assert [t.station for t in ledger.open_positions()] == ["KPHL"]

    async def test_rerun_is_idempotent(self, engine, ledger, feed):
        _open_two(ledger)
        feed.values = {"KNYC": 47.0, "KPHL": 44.0}
        await engine.settle(SETTLE)
        balance = ledger.snapshot().balance

        again = await engine.settle(SETTLE)

        assert again.count == 0
        assert ledger.snapshot().balance == balance

    async def test_records_observation_history(self, engine, ledger, feed, history):
        _open_two(ledger)
        feed.values = {"KNYC": 47.0, "KPHL": 44.0}
        await engine.settle(SETTLE)

        records = {r["station"]: r for r in history.read("observations")}
        assert records["KNYC"]["actual"] == 47.0
        assert records["KNYC"]["date"] == SETTLE.isoformat()
        assert records["KNYC"]["forecast_error"] == pytest.approx(1.0)
        assert records["KPHL"]["forecast_error"] is None


@pytest.mark.asyncio
class TestVerify:
    async def test_preview_does_not_mutate(self, engine, ledger, feed):
        _open_two(ledger)
        feed.values = {"KNYC": 47.0, "KPHL": 44.0}
        before = ledger.snapshot()

        preview = await engine.verify(SETTLE)

        assert not preview.applied
        assert preview.count == 2
        assert preview.total_pnl == pytest.approx(4.50)
        assert ledger.snapshot() == before

    async def test_preview_reports_anomalies(self, engine, ledger, feed):
        ledger.execute_trade("KNYC", "KXHIGHNY-26FEB10", "yes", 10, 0.40)
        feed.values = {"KNYC": 47.0}

        preview = await engine.verify(SETTLE)

        assert preview.count == 0
        assert len(preview.anomalies) == 1

"""
tests/test_routes.py
Tests for the FastAPI surface.
"""

import httpx
import pytest

from app.services.executor import Executor
from tests.conftest import FakeKalshiClient

TRADE = {
    "station": "ny",
    "contract": "KXHIGHNY-T80",
    "side": "yes",
    "qty": 5,
    "price": 0.40,
    "forecast_spread": 1.0,
    "market_sigma": 6.0,
}

PROPOSAL = {
    "contract": "KXHIGHNY-T80",
    "side": "yes",
    "qty": 10,
    "price": 0.40,
    "edge": 0.12,
    "reasoning": "market σ 6.0 vs ours 3.0",
    "station": "KNYC",
}


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["mode"] == "dry_run"
        assert body["balance"] == pytest.approx(1000.0)


class TestTradeRoutes:
    def test_execute_trade(self, client):
        resp = client.post("/trades", json=TRADE)

        assert resp.status_code == 200
        body = resp.json()
        assert body["placed"] is True
        assert body["trade"]["station"] == "KNYC"
        assert body["trade"]["cost"] == pytest.approx(2.00)

    def test_blocked_trade_returns_reasons(self, client):
        resp = client.post("/trades", json={**TRADE, "qty": 25})

        assert resp.status_code == 200
        body = resp.json()
        assert body["placed"] is False
        assert body["trade"] is None
        assert len(body["reasons"]) == 1

    def test_invalid_price_is_rejected(self, client):
        assert client.post("/trades", json={**TRADE, "price": 1.5}).status_code == 422

    def test_pending_workflow(self, client):
        created = client.post("/trades/pending", json=PROPOSAL)
        assert created.status_code == 201
        rec_id = created.json()["id"]

        listed = client.get("/trades/pending").json()
        assert listed["count"] == 1
        assert listed["pending"][0]["id"] == rec_id

        approved = client.post(f"/trades/pending/{rec_id}/approve")
        assert approved.status_code == 200
        assert approved.json()["dry_run"] is True
        assert approved.json()["record"]["status"] == "executed"

        assert client.get("/trades/pending").json()["count"] == 0
        assert client.get("/trades/pending", params={"include_all": True}).json()["count"] == 1

    def test_double_approval_is_a_bad_request(self, client):
        rec_id = client.post("/trades/pending", json=PROPOSAL).json()["id"]
        client.post(f"/trades/pending/{rec_id}/approve")

        resp = client.post(f"/trades/pending/{rec_id}/approve")

        assert resp.status_code == 400
        assert "not pending" in resp.json()["detail"]

    def test_unknown_record_is_not_found(self, client):
        assert client.post("/trades/pending/deadbeef/approve").status_code == 404

    def test_reject(self, client):
        rec_id = client.post("/trades/pending", json=PROPOSAL).json()["id"]
        resp = client.post(f"/trades/pending/{rec_id}/reject")
        assert resp.status_code == 200
        assert resp.json()["status"] == "rejected"

    def test_live_preflight_failure_is_a_conflict(self, client, core):
        fake = FakeKalshiClient(balance=0.50)
        core.executor = Executor(
            core.config, core.guard, core.risk, core.ledger, core.pending,
            history=core.history, client_factory=lambda: fake, live=True,
        )
        rec_id = client.post("/trades/pending", json=PROPOSAL).json()["id"]

        resp = client.post(f"/trades/pending/{rec_id}/approve")

        assert resp.status_code == 409
        assert resp.json()["reason"] == "insufficient_funds"

    def test_exchange_failure_is_a_bad_gateway(self, client, core):
        fake = FakeKalshiClient()
        fake.balance_error = httpx.ConnectError("connection refused")
        core.executor = Executor(
            core.config, core.guard, core.risk, core.ledger, core.pending,
            history=core.history, client_factory=lambda: fake, live=True,
        )
        rec_id = client.post("/trades/pending", json=PROPOSAL).json()["id"]

        resp = client.post(f"/trades/pending/{rec_id}/approve")

        assert resp.status_code == 502
        assert "connection refused" in resp.json()["detail"]
        assert core.history.read("executions")[-1]["result"] == "error"
        assert client.get("/trades/pending", params={"include_all": True}).json()["pending"][0]["status"] == "approved"

    def test_batch(self, client):
        item = {**TRADE, "price": 0.50, "p_win": 0.70}
        item.pop("qty")

        resp = client.post("/trades/batch", json={"candidates": [item], "blocked": 1})

        assert resp.status_code == 200
        body = resp.json()
        assert body["placed"] == 1
        assert body["blocked"] == 1
        assert body["trades"][0]["qty"] == 5

    def test_empty_batch(self, client):
        assert client.post("/trades/batch", json={"candidates": []}).status_code == 400


class TestPositionRoutes:
    def test_list_positions(self, client):
        client.post("/trades", json=TRADE)

        body = client.get("/positions").json()

        assert body["count"] == 1
        assert body["balance"] == pytest.approx(998.0)
        assert body["positions"][0]["contract"] == "KXHIGHNY-T80"

    def test_unknown_status_filter(self, client):
        assert client.get("/positions", params={"status": "closed"}).status_code == 400

    def test_get_position(self, client):
        trade_id = client.post("/trades", json=TRADE).json()["trade"]["id"]
        assert client.get(f"/positions/{trade_id}").json()["id"] == trade_id
        assert client.get("/positions/999").status_code == 404

    def test_summary(self, client):
        client.post("/trades", json=TRADE)
        body = client.get("/positions/summary").json()
        assert body["open_positions"] == 1
        assert body["open_exposure"] == pytest.approx(2.00)
        assert body["win_rate"] is None


class TestSettlementRoutes:
    def test_preview_then_settle(self, client, feed):
        client.post("/trades", json=TRADE)
        feed.values = {"KNYC": 83.0}

        preview = client.get("/settlement/2026-02-10/preview").json()
        assert preview["applied"] is False
        assert preview["count"] == 1
        assert client.get("/positions").json()["count"] == 1

        settled = client.post("/settlement/2026-02-10").json()
        assert settled["applied"] is True
        assert settled["outcomes"][0]["won"] is True
        assert settled["total_pnl"] == pytest.approx(3.00)
        assert settled["balance"] == pytest.approx(1003.0)
        assert client.get("/positions").json()["count"] == 0

    def test_no_observations(self, client):
        client.post("/trades", json=TRADE)
        body = client.post("/settlement/2026-02-10").json()
        assert body["error"] == "No observations available"
        assert body["applied"] is False

    def test_invalid_date(self, client):
        assert client.post("/settlement/not-a-date").status_code == 422


class TestRiskRoute:
    def test_risk_status(self, client):
        client.post("/trades", json=TRADE)
        body = client.get("/risk").json()
        assert body["trading_allowed"] is True
        assert body["open_positions"] == 1
        assert body["positions_per_station"] == {"KNYC": 1}
        assert body["drawdown_floor"] == pytest.approx(800.0)

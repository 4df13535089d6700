"""
app/services/kalshi_client.py
Async wrapper around the handful of Kalshi REST v2 endpoints the executor
needs: balance, market status and order placement.

Public endpoints need no auth; portfolio endpoints are signed with
RSA-PSS (timestamp + METHOD + path).
"""

import base64
import logging
import time
from pathlib import Path
from typing import Any

import httpx
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from core.config import Settings

logger = logging.getLogger(__name__)

PROD_URL = "https://api.elections.kalshi.com/trade-api/v2"
DEMO_URL = "https://demo-api.kalshi.co/trade-api/v2"
API_PREFIX = "/trade-api/v2"


def _load_private_key(path: str) -> Any:
    """Load an RSA private key from a PEM file."""
    return serialization.load_pem_private_key(Path(path).read_bytes(), password=None)


def _sign_rsa_pss(private_key: Any, message: str) -> str:
    """Sign with RSA-PSS + SHA256, base64-encoded."""
    signature = private_key.sign(
        message.encode("utf-8"),
        padding.PSS(
            mgf=padding.MGF1(hashes.SHA256()),
            salt_length=padding.PSS.DIGEST_LENGTH,
        ),
        hashes.SHA256(),
    )
    return base64.b64encode(signature).decode("utf-8")


def build_order(ticker: str, side: str, count: int, price: float) -> dict[str, Any]:
    """Limit buy order body; price is dollars (0-1), sent as cents (1-99)."""
    side = side.lower()
    price_cents = max(1, min(99, round(price * 100)))
    body: dict[str, Any] = {
        "ticker": ticker,
        "side": side,
        "action": "buy",
        "count": count,
        "type": "limit",
    }
    body["yes_price" if side == "yes" else "no_price"] = price_cents
    return body


class KalshiClient:
    """Async client for Kalshi's REST API v2."""

    def __init__(
        self,
        api_key_id: str = "",
        private_key_path: str | None = None,
        use_demo: bool = True,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = DEMO_URL if use_demo else PROD_URL
        self._api_key_id = api_key_id
        self._private_key: Any = None

        if api_key_id and private_key_path:
            try:
                self._private_key = _load_private_key(private_key_path)
            except (OSError, ValueError) as exc:
                logger.warning("Kalshi private key not loaded: %s", exc)

        self._client = http_client or httpx.AsyncClient(timeout=15.0)

    @classmethod
    def from_settings(cls, settings: Settings) -> "KalshiClient":
        return cls(
            api_key_id=settings.KALSHI_API_KEY_ID,
            private_key_path=settings.KALSHI_PRIVATE_KEY_PATH,
            use_demo=settings.KALSHI_USE_DEMO,
        )

    async def __aenter__(self) -> "KalshiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _auth_headers(self, method: str, path: str) -> dict[str, str]:
        if self._private_key is None:
            raise RuntimeError("Kalshi credentials are not configured")
        timestamp = str(int(time.time() * 1000))
        message = timestamp + method.upper() + f"{API_PREFIX}{path}".split("?")[0]
        return {
            "Content-Type": "application/json",
            "KALSHI-ACCESS-KEY": self._api_key_id,
            "KALSHI-ACCESS-SIGNATURE": _sign_rsa_pss(self._private_key, message),
            "KALSHI-ACCESS-TIMESTAMP": timestamp,
        }

    async def _request(
        self,
        method: str,
        path: str,
        auth: bool = False,
        json: dict | None = None,
    ) -> dict:
        headers = self._auth_headers(method, path) if auth else {}
        resp = await self._client.request(
            method, f"{self._base_url}{path}", json=json, headers=headers,
        )
        resp.raise_for_status()
        return resp.json()

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def get_market(self, ticker: str) -> dict:
        """Single market detail (status, bid/ask, close time)."""
        data = await self._request("GET", f"/markets/{ticker}")
        return data.get("market", data)

    async def get_balance(self) -> float:
        """Available balance in dollars."""
        data = await self._request("GET", "/portfolio/balance", auth=True)
        return data.get("balance", 0) / 100.0

    async def place_order(self, order: dict[str, Any]) -> dict:
        """Submit an order body built by build_order()."""
        data = await self._request("POST", "/portfolio/orders", auth=True, json=order)
        return data.get("order", data)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

"""
Pyth Hermes price feed.
Display-only: any failure degrades to a fixed mock price.
"""
from __future__ import annotations
import httpx

from giggle.core.config import get_settings
from giggle.core.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

PRICE_FEED_IDS = {
    "ETH/USD": "0xff61491a931112ddf1bd8147cd1b641375f79f5825126d665480874634fd0ace",
    "USDC/USD": "0xeaa020c61cc479712813461ce153894a96a6c00b21ed0cfc2798d1f9a9e9c94a",
}
MOCK_PRICES = {"ETH/USD": 2500.0, "PYUSD/USD": 1.0, "USDC/USD": 1.0, "BTC/USD": 45000.0}


class PythPriceFeed:
    def __init__(self, endpoint: str = None, timeout: float = 5.0):
        self.endpoint = (endpoint or settings.PYTH_ENDPOINT).rstrip("/")
        self.timeout = timeout

    @staticmethod
    def mock_price(pair: str) -> float:
        return MOCK_PRICES.get(pair, 1.0)

    async def get_price(self, pair: str) -> float:
        feed_id = PRICE_FEED_IDS.get(pair)
        if not feed_id:
            return self.mock_price(pair)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(f"{self.endpoint}/api/latest_price_feeds", params={"ids[]": feed_id})
                resp.raise_for_status()
                data = resp.json()
            price = data[0]["price"]
            return int(price["price"]) * (10 ** int(price["expo"]))
        except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as exc:
            logger.warning("Pyth price for %s unavailable, using mock: %s", pair, exc)
            return self.mock_price(pair)

"""
Stock quote source.

Yahoo Finance (yfinance) first, Twelve Data as secondary, and a synthetic
quote tagged source="mock" when both are unavailable.
"""

import logging
import random
from datetime import datetime, time
from typing import Any, Optional
from zoneinfo import ZoneInfo

import requests
import yfinance as yf

from .base import DataSource, now_iso
from .cache import TTLCache

logger = logging.getLogger(__name__)


# Reference prices for synthetic quotes
MOCK_BASE_PRICES = {
    "AAPL": 175.0,
    "MSFT": 380.0,
    "GOOGL": 140.0,
    "AMZN": 155.0,
    "TSLA": 240.0,
    "META": 350.0,
    "NVDA": 480.0,
    "NFLX": 480.0,
    "AMD": 140.0,
    "INTC": 45.0,
}
DEFAULT_MOCK_PRICE = 100.0

MARKET_OPEN = time(9, 30)
MARKET_CLOSE = time(16, 0)


def is_market_open(
    now: Optional[datetime] = None, timezone: str = "America/New_York"
) -> bool:
    """
    Check whether the US equity market is in regular session.

    Args:
        now: Moment to check (aware, or naive local time); defaults to now
        timezone: Exchange timezone

    Returns:
        True Monday to Friday between 09:30 and 16:00 exchange time
    """
    tz = ZoneInfo(timezone)
    if now is None:
        local = datetime.now(tz)
    elif now.tzinfo is None:
        local = now.astimezone().astimezone(tz)
    else:
        local = now.astimezone(tz)

    if local.weekday() >= 5:
        return False
    return MARKET_OPEN <= local.time() <= MARKET_CLOSE


class StockDataSource(DataSource):
    """Fetches stock quotes from Yahoo Finance with Twelve Data fallback."""

    cache_prefix = "stock"

    def __init__(
        self,
        cache: Optional[TTLCache] = None,
        cache_ttl: float = 300,
        timeout: float = 10,
        twelve_data_api_key: str = "",
        twelve_data_url: str = "https://api.twelvedata.com",
        rng: Optional[random.Random] = None,
    ):
        super().__init__(cache=cache, cache_ttl=cache_ttl, timeout=timeout)
        self.twelve_data_api_key = twelve_data_api_key
        self.twelve_data_url = twelve_data_url.rstrip("/")
        self.rng = rng or random.Random()

    def fetch_uncached(self, target: str) -> Optional[dict[str, Any]]:
        symbol = target.upper()

        data = self.fetch_from_yahoo(symbol)
        if data is None:
            data = self.fetch_from_twelve_data(symbol)

        if data is None:
            logger.warning(f"All quote providers failed for {symbol}, using mock data")
            data = self.mock_quote(symbol)
        return data

    def fetch_from_yahoo(self, symbol: str) -> Optional[dict[str, Any]]:
        """Quote from yfinance ticker info."""
        try:
            info = yf.Ticker(symbol).info
        except Exception as e:
            # yfinance surfaces HTTP, JSON and rate-limit failures with assorted types
            logger.warning(f"Yahoo Finance error for {symbol}: {e}")
            return None

        if not info:
            return None

        # Use regularMarketPrice if available, otherwise fall back to previousClose
        price = info.get("regularMarketPrice")
        if price is None:
            price = info.get("currentPrice")
        if price is None:
            price = info.get("previousClose")
        if price is None:
            logger.warning(f"Yahoo Finance has no price for {symbol}")
            return None

        previous_close = info.get("previousClose") or price
        change = price - previous_close
        change_percent = (change / previous_close) * 100 if previous_close else 0.0

        return {
            "symbol": symbol,
            "price": float(price),
            "open": float(info.get("open") or price),
            "high": float(info.get("dayHigh") or price),
            "low": float(info.get("dayLow") or price),
            "previous_close": float(previous_close),
            "change": round(change, 4),
            "change_percent": round(change_percent, 2),
            "volume": int(info.get("volume") or 0),
            "source": "yahoo",
            "timestamp": now_iso(),
        }

    def fetch_from_twelve_data(self, symbol: str) -> Optional[dict[str, Any]]:
        """Quote from the Twelve Data /quote endpoint."""
        if not self.twelve_data_api_key:
            return None

        try:
            response = requests.get(
                f"{self.twelve_data_url}/quote",
                params={"symbol": symbol, "apikey": self.twelve_data_api_key},
                timeout=self.timeout,
            )
            response.raise_for_status()
            quote = response.json()

            # Errors come back as 200 with status="error"
            if quote.get("status") == "error" or "close" not in quote:
                logger.warning(
                    f"Twelve Data error for {symbol}: {quote.get('message', 'no quote')}"
                )
                return None

            return {
                "symbol": symbol,
                "price": float(quote["close"]),
                "open": float(quote.get("open") or quote["close"]),
                "high": float(quote.get("high") or quote["close"]),
                "low": float(quote.get("low") or quote["close"]),
                "previous_close": float(quote.get("previous_close") or quote["close"]),
                "change": float(quote.get("change") or 0),
                "change_percent": float(quote.get("percent_change") or 0),
                "volume": int(float(quote.get("volume") or 0)),
                "source": "twelve_data",
                "timestamp": now_iso(),
            }
        except (requests.RequestException, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Twelve Data error for {symbol}: {e}")
            return None

    def mock_quote(self, symbol: str) -> dict[str, Any]:
        """Synthetic quote around a static base price."""
        base = MOCK_BASE_PRICES.get(symbol, DEFAULT_MOCK_PRICE)
        change_percent = self.rng.uniform(-3.0, 3.0)
        price = base * (1 + change_percent / 100)
        change = price - base

        return {
            "symbol": symbol,
            "price": round(price, 2),
            "open": round(base * (1 + self.rng.uniform(-0.01, 0.01)), 2),
            "high": round(max(price, base) * (1 + self.rng.uniform(0, 0.01)), 2),
            "low": round(min(price, base) * (1 - self.rng.uniform(0, 0.01)), 2),
            "previous_close": base,
            "change": round(change, 2),
            "change_percent": round(change_percent, 2),
            "volume": self.rng.randint(1_000_000, 50_000_000),
            "source": "mock",
            "timestamp": now_iso(),
        }

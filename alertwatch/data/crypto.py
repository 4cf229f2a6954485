"""
Cryptocurrency price source.

Binance 24h ticker first, CoinGecko markets as fallback.
"""

import logging
from typing import Any, Optional

import requests

from .base import DataSource, now_iso

logger = logging.getLogger(__name__)


COINGECKO_IDS = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "BNB": "binancecoin",
    "ADA": "cardano",
    "SOL": "solana",
    "XRP": "ripple",
    "DOT": "polkadot",
    "DOGE": "dogecoin",
    "AVAX": "avalanche-2",
    "MATIC": "matic-network",
    "LTC": "litecoin",
    "TRX": "tron",
    "LINK": "chainlink",
    "TON": "the-open-network",
    "USDT": "tether",
}

# Stablecoins have no USDT pair on Binance
NO_BINANCE_PAIR = {"USDT"}


class CryptoDataSource(DataSource):
    """Fetches crypto prices from Binance with CoinGecko fallback."""

    BINANCE_URL = "https://api.binance.com/api/v3/ticker/24hr"
    COINGECKO_URL = "https://api.coingecko.com/api/v3/coins/markets"

    cache_prefix = "crypto"

    def fetch_uncached(self, target: str) -> Optional[dict[str, Any]]:
        symbol = target.upper()

        data = self.fetch_from_binance(symbol)
        if data is None:
            data = self.fetch_from_coingecko(symbol)

        if data is None:
            logger.warning(f"No crypto data available for {symbol}")
        return data

    def fetch_from_binance(self, symbol: str) -> Optional[dict[str, Any]]:
        """Query the Binance 24h ticker for SYMBOLUSDT."""
        if symbol in NO_BINANCE_PAIR:
            return None

        pair = symbol if symbol.endswith("USDT") else f"{symbol}USDT"
        try:
            response = requests.get(
                self.BINANCE_URL, params={"symbol": pair}, timeout=self.timeout
            )
            response.raise_for_status()
            ticker = response.json()

            return {
                "symbol": symbol,
                "price": float(ticker["lastPrice"]),
                "change_24h": float(ticker["priceChangePercent"]),
                "volume": float(ticker.get("quoteVolume") or ticker.get("volume") or 0),
                "high_24h": float(ticker["highPrice"]),
                "low_24h": float(ticker["lowPrice"]),
                "source": "binance",
                "timestamp": now_iso(),
            }
        except (requests.RequestException, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Binance ticker failed for {pair}: {e}")
            return None

    def fetch_from_coingecko(self, symbol: str) -> Optional[dict[str, Any]]:
        """Query CoinGecko markets by coin id."""
        coin_id = COINGECKO_IDS.get(symbol, symbol.lower())
        try:
            response = requests.get(
                self.COINGECKO_URL,
                params={
                    "vs_currency": "usd",
                    "ids": coin_id,
                    "price_change_percentage": "1h,24h,7d",
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            markets = response.json()
            if not markets:
                logger.warning(f"CoinGecko has no market for {coin_id}")
                return None

            coin = markets[0]
            return {
                "symbol": symbol,
                "price": float(coin["current_price"]),
                "change_24h": float(coin.get("price_change_percentage_24h") or 0),
                "change_1h": float(
                    coin.get("price_change_percentage_1h_in_currency") or 0
                ),
                "change_7d": float(
                    coin.get("price_change_percentage_7d_in_currency") or 0
                ),
                "volume": float(coin.get("total_volume") or 0),
                "high_24h": float(coin.get("high_24h") or 0),
                "low_24h": float(coin.get("low_24h") or 0),
                "market_cap": float(coin.get("market_cap") or 0),
                "source": "coingecko",
                "timestamp": now_iso(),
            }
        except (requests.RequestException, ValueError, KeyError, TypeError) as e:
            logger.warning(f"CoinGecko markets failed for {coin_id}: {e}")
            return None

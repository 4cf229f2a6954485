"""
Currency exchange rate source.

Pairs involving AZN go to the Central Bank of Azerbaijan (CBAR) daily XML
first. Everything falls back to exchangerate-api, and if that also fails a
synthetic rate tagged source="mock" is returned.
"""

import logging
import random
import xml.etree.ElementTree as ET
from datetime import date
from typing import Any, Optional

import requests

from .base import DataSource, now_iso
from .cache import TTLCache

logger = logging.getLogger(__name__)


BASE_CURRENCY = "AZN"

# Units of each currency per 1 USD, used only for synthetic rates
MOCK_USD_RATES = {
    "USD": 1.0,
    "EUR": 0.92,
    "GBP": 0.79,
    "AZN": 1.70,
    "RUB": 90.5,
    "TRY": 32.8,
    "JPY": 148.5,
    "CHF": 0.88,
    "CAD": 1.36,
    "AUD": 1.52,
}

PREVIOUS_RATE_TTL = 3 * 24 * 3600


class InvalidCurrencyPairError(ValueError):
    """Raised when an asset is not of the form FROM/TO."""

    pass


def parse_pair(asset: str) -> tuple[str, str]:
    """Split "USD/AZN" into ("USD", "AZN")."""
    parts = [p.strip().upper() for p in asset.split("/")]
    if len(parts) != 2 or not all(parts):
        raise InvalidCurrencyPairError(f"Invalid currency pair format: {asset}")
    return parts[0], parts[1]


def parse_cbar_rates(xml_text: str) -> dict[str, float]:
    """
    Parse a CBAR daily document into AZN per one unit of each currency.

    Raises:
        ET.ParseError: If the document is not valid XML
    """
    root = ET.fromstring(xml_text)
    rates: dict[str, float] = {}

    for valute in root.iter("Valute"):
        code = valute.get("Code")
        nominal_text = (valute.findtext("Nominal") or "").split()
        value_text = valute.findtext("Value")
        if not code or not nominal_text or value_text is None:
            continue
        try:
            nominal = float(nominal_text[0])
            value = float(value_text)
        except ValueError:
            continue
        if nominal > 0:
            rates[code.upper()] = value / nominal

    if rates:
        rates[BASE_CURRENCY] = 1.0
    return rates


def cross_rate(rates: dict[str, float], from_currency: str, to_currency: str) -> Optional[float]:
    """Units of to_currency per one from_currency, from AZN-based rates."""
    if from_currency not in rates or to_currency not in rates:
        return None
    if rates[to_currency] == 0:
        return None
    return rates[from_currency] / rates[to_currency]


class CurrencyDataSource(DataSource):
    """Fetches exchange rates with CBAR -> exchangerate-api -> mock fallback."""

    CBAR_URL = "https://www.cbar.az/currencies"
    EXCHANGERATE_URL = "https://api.exchangerate-api.com/v4/latest"

    cache_prefix = "currency"

    def __init__(
        self,
        cache: Optional[TTLCache] = None,
        cache_ttl: float = 1800,
        timeout: float = 10,
        rng: Optional[random.Random] = None,
    ):
        super().__init__(cache=cache, cache_ttl=cache_ttl, timeout=timeout)
        self.rng = rng or random.Random()

    def fetch_uncached(self, target: str) -> Optional[dict[str, Any]]:
        try:
            from_currency, to_currency = parse_pair(target)
        except InvalidCurrencyPairError as e:
            logger.error(str(e))
            return None

        rate = None
        source = None
        spread = 0.002

        if BASE_CURRENCY in (from_currency, to_currency):
            rate = self.fetch_from_cbar(from_currency, to_currency)
            source, spread = "cbar", 0.005

        if rate is None:
            rate = self.fetch_from_exchangerate_api(from_currency, to_currency)
            source, spread = "exchangerate-api", 0.002

        if rate is None:
            logger.warning(
                f"All rate providers failed for {from_currency}/{to_currency}, using mock data"
            )
            return self.mock_rate(from_currency, to_currency)

        previous = self._remember_rate(from_currency, to_currency, rate)
        change = rate - previous if previous else 0.0
        change_percent = (change / previous) * 100 if previous else 0.0

        return {
            "from_currency": from_currency,
            "to_currency": to_currency,
            "rate": round(rate, 4),
            "bid": round(rate * (1 - spread), 4),
            "ask": round(rate * (1 + spread), 4),
            "change": round(change, 4),
            "change_percent": round(change_percent, 2),
            "change_24h": round(change_percent, 2),
            "previous_rate": previous,
            "source": source,
            "timestamp": now_iso(),
        }

    def fetch_from_cbar(self, from_currency: str, to_currency: str) -> Optional[float]:
        """Rate from today's CBAR document."""
        url = f"{self.CBAR_URL}/{date.today().strftime('%d.%m.%Y')}.xml"
        try:
            response = requests.get(url, timeout=self.timeout)
            response.raise_for_status()
            rates = parse_cbar_rates(response.text)
        except (requests.RequestException, ET.ParseError) as e:
            logger.warning(f"CBAR error for {from_currency}/{to_currency}: {e}")
            return None

        rate = cross_rate(rates, from_currency, to_currency)
        if rate is None:
            logger.warning(f"CBAR has no rate for {from_currency}/{to_currency}")
        return rate

    def fetch_from_exchangerate_api(
        self, from_currency: str, to_currency: str
    ) -> Optional[float]:
        """Rate from exchangerate-api latest rates."""
        try:
            response = requests.get(
                f"{self.EXCHANGERATE_URL}/{from_currency}", timeout=self.timeout
            )
            response.raise_for_status()
            rates = response.json().get("rates", {})
            if to_currency not in rates:
                return None
            return float(rates[to_currency])
        except (requests.RequestException, ValueError, TypeError, AttributeError) as e:
            logger.warning(
                f"ExchangeRate API error for {from_currency}/{to_currency}: {e}"
            )
            return None

    def mock_rate(self, from_currency: str, to_currency: str) -> dict[str, Any]:
        """Synthetic rate for development and outages."""
        from_rate = MOCK_USD_RATES.get(from_currency, 1.0)
        to_rate = MOCK_USD_RATES.get(to_currency, 1.0)
        rate = (to_rate / from_rate) * (1 + self.rng.uniform(-0.01, 0.01))
        change = rate * self.rng.uniform(-0.02, 0.02)
        change_percent = (change / rate) * 100

        return {
            "from_currency": from_currency,
            "to_currency": to_currency,
            "rate": round(rate, 4),
            "bid": round(rate * 0.998, 4),
            "ask": round(rate * 1.002, 4),
            "change": round(change, 4),
            "change_percent": round(change_percent, 2),
            "change_24h": round(change_percent, 2),
            "previous_rate": round(rate - change, 4),
            "source": "mock",
            "timestamp": now_iso(),
        }

    def _remember_rate(
        self, from_currency: str, to_currency: str, rate: float
    ) -> Optional[float]:
        """Store the latest rate and return the one it replaced."""
        key = f"currency_previous:{from_currency}/{to_currency}"
        slot = self.cache.get(key)

        previous = None
        if slot:
            previous = slot["rate"] if slot["rate"] != rate else slot.get("previous")

        self.cache.set(key, {"rate": rate, "previous": previous}, PREVIOUS_RATE_TTL)
        return previous

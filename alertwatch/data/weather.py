"""
Weather source backed by OpenWeatherMap current conditions.
"""

import logging
import random
from typing import Any, Optional

import requests

from .base import DataSource, now_iso
from .cache import TTLCache

logger = logging.getLogger(__name__)


MOCK_DESCRIPTIONS = (
    "clear sky",
    "few clouds",
    "scattered clouds",
    "broken clouds",
    "light rain",
    "moderate rain",
    "overcast clouds",
)


def estimate_rain_chance(weather: dict[str, Any]) -> int:
    """
    Estimate precipitation probability from a current-conditions payload.

    The current-weather endpoint has no forecast probability, so active rain
    counts as certain and otherwise cloud cover is bucketed.
    """
    if weather.get("rain"):
        return 100

    clouds = (weather.get("clouds") or {}).get("all", 0)
    if clouds > 80:
        return 70
    if clouds > 60:
        return 40
    if clouds > 40:
        return 20
    return 5


class WeatherDataSource(DataSource):
    """Fetches current weather for a location."""

    API_URL = "https://api.openweathermap.org/data/2.5/weather"

    cache_prefix = "weather"

    def __init__(
        self,
        api_key: str = "",
        cache: Optional[TTLCache] = None,
        cache_ttl: float = 600,
        timeout: float = 10,
        rng: Optional[random.Random] = None,
    ):
        super().__init__(cache=cache, cache_ttl=cache_ttl, timeout=timeout)
        self.api_key = api_key
        self.rng = rng or random.Random()

    def fetch_uncached(self, target: str) -> Optional[dict[str, Any]]:
        if not self.api_key:
            logger.warning(f"OpenWeatherMap API key not configured, using mock data for {target}")
            return self.mock_weather(target)

        try:
            response = requests.get(
                self.API_URL,
                params={"q": target, "appid": self.api_key, "units": "metric"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return self.parse_weather(target, response.json())
        except (requests.RequestException, ValueError, KeyError, TypeError) as e:
            logger.warning(f"OpenWeatherMap error for {target}: {e}")
            return self.mock_weather(target)

    def parse_weather(self, location: str, weather: dict[str, Any]) -> dict[str, Any]:
        """Flatten an OpenWeatherMap response."""
        main = weather["main"]
        wind = weather.get("wind") or {}
        rain = weather.get("rain") or {}
        conditions = weather.get("weather") or [{}]

        return {
            "location": location,
            "temperature": float(main["temp"]),
            "feels_like": float(main.get("feels_like", main["temp"])),
            "humidity": main.get("humidity", 0),
            "pressure": main.get("pressure", 0),
            "wind_speed": float(wind.get("speed", 0)),
            "wind_direction": wind.get("deg", 0),
            "clouds": (weather.get("clouds") or {}).get("all", 0),
            "rain_1h": float(rain.get("1h", 0)),
            "rain_3h": float(rain.get("3h", 0)),
            "rain_chance": estimate_rain_chance(weather),
            "description": conditions[0].get("description", ""),
            "visibility": weather.get("visibility", 0),
            "source": "openweathermap",
            "timestamp": now_iso(),
        }

    def mock_weather(self, location: str) -> dict[str, Any]:
        """Synthetic conditions for development and outages."""
        temperature = round(self.rng.uniform(-10, 40), 1)
        clouds = self.rng.randint(0, 100)
        description = self.rng.choice(MOCK_DESCRIPTIONS)
        raining = "rain" in description

        return {
            "location": location,
            "temperature": temperature,
            "feels_like": round(temperature + self.rng.uniform(-5, 5), 1),
            "humidity": self.rng.randint(20, 100),
            "pressure": self.rng.randint(990, 1030),
            "wind_speed": round(self.rng.uniform(0, 20), 1),
            "wind_direction": self.rng.randint(0, 360),
            "clouds": clouds,
            "rain_1h": round(self.rng.uniform(0.1, 5), 1) if raining else 0.0,
            "rain_3h": 0.0,
            "rain_chance": estimate_rain_chance(
                {"rain": raining, "clouds": {"all": clouds}}
            ),
            "description": description,
            "visibility": self.rng.randint(1000, 10000),
            "source": "mock",
            "timestamp": now_iso(),
        }

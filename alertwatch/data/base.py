"""
Base class for data sources.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from .cache import TTLCache, shared_cache

logger = logging.getLogger(__name__)


class DataSource(ABC):
    """Fetches current data for an alert target."""

    # Cache key prefix; subclasses without caching leave this empty
    cache_prefix: str = ""

    def __init__(
        self,
        cache: Optional[TTLCache] = None,
        cache_ttl: float = 60,
        timeout: float = 10,
    ):
        self.cache = cache if cache is not None else shared_cache
        self.cache_ttl = cache_ttl
        self.timeout = timeout

    def fetch(self, target: str) -> Optional[dict[str, Any]]:
        """
        Fetch current data for a target, using the cache when possible.

        Args:
            target: Asset identity (ticker, currency pair, location, URL)

        Returns:
            Flat data map, or None when no provider could supply data
        """
        if not target or not target.strip():
            return None

        key = self.cache_key(target)
        if key:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        data = self.fetch_uncached(target.strip())

        if data is not None and key:
            self.cache.set(key, data, self.cache_ttl)

        return data

    def cache_key(self, target: str) -> Optional[str]:
        """Cache key for a target, or None to bypass the cache."""
        if not self.cache_prefix:
            return None
        return f"{self.cache_prefix}:{target.strip().upper()}"

    @abstractmethod
    def fetch_uncached(self, target: str) -> Optional[dict[str, Any]]:
        """Query providers for a target."""
        pass


def now_iso() -> str:
    """Current timestamp in ISO format."""
    return datetime.now().isoformat()

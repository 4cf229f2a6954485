"""
Process-wide TTL cache shared by the data sources.
"""

import threading
import time
from typing import Any, Optional


class TTLCache:
    """In-memory cache with per-item time-to-live, safe across threads."""

    def __init__(self, default_ttl: float = 60):
        """
        Args:
            default_ttl: Lifespan in seconds for items stored without a TTL
        """
        self.default_ttl = default_ttl
        self._items: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None if missing or expired."""
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            value, expires_at = item
            if time.monotonic() >= expires_at:
                del self._items[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store a value for ttl seconds (default TTL when omitted)."""
        lifetime = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._items[key] = (value, time.monotonic() + lifetime)

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


# Shared by every source in the process
shared_cache = TTLCache()

"""
TTL cache tests.
"""

from unittest.mock import patch

from alertwatch.data.cache import TTLCache


class TestTTLCache:
    """Test expiry and basic operations."""

    def test_set_and_get(self):
        """Should return stored values before expiry."""
        cache = TTLCache()
        cache.set("crypto:BTC", {"price": 1})
        assert cache.get("crypto:BTC") == {"price": 1}

    def test_missing_key(self):
        """Should return None for unknown keys."""
        assert TTLCache().get("nothing") is None

    def test_expiry(self):
        """Should drop values once their TTL has passed."""
        cache = TTLCache()
        with patch("alertwatch.data.cache.time.monotonic", return_value=100.0):
            cache.set("k", "v", ttl=60)
        with patch("alertwatch.data.cache.time.monotonic", return_value=159.0):
            assert cache.get("k") == "v"
        with patch("alertwatch.data.cache.time.monotonic", return_value=160.0):
            assert cache.get("k") is None
        assert len(cache) == 0

    def test_default_ttl(self):
        """Should use the default TTL when none is given."""
        cache = TTLCache(default_ttl=10)
        with patch("alertwatch.data.cache.time.monotonic", return_value=0.0):
            cache.set("k", "v")
        with patch("alertwatch.data.cache.time.monotonic", return_value=10.0):
            assert cache.get("k") is None

    def test_delete_and_clear(self):
        """Should remove single keys and everything."""
        cache = TTLCache()
        cache.set("a", 1)
        cache.set("b", 2)
        cache.delete("a")
        assert cache.get("a") is None
        cache.clear()
        assert len(cache) == 0

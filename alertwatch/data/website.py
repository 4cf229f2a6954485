"""
Website uptime probe.
"""

import logging
import time
from typing import Any, Optional

import requests

from .base import DataSource, now_iso

logger = logging.getLogger(__name__)


def normalize_url(url: str) -> str:
    """Prepend https:// when no scheme is given."""
    url = url.strip()
    if not url.lower().startswith(("http://", "https://")):
        url = f"https://{url}"
    return url


class WebsiteDataSource(DataSource):
    """Probes a URL and reports status, latency and availability. Never cached."""

    cache_prefix = ""

    def __init__(self, timeout: float = 30, user_agent: str = "AlertWatch Monitor/1.0"):
        super().__init__(timeout=timeout)
        self.user_agent = user_agent

    def fetch_uncached(self, target: str) -> Optional[dict[str, Any]]:
        url = normalize_url(target)
        started = time.monotonic()

        try:
            response = requests.get(
                url,
                timeout=self.timeout,
                allow_redirects=True,
                headers={"User-Agent": self.user_agent},
            )
        except requests.RequestException as e:
            logger.warning(f"Website check failed for {url}: {e}")
            return self._result(
                url,
                status_code=0,
                response_time=self._elapsed_ms(started),
                error=f"Connection failed: {e}",
            )

        status_code = response.status_code
        is_online = 200 <= status_code < 400
        return self._result(
            url,
            status_code=status_code,
            response_time=self._elapsed_ms(started),
            redirect_count=len(response.history),
            content_length=len(response.content or b""),
            error=None if is_online else f"HTTP Error: {status_code}",
        )

    def _result(
        self,
        url: str,
        status_code: int,
        response_time: int,
        redirect_count: int = 0,
        content_length: int = 0,
        error: Optional[str] = None,
    ) -> dict[str, Any]:
        is_online = 200 <= status_code < 400
        return {
            "url": url,
            "status_code": status_code,
            "response_time": response_time,
            "is_online": is_online,
            "is_up": is_online,
            "is_down": not is_online,
            "redirect_count": redirect_count,
            "content_length": content_length,
            "error": error,
            "timestamp": now_iso(),
        }

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int(round((time.monotonic() - started) * 1000))

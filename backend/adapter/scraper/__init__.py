"""
Search-page scraping adapter for PortAlerts.

Fetches a Nitter search results page for one query through a
ScraperAPI-style proxy and returns the raw HTML. Extraction of posts from
that HTML lives in `adapter.scraper.extractor`.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Optional
from urllib.parse import quote

import requests

from ..rate_limiter import RateLimiter, RateLimitConfig

logger = logging.getLogger(__name__)


class ScraperError(Exception):
    """Base exception for ScraperAdapter errors."""
    pass


class ScraperAuthenticationError(ScraperError):
    """Raised when the proxy key is missing or rejected."""
    pass


class ScraperTimeoutError(ScraperError):
    """Raised when the proxy does not answer within the timeout."""
    pass


class ScraperAPIError(ScraperError):
    """Raised when the proxy returns a non-success response."""
    def __init__(self, message: str, status_code: int = None, response_text: str = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_text = response_text


class ScraperAdapter:
    """
    Adapter for the scraping proxy.

    One call per query, no retries: a failed query is reported to the
    caller, which moves on to the next query in its plan.

    Usage:
        adapter = ScraperAdapter()  # Uses SCRAPERAPI_KEY env var
        html = adapter.fetch("from:KaspaCurrency")
    """

    DEFAULT_BASE_URL = "https://api.scraperapi.com/"
    DEFAULT_SEARCH_URL = "https://nitter.net/search"

    DEFAULT_RATE_LIMIT = RateLimitConfig(
        requests_per_window=60,
        window_seconds=60,
        strategy="sliding_window"
    )

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        search_url: Optional[str] = None,
        timeout: float = 30.0,
        rate_limiter: Optional[RateLimiter] = None,
        monitor=None,
    ):
        """
        Initialize the scraper adapter.

        Args:
            api_key: Proxy API key (or set SCRAPERAPI_KEY env var)
            base_url: Proxy endpoint
            search_url: Search frontend whose result pages are scraped
            timeout: Per-request timeout in seconds
            rate_limiter: Optional shared rate limiter
            monitor: Optional SystemMonitor to report calls into
        """
        self.api_key = api_key or os.environ.get("SCRAPERAPI_KEY")
        self.base_url = base_url or self.DEFAULT_BASE_URL
        self.search_url = search_url or self.DEFAULT_SEARCH_URL
        self.timeout = timeout
        self.monitor = monitor

        if not self.api_key:
            logger.warning("No SCRAPERAPI_KEY provided - adapter will fail on fetches")

        self.rate_limiter = rate_limiter or RateLimiter()
        if "scraper" not in self.rate_limiter.configs:
            self.rate_limiter.configure_limit("scraper", self.DEFAULT_RATE_LIMIT)

    @property
    def is_configured(self) -> bool:
        """Check if adapter is configured with a proxy key."""
        return bool(self.api_key)

    def build_target_url(self, query: str) -> str:
        """Search results page for a query, newest posts first."""
        return f"{self.search_url}?q={quote(query, safe='')}&f=tweets"

    def fetch(self, query: str) -> str:
        """
        Fetch the raw search results document for one query.

        Args:
            query: Search query (e.g. "from:KaspaCurrency" or "$KAS")

        Returns:
            The raw HTML body

        Raises:
            ScraperAuthenticationError: If not configured or the key is rejected
            ScraperTimeoutError: If the proxy does not answer in time
            ScraperAPIError: On any other non-success outcome
        """
        if not self.is_configured:
            raise ScraperAuthenticationError("Scraper not configured - set SCRAPERAPI_KEY")

        self.rate_limiter.wait_if_needed("scraper")

        params = {"api_key": self.api_key, "url": self.build_target_url(query)}
        start_time_ms = time.time() * 1000

        try:
            response = requests.get(self.base_url, params=params, timeout=self.timeout)
        except requests.exceptions.Timeout:
            self._record(start_time_ms, query, error="timeout")
            raise ScraperTimeoutError(f"Scraper request timed out after {self.timeout}s")
        except requests.exceptions.RequestException as e:
            self._record(start_time_ms, query, error=str(e)[:100])
            raise ScraperAPIError(f"Failed to reach scraper: {e}")

        if response.status_code in (401, 403):
            self._record(start_time_ms, query, error=f"HTTP {response.status_code}")
            raise ScraperAuthenticationError("Scraper rejected the API key")
        if response.status_code >= 300:
            self._record(start_time_ms, query, error=f"HTTP {response.status_code}")
            raise ScraperAPIError(
                f"Scraper error: {response.status_code}",
                status_code=response.status_code,
                response_text=response.text[:500],
            )

        html = response.text
        latency_ms = self._record(start_time_ms, query)
        logger.info(f"Fetched {len(html)} bytes for query '{query}' ({latency_ms:.0f}ms)")
        return html

    def _record(self, start_time_ms: float, query: str, error: Optional[str] = None) -> float:
        latency_ms = (time.time() * 1000) - start_time_ms
        if self.monitor:
            from monitoring import EventType
            self.monitor.metrics.record_scraper_call(latency_ms, error=error is not None)
            if error:
                self.monitor.activity.add_event(EventType.ERROR, query=query, error=f"Scraper: {error}")
            else:
                self.monitor.activity.add_event(EventType.FETCH, query=query, latency_ms=round(latency_ms, 1))
        return latency_ms


__all__ = [
    "ScraperAdapter",
    "ScraperError",
    "ScraperAuthenticationError",
    "ScraperTimeoutError",
    "ScraperAPIError",
]

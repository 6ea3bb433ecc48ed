"""
Rate limiter shared by the scraper, Grok and Telegram adapters.

Each external API gets its own category with its own window and strategy.
Safe to share between the pipeline's worker threads: a slot is reserved
under the lock and the caller sleeps outside it.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Literal

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """Requests allowed per window for one category."""
    requests_per_window: int
    window_seconds: int
    strategy: Literal["sliding_window", "token_bucket"] = "sliding_window"

    @property
    def refill_rate(self) -> float:
        return self.requests_per_window / self.window_seconds


@dataclass
class _Bucket:
    tokens: float
    refilled_at: float


class RateLimiter:
    """
    Per-category rate limiter.

    Strategies:
    - sliding_window: at most N requests in any window of W seconds
    - token_bucket: bursts up to N, refilled at N/W tokens per second
    """

    def __init__(self):
        self.configs: Dict[str, RateLimitConfig] = {}
        self._windows: Dict[str, Deque[float]] = {}
        self._buckets: Dict[str, _Bucket] = {}
        self._lock = threading.Lock()

    def configure_limit(self, category: str, config: RateLimitConfig) -> None:
        with self._lock:
            self.configs[category] = config
            self._windows[category] = deque()
            self._buckets[category] = _Bucket(tokens=config.requests_per_window, refilled_at=time.time())

        logger.info(
            f"Rate limit for {category}: {config.requests_per_window} req/{config.window_seconds}s ({config.strategy})"
        )

    def wait_if_needed(self, category: str) -> None:
        """
        Block until a request in this category is allowed, then count it.

        Unconfigured categories are let through.
        """
        config = self.configs.get(category)
        if config is None:
            logger.warning(f"No rate limit configured for '{category}', allowing request")
            return

        with self._lock:
            if config.strategy == "token_bucket":
                delay = self._take_token(category, config)
            else:
                delay = self._take_slot(category, config)

        if delay > 0:
            logger.info(f"Rate limiting {category}: waiting {delay:.2f}s")
            time.sleep(delay)

    def _take_slot(self, category: str, config: RateLimitConfig) -> float:
        now = time.time()
        window = self._windows[category]
        while window and now - window[0] >= config.window_seconds:
            window.popleft()

        delay = 0.0
        if len(window) >= config.requests_per_window:
            delay = max(0.0, window[0] + config.window_seconds - now)

        # Counted at the moment it will actually go out
        window.append(now + delay)
        return delay

    def _take_token(self, category: str, config: RateLimitConfig) -> float:
        now = time.time()
        bucket = self._buckets[category]
        bucket.tokens = min(
            config.requests_per_window,
            bucket.tokens + (now - bucket.refilled_at) * config.refill_rate,
        )
        bucket.refilled_at = now

        # A negative balance is debt the caller sleeps off
        bucket.tokens -= 1
        return 0.0 if bucket.tokens >= 0 else -bucket.tokens / config.refill_rate

    def get_remaining_requests(self, category: str) -> int:
        """Requests that could go out right now without waiting."""
        config = self.configs.get(category)
        if config is None:
            return 0

        with self._lock:
            if config.strategy == "token_bucket":
                return max(0, int(self._buckets[category].tokens))
            now = time.time()
            in_window = sum(1 for t in self._windows[category] if now - t < config.window_seconds)
            return max(0, config.requests_per_window - in_window)


def create_pipeline_limiter() -> RateLimiter:
    """Limiter pre-configured for the monitoring pipeline's external APIs."""
    limiter = RateLimiter()

    # Scraping proxy credits are per request
    limiter.configure_limit("scraper", RateLimitConfig(60, 60, "sliding_window"))

    # Grok: one batch call per entity
    limiter.configure_limit("grok", RateLimitConfig(60, 60, "sliding_window"))

    # Telegram bots may send about 30 messages per second overall
    limiter.configure_limit("telegram", RateLimitConfig(30, 1, "token_bucket"))

    return limiter


__all__ = ["RateLimiter", "RateLimitConfig", "create_pipeline_limiter"]

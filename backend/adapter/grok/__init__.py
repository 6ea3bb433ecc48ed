"""
Grok (xai-sdk) adapter used to classify scraped posts by importance.
"""

from __future__ import annotations

import logging
import os
import time
from typing import List, Optional

from xai_sdk import Client
from xai_sdk.chat import system, user

from ..models import CandidatePost
from ..rate_limiter import RateLimiter, RateLimitConfig

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You classify social media posts about cryptocurrency projects for an alerting service.
You answer with a JSON array only: no markdown, no prose."""

SCORING_GUIDE = """For EACH post, return an object with:
- index: the post number (0-based, same as the input)
- importance_score (0-10): importance for investors and the community
  * 9-10: Major announcements (listing on a major exchange, large partnership, mainnet or protocol launch)
  * 7-8: Significant updates (new features, important milestones, major community events)
  * 5-6: Routine updates (minor features, community activities, general news)
  * 3-4: Low-value chatter (retweets, general commentary, minor mentions)
  * 0-2: Noise (spam, unrelated, very minor mentions)
- category: one of "partnership", "technical", "listing", "price", "community", "general"
- summary: one sentence, at most 200 characters
- is_official: the Official flag from the input
- reasoning: brief explanation of the score, at most 100 characters

Return exactly one object per post, as a JSON array."""


def build_batch_prompt(entity_name: str, symbol: Optional[str], posts: List[CandidatePost]) -> str:
    """User prompt listing every post of the batch with its position and authorship."""
    label = f"{entity_name} ({symbol})" if symbol else entity_name
    formatted = "\n\n".join(
        f'Post {i}: "{post.text}" [Official: {str(post.is_official).lower()}]'
        for i, post in enumerate(posts)
    )
    return f"Analyze these posts about the crypto project {label}:\n\n{formatted}\n\n{SCORING_GUIDE}"


class GrokAdapter:
    """
    Adapter for Grok API calls with error handling, logging, and rate limiting.

    Transport failures never raise: callers get None and apply their own
    fallback.
    """

    DEFAULT_RATE_LIMIT = RateLimitConfig(
        requests_per_window=60,
        window_seconds=60,
        strategy="sliding_window"
    )

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: float = 30.0,
        rate_limiter: Optional[RateLimiter] = None,
        monitor=None,
    ) -> None:
        self.api_key = api_key or os.getenv("XAI_API_KEY")
        self.model = model or os.getenv("GROK_MODEL_FAST", "grok-4-1-fast")
        self.timeout = timeout
        self.monitor = monitor
        self._client: Optional[Client] = None

        self.rate_limiter = rate_limiter or RateLimiter()
        if "grok" not in self.rate_limiter.configs:
            self.rate_limiter.configure_limit("grok", self.DEFAULT_RATE_LIMIT)

        if self.api_key:
            try:
                self._client = Client(api_key=self.api_key, timeout=timeout)
                logger.info("GrokAdapter initialized with live API client")
            except Exception as e:
                logger.warning(f"Failed to initialize xAI client: {e}")
                self._client = None
        else:
            logger.warning("GrokAdapter initialized without API client (scoring will use fallbacks)")

    @property
    def is_live(self) -> bool:
        return self._client is not None

    def _chat_call(self, *, system_prompt: str, user_prompt: str) -> Optional[str]:
        """
        Perform a single chat completion and return the raw text content.
        Returns None when there is no client or the call fails.
        """
        if not self._client:
            logger.debug("No client available, returning None")
            return None

        start_time_ms = time.time() * 1000

        try:
            self.rate_limiter.wait_if_needed("grok")

            chat = self._client.chat.create(model=self.model, temperature=0.3)
            chat.append(system(system_prompt))
            chat.append(user(user_prompt))
            response = chat.sample()

            latency_ms = (time.time() * 1000) - start_time_ms
            logger.debug(f"Grok call successful ({latency_ms:.0f}ms)")

            if self.monitor:
                from monitoring import EventType
                self.monitor.metrics.record_grok_call(latency_ms, error=False)
                self.monitor.activity.add_event(
                    EventType.AI_CALL,
                    model=self.model,
                    latency_ms=round(latency_ms, 1)
                )

            return response.content

        except Exception as e:
            latency_ms = (time.time() * 1000) - start_time_ms
            logger.error(f"Grok call failed: {e}")

            if self.monitor:
                from monitoring import EventType
                self.monitor.metrics.record_grok_call(latency_ms, error=True)
                self.monitor.activity.add_event(
                    EventType.ERROR,
                    error=f"Grok API: {str(e)[:100]}",
                    model=self.model
                )

            return None

    def classify_posts(
        self,
        entity_name: str,
        symbol: Optional[str],
        posts: List[CandidatePost],
    ) -> Optional[str]:
        """
        Ask Grok for one verdict per post in a single request.

        Returns:
            The raw response text (expected to be a JSON array), or None if
            the call could not be made.
        """
        if not posts:
            return None
        return self._chat_call(
            system_prompt=SYSTEM_PROMPT,
            user_prompt=build_batch_prompt(entity_name, symbol, posts),
        )


__all__ = ["GrokAdapter", "build_batch_prompt", "SYSTEM_PROMPT"]

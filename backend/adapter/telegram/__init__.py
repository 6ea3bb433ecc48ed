"""
Telegram Bot API adapter for PortAlerts notifications.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Optional

import requests
from pydantic import BaseModel, Field

from ..rate_limiter import RateLimiter, RateLimitConfig

logger = logging.getLogger(__name__)


class TelegramError(Exception):
    """Base exception for TelegramAdapter errors."""
    pass


class TelegramAPIError(TelegramError):
    """Raised when the Bot API rejects a request or cannot be reached."""
    def __init__(self, message: str, status_code: int = None, description: str = None):
        super().__init__(message)
        self.status_code = status_code
        self.description = description


class TelegramBlockedError(TelegramAPIError):
    """Raised when the user blocked the bot or the chat no longer exists."""
    pass


class SendResult(BaseModel):
    """Outcome of a single sendMessage call."""
    success: bool
    message_id: Optional[str] = Field(default=None, description="Provider message id")
    error: Optional[str] = Field(default=None)


class TelegramAdapter:
    """
    Sends messages through the Telegram Bot API.

    Usage:
        adapter = TelegramAdapter()  # Uses TELEGRAM_BOT_TOKEN env var
        result = adapter.send_message("12345", "<b>hello</b>")
    """

    BASE_URL = "https://api.telegram.org"

    DEFAULT_RATE_LIMIT = RateLimitConfig(
        requests_per_window=30,
        window_seconds=1,
        strategy="token_bucket"
    )

    def __init__(
        self,
        bot_token: Optional[str] = None,
        timeout: float = 10.0,
        rate_limiter: Optional[RateLimiter] = None,
        monitor=None,
    ):
        self.bot_token = bot_token or os.environ.get("TELEGRAM_BOT_TOKEN")
        self.timeout = timeout
        self.monitor = monitor

        if not self.bot_token:
            logger.warning("No TELEGRAM_BOT_TOKEN provided - notifications will fail")

        self.rate_limiter = rate_limiter or RateLimiter()
        if "telegram" not in self.rate_limiter.configs:
            self.rate_limiter.configure_limit("telegram", self.DEFAULT_RATE_LIMIT)

    @property
    def is_configured(self) -> bool:
        return bool(self.bot_token)

    def send_message(self, chat_id: str, text: str, parse_mode: str = "HTML") -> SendResult:
        """
        Send one message to a chat.

        Returns:
            SendResult carrying the provider message id

        Raises:
            TelegramBlockedError: If the bot was blocked or the chat is gone
            TelegramAPIError: On any other failure
        """
        if not self.is_configured:
            raise TelegramAPIError("Telegram adapter not configured - set TELEGRAM_BOT_TOKEN")

        self.rate_limiter.wait_if_needed("telegram")

        url = f"{self.BASE_URL}/bot{self.bot_token}/sendMessage"
        payload = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": parse_mode,
            "disable_web_page_preview": True,
        }

        start_time_ms = time.time() * 1000
        try:
            response = requests.post(url, json=payload, timeout=self.timeout)
            data = response.json()
        except requests.exceptions.Timeout:
            self._record(start_time_ms, error=True)
            raise TelegramAPIError("Telegram request timed out")
        except requests.exceptions.RequestException as e:
            self._record(start_time_ms, error=True)
            raise TelegramAPIError(f"Failed to reach Telegram: {e}")
        except ValueError:
            self._record(start_time_ms, error=True)
            raise TelegramAPIError(
                f"Telegram returned a non-JSON body ({response.status_code})",
                status_code=response.status_code,
            )

        if not data.get("ok"):
            self._record(start_time_ms, error=True)
            description = data.get("description", "unknown error")
            status = data.get("error_code", response.status_code)
            if status == 403 or "chat not found" in description.lower():
                raise TelegramBlockedError(
                    f"Telegram refused delivery: {description}", status_code=status, description=description
                )
            raise TelegramAPIError(
                f"Telegram API error: {description}", status_code=status, description=description
            )

        self._record(start_time_ms, error=False)
        message_id = data.get("result", {}).get("message_id")
        return SendResult(success=True, message_id=str(message_id) if message_id is not None else None)

    def _record(self, start_time_ms: float, error: bool) -> None:
        if self.monitor:
            latency_ms = (time.time() * 1000) - start_time_ms
            self.monitor.metrics.record_telegram_call(latency_ms, error=error)


__all__ = [
    "TelegramAdapter",
    "TelegramError",
    "TelegramAPIError",
    "TelegramBlockedError",
    "SendResult",
]

"""
Runtime configuration for the PortAlerts backend.

Everything tunable lives here and is read from the environment
(a local .env file is honoured).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_DB_PATH = Path(__file__).parent / "portalerts.sqlite3"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    return float(raw) if raw else default


@dataclass
class MonitorSettings:
    """Pipeline tunables and credentials."""
    database_path: str = str(DEFAULT_DB_PATH)
    cron_secret: Optional[str] = None

    scraper_api_key: Optional[str] = None
    scraper_base_url: str = "https://api.scraperapi.com/"
    search_frontend_url: str = "https://nitter.net/search"

    xai_api_key: Optional[str] = None
    grok_model: str = "grok-4-1-fast"

    telegram_bot_token: Optional[str] = None

    fetch_timeout: float = 30.0
    ai_timeout: float = 30.0
    send_timeout: float = 10.0

    early_stop_threshold: int = 5
    max_candidates_per_query: int = 10
    max_candidates_per_entity: int = 20
    min_post_length: int = 20

    entity_batch_size: int = 5
    max_workers: int = 3
    lease_ttl_seconds: int = 300

    auto_monitor: bool = False
    monitor_interval: int = 60

    @classmethod
    def from_env(cls) -> "MonitorSettings":
        load_dotenv()
        return cls(
            database_path=os.environ.get("DATABASE_PATH", str(DEFAULT_DB_PATH)),
            cron_secret=os.environ.get("CRON_SECRET_KEY") or None,
            scraper_api_key=os.environ.get("SCRAPERAPI_KEY") or None,
            scraper_base_url=os.environ.get("SCRAPER_BASE_URL", cls.scraper_base_url),
            search_frontend_url=os.environ.get("SEARCH_FRONTEND_URL", cls.search_frontend_url),
            xai_api_key=os.environ.get("XAI_API_KEY") or None,
            grok_model=os.environ.get("GROK_MODEL_FAST", cls.grok_model),
            telegram_bot_token=os.environ.get("TELEGRAM_BOT_TOKEN") or None,
            fetch_timeout=_env_float("FETCH_TIMEOUT_SECONDS", cls.fetch_timeout),
            ai_timeout=_env_float("AI_TIMEOUT_SECONDS", cls.ai_timeout),
            send_timeout=_env_float("SEND_TIMEOUT_SECONDS", cls.send_timeout),
            early_stop_threshold=_env_int("EARLY_STOP_THRESHOLD", cls.early_stop_threshold),
            max_candidates_per_query=_env_int("MAX_CANDIDATES_PER_QUERY", cls.max_candidates_per_query),
            max_candidates_per_entity=_env_int("MAX_CANDIDATES_PER_ENTITY", cls.max_candidates_per_entity),
            min_post_length=_env_int("MIN_POST_LENGTH", cls.min_post_length),
            entity_batch_size=_env_int("ENTITY_BATCH_SIZE", cls.entity_batch_size),
            max_workers=max(1, _env_int("MAX_WORKERS", cls.max_workers)),
            lease_ttl_seconds=_env_int("LEASE_TTL_SECONDS", cls.lease_ttl_seconds),
            auto_monitor=os.environ.get("AUTO_MONITOR", "false").lower() == "true",
            monitor_interval=_env_int("MONITOR_INTERVAL", cls.monitor_interval),
        )


__all__ = ["MonitorSettings", "DEFAULT_DB_PATH"]

"""
Monitoring and observability module for PortAlerts.

Keeps in-process counters for the pipeline and the external APIs it calls
(scraper, Grok, Telegram), a bounded activity feed, and per-component
health. Pipeline worker threads report into the same instance, so every
writer takes a lock.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

LATENCY_WINDOW = 1000
HEALTH_RANK = {"healthy": 0, "unknown": 1, "warning": 2, "error": 3}


class EventType(str, Enum):
    """Pipeline events shown in the activity feed."""
    RUN_STARTED = "run_started"
    RUN_FINISHED = "run_finished"
    FETCH = "fetch"
    AI_CALL = "ai_call"
    AI_FALLBACK = "ai_fallback"
    POST_STORED = "post_stored"
    NOTIFICATION_SENT = "notification_sent"
    NOTIFICATION_FAILED = "notification_failed"
    ENTITY_SKIPPED = "entity_skipped"
    ERROR = "error"


@dataclass
class SystemEvent:
    event_type: EventType
    entity: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        return {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "entity": self.entity,
            "details": self.details,
            "age_seconds": round((now - self.timestamp).total_seconds(), 3),
        }


class _ApiStats:
    """Call count, error count and recent latencies for one external API."""

    def __init__(self):
        self.calls = 0
        self.errors = 0
        self.latencies: Deque[float] = deque(maxlen=LATENCY_WINDOW)

    def record(self, latency_ms: float, error: bool) -> None:
        self.calls += 1
        self.latencies.append(latency_ms)
        if error:
            self.errors += 1

    def snapshot(self) -> Dict[str, Any]:
        rate = self.errors / self.calls if self.calls else 0
        return {
            "calls": self.calls,
            "errors": self.errors,
            "error_rate": f"{rate:.1%}",
            "latency_ms": percentiles(list(self.latencies)),
        }


def percentiles(values: List[float]) -> Dict[str, float]:
    """p50/p95/p99 and mean of a sample."""
    if not values:
        return {"p50": 0, "p95": 0, "p99": 0, "avg": 0}

    ordered = sorted(values)
    last = len(ordered) - 1
    return {
        "p50": ordered[min(last, int(len(ordered) * 0.50))],
        "p95": ordered[min(last, int(len(ordered) * 0.95))],
        "p99": ordered[min(last, int(len(ordered) * 0.99))],
        "avg": sum(ordered) / len(ordered),
    }


def format_duration(seconds: float) -> str:
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m"


class MetricsCollector:
    """
    Counters for the trigger endpoint, external API calls and the pipeline.

    Pipeline counters accumulate across runs for the lifetime of the
    process; storage is the source of truth for anything durable.
    """

    PIPELINE_COUNTERS = (
        "runs",
        "posts_found",
        "posts_stored",
        "notifications_sent",
        "notifications_failed",
        "ai_fallbacks",
    )

    def __init__(self):
        self._lock = threading.Lock()
        self._started = time.time()
        self._requests: Dict[str, int] = {}
        self._request_errors: Dict[str, int] = {}
        self._apis = {name: _ApiStats() for name in ("scraper", "grok", "telegram")}
        self._pipeline = dict.fromkeys(self.PIPELINE_COUNTERS, 0)
        self._last_run: Optional[datetime] = None

    def record_request(self, endpoint: str, error: bool = False) -> None:
        with self._lock:
            self._requests[endpoint] = self._requests.get(endpoint, 0) + 1
            if error:
                self._request_errors[endpoint] = self._request_errors.get(endpoint, 0) + 1

    def _record_api(self, name: str, latency_ms: float, error: bool) -> None:
        with self._lock:
            self._apis[name].record(latency_ms, error)

    def record_scraper_call(self, latency_ms: float, error: bool = False) -> None:
        self._record_api("scraper", latency_ms, error)

    def record_grok_call(self, latency_ms: float, error: bool = False) -> None:
        self._record_api("grok", latency_ms, error)

    def record_telegram_call(self, latency_ms: float, error: bool = False) -> None:
        self._record_api("telegram", latency_ms, error)

    def record_run(self, posts_found: int, posts_stored: int, fallbacks: int) -> None:
        with self._lock:
            self._pipeline["runs"] += 1
            self._pipeline["posts_found"] += posts_found
            self._pipeline["posts_stored"] += posts_stored
            self._pipeline["ai_fallbacks"] += fallbacks
            self._last_run = datetime.now(timezone.utc)

    def record_notification(self, sent: bool) -> None:
        key = "notifications_sent" if sent else "notifications_failed"
        with self._lock:
            self._pipeline[key] += 1

    def get_metrics(self) -> Dict[str, Any]:
        uptime = time.time() - self._started
        with self._lock:
            return {
                "uptime_seconds": int(uptime),
                "uptime_human": format_duration(uptime),
                "last_run": self._last_run.isoformat() if self._last_run else None,
                "requests": {
                    "total": sum(self._requests.values()),
                    "by_endpoint": dict(self._requests),
                    "errors": dict(self._request_errors),
                },
                "external_apis": {name: stats.snapshot() for name, stats in self._apis.items()},
                "pipeline": dict(self._pipeline),
            }


class ActivityFeed:
    """Bounded, newest-last buffer of pipeline events."""

    def __init__(self, max_events: int = 500):
        self.max_events = max_events
        self._lock = threading.Lock()
        self._events: Deque[SystemEvent] = deque(maxlen=max_events)

    def add_event(self, event_type: EventType, entity: Optional[str] = None, **details) -> None:
        with self._lock:
            self._events.append(SystemEvent(event_type=event_type, entity=entity, details=details))

    def _snapshot(self) -> List[SystemEvent]:
        with self._lock:
            return list(self._events)

    def get_recent(
        self,
        limit: int = 50,
        event_type: Optional[EventType] = None,
        entity: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Most recent events first, optionally narrowed by type and entity."""
        matched = []
        for event in reversed(self._snapshot()):
            if event_type and event.event_type != event_type:
                continue
            if entity and event.entity != entity:
                continue
            matched.append(event.to_dict())
            if len(matched) >= limit:
                break
        return matched

    def get_event_counts(self, since_minutes: int = 5) -> Dict[str, int]:
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=since_minutes)
        counts: Dict[str, int] = {}
        for event in self._snapshot():
            if event.timestamp < cutoff:
                continue
            counts[event.event_type.value] = counts.get(event.event_type.value, 0) + 1
        return counts


class SystemMonitor:
    """
    Central monitoring hub.

    The application creates one and passes it to every component that
    reports into it; there is no module-level instance.
    """

    def __init__(self):
        self.metrics = MetricsCollector()
        self.activity = ActivityFeed()
        self._components: Dict[str, Dict[str, Any]] = {}

    def set_component_status(self, component: str, status: str, details: Optional[Dict[str, Any]] = None) -> None:
        if status not in HEALTH_RANK:
            logger.warning(f"Unknown status '{status}' for component {component}")
        self._components[component] = {
            "status": status,
            "last_updated": datetime.now(timezone.utc).isoformat(),
            "details": details or {},
        }

    def get_health_status(self) -> Dict[str, Any]:
        """
        Overall status is the worst component status: any error makes the
        system degraded, any warning makes it warning.
        """
        worst = max(
            (HEALTH_RANK.get(c["status"], HEALTH_RANK["unknown"]) for c in self._components.values()),
            default=HEALTH_RANK["unknown"],
        )
        overall = {0: "healthy", 1: "unknown", 2: "warning", 3: "degraded"}[worst]
        return {
            "status": overall,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "components": dict(self._components),
        }

    def get_dashboard_data(self) -> Dict[str, Any]:
        return {
            "health": self.get_health_status(),
            "metrics": self.metrics.get_metrics(),
            "recent_activity": self.activity.get_recent(limit=20),
            "event_counts_5m": self.activity.get_event_counts(since_minutes=5),
        }


def _usage_level(percent: float) -> str:
    if percent >= 95:
        return "critical"
    if percent >= 80:
        return "warning"
    return "ok"


def get_rate_limit_status(rate_limiter) -> Dict[str, Any]:
    """
    Usage of every category configured on a RateLimiter.

    Args:
        rate_limiter: RateLimiter shared by the adapters

    Returns:
        Per-category limit, remaining budget and a coarse usage level
    """
    report = {}
    for category, config in rate_limiter.configs.items():
        limit = config.requests_per_window
        remaining = rate_limiter.get_remaining_requests(category)
        percent = (limit - remaining) / limit * 100 if limit else 0.0
        report[category] = {
            "limit": limit,
            "window_seconds": config.window_seconds,
            "strategy": config.strategy,
            "remaining": remaining,
            "used": limit - remaining,
            "usage_percent": f"{percent:.1f}%",
            "status": _usage_level(percent),
        }
    return report


__all__ = [
    "SystemMonitor",
    "MetricsCollector",
    "ActivityFeed",
    "EventType",
    "SystemEvent",
    "get_rate_limit_status",
    "percentiles",
]

"""
FastAPI routes for the PortAlerts backend.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Security
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from adapter.models import ScoredPost
from core import MonitorOrchestrator
from database import Database
from monitoring import SystemMonitor, get_rate_limit_status

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["PortAlerts"])

cron_key_header = APIKeyHeader(name="X-Cron-Key", auto_error=False)


# ============================================================================
# Request/Response Models
# ============================================================================

class RunResponse(BaseModel):
    """Summary of one monitoring invocation."""
    entities_processed: int
    posts_found: int
    posts_stored: int
    notifications_sent: int
    entities_failed: int = 0
    entities_skipped: int = 0
    ai_calls: int = 0
    fallbacks: int = 0


class PostResponse(BaseModel):
    """A stored, scored post."""
    id: int
    external_id: str
    text: str
    author: str
    discovered_at: datetime
    importance_score: int = Field(ge=0, le=10)
    category: str
    summary: str
    url: str

    @classmethod
    def from_post(cls, post: ScoredPost) -> "PostResponse":
        return cls(
            id=post.id,
            external_id=post.external_id,
            text=post.text,
            author=post.author,
            discovered_at=post.discovered_at,
            importance_score=post.importance_score,
            category=post.category.value,
            summary=post.summary,
            url=post.source_url,
        )


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: datetime
    scheduler_running: bool


# ============================================================================
# Dependencies - services live on app.state, set up by the app lifespan
# ============================================================================

def get_orchestrator(request: Request) -> MonitorOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return orchestrator


def get_database(request: Request) -> Database:
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise HTTPException(status_code=503, detail="Database not initialized")
    return db


def get_monitor(request: Request) -> SystemMonitor:
    monitor = getattr(request.app.state, "monitor", None)
    if monitor is None:
        raise HTTPException(status_code=503, detail="Monitor not initialized")
    return monitor


def verify_cron_key(request: Request, cron_key: Optional[str] = Security(cron_key_header)) -> str:
    """
    Check the shared secret sent by the external scheduler.

    Raises:
        HTTPException: 503 if no secret is configured, 401 if missing or wrong
    """
    settings = getattr(request.app.state, "settings", None)
    expected = settings.cron_secret if settings else None

    if not expected:
        raise HTTPException(status_code=503, detail="Trigger secret not configured (set CRON_SECRET_KEY)")

    if cron_key is None:
        raise HTTPException(status_code=401, detail="Missing X-Cron-Key header")

    if not secrets.compare_digest(cron_key, expected):
        raise HTTPException(status_code=401, detail="Invalid cron key")

    return cron_key


# ============================================================================
# Routes
# ============================================================================

@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Health check endpoint."""
    scheduler = getattr(request.app.state, "scheduler", None)
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        scheduler_running=bool(scheduler and scheduler.is_running),
    )


# ----------------------------------------------------------------------------
# Monitoring pipeline
# ----------------------------------------------------------------------------

@router.post("/monitor/run", response_model=RunResponse)
async def run_monitor(
    _: str = Depends(verify_cron_key),
    orchestrator: MonitorOrchestrator = Depends(get_orchestrator),
):
    """
    Run one monitoring pass over the most overdue entities.

    Called by the external scheduler. The pass always completes; per-entity
    failures are counted in the summary, not raised.
    """
    summary = await orchestrator.run_async()
    if summary.errors:
        logger.warning(f"Monitor run finished with {len(summary.errors)} errors")
    return RunResponse(**summary.model_dump(exclude={"errors"}))


@router.get("/entities/{entity_id}/posts", response_model=List[PostResponse])
async def list_entity_posts(
    entity_id: str,
    limit: int = Query(default=20, ge=1, le=100, description="Number of posts to return"),
    db: Database = Depends(get_database),
):
    """Most recently discovered scored posts for an entity."""
    if db.get_entity(entity_id) is None:
        raise HTTPException(status_code=404, detail=f"Entity '{entity_id}' not found")
    return [PostResponse.from_post(p) for p in db.get_recent_posts(entity_id, limit=limit)]


# ----------------------------------------------------------------------------
# Observability
# ----------------------------------------------------------------------------

@router.get("/monitor/dashboard")
async def monitor_dashboard(monitor: SystemMonitor = Depends(get_monitor)):
    """Health, metrics and recent activity in one payload."""
    return monitor.get_dashboard_data()


@router.get("/monitor/health")
async def monitor_health(monitor: SystemMonitor = Depends(get_monitor)):
    """Per-component health."""
    return monitor.get_health_status()


@router.get("/monitor/activity")
async def monitor_activity(
    limit: int = Query(default=50, ge=1, le=500),
    entity: Optional[str] = Query(default=None, description="Only events for this entity name"),
    monitor: SystemMonitor = Depends(get_monitor),
):
    """Recent pipeline events, newest first."""
    return {"events": monitor.activity.get_recent(limit=limit, entity=entity)}


@router.get("/monitor/rate-limits")
async def monitor_rate_limits(request: Request):
    """Usage of the shared rate limiter per external API."""
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        raise HTTPException(status_code=503, detail="Rate limiter not initialized")
    return get_rate_limit_status(limiter)


__all__ = ["router", "verify_cron_key", "RunResponse", "PostResponse"]

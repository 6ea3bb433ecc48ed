"""
PortAlerts Backend - Main FastAPI Application

Run with:
    uvicorn main:app --reload --port 8000

An external scheduler triggers monitoring with:
    curl -X POST -H "X-Cron-Key: $CRON_SECRET_KEY" http://localhost:8000/api/v1/monitor/run
"""

import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from adapter.rate_limiter import create_pipeline_limiter
from api import router
from core import MonitorOrchestrator, MonitorScheduler, build_orchestrator
from database import Database
from monitoring import SystemMonitor
from settings import MonitorSettings

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


class RequestMonitoringMiddleware(BaseHTTPMiddleware):
    """Middleware to count API requests and errors."""

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path in ["/", "/docs", "/redoc", "/openapi.json"]:
            return await call_next(request)

        endpoint = request.url.path.replace("/api/v1", "") or "/"
        monitor = getattr(request.app.state, "monitor", None)
        start_time = time.time()

        try:
            response = await call_next(request)
        except Exception:
            if monitor:
                monitor.metrics.record_request(endpoint, error=True)
            raise

        if monitor:
            monitor.metrics.record_request(endpoint, error=response.status_code >= 500)
        logger.debug(f"{request.method} {endpoint} -> {response.status_code} ({(time.time() - start_time) * 1000:.0f}ms)")
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan - setup and teardown.
    """
    settings: MonitorSettings = app.state.settings
    logger.info("Starting PortAlerts backend...")

    db = Database(settings.database_path)
    db.init()

    monitor = SystemMonitor()
    rate_limiter = create_pipeline_limiter()

    orchestrator: Optional[MonitorOrchestrator] = app.state.orchestrator
    if orchestrator is None:
        orchestrator = build_orchestrator(settings, monitor=monitor, rate_limiter=rate_limiter, db=db)

    app.state.db = db
    app.state.monitor = monitor
    app.state.rate_limiter = rate_limiter
    app.state.orchestrator = orchestrator

    # Log adapter status
    for component, configured, env_var in [
        ("scraper", bool(settings.scraper_api_key), "SCRAPERAPI_KEY"),
        ("grok", bool(settings.xai_api_key), "XAI_API_KEY"),
        ("telegram", bool(settings.telegram_bot_token), "TELEGRAM_BOT_TOKEN"),
        ("trigger", bool(settings.cron_secret), "CRON_SECRET_KEY"),
    ]:
        if configured:
            logger.info(f"✓ {component} configured")
        else:
            logger.warning(f"⚠ {component} not configured - set {env_var}")
        monitor.set_component_status(component, "healthy" if configured else "warning", {"configured": configured})
    monitor.set_component_status("database", "healthy", {"path": settings.database_path})

    scheduler = None
    if settings.auto_monitor:
        scheduler = MonitorScheduler(orchestrator, interval=settings.monitor_interval)
        await scheduler.start()
        monitor.set_component_status("scheduler", "healthy", {"interval": settings.monitor_interval})
    else:
        logger.info("ℹ In-process scheduler disabled (set AUTO_MONITOR=true to enable)")
    app.state.scheduler = scheduler

    logger.info("PortAlerts backend ready!")

    yield  # Application runs here

    logger.info("Shutting down PortAlerts backend...")
    if scheduler:
        await scheduler.stop()


def create_app(
    settings: Optional[MonitorSettings] = None,
    orchestrator: Optional[MonitorOrchestrator] = None,
) -> FastAPI:
    """Build the application. Tests pass their own settings and orchestrator."""
    app = FastAPI(
        title="PortAlerts API",
        description="Crypto social monitoring: scrape, score with Grok, alert on Telegram",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings or MonitorSettings.from_env()
    app.state.orchestrator = orchestrator

    app.add_middleware(RequestMonitoringMiddleware)
    app.include_router(router)

    @app.get("/")
    async def root():
        return {"name": "PortAlerts API", "version": "1.0.0", "docs": "/docs"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "8000")),
        reload=True,
    )

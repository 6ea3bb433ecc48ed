"""
Core services for the PortAlerts backend.
- MonitorOrchestrator: one pipeline invocation over the most overdue entities
- MonitorScheduler: optional in-process loop for local development

Pipeline per entity:
    plan queries -> fetch + extract -> dedup -> batch score -> store -> notify

Nothing survives between invocations except what is in storage
(last_checked stamps and scored posts).
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

from adapter.grok import GrokAdapter
from adapter.models import MonitoredEntity, RunSummary
from adapter.rate_limiter import RateLimiter, create_pipeline_limiter
from adapter.scraper import ScraperAdapter
from adapter.telegram import TelegramAdapter
from database import Database
from monitoring import EventType
from notifications import NotificationDispatcher
from scoring import BatchScorer
from settings import MonitorSettings

from .dedupe import Deduplicator
from .fetcher import ContentFetcher, FetchResult
from .persistence import PersistenceWriter
from .planner import plan_queries

logger = logging.getLogger(__name__)


@dataclass
class EntityRunResult:
    """What happened to one entity during an invocation."""
    entity_id: str
    posts_found: int = 0
    posts_new: int = 0
    posts_stored: int = 0
    notifications_sent: int = 0
    ai_called: bool = False
    used_fallback: bool = False
    skipped: bool = False
    error: Optional[str] = None


class MonitorOrchestrator:
    """
    Drives the monitoring pipeline for one invocation.

    Usage:
        orchestrator = build_orchestrator(MonitorSettings.from_env())
        summary = orchestrator.run()
    """

    def __init__(
        self,
        db: Database,
        fetcher: ContentFetcher,
        scorer: BatchScorer,
        dispatcher: NotificationDispatcher,
        writer: Optional[PersistenceWriter] = None,
        deduplicator: Optional[Deduplicator] = None,
        batch_size: int = 5,
        max_workers: int = 3,
        lease_ttl_seconds: int = 300,
        clock: Optional[Callable[[], datetime]] = None,
        monitor=None,
    ):
        self.db = db
        self.fetcher = fetcher
        self.scorer = scorer
        self.dispatcher = dispatcher
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.writer = writer or PersistenceWriter(db, clock=self.clock)
        self.deduplicator = deduplicator or Deduplicator(db)
        self.batch_size = batch_size
        self.max_workers = max(1, max_workers)
        self.lease_ttl_seconds = lease_ttl_seconds
        self.monitor = monitor

    def select_entities(self) -> List[MonitoredEntity]:
        """Active entities, least recently checked first."""
        return self.db.list_due_entities(self.batch_size)

    def run(self) -> RunSummary:
        """
        Process the next batch of entities.

        Always completes and returns a summary, even if every entity failed.
        """
        summary = RunSummary()

        try:
            entities = self.select_entities()
        except Exception as e:
            logger.error(f"Could not load entities: {e}")
            summary.errors.append(f"select: {e}")
            return summary

        if not entities:
            logger.info("No active entities to monitor")
            return summary

        logger.info(f"Monitoring {len(entities)} entities: {', '.join(e.name for e in entities)}")
        self._event("RUN_STARTED", entities=len(entities))

        if self.max_workers == 1 or len(entities) == 1:
            results = [self.process_entity(entity) for entity in entities]
        else:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(entities))) as pool:
                results = list(pool.map(self.process_entity, entities))

        for result in results:
            self._merge(summary, result)

        if self.monitor:
            self.monitor.metrics.record_run(summary.posts_found, summary.posts_stored, summary.fallbacks)
        self._event(
            "RUN_FINISHED",
            entities=summary.entities_processed,
            stored=summary.posts_stored,
            notified=summary.notifications_sent,
        )
        logger.info(
            f"Run complete: {summary.entities_processed} entities, {summary.posts_found} found, "
            f"{summary.posts_stored} stored, {summary.notifications_sent} notifications"
        )
        return summary

    async def run_async(self) -> RunSummary:
        """Run in a worker thread so the event loop stays responsive."""
        return await asyncio.to_thread(self.run)

    def process_entity(self, entity: MonitoredEntity) -> EntityRunResult:
        """
        Run the full pipeline for one entity.

        Any failure is contained here. last_checked is stamped whether or
        not posts were found.
        """
        result = EntityRunResult(entity_id=entity.id)

        try:
            lease = self.db.try_acquire_lease(entity.id, self.lease_ttl_seconds, now=self.clock())
        except Exception as e:
            logger.error(f"[{entity.id}] Could not acquire lease: {e}")
            result.error = f"lease: {e}"
            return result

        if lease is None:
            logger.info(f"[{entity.id}] Another run is processing {entity.name}, skipping")
            self._event("ENTITY_SKIPPED", entity=entity.name, reason="leased")
            result.skipped = True
            return result

        try:
            self._run_pipeline(entity, result)
        except Exception as e:
            logger.exception(f"[{entity.id}] Monitoring {entity.name} failed: {e}")
            result.error = str(e)
            self._event("ERROR", entity=entity.name, error=str(e)[:200])
        finally:
            try:
                self.db.update_last_checked(entity.id, self.clock())
            except Exception as e:
                logger.error(f"[{entity.id}] Could not stamp last_checked: {e}")
            try:
                if not self.db.release_lease(entity.id, lease):
                    logger.warning(f"[{entity.id}] Lease expired mid-run and was taken over, left in place")
            except Exception as e:
                logger.error(f"[{entity.id}] Could not release lease: {e}")

        return result

    def _run_pipeline(self, entity: MonitoredEntity, result: EntityRunResult) -> None:
        queries = plan_queries(entity)
        fetched: FetchResult = self.fetcher.fetch_candidates(queries, label=entity.id)
        result.posts_found = fetched.found

        fresh = self.deduplicator.filter_new(entity.id, fetched.candidates)
        result.posts_new = len(fresh)
        if not fresh:
            logger.info(f"[{entity.id}] No new posts for {entity.name}")
            return

        scored = self.scorer.score(entity.name, entity.symbol, fresh)
        result.ai_called = scored.ai_called
        result.used_fallback = scored.used_fallback
        if scored.used_fallback:
            self._event("AI_FALLBACK", entity=entity.name, status=scored.status.value, posts=len(fresh))

        stored = self.writer.store_batch(entity, fresh, scored.verdicts)
        result.posts_stored = len(stored)
        for post in stored:
            self._event("POST_STORED", entity=entity.name, post_id=post.id, score=post.importance_score)

        for post in stored:
            dispatched = self.dispatcher.dispatch(entity, post)
            result.notifications_sent += dispatched.sent

    def _merge(self, summary: RunSummary, result: EntityRunResult) -> None:
        if result.skipped:
            summary.entities_skipped += 1
            return
        summary.entities_processed += 1
        summary.posts_found += result.posts_found
        summary.posts_stored += result.posts_stored
        summary.notifications_sent += result.notifications_sent
        summary.ai_calls += int(result.ai_called)
        summary.fallbacks += int(result.used_fallback)
        if result.error:
            summary.entities_failed += 1
            summary.errors.append(f"{result.entity_id}: {result.error}")

    def _event(self, name: str, entity: Optional[str] = None, **details) -> None:
        if self.monitor:
            self.monitor.activity.add_event(EventType[name], entity=entity, **details)


class MonitorScheduler:
    """
    Background loop that triggers the orchestrator every `interval` seconds.

    Production deployments use an external cron hitting the trigger
    endpoint instead; this is for running locally.
    """

    def __init__(self, orchestrator: MonitorOrchestrator, interval: int = 60):
        self.orchestrator = orchestrator
        self.interval = interval
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self):
        """Start the background task."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(f"MonitorScheduler started with {self.interval}s interval")

    async def stop(self):
        """Stop the background task."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("MonitorScheduler stopped")

    async def _loop(self):
        while self._running:
            try:
                await self.orchestrator.run_async()
            except Exception as e:
                logger.error(f"Error in monitor loop: {e}")

            await asyncio.sleep(self.interval)


def build_orchestrator(
    settings: MonitorSettings,
    monitor=None,
    rate_limiter: Optional[RateLimiter] = None,
    db: Optional[Database] = None,
) -> MonitorOrchestrator:
    """Wire adapters, storage and pipeline stages from settings."""
    rate_limiter = rate_limiter or create_pipeline_limiter()
    db = db or Database(settings.database_path)

    scraper = ScraperAdapter(
        api_key=settings.scraper_api_key,
        base_url=settings.scraper_base_url,
        search_url=settings.search_frontend_url,
        timeout=settings.fetch_timeout,
        rate_limiter=rate_limiter,
        monitor=monitor,
    )
    grok = GrokAdapter(
        api_key=settings.xai_api_key,
        model=settings.grok_model,
        timeout=settings.ai_timeout,
        rate_limiter=rate_limiter,
        monitor=monitor,
    )
    telegram = TelegramAdapter(
        bot_token=settings.telegram_bot_token,
        timeout=settings.send_timeout,
        rate_limiter=rate_limiter,
        monitor=monitor,
    )

    return MonitorOrchestrator(
        db=db,
        fetcher=ContentFetcher(
            scraper,
            early_stop_threshold=settings.early_stop_threshold,
            per_query_limit=settings.max_candidates_per_query,
            max_candidates=settings.max_candidates_per_entity,
            min_length=settings.min_post_length,
        ),
        scorer=BatchScorer(grok),
        dispatcher=NotificationDispatcher(db, telegram, monitor=monitor),
        batch_size=settings.entity_batch_size,
        max_workers=settings.max_workers,
        lease_ttl_seconds=settings.lease_ttl_seconds,
        monitor=monitor,
    )


__all__ = [
    "MonitorOrchestrator",
    "MonitorScheduler",
    "EntityRunResult",
    "build_orchestrator",
    "plan_queries",
    "ContentFetcher",
    "FetchResult",
    "Deduplicator",
    "PersistenceWriter",
]

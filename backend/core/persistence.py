"""
Writes scored candidates to storage, one independent insert per post.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional
from urllib.parse import quote

from adapter.models import CandidatePost, MonitoredEntity, PostVerdict, ScoredPost
from database import Database

logger = logging.getLogger(__name__)

SOURCE_SEARCH_URL = "https://twitter.com/search?q="
COMMUNITY_AUTHOR = "Community"


def author_label(entity: MonitoredEntity, post: CandidatePost) -> str:
    if post.is_official and entity.handle:
        return f"@{entity.handle.lstrip('@')}"
    return COMMUNITY_AUTHOR


def source_url(query: str) -> str:
    return f"{SOURCE_SEARCH_URL}{quote(query, safe='')}"


class PersistenceWriter:
    """
    Stores scored posts.

    Insert-if-absent on (entity_id, text): a post that raced in since the
    dedup check is skipped silently. One failed insert does not stop the
    rest of the batch.
    """

    def __init__(self, db: Database, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def store(self, entity: MonitoredEntity, index: int, post: CandidatePost, verdict: PostVerdict) -> Optional[ScoredPost]:
        now = self.clock()
        external_id = f"{entity.id}-{int(now.timestamp() * 1000)}-{index}"
        stored = self.db.insert_post_if_absent(
            entity_id=entity.id,
            external_id=external_id,
            text=post.text,
            author=author_label(entity, post),
            discovered_at=now,
            importance_score=verdict.importance_score,
            category=verdict.category,
            summary=verdict.summary,
            source_url=source_url(post.query),
        )
        if stored is None:
            logger.info(f"[{entity.id}] Skipping duplicate post: {post.text[:50]}...")
        return stored

    def store_batch(
        self,
        entity: MonitoredEntity,
        posts: List[CandidatePost],
        verdicts: List[PostVerdict],
    ) -> List[ScoredPost]:
        stored: List[ScoredPost] = []
        for index, (post, verdict) in enumerate(zip(posts, verdicts)):
            try:
                row = self.store(entity, index, post, verdict)
            except Exception as e:
                logger.error(f"[{entity.id}] Failed to store post {index}: {e}")
                continue
            if row is not None:
                stored.append(row)
        return stored


__all__ = ["PersistenceWriter", "author_label", "source_url"]

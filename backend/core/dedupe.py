"""
Drops candidates whose text is already stored for the entity.

Runs before scoring so already-known posts never reach the classifier.
"""

from __future__ import annotations

import logging
from typing import List

from adapter.models import CandidatePost
from database import Database

logger = logging.getLogger(__name__)


class Deduplicator:
    def __init__(self, db: Database):
        self.db = db

    def filter_new(self, entity_id: str, candidates: List[CandidatePost]) -> List[CandidatePost]:
        """Candidates with no stored (entity_id, text) match, in input order."""
        if not candidates:
            return []

        existing = self.db.existing_texts(entity_id, (c.text for c in candidates))
        fresh = [c for c in candidates if c.text not in existing]

        if existing:
            logger.info(
                f"[{entity_id}] Skipping {len(candidates) - len(fresh)} already stored posts, "
                f"{len(fresh)} left to score"
            )
        return fresh


__all__ = ["Deduplicator"]

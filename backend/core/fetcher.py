"""
Runs an entity's query plan against the scraper and collects candidate posts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from adapter.models import CandidatePost
from adapter.scraper import ScraperAdapter, ScraperError
from adapter.scraper.extractor import extract_candidates

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """Candidates gathered for one entity plus which queries ran."""
    candidates: List[CandidatePost] = field(default_factory=list)
    found: int = 0
    queries_tried: List[str] = field(default_factory=list)
    failed_queries: List[str] = field(default_factory=list)


class ContentFetcher:
    """
    Tries queries in order, one attempt each.

    A failing query is logged and skipped. Once a query yields more than
    `early_stop_threshold` candidates the remaining queries are not tried.
    """

    def __init__(
        self,
        scraper: ScraperAdapter,
        early_stop_threshold: int = 5,
        per_query_limit: int = 10,
        max_candidates: int = 20,
        min_length: int = 20,
    ):
        self.scraper = scraper
        self.early_stop_threshold = early_stop_threshold
        self.per_query_limit = per_query_limit
        self.max_candidates = max_candidates
        self.min_length = min_length

    def fetch_candidates(self, queries: List[str], label: str = "") -> FetchResult:
        result = FetchResult()
        gathered: List[CandidatePost] = []

        for query in queries:
            result.queries_tried.append(query)
            try:
                document = self.scraper.fetch(query)
            except ScraperError as e:
                logger.warning(f"[{label}] Query '{query}' failed: {e}")
                result.failed_queries.append(query)
                continue

            extracted = extract_candidates(
                document, query, min_length=self.min_length, limit=self.per_query_limit
            )
            logger.info(f"[{label}] Found {len(extracted)} posts for '{query}'")
            gathered.extend(extracted)

            if len(extracted) > self.early_stop_threshold:
                break

        result.found = len(gathered)

        # Same text surfacing under several queries: keep the first (most precise) one
        seen = set()
        for candidate in gathered:
            if candidate.text in seen:
                continue
            seen.add(candidate.text)
            result.candidates.append(candidate)

        result.candidates = result.candidates[: self.max_candidates]
        return result


__all__ = ["ContentFetcher", "FetchResult"]

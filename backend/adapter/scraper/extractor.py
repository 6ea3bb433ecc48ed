"""
Turns a scraped search results page into candidate posts.
"""

from __future__ import annotations

import html
import re
from typing import List, Optional

from ..models import Authorship, CandidatePost

# Nitter renders each post body as <div class="tweet-content media-body" dir="auto">...</div>
POST_BLOCK_RE = re.compile(r'<div class="tweet-content[^"]*"[^>]*>([\s\S]*?)</div>', re.IGNORECASE)
TAG_RE = re.compile(r"<[^>]*>")
WHITESPACE_RE = re.compile(r"\s+")

OFFICIAL_QUERY_PREFIX = "from:"
DEFAULT_MIN_LENGTH = 20


def normalize_text(fragment: str) -> str:
    """Strip markup, decode entities and collapse whitespace."""
    text = TAG_RE.sub(" ", fragment)
    text = html.unescape(text)
    return WHITESPACE_RE.sub(" ", text).strip()


def is_official_query(query: str) -> bool:
    return query.lower().startswith(OFFICIAL_QUERY_PREFIX)


def extract_candidates(
    document: str,
    query: str,
    min_length: int = DEFAULT_MIN_LENGTH,
    limit: Optional[int] = None,
) -> List[CandidatePost]:
    """
    Extract candidate posts from a raw document.

    Fragments of `min_length` characters or fewer are dropped as noise.
    Posts found through an author-scoped query are tagged official.
    An empty result is normal, not an error.
    """
    authorship = Authorship.OFFICIAL if is_official_query(query) else Authorship.COMMUNITY
    candidates: List[CandidatePost] = []

    for match in POST_BLOCK_RE.finditer(document or ""):
        text = normalize_text(match.group(1))
        if len(text) <= min_length:
            continue
        candidates.append(CandidatePost(text=text, authorship=authorship, query=query))
        if limit is not None and len(candidates) >= limit:
            break

    return candidates


__all__ = ["extract_candidates", "normalize_text", "is_official_query"]

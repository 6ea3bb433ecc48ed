"""
Batch importance scoring.

All new candidates of one entity go to the classifier in a single request.
The response is parsed into a tagged result; anything other than a clean
parse sends the whole batch down the deterministic fallback, so a batch is
never a mix of AI and default scores.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from pydantic import ValidationError

from adapter.grok import GrokAdapter
from adapter.models import Category, CandidatePost, PostVerdict, SUMMARY_MAX_CHARS

logger = logging.getLogger(__name__)

OFFICIAL_FALLBACK_SCORE = 6
COMMUNITY_FALLBACK_SCORE = 5

CODE_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)


class ParseStatus(str, Enum):
    OK = "ok"
    UNAVAILABLE = "unavailable"        # no client, transport error or timeout
    PARSE_ERROR = "parse_error"        # not JSON, not an array, or an invalid item
    LENGTH_MISMATCH = "length_mismatch"
    BAD_INDICES = "bad_indices"        # indices are not a permutation of 0..N-1


@dataclass
class ScoreParseResult:
    status: ParseStatus
    verdicts: List[PostVerdict] = field(default_factory=list)
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status == ParseStatus.OK


@dataclass
class BatchScore:
    """Verdicts aligned with the input candidates, plus how they were produced."""
    verdicts: List[PostVerdict]
    status: ParseStatus
    ai_called: bool = False

    @property
    def used_fallback(self) -> bool:
        return self.status != ParseStatus.OK


def fallback_verdict(index: int, post: CandidatePost, reason: str) -> PostVerdict:
    return PostVerdict(
        index=index,
        importance_score=OFFICIAL_FALLBACK_SCORE if post.is_official else COMMUNITY_FALLBACK_SCORE,
        category=Category.GENERAL,
        summary=post.text[:SUMMARY_MAX_CHARS],
        is_official=post.is_official,
        reasoning=reason,
    )


def fallback_verdicts(posts: List[CandidatePost], reason: str) -> List[PostVerdict]:
    """Deterministic scores for a whole batch: 6 for official posts, 5 otherwise."""
    return [fallback_verdict(i, post, reason) for i, post in enumerate(posts)]


def strip_code_fences(raw: str) -> str:
    return CODE_FENCE_RE.sub("", raw).strip()


def parse_batch_response(raw: Optional[str], posts: List[CandidatePost]) -> ScoreParseResult:
    """
    Validate a classifier response against the batch it was asked about.

    On success the verdicts are ordered by index so verdicts[i] belongs to
    posts[i], and is_official is taken from the input.
    """
    if raw is None:
        return ScoreParseResult(ParseStatus.UNAVAILABLE, detail="no response")

    try:
        payload = json.loads(strip_code_fences(raw))
    except json.JSONDecodeError as e:
        return ScoreParseResult(ParseStatus.PARSE_ERROR, detail=f"invalid JSON: {e}")

    if not isinstance(payload, list):
        return ScoreParseResult(ParseStatus.PARSE_ERROR, detail=f"expected array, got {type(payload).__name__}")

    if len(payload) != len(posts):
        return ScoreParseResult(
            ParseStatus.LENGTH_MISMATCH, detail=f"expected {len(posts)} verdicts, got {len(payload)}"
        )

    try:
        verdicts = [PostVerdict.model_validate(item) for item in payload]
    except ValidationError as e:
        return ScoreParseResult(ParseStatus.PARSE_ERROR, detail=f"invalid verdict: {e.error_count()} errors")

    if sorted(v.index for v in verdicts) != list(range(len(posts))):
        return ScoreParseResult(ParseStatus.BAD_INDICES, detail="indices are not 0..N-1")

    verdicts.sort(key=lambda v: v.index)
    aligned = [
        v.model_copy(update={"is_official": post.is_official})
        for v, post in zip(verdicts, posts)
    ]
    return ScoreParseResult(ParseStatus.OK, verdicts=aligned)


class BatchScorer:
    """One classifier request per entity batch, with a fallback that never fails."""

    def __init__(self, grok: GrokAdapter):
        self.grok = grok

    def score(self, entity_name: str, symbol: Optional[str], posts: List[CandidatePost]) -> BatchScore:
        if not posts:
            return BatchScore(verdicts=[], status=ParseStatus.OK)

        if not self.grok.is_live:
            return BatchScore(
                verdicts=fallback_verdicts(posts, "AI unavailable"),
                status=ParseStatus.UNAVAILABLE,
            )

        raw = self.grok.classify_posts(entity_name, symbol, posts)
        result = parse_batch_response(raw, posts)

        if result.ok:
            logger.info(f"[{entity_name}] Scored {len(posts)} posts in one AI call")
            return BatchScore(verdicts=result.verdicts, status=ParseStatus.OK, ai_called=True)

        logger.warning(
            f"[{entity_name}] AI scoring failed ({result.status.value}: {result.detail}), "
            f"using fallback scores for {len(posts)} posts"
        )
        reason = "AI unavailable" if result.status == ParseStatus.UNAVAILABLE else "AI analysis failed"
        return BatchScore(
            verdicts=fallback_verdicts(posts, reason),
            status=result.status,
            ai_called=True,
        )


__all__ = [
    "BatchScorer",
    "BatchScore",
    "ParseStatus",
    "ScoreParseResult",
    "parse_batch_response",
    "fallback_verdicts",
    "fallback_verdict",
    "strip_code_fences",
    "OFFICIAL_FALLBACK_SCORE",
    "COMMUNITY_FALLBACK_SCORE",
]

"""
Shared data models for adapters and the monitoring pipeline.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

MIN_SCORE = 0
MAX_SCORE = 10
SUMMARY_MAX_CHARS = 200


class Category(str, Enum):
    """Closed set of post categories returned by the classifier."""
    PARTNERSHIP = "partnership"
    TECHNICAL = "technical"
    LISTING = "listing"
    PRICE = "price"
    COMMUNITY = "community"
    GENERAL = "general"

    @classmethod
    def coerce(cls, value: Optional[str]) -> "Category":
        """Map a free-form label onto the enum, defaulting to GENERAL."""
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.GENERAL


class Authorship(str, Enum):
    """Who wrote a post: the entity's own account or anyone else."""
    OFFICIAL = "official"
    COMMUNITY = "community"


def clamp_score(value: int) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, int(value)))


class MonitoredEntity(BaseModel):
    """
    A crypto project tracked for social mentions.

    Attributes:
        id: Unique entity ID
        name: Display name (e.g. "Kaspa")
        symbol: Ticker symbol without the leading $ (e.g. "KAS")
        handle: Social handle without @, if the project has one
        search_terms: Free-text extra search terms
        last_checked: When the pipeline last finished with this entity
        active: Soft-deactivation flag
    """
    id: str = Field(description="Unique entity ID")
    name: str = Field(description="Display name")
    symbol: Optional[str] = Field(default=None, description="Ticker symbol")
    handle: Optional[str] = Field(default=None, description="Social handle (without @)")
    search_terms: Optional[str] = Field(default=None, description="Extra free-text search terms")
    last_checked: Optional[datetime] = Field(default=None)
    active: bool = Field(default=True)


class CandidatePost(BaseModel):
    """A freshly extracted post that has not been scored or stored yet."""
    text: str = Field(description="Normalized post text")
    authorship: Authorship = Field(default=Authorship.COMMUNITY)
    query: str = Field(description="Search query that produced this post")

    @property
    def is_official(self) -> bool:
        return self.authorship == Authorship.OFFICIAL


class PostVerdict(BaseModel):
    """Per-post classification, from the AI classifier or the fallback heuristic."""
    index: int = Field(
        validation_alias=AliasChoices("index", "tweet_index"),
        description="Position of the post in the scored batch",
    )
    importance_score: int = Field(description="Importance from 0 to 10")
    category: Category = Field(default=Category.GENERAL)
    summary: str = Field(description="One-line summary")
    is_official: bool = Field(default=False)
    reasoning: str = Field(default="")

    @field_validator("importance_score", mode="before")
    @classmethod
    def _clamp(cls, value):
        try:
            return clamp_score(round(float(value)))
        except (TypeError, ValueError, OverflowError):
            raise ValueError(f"importance_score must be a number, got {value!r}")

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, value):
        return Category.coerce(value)

    @field_validator("summary", mode="before")
    @classmethod
    def _truncate_summary(cls, value):
        return str(value or "")[:SUMMARY_MAX_CHARS]


class ScoredPost(BaseModel):
    """A stored, scored post. Immutable once written."""
    id: int
    entity_id: str
    external_id: str
    text: str
    author: str
    discovered_at: datetime
    importance_score: int
    category: Category
    summary: str
    source_url: str


class Subscriber(BaseModel):
    """A user subscribed to an entity, as seen by the notification dispatcher."""
    id: str
    chat_id: str = Field(description="Messaging destination (Telegram chat id)")
    username: Optional[str] = Field(default=None)
    threshold: int = Field(description="Minimum importance score that triggers a message")
    active: bool = Field(default=True)


class RunSummary(BaseModel):
    """Counters reported by one pipeline invocation."""
    entities_processed: int = 0
    posts_found: int = 0
    posts_stored: int = 0
    notifications_sent: int = 0
    entities_failed: int = 0
    entities_skipped: int = 0
    ai_calls: int = 0
    fallbacks: int = 0
    errors: List[str] = Field(default_factory=list)


__all__ = [
    "Category",
    "Authorship",
    "MonitoredEntity",
    "CandidatePost",
    "PostVerdict",
    "ScoredPost",
    "Subscriber",
    "RunSummary",
    "clamp_score",
    "MIN_SCORE",
    "MAX_SCORE",
    "SUMMARY_MAX_CHARS",
]

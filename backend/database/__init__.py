"""
SQLite database module for the PortAlerts backend.
Provides connection management and the storage operations the monitoring
pipeline relies on.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

from adapter.models import Category, MonitoredEntity, ScoredPost, Subscriber

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "schema.sql"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

TABLES = ("notifications", "subscriptions", "subscribers", "scored_posts", "entities")


def format_ts(dt: datetime) -> str:
    """Format a datetime as a sortable UTC string."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def init_db(db_path: str, reset: bool = False) -> None:
    """
    Initialize the database with schema.

    Args:
        db_path: SQLite file to create or open.
        reset: If True, drops all existing tables and recreates them (fresh start).
               If False, only creates tables if they don't exist (preserves data).
    """
    with sqlite3.connect(db_path) as conn:
        if reset:
            for table in TABLES:
                conn.execute(f"DROP TABLE IF EXISTS {table}")

        with open(SCHEMA_PATH) as f:
            conn.executescript(f.read())
        conn.commit()


@contextmanager
def get_db(db_path: str):
    """Context manager for database connections."""
    conn = sqlite3.connect(db_path, timeout=30)
    conn.row_factory = sqlite3.Row  # Enable dict-like access
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _row_to_entity(row: sqlite3.Row) -> MonitoredEntity:
    return MonitoredEntity(
        id=row["id"],
        name=row["name"],
        symbol=row["symbol"],
        handle=row["handle"],
        search_terms=row["search_terms"],
        last_checked=parse_ts(row["last_checked"]),
        active=bool(row["is_active"]),
    )


def _row_to_post(row: sqlite3.Row) -> ScoredPost:
    return ScoredPost(
        id=row["id"],
        entity_id=row["entity_id"],
        external_id=row["external_id"],
        text=row["text"],
        author=row["author"],
        discovered_at=parse_ts(row["discovered_at"]),
        importance_score=row["importance_score"],
        category=Category(row["category"]),
        summary=row["summary"],
        source_url=row["source_url"],
    )


class Database:
    """
    Storage interface for the monitoring pipeline.

    Every call opens its own short-lived connection, so one instance can be
    shared by worker threads.
    """

    def __init__(self, db_path: str):
        self.db_path = str(db_path)

    def init(self, reset: bool = False) -> None:
        init_db(self.db_path, reset=reset)

    def connect(self):
        return get_db(self.db_path)

    # Entities
    def create_entity(
        self,
        entity_id: str,
        name: str,
        symbol: Optional[str] = None,
        handle: Optional[str] = None,
        search_terms: Optional[str] = None,
        active: bool = True,
        last_checked: Optional[datetime] = None,
    ) -> MonitoredEntity:
        """Register an entity to monitor."""
        with self.connect() as db:
            db.execute(
                """INSERT INTO entities (id, name, symbol, handle, search_terms, is_active, last_checked)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    entity_id,
                    name,
                    symbol,
                    handle,
                    search_terms,
                    active,
                    format_ts(last_checked) if last_checked else None,
                ),
            )
        return self.get_entity(entity_id)

    def get_entity(self, entity_id: str) -> Optional[MonitoredEntity]:
        with self.connect() as db:
            row = db.execute("SELECT * FROM entities WHERE id = ?", (entity_id,)).fetchone()
            return _row_to_entity(row) if row else None

    def list_due_entities(self, limit: int) -> List[MonitoredEntity]:
        """Active entities, least recently checked first (never-checked before all others)."""
        with self.connect() as db:
            cursor = db.execute(
                """SELECT * FROM entities
                   WHERE is_active = TRUE
                   ORDER BY last_checked IS NOT NULL, last_checked ASC, created_at ASC
                   LIMIT ?""",
                (limit,),
            )
            return [_row_to_entity(row) for row in cursor.fetchall()]

    def update_last_checked(self, entity_id: str, when: datetime) -> bool:
        """Move last_checked forward. Never moves it backwards."""
        stamp = format_ts(when)
        with self.connect() as db:
            cursor = db.execute(
                """UPDATE entities SET last_checked = ?
                   WHERE id = ? AND (last_checked IS NULL OR last_checked < ?)""",
                (stamp, entity_id, stamp),
            )
            return cursor.rowcount == 1

    def try_acquire_lease(
        self, entity_id: str, ttl_seconds: int, now: Optional[datetime] = None
    ) -> Optional[datetime]:
        """
        Claim the entity for processing unless another run holds an unexpired lease.

        Returns:
            The lease expiry, which the holder passes back to release_lease,
            or None if the entity is already leased.
        """
        now = now or datetime.now(timezone.utc)
        expires = now + timedelta(seconds=ttl_seconds)
        with self.connect() as db:
            cursor = db.execute(
                """UPDATE entities SET lease_expires_at = ?
                   WHERE id = ? AND (lease_expires_at IS NULL OR lease_expires_at < ?)""",
                (format_ts(expires), entity_id, format_ts(now)),
            )
            return expires if cursor.rowcount == 1 else None

    def release_lease(self, entity_id: str, expires_at: datetime) -> bool:
        """
        Drop a lease, but only if it is still the one this holder took.

        A run that outlived its TTL must not clear the lease of the run
        that took over.
        """
        with self.connect() as db:
            cursor = db.execute(
                "UPDATE entities SET lease_expires_at = NULL WHERE id = ? AND lease_expires_at = ?",
                (entity_id, format_ts(expires_at)),
            )
            return cursor.rowcount == 1

    # Scored posts
    def existing_texts(self, entity_id: str, texts: Iterable[str]) -> Set[str]:
        """Return the subset of texts already stored for this entity, in one query."""
        texts = list(dict.fromkeys(texts))
        if not texts:
            return set()
        placeholders = ", ".join("?" for _ in texts)
        with self.connect() as db:
            cursor = db.execute(
                f"SELECT text FROM scored_posts WHERE entity_id = ? AND text IN ({placeholders})",
                (entity_id, *texts),
            )
            return {row["text"] for row in cursor.fetchall()}

    def insert_post_if_absent(
        self,
        entity_id: str,
        external_id: str,
        text: str,
        author: str,
        discovered_at: datetime,
        importance_score: int,
        category: Category,
        summary: str,
        source_url: str,
    ) -> Optional[ScoredPost]:
        """
        Insert a scored post unless (entity_id, text) already exists.

        Returns:
            The stored post, or None when the row already existed.
        """
        with self.connect() as db:
            cursor = db.execute(
                """INSERT INTO scored_posts
                   (entity_id, external_id, text, author, discovered_at,
                    importance_score, category, summary, source_url)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT (entity_id, text) DO NOTHING""",
                (
                    entity_id,
                    external_id,
                    text,
                    author,
                    format_ts(discovered_at),
                    importance_score,
                    Category(category).value,
                    summary,
                    source_url,
                ),
            )
            if cursor.rowcount != 1:
                return None
            row = db.execute("SELECT * FROM scored_posts WHERE id = ?", (cursor.lastrowid,)).fetchone()
            return _row_to_post(row)

    def count_posts(self, entity_id: Optional[str] = None) -> int:
        with self.connect() as db:
            if entity_id is None:
                row = db.execute("SELECT COUNT(*) AS n FROM scored_posts").fetchone()
            else:
                row = db.execute(
                    "SELECT COUNT(*) AS n FROM scored_posts WHERE entity_id = ?", (entity_id,)
                ).fetchone()
            return row["n"]

    def get_recent_posts(self, entity_id: str, limit: int = 20) -> List[ScoredPost]:
        with self.connect() as db:
            cursor = db.execute(
                """SELECT * FROM scored_posts
                   WHERE entity_id = ?
                   ORDER BY discovered_at DESC, id DESC
                   LIMIT ?""",
                (entity_id, limit),
            )
            return [_row_to_post(row) for row in cursor.fetchall()]

    # Subscribers
    def create_subscriber(
        self,
        subscriber_id: str,
        chat_id: Optional[str],
        username: Optional[str] = None,
        threshold: Optional[int] = None,
        active: bool = True,
    ) -> None:
        with self.connect() as db:
            if threshold is None:
                db.execute(
                    "INSERT INTO subscribers (id, chat_id, username, is_active) VALUES (?, ?, ?, ?)",
                    (subscriber_id, chat_id, username, active),
                )
            else:
                db.execute(
                    """INSERT INTO subscribers (id, chat_id, username, notification_threshold, is_active)
                       VALUES (?, ?, ?, ?, ?)""",
                    (subscriber_id, chat_id, username, threshold, active),
                )

    def subscribe(
        self,
        subscriber_id: str,
        entity_id: str,
        custom_threshold: Optional[int] = None,
        active: bool = True,
    ) -> None:
        """Subscribe (or re-activate) a subscriber to an entity."""
        with self.connect() as db:
            db.execute(
                """INSERT INTO subscriptions (subscriber_id, entity_id, custom_threshold, is_active)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(subscriber_id, entity_id) DO UPDATE SET
                   custom_threshold = excluded.custom_threshold,
                   is_active = excluded.is_active""",
                (subscriber_id, entity_id, custom_threshold, active),
            )

    def get_subscribers_for_post(self, entity_id: str, importance_score: int) -> List[Subscriber]:
        """Active subscribers of the entity whose effective threshold is met by the score."""
        with self.connect() as db:
            cursor = db.execute(
                """SELECT s.id, s.chat_id, s.username, s.is_active,
                          COALESCE(sub.custom_threshold, s.notification_threshold) AS threshold
                   FROM subscriptions sub
                   JOIN subscribers s ON s.id = sub.subscriber_id
                   WHERE sub.entity_id = ?
                     AND sub.is_active = TRUE
                     AND s.is_active = TRUE
                     AND s.chat_id IS NOT NULL
                     AND COALESCE(sub.custom_threshold, s.notification_threshold) <= ?
                   ORDER BY s.id""",
                (entity_id, importance_score),
            )
            return [
                Subscriber(
                    id=row["id"],
                    chat_id=str(row["chat_id"]),
                    username=row["username"],
                    threshold=row["threshold"],
                    active=bool(row["is_active"]),
                )
                for row in cursor.fetchall()
            ]

    # Notifications
    def claim_notification(self, post_id: int, subscriber_id: str, entity_id: str) -> bool:
        """
        Reserve the single delivery attempt for (post, subscriber).

        Returns False if an attempt was already made.
        """
        with self.connect() as db:
            cursor = db.execute(
                """INSERT INTO notifications (post_id, subscriber_id, entity_id)
                   VALUES (?, ?, ?)
                   ON CONFLICT (post_id, subscriber_id) DO NOTHING""",
                (post_id, subscriber_id, entity_id),
            )
            return cursor.rowcount == 1

    def finish_notification(
        self,
        post_id: int,
        subscriber_id: str,
        sent: bool,
        provider_message_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        with self.connect() as db:
            db.execute(
                """UPDATE notifications SET status = ?, provider_message_id = ?, error = ?
                   WHERE post_id = ? AND subscriber_id = ?""",
                ("sent" if sent else "failed", provider_message_id, error, post_id, subscriber_id),
            )

    def get_notifications(self, post_id: Optional[int] = None) -> List[Dict[str, Any]]:
        with self.connect() as db:
            if post_id is None:
                cursor = db.execute("SELECT * FROM notifications ORDER BY attempted_at")
            else:
                cursor = db.execute(
                    "SELECT * FROM notifications WHERE post_id = ? ORDER BY attempted_at", (post_id,)
                )
            return [dict(row) for row in cursor.fetchall()]


__all__ = ["init_db", "get_db", "Database", "format_ts", "parse_ts"]

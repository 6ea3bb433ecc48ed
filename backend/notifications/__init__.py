"""
Notification fan-out for freshly stored posts.

Every active subscriber whose threshold the post's score meets gets one
Telegram message. Each (post, subscriber) pair is attempted at most once;
a failure for one recipient never affects the others.
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from typing import Optional

from adapter.models import MonitoredEntity, ScoredPost, Subscriber
from adapter.telegram import TelegramAdapter, TelegramBlockedError, TelegramError
from database import Database
from monitoring import EventType

logger = logging.getLogger(__name__)

CATEGORY_ICONS = {
    "partnership": "🤝",
    "technical": "🛠",
    "listing": "📈",
    "price": "💰",
    "community": "👥",
    "general": "📰",
}


def format_notification(entity: MonitoredEntity, post: ScoredPost) -> str:
    """HTML message body for one post. User-provided text is escaped."""
    icon = CATEGORY_ICONS.get(post.category.value, "📰")
    name = html.escape(entity.name)
    symbol = f" (${html.escape(entity.symbol)})" if entity.symbol else ""
    return (
        f"🚨 <b>{name}</b>{symbol}\n"
        f"{icon} {post.category.value.title()} · Importance <b>{post.importance_score}/10</b>\n\n"
        f"{html.escape(post.summary)}\n\n"
        f"✍️ {html.escape(post.author)}\n"
        f'<a href="{html.escape(post.source_url, quote=True)}">View source</a>'
    )


@dataclass
class DispatchResult:
    sent: int = 0
    failed: int = 0
    skipped: int = 0


class NotificationDispatcher:
    def __init__(self, db: Database, telegram: TelegramAdapter, monitor=None):
        self.db = db
        self.telegram = telegram
        self.monitor = monitor

    def dispatch(self, entity: MonitoredEntity, post: ScoredPost) -> DispatchResult:
        result = DispatchResult()
        recipients = self.db.get_subscribers_for_post(entity.id, post.importance_score)
        if not recipients:
            return result

        message = format_notification(entity, post)
        for subscriber in recipients:
            try:
                outcome = self._notify(entity, post, subscriber, message)
            except Exception as e:
                logger.error(f"[{entity.id}] Notification bookkeeping failed for {subscriber.id}: {e}")
                outcome = False
            if outcome is None:
                result.skipped += 1
            elif outcome:
                result.sent += 1
            else:
                result.failed += 1

        logger.info(
            f"[{entity.id}] Post {post.id} (score {post.importance_score}): "
            f"{result.sent} sent, {result.failed} failed, {result.skipped} already notified"
        )
        return result

    def _notify(
        self,
        entity: MonitoredEntity,
        post: ScoredPost,
        subscriber: Subscriber,
        message: str,
    ) -> Optional[bool]:
        """Returns True if sent, False if the attempt failed, None if already attempted."""
        if not self.db.claim_notification(post.id, subscriber.id, entity.id):
            return None

        try:
            sent = self.telegram.send_message(subscriber.chat_id, message, parse_mode="HTML")
        except TelegramBlockedError as e:
            logger.warning(f"[{entity.id}] Subscriber {subscriber.id} unreachable: {e}")
            return self._failed(entity, post, subscriber, str(e))
        except TelegramError as e:
            logger.error(f"[{entity.id}] Failed to notify subscriber {subscriber.id}: {e}")
            return self._failed(entity, post, subscriber, str(e))
        except Exception as e:
            logger.error(f"[{entity.id}] Unexpected error notifying subscriber {subscriber.id}: {e}")
            return self._failed(entity, post, subscriber, str(e))

        try:
            self.db.finish_notification(post.id, subscriber.id, sent=True, provider_message_id=sent.message_id)
        except Exception as e:
            # the message is out; only the delivery record is missing
            logger.error(f"[{entity.id}] Could not record delivery to {subscriber.id}: {e}")

        if self.monitor:
            self.monitor.metrics.record_notification(sent=True)
            self.monitor.activity.add_event(
                EventType.NOTIFICATION_SENT, entity=entity.name, post_id=post.id, subscriber=subscriber.id
            )
        return True

    def _failed(self, entity: MonitoredEntity, post: ScoredPost, subscriber: Subscriber, error: str) -> bool:
        self.db.finish_notification(post.id, subscriber.id, sent=False, error=error[:500])
        if self.monitor:
            self.monitor.metrics.record_notification(sent=False)
            self.monitor.activity.add_event(
                EventType.NOTIFICATION_FAILED, entity=entity.name, post_id=post.id, error=error[:200]
            )
        return False


__all__ = ["NotificationDispatcher", "DispatchResult", "format_notification"]

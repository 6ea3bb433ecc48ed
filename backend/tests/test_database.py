"""Tests for storage, deduplication and the persistence writer."""

import sqlite3

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

from adapter.models import (
    Authorship,
    CandidatePost,
    Category,
    MonitoredEntity,
    PostVerdict,
)
from core.dedupe import Deduplicator
from core.persistence import PersistenceWriter, author_label, source_url
from database import Database, format_ts, parse_ts


def _insert(db, entity_id, text, score=5, when=None, category=Category.GENERAL):
    return db.insert_post_if_absent(
        entity_id=entity_id,
        external_id=f"{entity_id}-{len(text)}",
        text=text,
        author="Community",
        discovered_at=when or datetime.now(timezone.utc),
        importance_score=score,
        category=category,
        summary=text[:200],
        source_url="https://twitter.com/search?q=Kaspa",
    )


class TestTimestamps:

    def test_round_trip_keeps_microseconds(self, fixed_now):
        stamp = format_ts(fixed_now + timedelta(microseconds=123456))
        assert stamp == "2026-01-15T12:00:00.123456Z"
        assert parse_ts(stamp) == fixed_now + timedelta(microseconds=123456)

    def test_parse_empty(self):
        assert parse_ts(None) is None
        assert parse_ts("") is None


class TestEntities:

    def test_create_and_get(self, db, kaspa):
        assert kaspa.name == "Kaspa"
        assert kaspa.symbol == "KAS"
        assert kaspa.handle == "KaspaCurrency"
        assert kaspa.last_checked is None
        assert kaspa.active

    def test_get_missing(self, db):
        assert db.get_entity("nope") is None

    def test_init_is_idempotent(self, db, kaspa):
        db.init()
        assert db.get_entity("kaspa") is not None

    def test_init_reset_drops_data(self, db, kaspa):
        db.init(reset=True)
        assert db.get_entity("kaspa") is None

    def test_due_order_never_checked_first(self, db, fixed_now):
        db.create_entity("a", "Alpha", last_checked=fixed_now - timedelta(hours=1))
        db.create_entity("b", "Beta")
        db.create_entity("c", "Gamma", last_checked=fixed_now - timedelta(hours=2))
        db.create_entity("d", "Delta", active=False)

        due = db.list_due_entities(10)

        assert [e.id for e in due] == ["b", "c", "a"]

    def test_due_limit(self, db, fixed_now):
        for i in range(7):
            db.create_entity(f"e{i}", f"Entity {i}", last_checked=fixed_now - timedelta(minutes=i))
        due = db.list_due_entities(5)
        assert [e.id for e in due] == ["e6", "e5", "e4", "e3", "e2"]

    def test_last_checked_only_moves_forward(self, db, kaspa, fixed_now):
        assert db.update_last_checked("kaspa", fixed_now)
        assert not db.update_last_checked("kaspa", fixed_now - timedelta(minutes=5))
        assert db.get_entity("kaspa").last_checked == fixed_now

        assert db.update_last_checked("kaspa", fixed_now + timedelta(seconds=1))
        assert db.get_entity("kaspa").last_checked == fixed_now + timedelta(seconds=1)


class TestLease:

    def test_second_claim_refused(self, db, kaspa, fixed_now):
        assert db.try_acquire_lease("kaspa", 300, now=fixed_now)
        assert not db.try_acquire_lease("kaspa", 300, now=fixed_now + timedelta(seconds=10))

    def test_acquire_returns_expiry(self, db, kaspa, fixed_now):
        assert db.try_acquire_lease("kaspa", 300, now=fixed_now) == fixed_now + timedelta(seconds=300)

    def test_release(self, db, kaspa, fixed_now):
        lease = db.try_acquire_lease("kaspa", 300, now=fixed_now)
        assert db.release_lease("kaspa", lease)
        assert db.try_acquire_lease("kaspa", 300, now=fixed_now)

    def test_expired_lease_can_be_taken(self, db, kaspa, fixed_now):
        db.try_acquire_lease("kaspa", 60, now=fixed_now)
        assert db.try_acquire_lease("kaspa", 60, now=fixed_now + timedelta(seconds=120))

    def test_stale_holder_cannot_release_new_lease(self, db, kaspa, fixed_now):
        stale = db.try_acquire_lease("kaspa", 300, now=fixed_now)
        current = db.try_acquire_lease("kaspa", 300, now=fixed_now + timedelta(seconds=400))
        assert current is not None

        # the first run finishes late and tries to clean up
        assert not db.release_lease("kaspa", stale)

        assert db.try_acquire_lease("kaspa", 300, now=fixed_now + timedelta(seconds=401)) is None
        assert db.release_lease("kaspa", current)

    def test_unknown_entity(self, db, fixed_now):
        assert not db.try_acquire_lease("nope", 60, now=fixed_now)


class TestScoredPosts:

    def test_insert(self, db, kaspa, fixed_now):
        post = _insert(db, "kaspa", "Kaspa hits a new all time high today", score=8,
                       when=fixed_now, category=Category.PRICE)

        assert post.id is not None
        assert post.entity_id == "kaspa"
        assert post.importance_score == 8
        assert post.category == Category.PRICE
        assert post.discovered_at == fixed_now

    def test_duplicate_text_skipped(self, db, kaspa):
        assert _insert(db, "kaspa", "Exact same text for both inserts") is not None
        assert _insert(db, "kaspa", "Exact same text for both inserts") is None
        assert db.count_posts("kaspa") == 1

    def test_same_text_other_entity_allowed(self, db, kaspa):
        db.create_entity("eth", "Ethereum", symbol="ETH")
        _insert(db, "kaspa", "Crypto market is up today across the board")
        assert _insert(db, "eth", "Crypto market is up today across the board") is not None
        assert db.count_posts() == 2

    def test_score_out_of_range_rejected(self, db, kaspa):
        with pytest.raises(sqlite3.IntegrityError):
            _insert(db, "kaspa", "Score eleven is not allowed here", score=11)
        assert db.count_posts("kaspa") == 0

    def test_missing_required_field_rejected(self, db, kaspa):
        with pytest.raises(sqlite3.IntegrityError):
            db.insert_post_if_absent(
                entity_id="kaspa",
                external_id="kaspa-1",
                text="Post with no author recorded at all",
                author=None,
                discovered_at=datetime.now(timezone.utc),
                importance_score=5,
                category=Category.GENERAL,
                summary="no author",
                source_url="https://twitter.com/search?q=Kaspa",
            )

    def test_constraint_violation_isolated_in_batch(self, db, kaspa, fixed_now):
        writer = PersistenceWriter(db, clock=lambda: fixed_now)
        posts = [
            CandidatePost(text="Bad row that violates the score check", query="Kaspa"),
            CandidatePost(text="Good row that should still be stored", query="Kaspa"),
        ]
        good = PostVerdict(index=1, importance_score=5, summary="ok")
        # bypass the model's clamping to reach the storage check
        bad = PostVerdict.model_construct(
            index=0, importance_score=42, category=Category.GENERAL,
            summary="bad", is_official=False, reasoning="",
        )

        stored = writer.store_batch(kaspa, posts, [bad, good])

        assert [p.text for p in stored] == [posts[1].text]
        assert db.count_posts("kaspa") == 1

    def test_existing_texts(self, db, kaspa):
        _insert(db, "kaspa", "Stored post number one for kaspa")
        _insert(db, "kaspa", "Stored post number two for kaspa")

        existing = db.existing_texts("kaspa", [
            "Stored post number one for kaspa",
            "Brand new post that is not stored",
            "Stored post number two for kaspa",
        ])

        assert existing == {"Stored post number one for kaspa", "Stored post number two for kaspa"}
        assert db.existing_texts("kaspa", []) == set()

    def test_recent_posts_newest_first(self, db, kaspa, fixed_now):
        for i in range(3):
            _insert(db, "kaspa", f"Post number {i} about the network", when=fixed_now + timedelta(minutes=i))

        recent = db.get_recent_posts("kaspa", limit=2)

        assert [p.text for p in recent] == [
            "Post number 2 about the network",
            "Post number 1 about the network",
        ]


class TestSubscribers:

    @pytest.fixture
    def post_subscribers(self, db, kaspa):
        db.create_subscriber("alice", "1001")                # default threshold 7
        db.create_subscriber("bob", "1002", threshold=9)
        db.create_subscriber("carol", "1003", threshold=3)
        db.create_subscriber("dave", None, threshold=0)      # no chat linked
        db.create_subscriber("erin", "1005", threshold=0, active=False)
        for sub in ("alice", "bob", "carol", "dave", "erin"):
            db.subscribe(sub, "kaspa")
        return db

    def test_default_threshold_is_seven(self, post_subscribers):
        assert [s.id for s in post_subscribers.get_subscribers_for_post("kaspa", 7)] == ["alice", "carol"]
        assert [s.id for s in post_subscribers.get_subscribers_for_post("kaspa", 6)] == ["carol"]

    def test_threshold_met_inclusive(self, post_subscribers):
        assert [s.id for s in post_subscribers.get_subscribers_for_post("kaspa", 9)] == ["alice", "bob", "carol"]

    def test_custom_threshold_overrides(self, post_subscribers):
        post_subscribers.subscribe("bob", "kaspa", custom_threshold=4)
        assert "bob" in [s.id for s in post_subscribers.get_subscribers_for_post("kaspa", 5)]

    def test_inactive_subscription_excluded(self, post_subscribers):
        post_subscribers.subscribe("carol", "kaspa", active=False)
        assert post_subscribers.get_subscribers_for_post("kaspa", 5) == []

    def test_other_entity_not_included(self, post_subscribers):
        post_subscribers.create_entity("eth", "Ethereum")
        assert post_subscribers.get_subscribers_for_post("eth", 10) == []

    def test_subscriber_fields(self, post_subscribers):
        carol = post_subscribers.get_subscribers_for_post("kaspa", 3)[0]
        assert carol.chat_id == "1003"
        assert carol.threshold == 3


class TestNotifications:

    def test_claim_once(self, db, kaspa):
        db.create_subscriber("alice", "1001")
        post = _insert(db, "kaspa", "Important announcement about the network")

        assert db.claim_notification(post.id, "alice", "kaspa")
        assert not db.claim_notification(post.id, "alice", "kaspa")

    def test_finish(self, db, kaspa):
        db.create_subscriber("alice", "1001")
        post = _insert(db, "kaspa", "Important announcement about the network")
        db.claim_notification(post.id, "alice", "kaspa")

        db.finish_notification(post.id, "alice", sent=True, provider_message_id="42")

        rows = db.get_notifications(post.id)
        assert len(rows) == 1
        assert rows[0]["status"] == "sent"
        assert rows[0]["provider_message_id"] == "42"


# ============================================================================
# Pipeline storage stages
# ============================================================================

class TestDeduplicator:

    def test_filters_stored_texts(self, db, kaspa):
        _insert(db, "kaspa", "Already stored post about kaspa")
        candidates = [
            CandidatePost(text="Already stored post about kaspa", query="Kaspa"),
            CandidatePost(text="A brand new post about kaspa", query="Kaspa"),
        ]

        fresh = Deduplicator(db).filter_new("kaspa", candidates)

        assert [c.text for c in fresh] == ["A brand new post about kaspa"]

    def test_empty(self, db):
        assert Deduplicator(db).filter_new("kaspa", []) == []


class TestPersistenceWriter:

    @pytest.fixture
    def official(self):
        return CandidatePost(text="Official roadmap update for Q1", authorship=Authorship.OFFICIAL,
                             query="from:KaspaCurrency")

    @pytest.fixture
    def community(self):
        return CandidatePost(text="Community meetup in Berlin this week", query="$KAS")

    def test_author_label(self, kaspa, official, community):
        assert author_label(kaspa, official) == "@KaspaCurrency"
        assert author_label(kaspa, community) == "Community"
        no_handle = MonitoredEntity(id="x", name="X")
        assert author_label(no_handle, official) == "Community"

    def test_source_url(self):
        assert source_url("from:KaspaCurrency") == "https://twitter.com/search?q=from%3AKaspaCurrency"
        assert source_url("$KAS") == "https://twitter.com/search?q=%24KAS"

    def test_store(self, db, kaspa, official, fixed_now):
        writer = PersistenceWriter(db, clock=lambda: fixed_now)
        verdict = PostVerdict(index=0, importance_score=8, category="technical", summary="Roadmap update")

        post = writer.store(kaspa, 3, official, verdict)

        assert post.external_id == f"kaspa-{int(fixed_now.timestamp() * 1000)}-3"
        assert post.author == "@KaspaCurrency"
        assert post.category == Category.TECHNICAL
        assert post.summary == "Roadmap update"
        assert post.source_url == "https://twitter.com/search?q=from%3AKaspaCurrency"
        assert post.discovered_at == fixed_now

    def test_store_batch_skips_race_duplicates(self, db, kaspa, official, community, fixed_now):
        _insert(db, "kaspa", community.text)
        writer = PersistenceWriter(db, clock=lambda: fixed_now)
        verdicts = [
            PostVerdict(index=0, importance_score=8, summary="a"),
            PostVerdict(index=1, importance_score=5, summary="b"),
        ]

        stored = writer.store_batch(kaspa, [official, community], verdicts)

        assert [p.text for p in stored] == [official.text]

    def test_store_batch_isolates_failures(self, kaspa, official, community, fixed_now):
        stored_post = Mock()
        db = Mock(spec=Database)
        db.insert_post_if_absent.side_effect = [RuntimeError("disk I/O error"), stored_post]
        writer = PersistenceWriter(db, clock=lambda: fixed_now)
        verdicts = [
            PostVerdict(index=0, importance_score=8, summary="a"),
            PostVerdict(index=1, importance_score=5, summary="b"),
        ]

        stored = writer.store_batch(kaspa, [official, community], verdicts)

        assert stored == [stored_post]
        assert db.insert_post_if_absent.call_count == 2

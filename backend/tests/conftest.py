"""Shared fixtures for the PortAlerts backend tests."""

import pytest
from datetime import datetime, timezone

from database import Database


FIXED_NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def db(tmp_path):
    """Fresh SQLite database per test."""
    database = Database(str(tmp_path / "portalerts-test.sqlite3"))
    database.init()
    return database


@pytest.fixture
def kaspa(db):
    """The entity used throughout the pipeline scenarios."""
    return db.create_entity("kaspa", "Kaspa", symbol="KAS", handle="KaspaCurrency")


@pytest.fixture
def search_page():
    """Build a search results page the way the search frontend renders it."""
    def _build(texts):
        blocks = "".join(
            f'<div class="timeline-item"><div class="tweet-content media-body" dir="auto">{text}</div></div>'
            for text in texts
        )
        return f"<html><body><div class=\"timeline\">{blocks}</div></body></html>"
    return _build

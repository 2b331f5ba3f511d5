"""
Tests for the persistence layer.

Each test runs against a fresh in-memory SQLite database provided by
the ``db`` fixture.
"""

from __future__ import annotations

import pytest

from scholar_agent.backend.citations import EvidenceChunk


def test_report_round_trip_and_delete(db) -> None:
    sources = [EvidenceChunk(uri="https://a.com", title="A"), EvidenceChunk(uri="https://b.com")]
    saved = db.save_report("Quantum sensing", "Body[1][2]", sources, "concise")
    fetched = db.fetch_report(saved["id"])
    assert fetched is not None
    assert fetched["topic"] == "Quantum sensing"
    assert fetched["detail_level"] == "concise"
    # display order is preserved
    assert fetched["sources"] == sources
    assert [r["id"] for r in db.list_reports()] == [saved["id"]]
    assert db.delete_report(saved["id"]) is True
    assert db.fetch_report(saved["id"]) is None
    assert db.delete_report(saved["id"]) is False


def test_list_reports_limit(db) -> None:
    for i in range(3):
        db.save_report(f"Topic {i}", "text", [])
    assert len(db.list_reports()) == 3
    assert len(db.list_reports(limit=2)) == 2


def test_chat_messages_in_order(db) -> None:
    report = db.save_report("Topic", "text", [])
    db.add_chat_message(report["id"], "user", "What is new?")
    db.add_chat_message(report["id"], "model", "This.[1]", [EvidenceChunk(uri="https://c.com")])
    messages = db.list_chat_messages(report["id"])
    assert [m["role"] for m in messages] == ["user", "model"]
    assert messages[1]["sources"] == [EvidenceChunk(uri="https://c.com")]
    with pytest.raises(ValueError):
        db.add_chat_message(report["id"], "system", "nope")


def test_deleting_report_removes_chat(db) -> None:
    report = db.save_report("Topic", "text", [])
    db.add_chat_message(report["id"], "user", "hello")
    db.delete_report(report["id"])
    assert db.list_chat_messages(report["id"]) == []


def test_followed_topics(db) -> None:
    """Defaults are seeded once; blanks and duplicates are rejected."""
    assert db.list_topics() == ["Artificial Intelligence", "Climate Change"]
    assert db.add_topic("  Protein folding ") is True
    assert db.add_topic("Protein folding") is False
    assert db.add_topic("   ") is False
    assert db.list_topics()[-1] == "Protein folding"
    assert db.remove_topic("Climate Change") is True
    assert db.remove_topic("Climate Change") is False
    assert db.list_topics() == ["Artificial Intelligence", "Protein folding"]


def test_feed_snapshots(db) -> None:
    assert db.latest_feed() is None
    db.save_feed("old digest", [], ["AI"])
    db.save_feed("new digest", [EvidenceChunk(uri="https://d.com", title="D")], ["AI", "Climate"])
    latest = db.latest_feed()
    assert latest["content"] == "new digest"
    assert latest["topics"] == ["AI", "Climate"]
    assert latest["sources"][0].title == "D"


def test_postgres_url_is_rewritten(monkeypatch, db) -> None:
    monkeypatch.setenv("DATABASE_URL", "postgres://user:pw@host/db")
    assert db._get_database_url() == "postgresql://user:pw@host/db"


def test_unfollowing_every_topic_stays_empty(db) -> None:
    for name in db.list_topics():
        assert db.remove_topic(name) is True
    assert db.list_topics() == []
    # a later startup does not bring the defaults back
    db.init_db()
    assert db.list_topics() == []

"""
Database module for the ScholarAgent research assistant.

This module encapsulates all persistence logic for the app.  It uses
SQLAlchemy to manage a SQLite or PostgreSQL database that stores the
research reports a user has generated, the chat held about each
report, the topics followed in the research feed and the most recent
feed digest.  Sources are stored as JSON lists of ``{uri, title}``
objects in display-number order, so a report reloaded from the
database renders exactly the citations it was generated with.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, create_engine, inspect
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .citations import EvidenceChunk

logger = logging.getLogger(__name__)

DEFAULT_TOPICS = ['Artificial Intelligence', 'Climate Change']

# SQLAlchemy base class used to declare models
Base = declarative_base()


class Report(Base):
    """ORM model for a generated research report."""

    __tablename__ = 'reports'

    id = Column(String, primary_key=True)
    topic = Column(Text, nullable=False)
    content = Column(Text, nullable=False)
    sources = Column(Text, nullable=True)  # JSON list encoded as text
    detail_level = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class ChatMessage(Base):
    """A single turn of the chat held about a report."""

    __tablename__ = 'chat_messages'

    id = Column(Integer, primary_key=True, autoincrement=True)
    report_id = Column(String, ForeignKey('reports.id', ondelete='CASCADE'), nullable=False, index=True)
    role = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    sources = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class FollowedTopic(Base):
    __tablename__ = 'followed_topics'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class FeedSnapshot(Base):
    __tablename__ = 'feed_snapshots'

    id = Column(Integer, primary_key=True, autoincrement=True)
    content = Column(Text, nullable=False)
    sources = Column(Text, nullable=True)
    topics = Column(Text, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)


def _get_database_url() -> str:
    """Resolve the database URL from environment variables.

    A DATABASE_URL environment variable overrides the default local
    SQLite file.  ``postgres://`` URLs are rewritten to
    ``postgresql://`` because SQLAlchemy does not recognise the former
    scheme.
    """
    url = os.getenv('DATABASE_URL')
    if url:
        if url.startswith('postgres://'):
            url = url.replace('postgres://', 'postgresql://', 1)
        logger.info(f"Using database URL from environment: {url}")
        return url
    default_path = os.path.join(os.path.dirname(os.path.dirname(__file__)), 'scholar_agent.db')
    logger.info(f"Using local SQLite database at {default_path}")
    return f"sqlite:///{default_path}"


# StaticPool is used for SQLite to allow sharing connections across
# threads when running tests or the UI.
DATABASE_URL = _get_database_url()
if DATABASE_URL.startswith('sqlite'):
    engine = create_engine(
        DATABASE_URL,
        connect_args={'check_same_thread': False},
        poolclass=StaticPool
    )
else:
    engine = create_engine(DATABASE_URL, pool_pre_ping=True)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


def init_db() -> None:
    """Create all tables if they do not exist yet.

    The default followed topics are added only when the topics table is
    created, so a user who unfollows everything keeps an empty list.
    """
    seed_topics = not inspect(engine).has_table(FollowedTopic.__tablename__)
    Base.metadata.create_all(bind=engine)
    if seed_topics:
        with get_db() as session:
            for name in DEFAULT_TOPICS:
                session.add(FollowedTopic(name=name, created_at=datetime.utcnow()))
        logger.info(f"Seeded default topics: {', '.join(DEFAULT_TOPICS)}")
    logger.info("Database initialised (tables created if missing)")


@contextmanager
def get_db() -> Any:
    """Provide a transactional scope for database operations.

    This helper yields a SQLAlchemy session and ensures that it is
    properly committed or rolled back.  Sessions are always closed
    after use.
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def _dump_sources(sources: Sequence[EvidenceChunk]) -> str:
    return json.dumps([s.to_dict() for s in sources])


def _load_sources(raw: Optional[str]) -> List[EvidenceChunk]:
    if not raw:
        return []
    return [EvidenceChunk(uri=s.get('uri'), title=s.get('title')) for s in json.loads(raw)]


def _report_dict(report: Report) -> Dict[str, Any]:
    return {
        'id': report.id,
        'topic': report.topic,
        'content': report.content,
        'sources': _load_sources(report.sources),
        'detail_level': report.detail_level,
        'created_at': report.created_at,
    }


def save_report(
    topic: str,
    content: str,
    sources: Sequence[EvidenceChunk],
    detail_level: str = 'detailed',
) -> Dict[str, Any]:
    """Persist a newly generated report and return it as a dictionary."""
    report_id = str(uuid.uuid4())
    with get_db() as session:
        report = Report(
            id=report_id,
            topic=topic,
            content=content,
            sources=_dump_sources(sources),
            detail_level=detail_level,
            created_at=datetime.utcnow(),
        )
        session.add(report)
        session.flush()
        logger.info(f"Saved report {report_id} on {topic!r} with {len(sources)} sources")
        return _report_dict(report)


def list_reports(limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Return stored reports, newest first."""
    with get_db() as session:
        query = session.query(Report).order_by(Report.created_at.desc())
        if limit:
            query = query.limit(limit)
        return [_report_dict(r) for r in query]


def fetch_report(report_id: str) -> Optional[Dict[str, Any]]:
    """Retrieve a single report by its ID, or ``None`` if unknown."""
    with get_db() as session:
        report = session.query(Report).filter(Report.id == report_id).first()
        if not report:
            return None
        return _report_dict(report)


def delete_report(report_id: str) -> bool:
    """Delete a report and its chat history.  Returns ``False`` if unknown."""
    with get_db() as session:
        report = session.query(Report).filter(Report.id == report_id).first()
        if not report:
            return False
        session.query(ChatMessage).filter(ChatMessage.report_id == report_id).delete()
        session.delete(report)
        logger.info(f"Deleted report {report_id}")
        return True


def add_chat_message(
    report_id: str,
    role: str,
    content: str,
    sources: Sequence[EvidenceChunk] = (),
) -> Dict[str, Any]:
    """Append a chat turn to the conversation about a report."""
    if role not in ('user', 'model'):
        raise ValueError(f"Unknown chat role: {role}")
    with get_db() as session:
        message = ChatMessage(
            report_id=report_id,
            role=role,
            content=content,
            sources=_dump_sources(sources),
            created_at=datetime.utcnow(),
        )
        session.add(message)
        session.flush()
        return {
            'id': message.id,
            'role': message.role,
            'content': message.content,
            'sources': list(sources),
            'created_at': message.created_at,
        }


def list_chat_messages(report_id: str) -> List[Dict[str, Any]]:
    """Return the chat about a report in chronological order."""
    with get_db() as session:
        query = (
            session.query(ChatMessage)
            .filter(ChatMessage.report_id == report_id)
            .order_by(ChatMessage.id.asc())
        )
        return [
            {
                'id': m.id,
                'role': m.role,
                'content': m.content,
                'sources': _load_sources(m.sources),
                'created_at': m.created_at,
            }
            for m in query
        ]


def list_topics() -> List[str]:
    """Return the followed topics in the order they were added."""
    with get_db() as session:
        query = session.query(FollowedTopic).order_by(FollowedTopic.id.asc())
        return [t.name for t in query]


def add_topic(name: str) -> bool:
    """Follow a new topic.

    Returns ``False`` for blank names and for topics already followed.
    """
    name = (name or '').strip()
    if not name:
        return False
    if name in list_topics():
        return False
    with get_db() as session:
        session.add(FollowedTopic(name=name, created_at=datetime.utcnow()))
    logger.info(f"Now following topic {name!r}")
    return True


def remove_topic(name: str) -> bool:
    """Stop following a topic.  Returns ``False`` if it was not followed."""
    with get_db() as session:
        deleted = session.query(FollowedTopic).filter(FollowedTopic.name == name).delete()
        return bool(deleted)


def save_feed(content: str, sources: Sequence[EvidenceChunk], topics: Sequence[str]) -> Dict[str, Any]:
    """Store the latest feed digest."""
    with get_db() as session:
        snapshot = FeedSnapshot(
            content=content,
            sources=_dump_sources(sources),
            topics=json.dumps(list(topics)),
            updated_at=datetime.utcnow(),
        )
        session.add(snapshot)
        session.flush()
        return {
            'content': snapshot.content,
            'sources': list(sources),
            'topics': list(topics),
            'updated_at': snapshot.updated_at,
        }


def latest_feed() -> Optional[Dict[str, Any]]:
    """Return the most recent feed digest, if any."""
    with get_db() as session:
        snapshot = (
            session.query(FeedSnapshot)
            .order_by(FeedSnapshot.updated_at.desc(), FeedSnapshot.id.desc())
            .first()
        )
        if not snapshot:
            return None
        return {
            'content': snapshot.content,
            'sources': _load_sources(snapshot.sources),
            'topics': json.loads(snapshot.topics) if snapshot.topics else [],
            'updated_at': snapshot.updated_at,
        }

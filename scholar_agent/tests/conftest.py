"""Shared fixtures: an isolated in-memory database per test."""

from __future__ import annotations

import importlib

import pytest


@pytest.fixture()
def db(monkeypatch):
    """Reload the database module against a fresh in-memory SQLite."""
    monkeypatch.setenv("DATABASE_URL", "sqlite:///:memory:")
    from scholar_agent.backend import database

    importlib.reload(database)
    database.init_db()
    return database

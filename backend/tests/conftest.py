"""Shared fixtures for Discovery Analyzer tests."""

import os
import sys
from datetime import datetime, timezone

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from services.cycle_cache import Database
from services.jira_history import InMemoryHistoryProvider
from services.models import FIELD_HEALTH, FIELD_STATUS, StatusTransition, WorkItem


def at(day, hour=12):
    """UTC timestamp from an ISO date string."""
    return datetime.fromisoformat(day).replace(hour=hour, tzinfo=timezone.utc)


def status_change(day, to_value, from_value=None, hour=12):
    return StatusTransition(at(day, hour), FIELD_STATUS, from_value, to_value)


def health_change(day, to_value, from_value=None, hour=12):
    return StatusTransition(at(day, hour), FIELD_HEALTH, from_value, to_value)


@pytest.fixture
def mock_jira_credentials():
    """Mock Jira credentials for testing."""
    return {
        "server": "https://test.atlassian.net",
        "email": "test@example.com",
        "token": "test-token-123"
    }


@pytest.fixture
def sample_items():
    """Issues covering the main discovery paths."""
    return [
        WorkItem("HT-1", "06 Build", health="On Track", assignee="Alice",
                 complexity="Simple", created=at("2025-01-02")),
        WorkItem("HT-2", "04 Problem Discovery", health="At Risk", assignee="Alice",
                 complexity="Complex", created=at("2025-01-05")),
        WorkItem("HT-3", "08 Live", health="Complete", assignee="Bob",
                 complexity="Standard", created=at("2024-10-01")),
        WorkItem("HT-4", "01 Inbox", assignee="Bob", created=at("2025-03-01")),
        WorkItem("HT-5", "05 Solution Discovery", health="On Hold", assignee="Bob",
                 created=at("2025-01-20")),
    ]


@pytest.fixture
def sample_logs():
    """Transition logs for sample_items, oldest first."""
    return {
        "HT-1": [
            status_change("2025-01-02", "01 Inbox"),
            status_change("2025-01-10", "04 Problem Discovery", "01 Inbox"),
            health_change("2025-01-10", "On Track"),
            status_change("2025-02-15", "06 Build", "04 Problem Discovery"),
        ],
        "HT-2": [
            status_change("2025-01-06", "02 Generative Discovery", "01 Inbox"),
            status_change("2025-02-01", "04 Problem Discovery", "02 Generative Discovery"),
            health_change("2025-02-10", "At Risk", "On Track"),
        ],
        "HT-3": [
            status_change("2024-10-05", "05 Solution Discovery", "01 Inbox"),
            status_change("2024-11-04", "07 Beta", "05 Solution Discovery"),
            status_change("2024-12-01", "08 Live", "07 Beta"),
        ],
        "HT-5": [
            status_change("2025-01-21", "05 Solution Discovery", "01 Inbox"),
            health_change("2025-02-01", "On Hold", "On Track"),
        ],
    }


@pytest.fixture
def history_provider(sample_items, sample_logs):
    return InMemoryHistoryProvider(sample_items, sample_logs)


@pytest.fixture
def db(tmp_path):
    """Fresh SQLite database per test."""
    database = Database(tmp_path / "discovery.db")
    yield database
    database.close()


@pytest.fixture
def app(tmp_path, history_provider):
    """Create Flask test app backed by in-memory history."""
    from app import create_app
    app = create_app({
        "TESTING": True,
        "HISTORY_PROVIDER": history_provider,
        "DISCOVERY_DB_PATH": str(tmp_path / "app.db"),
        "DISCOVERY_RATE_LIMIT_SECONDS": 0,
        "TEAM_CONFIG_PATH": str(tmp_path / "missing-team-config.json"),
        "TEAM_MEMBERS": ["Alice", "Bob"],
    })
    yield app
    app.extensions["discovery_db"].close()


@pytest.fixture
def client(app):
    """Create Flask test client."""
    return app.test_client()

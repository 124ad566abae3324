"""Shared fixtures for KPI dashboard tests."""

import os
import sys
from datetime import datetime
from unittest.mock import Mock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from kpi.config import Settings
from kpi.entities import Board, BoardConfiguration, SearchResult, Sprint, TimeEntry, WorkItem
from kpi.mappers import JiraMapper
from kpi.values import Author, Duration


def make_item(key, status="To Do", category_key=None, **kwargs):
    """WorkItem classified the way the mapper would classify it."""
    from kpi.classification import classify
    classification = classify(status, category_key)
    return WorkItem(
        key=key,
        status=status,
        status_category=classification.category,
        status_category_key=classification.category_key,
        **kwargs
    )


def make_entry(author_id, hours, day, item_key="PROJ-1", **kwargs):
    """TimeEntry of `hours` logged at 09:00 on `day` (YYYY-MM-DD)."""
    return TimeEntry(
        id=kwargs.pop("id", f"{author_id}-{item_key}-{day}-{hours}"),
        item_key=item_key,
        author=Author(author_id, kwargs.pop("display_name", author_id.upper())),
        time_spent=Duration.from_hours(hours),
        started=datetime.strptime(day, "%Y-%m-%d").replace(hour=9),
        **kwargs
    )


@pytest.fixture
def mock_jira_credentials():
    """Mock Jira credentials for testing."""
    return {
        "server": "https://test.atlassian.net",
        "email": "test@example.com",
        "token": "test-token-123"
    }


@pytest.fixture
def settings(mock_jira_credentials):
    """Settings with two configured boards."""
    return Settings(
        jira_url=mock_jira_credentials["server"],
        jira_email=mock_jira_credentials["email"],
        jira_token=mock_jira_credentials["token"],
        board_ids=(1, 2),
    )


@pytest.fixture
def sample_sprint():
    """Sample sprint data as returned by the agile API."""
    return {
        "id": 100,
        "name": "Sprint 1",
        "state": "closed",
        "startDate": "2024-01-01T00:00:00.000Z",
        "endDate": "2024-01-14T00:00:00.000Z",
        "completeDate": "2024-01-15T09:00:00.000Z",
        "goal": "Complete feature X"
    }


@pytest.fixture
def sample_issue_completed():
    """Sample completed story with story points and effort fields."""
    return {
        "key": "PROJ-123",
        "fields": {
            "summary": "Implement feature X",
            "issuetype": {"name": "Story", "subtask": False},
            "status": {"name": "Terminé", "statusCategory": {"key": "done", "name": "Done"}},
            "created": "2024-01-02T10:00:00.000+0000",
            "updated": "2024-01-10T15:30:00.000+0000",
            "resolutiondate": "2024-01-10T15:30:00.000+0000",
            "timeoriginalestimate": 28800,
            "timespent": 14400,
            "aggregatetimeoriginalestimate": 36000,
            "aggregatetimespent": 18000,
            "customfield_10535": 5.0,
            "customfield_10001": {"id": "t1", "name": "Team Alpha"},
            "subtasks": [{"key": "PROJ-127"}],
            "parent": {"key": "PROJ-50"},
            "assignee": {"displayName": "Alice Martin"},
            "labels": ["frontend"]
        }
    }


@pytest.fixture
def sample_issue_incomplete():
    """Sample in-progress bug using the story point estimate field."""
    return {
        "key": "PROJ-124",
        "fields": {
            "summary": "Fix bug Y",
            "issuetype": {"name": "Bug", "subtask": False},
            "status": {"name": "En cours", "statusCategory": {"key": "indeterminate"}},
            "created": "2024-01-05T10:00:00.000+0000",
            "resolutiondate": None,
            "customfield_10016": 3.0
        }
    }


@pytest.fixture
def sample_worklog():
    """Sample worklog with an ADF comment."""
    return {
        "id": "10001",
        "author": {
            "accountId": "acc-1",
            "displayName": "Alice Martin",
            "avatarUrls": {"48x48": "https://example.com/alice.png"}
        },
        "timeSpentSeconds": 7200,
        "started": "2024-01-03T09:30:00.000+0100",
        "comment": {
            "type": "doc",
            "content": [
                {"type": "paragraph", "content": [{"type": "text", "text": "Code review"}]}
            ]
        }
    }


@pytest.fixture
def repository(settings):
    """Mock repository exposing the real mapper and settings."""
    repo = Mock()
    repo.settings = settings
    repo.mapper = JiraMapper(settings.fields)
    repo.get_board.side_effect = lambda board_id: Board(board_id, f"Team {board_id}", "PROJ")
    repo.get_board_configuration.side_effect = lambda board_id: BoardConfiguration(board_id, None)
    repo.search_items.return_value = SearchResult((), 0)
    return repo


@pytest.fixture
def service(repository, settings):
    """KpiService over the mock repository."""
    from kpi.cache import TimedCache
    from kpi.service import KpiService
    return KpiService(repository, settings, TimedCache())


@pytest.fixture
def app(service):
    """Create Flask test app."""
    from app import create_app
    app = create_app(service=service)
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(app):
    """Create Flask test client."""
    return app.test_client()


@pytest.fixture
def closed_sprints():
    """Three closed sprints, most recent first."""
    return (
        Sprint(103, "Sprint 4", "closed", 1, datetime(2024, 2, 12), datetime(2024, 2, 25)),
        Sprint(102, "Sprint 3", "closed", 1, datetime(2024, 1, 29), datetime(2024, 2, 11)),
        Sprint(101, "Sprint 2", "closed", 1, datetime(2024, 1, 15), datetime(2024, 1, 28)),
    )

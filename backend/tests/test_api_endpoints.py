"""Tests for API endpoints."""

import json
from datetime import datetime
from unittest.mock import patch

from conftest import make_entry, make_item
from kpi.entities import SearchResult, Sprint
from kpi.errors import JiraRequestError


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert json.loads(response.data) == {"status": "ok"}


class TestBoards:
    """Test board endpoints."""

    def test_list_boards(self, client):
        response = client.get("/api/boards")
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["data"] == [
            {"id": 1, "name": "Team 1", "projectKey": "PROJ"},
            {"id": 2, "name": "Team 2", "projectKey": "PROJ"},
        ]

    def test_sprints(self, client, repository):
        repository.get_sprints_for_board.return_value = (
            Sprint(100, "Sprint 1", "closed", 1, datetime(2024, 1, 1), datetime(2024, 1, 14)),
        )
        response = client.get("/api/boards/1/sprints?state=closed")

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["data"][0]["name"] == "Sprint 1"
        assert data["data"][0]["startDate"] == "2024-01-01T00:00:00"
        repository.get_sprints_for_board.assert_called_with(1, "closed")

    def test_unknown_board_is_400(self, client):
        response = client.get("/api/boards/99/sprints")
        assert response.status_code == 400
        assert "Unknown board" in json.loads(response.data)["error"]


class TestMetrics:
    """Test metrics endpoints."""

    def test_worklog_metrics(self, client, repository):
        repository.search_worklogs.return_value = (
            make_entry("a", 2, "2024-01-01"),
            make_entry("b", 3, "2024-01-01"),
        )
        response = client.get("/api/metrics/worklogs?from=2024-01-01&to=2024-01-31&project=PROJ")

        assert response.status_code == 200
        data = json.loads(response.data)["data"]
        assert data["totalTimeSpentHours"] == 5
        assert data["uniqueUsers"] == 2
        assert "worklogs" not in data
        query = repository.search_worklogs.call_args[0][0]
        assert query.project_key == "PROJ"

    def test_worklog_metrics_bad_range(self, client):
        response = client.get("/api/metrics/worklogs?from=2024-02-01&to=2024-01-01")
        assert response.status_code == 400

    def test_velocity_bad_sprint_count(self, client):
        response = client.get("/api/metrics/boards/1/velocity?sprint_count=abc")
        assert response.status_code == 400

    def test_hierarchy(self, client, repository):
        repository.search_items.side_effect = lambda query, fields=None, page_size=100: (
            SearchResult((make_item("PROJ-1", item_type="Epic"),), 1)
            if query.startswith("key =") else SearchResult((), 0)
        )
        response = client.get("/api/metrics/hierarchy/PROJ-1")

        assert response.status_code == 200
        assert json.loads(response.data)["data"] == {
            "estimate": 0, "spent": 0, "storyPoints": 0, "progressPercent": 0, "overrun": False
        }

    def test_hierarchy_missing_issue(self, client):
        response = client.get("/api/metrics/hierarchy/PROJ-404")
        assert response.status_code == 400

    def test_resolved_by_day(self, client):
        response = client.get("/api/metrics/resolved-by-day?from=2024-01-01&to=2024-01-02")
        assert response.status_code == 200
        data = json.loads(response.data)["data"]
        assert len(data["byDay"]) == 2
        assert [b["id"] for b in data["boards"]] == [1, 2, 0]

    def test_resolved_by_day_without_dates_or_sprint(self, client, repository):
        repository.get_sprints_for_board.return_value = ()
        repository.find_closed_sprints.return_value = ()
        response = client.get("/api/metrics/resolved-by-day")
        assert response.status_code == 400

    def test_support(self, client, repository):
        repository.search_items.return_value = SearchResult((make_item("SB-1", ponderation=12),), 1)
        repository.find_backlog_issues.return_value = ()

        response = client.get("/api/metrics/support")

        assert response.status_code == 200
        data = json.loads(response.data)["data"]
        assert data["ponderationByLevel"]["medium"] == {"count": 1, "total": 12}

    def test_jira_down_is_502(self, client, repository):
        repository.search_worklogs.side_effect = JiraRequestError("/rest/api/3/search/jql", "timeout")
        response = client.get("/api/metrics/worklogs")
        assert response.status_code == 502
        assert "error" in json.loads(response.data)

    def test_unexpected_error_is_500(self, client, repository):
        repository.search_worklogs.side_effect = RuntimeError("bug")
        response = client.get("/api/metrics/worklogs")
        assert response.status_code == 500


class TestCache:
    """Test cache endpoints."""

    def test_clear(self, client, service):
        service.cache.set("board:id:1", 1)
        response = client.post("/api/cache/clear")
        assert response.status_code == 200
        assert json.loads(response.data)["data"]["removed"] == 1

    def test_invalidate(self, client, service):
        service.cache.set("worklog:issue:A-1", 1)
        service.cache.set("board:id:1", 1)
        response = client.post("/api/cache/invalidate", json={"prefix": "worklog:"})
        assert json.loads(response.data)["data"] == {"prefix": "worklog:", "removed": 1}

    def test_invalidate_without_prefix(self, client):
        response = client.post("/api/cache/invalidate", json={})
        assert response.status_code == 400


class TestCreateApp:

    @patch("app.JiraClient")
    def test_builds_service_from_settings(self, mock_client, settings):
        from app import create_app
        app = create_app(settings=settings)
        service = app.extensions["kpi"]
        assert service.settings.board_ids == (1, 2)
        mock_client.assert_called_once_with(settings.jira_url, settings.jira_email, settings.jira_token)
        service.cache.stop_sweeper()

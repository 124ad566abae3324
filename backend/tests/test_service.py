"""Tests for KpiService orchestration."""

from datetime import datetime

import pytest

from conftest import make_entry, make_item
from kpi.entities import Board, BoardConfiguration, SearchResult, Sprint
from kpi.errors import InvalidDateRangeError, InvalidInputError, SourceUnavailableError, UnknownBoardError
from kpi.repository import WorklogQuery


def result(*items):
    return SearchResult(tuple(items), len(items))


def _raise(error):
    raise error


ACTIVE = Sprint(200, "Sprint 9", "active", 1, datetime(2024, 3, 4), datetime(2024, 3, 15))


class TestWorklogs:

    def test_worklog_metrics(self, service, repository):
        repository.search_worklogs.return_value = (
            make_entry("a", 2, "2024-01-01"),
            make_entry("b", 3, "2024-01-01"),
        )
        metrics = service.worklog_metrics(WorklogQuery(start="2024-01-01", end="2024-01-31"))
        assert metrics.total_time_spent_hours == 5

    def test_reversed_dates_rejected_before_fetch(self, service, repository):
        with pytest.raises(InvalidDateRangeError):
            service.worklog_metrics(WorklogQuery(start="2024-02-01", end="2024-01-01"))
        repository.search_worklogs.assert_not_called()


class TestBoards:

    def test_configured_boards(self, service):
        assert [b.name for b in service.configured_boards()] == ["Team 1", "Team 2"]

    def test_unreadable_board_gets_placeholder(self, service, repository):
        repository.get_board.side_effect = lambda board_id: (
            Board(1, "Team 1", "PROJ") if board_id == 1 else _raise(SourceUnavailableError("down"))
        )
        assert [b.to_dict() for b in service.configured_boards()] == [
            {"id": 1, "name": "Team 1", "projectKey": "PROJ"},
            {"id": 2, "name": "Board 2", "projectKey": None},
        ]

    def test_unknown_board(self, service):
        with pytest.raises(UnknownBoardError):
            service.velocity_history(99)

    def test_invalid_sprint_state(self, service):
        with pytest.raises(InvalidInputError):
            service.board_sprints(1, "archived")

    def test_active_sprint_range(self, service, repository):
        repository.get_sprints_for_board.return_value = (ACTIVE,)
        assert service.active_sprint_range() == {
            "from": "2024-03-04", "to": "2024-03-15", "sprintName": "Sprint 9", "boardId": 1
        }

    def test_active_sprint_range_falls_back_to_closed(self, service, repository, closed_sprints):
        repository.get_sprints_for_board.return_value = ()
        repository.find_closed_sprints.return_value = closed_sprints[:1]
        assert service.active_sprint_range()["sprintName"] == "Sprint 4"

    def test_no_sprint_at_all(self, service, repository):
        repository.get_sprints_for_board.return_value = ()
        repository.find_closed_sprints.return_value = ()
        assert service.active_sprint_range() is None


class TestSprintIssues:

    def test_board_sprint_with_backlog_and_time(self, service, repository):
        repository.get_sprints_for_board.return_value = (ACTIVE,)
        repository.find_board_sprint_issues.return_value = (
            make_item("PROJ-1", "Done", story_points=3),
            make_item("PROJ-2", "En cours", story_points=2),
            make_item("PROJ-1", "Done", story_points=3),
        )
        repository.find_backlog_issues.return_value = (make_item("PROJ-9", story_points=8),)
        repository.fetch_worklogs.side_effect = lambda key: (
            (make_entry("a", 1, "2024-03-05", item_key=key),) if key == "PROJ-1" else ()
        )

        data = service.sprint_issues_for_board(1).to_dict()

        assert [i["issueKey"] for i in data["issues"]] == ["PROJ-1", "PROJ-2"]
        assert data["statusCounts"]["resolved"] == 1
        assert data["totalStoryPoints"] == 5
        assert data["totalTimeSeconds"] == 3600
        assert data["backlog"] == {"ticketCount": 1, "storyPoints": 8}
        repository.find_sprint_issues.assert_not_called()

    def test_board_filter_empty_uses_sprint_issues(self, service, repository):
        repository.get_sprints_for_board.return_value = (ACTIVE,)
        repository.find_board_sprint_issues.return_value = ()
        repository.find_sprint_issues.return_value = (make_item("PROJ-1", "Done"),)
        repository.find_backlog_issues.return_value = ()
        repository.fetch_worklogs.return_value = ()

        view = service.sprint_issues_for_board(1)
        assert [i.key for i in view.items] == ["PROJ-1"]

    def test_failed_worklogs_count_zero(self, service, repository):
        repository.get_sprints_for_board.return_value = (ACTIVE,)
        repository.find_board_sprint_issues.return_value = (make_item("PROJ-1"),)
        repository.find_backlog_issues.return_value = ()
        repository.fetch_worklogs.side_effect = SourceUnavailableError("down")

        assert service.sprint_issues_for_board(1).total_time_seconds == 0

    def test_no_sprint_gives_empty_view(self, service, repository):
        repository.get_sprints_for_board.return_value = ()
        repository.find_closed_sprints.return_value = ()
        data = service.sprint_issues_for_board(1).to_dict()
        assert data["issues"] == []
        assert data["statusCounts"]["total"] == 0

    def test_date_window_uses_board_filter(self, service, repository):
        repository.get_board_configuration.side_effect = lambda board_id: BoardConfiguration(board_id, 10)
        repository.get_saved_filter_query.return_value = "project = PROJ ORDER BY Rank"
        repository.search_items.return_value = result(make_item("PROJ-1", "Done"))
        repository.find_backlog_issues.return_value = ()
        repository.fetch_worklogs.return_value = ()

        view = service.sprint_issues_for_board(1, "2024-01-01", "2024-01-31")

        query = repository.search_items.call_args[0][0]
        assert query == (
            '(project = PROJ) AND updated >= "2024-01-01" AND updated <= "2024-01-31 23:59" ORDER BY Rank'
        )
        assert view.metrics.status_counts.resolved == 1

    def test_date_window_failure_gives_empty_view(self, service, repository):
        repository.search_items.side_effect = SourceUnavailableError("down")
        view = service.sprint_issues_for_board(1, "2024-01-01", "2024-01-31")
        assert view.items == ()

    def test_date_window_needs_both_bounds(self, service):
        with pytest.raises(InvalidInputError):
            service.sprint_issues_for_board(1, "2024-01-01", None)

    def test_project_sprint(self, service, repository):
        repository.find_open_sprint_issues.return_value = (make_item("PROJ-1", "En cours", story_points=2),)
        repository.find_backlog_issues.return_value = (make_item("PROJ-2"), make_item("PROJ-3", story_points=1))

        data = service.sprint_issues_for_project("PROJ").to_dict()
        assert data["statusCounts"]["inProgress"] == 1
        assert data["backlog"] == {"ticketCount": 2, "storyPoints": 1}


class TestVelocityHistory:

    def test_oldest_first_with_average_and_trend(self, service, repository, closed_sprints):
        repository.find_closed_sprints.return_value = closed_sprints
        completed_by_sprint = {101: 5, 102: 8, 103: 10}

        def issues(board_id, sprint_id):
            return (
                make_item(f"P-{sprint_id}-1", "Done", story_points=completed_by_sprint[sprint_id]),
                make_item(f"P-{sprint_id}-2", "En cours", story_points=2),
            )

        repository.find_board_sprint_issues.side_effect = issues
        data = service.velocity_history(1, 3).to_dict()

        assert [s["name"] for s in data["sprints"]] == ["Sprint 2", "Sprint 3", "Sprint 4"]
        assert data["sprints"][0]["committed"] == 7
        assert data["sprints"][0]["completed"] == 5
        assert data["averageVelocity"] == 7.7
        assert data["trend"] == "increasing"
        repository.find_closed_sprints.assert_called_with(1, 3)

    def test_sprint_count_bounds(self, service):
        with pytest.raises(InvalidInputError):
            service.velocity_history(1, 0)


class TestSupportKpi:

    def test_open_sprint_query(self, service, repository):
        repository.search_items.return_value = result(make_item("SB-1", ponderation=5))
        repository.find_backlog_issues.return_value = ()

        metrics = service.support_kpi()

        assert repository.search_items.call_args[0][0] == 'project = "SB" AND Sprint in openSprints()'
        repository.find_backlog_issues.assert_called_with("SB")
        assert metrics.total_ponderation == 5

    def test_created_window_query(self, service, repository):
        repository.find_backlog_issues.return_value = ()
        service.support_kpi("2024-01-01", "2024-01-31", active_sprint=False)
        assert repository.search_items.call_args[0][0] == (
            'project = "SB" AND created >= "2024-01-01" AND created <= "2024-01-31 23:59"'
        )

    def test_unreadable_support_board(self, service, repository):
        repository.search_items.side_effect = SourceUnavailableError("down")
        repository.find_backlog_issues.return_value = ()
        with pytest.raises(SourceUnavailableError):
            service.support_kpi()


class TestCacheMaintenance:

    def test_resync_clears_cache(self, service):
        service.cache.set("worklog:issue:A-1", 1)
        service.cache.set("board:id:1", 2)
        assert service.resync() == 2

    def test_invalidate_needs_prefix(self, service):
        with pytest.raises(InvalidInputError):
            service.invalidate("")

    def test_invalidate(self, service):
        service.cache.set("worklog:issue:A-1", 1)
        service.cache.set("board:id:1", 2)
        assert service.invalidate("worklog:") == 1

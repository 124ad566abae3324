"""Tests for WorklogMetricsCalculator."""

import pytest

from conftest import make_entry
from kpi.worklog_metrics import WorklogMetrics, WorklogMetricsCalculator


@pytest.fixture
def calculator():
    return WorklogMetricsCalculator()


class TestCalculate:
    """Test totals and unique counts."""

    def test_empty_input_gives_empty_metrics(self, calculator):
        metrics = calculator.calculate([])
        assert metrics == WorklogMetrics.empty()
        assert metrics.to_dict()["byUser"] == []
        assert metrics.total_time_spent_hours == 0

    def test_two_authors_same_day(self, calculator):
        metrics = calculator.calculate([
            make_entry("a", 2, "2024-01-01"),
            make_entry("b", 3, "2024-01-01"),
        ])

        assert metrics.total_time_spent_hours == 5
        assert metrics.unique_users == 2
        assert [d.to_dict() for d in metrics.by_day] == [
            {"date": "2024-01-01", "totalHours": 5, "worklogCount": 2, "userCount": 2}
        ]

    def test_billable_split(self, calculator):
        metrics = calculator.calculate([
            make_entry("a", 2, "2024-01-01"),
            make_entry("a", 1, "2024-01-02").mark_non_billable(),
        ])
        assert metrics.billable_hours == 2
        assert metrics.non_billable_hours == 1

    def test_average_time_per_worklog(self, calculator):
        metrics = calculator.calculate([
            make_entry("a", 1, "2024-01-01"),
            make_entry("a", 2, "2024-01-02"),
        ])
        assert metrics.average_time_per_worklog.seconds == 5400
        assert metrics.to_dict()["averageTimePerWorklog"] == "1h 30m"

    def test_unique_issues_and_projects(self, calculator):
        metrics = calculator.calculate([
            make_entry("a", 1, "2024-01-01", item_key="ABC-1"),
            make_entry("a", 1, "2024-01-01", item_key="ABC-2"),
            make_entry("b", 1, "2024-01-01", item_key="XYZ-9"),
        ])
        assert metrics.unique_issues == 3
        assert metrics.unique_projects == 2

    def test_user_hours_add_up_to_total(self, calculator):
        entries = [
            make_entry("a", 1.5, "2024-01-01"),
            make_entry("b", 2.25, "2024-01-02"),
            make_entry("c", 0.75, "2024-01-02"),
            make_entry("a", 4, "2024-01-03"),
        ]
        metrics = calculator.calculate(entries)
        assert sum(u.total_hours for u in metrics.by_user) == pytest.approx(metrics.total_time_spent_hours)


class TestGroupings:
    """Test group-by views and their ordering."""

    def test_by_user_sorted_by_hours_desc(self, calculator):
        metrics = calculator.calculate([
            make_entry("a", 1, "2024-01-01"),
            make_entry("b", 3, "2024-01-01"),
            make_entry("b", 1, "2024-01-02", item_key="PROJ-2"),
        ])
        assert [u.account_id for u in metrics.by_user] == ["b", "a"]
        assert metrics.by_user[0].issue_count == 2
        assert metrics.by_user[0].display_name == "B"

    def test_by_project_uses_key_prefix(self, calculator):
        metrics = calculator.calculate([
            make_entry("a", 1, "2024-01-01", item_key="ABC-1"),
            make_entry("a", 2, "2024-01-01", item_key="XYZ-1"),
            make_entry("a", 2, "2024-01-01", item_key="XYZ-2"),
        ])
        assert [(p.project_key, p.total_hours) for p in metrics.by_project] == [("XYZ", 4), ("ABC", 1)]

    def test_key_without_separator_is_its_own_project(self, calculator):
        metrics = calculator.calculate([make_entry("a", 1, "2024-01-01", item_key="LEGACY")])
        assert metrics.by_project[0].project_key == "LEGACY"

    def test_by_day_sorted_ascending(self, calculator):
        metrics = calculator.calculate([
            make_entry("a", 5, "2024-01-03"),
            make_entry("a", 1, "2024-01-01"),
            make_entry("a", 2, "2024-01-02"),
        ])
        assert [d.date for d in metrics.by_day] == ["2024-01-01", "2024-01-02", "2024-01-03"]

    def test_by_issue_type_defaults_to_unknown(self, calculator):
        metrics = calculator.calculate([
            make_entry("a", 1, "2024-01-01", item_type="Bug"),
            make_entry("a", 2, "2024-01-01", item_key="PROJ-2"),
        ])
        assert [t.issue_type for t in metrics.by_issue_type] == ["Unknown", "Bug"]

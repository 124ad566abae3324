"""Tests for SprintMetricsCalculator."""

import pytest

from conftest import make_item
from kpi.sprint_metrics import SprintMetricsCalculator


@pytest.fixture
def calculator():
    return SprintMetricsCalculator()


class TestCalculate:
    """Test the four-bucket histogram."""

    def test_keyword_fallback_histogram(self, calculator):
        metrics = calculator.calculate([
            make_item("P-1", "Done"),
            make_item("P-2", "En cours"),
            make_item("P-3", "QA Testing"),
        ])
        assert metrics.status_counts.to_dict() == {
            "total": 3, "todo": 0, "inProgress": 1, "qa": 1, "resolved": 1
        }

    def test_story_points_per_bucket(self, calculator):
        metrics = calculator.calculate([
            make_item("P-1", "Done", story_points=5),
            make_item("P-2", "To Do", story_points=3),
            make_item("P-3", "To Do"),
        ])
        assert metrics.story_points_by_status.resolved == 5
        assert metrics.story_points_by_status.todo == 3
        assert metrics.total_story_points == 8

    def test_unknown_counts_only_in_total(self, calculator):
        metrics = calculator.calculate([
            make_item("P-1", "Blocked", story_points=2),
            make_item("P-2", "Done", story_points=1),
        ])
        counts = metrics.status_counts
        assert counts.total == 2
        assert counts.todo + counts.in_progress + counts.qa + counts.resolved == 1
        points = metrics.story_points_by_status
        assert points.todo + points.in_progress + points.qa + points.resolved < points.total

    def test_completion_rate(self, calculator):
        metrics = calculator.calculate([
            make_item("P-1", "Done"),
            make_item("P-2", "Done"),
            make_item("P-3", "En cours"),
        ])
        assert metrics.completion_rate == 67

    def test_empty_sprint(self, calculator):
        metrics = calculator.calculate([])
        assert metrics.completion_rate == 0
        assert metrics.status_counts.total == 0

    def test_issues_by_type(self, calculator):
        metrics = calculator.calculate([
            make_item("P-1", "Done", item_type="Story", story_points=3),
            make_item("P-2", "En cours", item_type="Story", story_points=2),
            make_item("P-3", "Done", item_type="Bug"),
        ])
        by_type = {t.type: t for t in metrics.issues_by_type}
        assert by_type["Story"].count == 2
        assert by_type["Story"].story_points == 5
        assert by_type["Story"].done_count == 1
        assert by_type["Bug"].done_count == 1


class TestVelocity:
    """Test velocity, average and trend."""

    def test_velocity(self, calculator):
        velocity = calculator.velocity(20, 15)
        assert velocity.completion_rate == 75
        assert velocity.variance == -5
        assert velocity.variance_percent == -25

    def test_nothing_committed(self, calculator):
        velocity = calculator.velocity(0, 8)
        assert velocity.completion_rate == 0
        assert velocity.variance_percent == 0

    def test_average_velocity_one_decimal(self, calculator):
        velocities = [calculator.velocity(10, c) for c in (10, 12, 11)]
        assert calculator.average_velocity(velocities) == 11.0
        velocities = [calculator.velocity(10, c) for c in (10, 11, 11)]
        assert calculator.average_velocity(velocities) == 10.7

    def test_average_velocity_empty(self, calculator):
        assert calculator.average_velocity([]) == 0

    @pytest.mark.parametrize("completed", [[], [10], [10, 20]])
    def test_trend_needs_three_sprints(self, calculator, completed):
        velocities = [calculator.velocity(10, c) for c in completed]
        assert calculator.velocity_trend(velocities) == "stable"

    @pytest.mark.parametrize("completed,expected", [
        ([10, 5, 12], "increasing"),
        ([10, 50, 8], "decreasing"),
        ([10, 0, 11], "stable"),
        ([10, 10, 9], "stable"),
        ([99, 10, 20, 30], "increasing"),
    ])
    def test_trend_compares_window_ends(self, calculator, completed, expected):
        velocities = [calculator.velocity(10, c) for c in completed]
        assert calculator.velocity_trend(velocities) == expected

    def test_trend_from_zero(self, calculator):
        velocities = [calculator.velocity(10, c) for c in (0, 3, 4)]
        assert calculator.velocity_trend(velocities) == "increasing"
        velocities = [calculator.velocity(10, c) for c in (0, 3, 0)]
        assert calculator.velocity_trend(velocities) == "stable"

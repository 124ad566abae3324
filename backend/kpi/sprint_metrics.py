"""Sprint KPIs: status histogram, story points, velocity and trend."""

from collections import OrderedDict
from dataclasses import dataclass
from typing import Iterable, Sequence, Tuple

from kpi.classification import BUCKET_IN_PROGRESS, BUCKET_QA, BUCKET_RESOLVED, BUCKET_TODO
from kpi.entities import WorkItem
from kpi.values import round_half_up

TREND_WINDOW = 3
TREND_THRESHOLD_PERCENT = 10


@dataclass(frozen=True)
class StatusHistogram:
    """Per-bucket values plus the total, which also counts Unknown items."""

    total: float = 0
    todo: float = 0
    in_progress: float = 0
    qa: float = 0
    resolved: float = 0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "todo": self.todo,
            "inProgress": self.in_progress,
            "qa": self.qa,
            "resolved": self.resolved,
        }


@dataclass(frozen=True)
class TypeBreakdown:
    type: str
    count: int
    story_points: float
    done_count: int

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "count": self.count,
            "storyPoints": self.story_points,
            "doneCount": self.done_count,
        }


@dataclass(frozen=True)
class SprintMetrics:
    status_counts: StatusHistogram
    story_points_by_status: StatusHistogram
    completion_rate: int
    issues_by_type: Tuple[TypeBreakdown, ...] = ()

    @property
    def total_story_points(self) -> float:
        return self.story_points_by_status.total

    @classmethod
    def empty(cls) -> "SprintMetrics":
        return cls(StatusHistogram(), StatusHistogram(), 0)

    def to_dict(self) -> dict:
        return {
            "statusCounts": self.status_counts.to_dict(),
            "storyPointsByStatus": self.story_points_by_status.to_dict(),
            "totalStoryPoints": self.total_story_points,
            "completionRate": self.completion_rate,
            "issuesByType": [t.to_dict() for t in self.issues_by_type],
        }


@dataclass(frozen=True)
class VelocityMetrics:
    committed: float
    completed: float
    completion_rate: int
    variance: float
    variance_percent: int

    def to_dict(self) -> dict:
        return {
            "committed": self.committed,
            "completed": self.completed,
            "completionRate": self.completion_rate,
            "variance": self.variance,
            "variancePercent": self.variance_percent,
        }


_FIELD_BY_BUCKET = {
    BUCKET_TODO: "todo",
    BUCKET_IN_PROGRESS: "in_progress",
    BUCKET_QA: "qa",
    BUCKET_RESOLVED: "resolved",
}


class SprintMetricsCalculator:
    """Pure aggregation over sprint issues."""

    def calculate(self, items: Iterable[WorkItem]) -> SprintMetrics:
        items = list(items)
        counts = dict.fromkeys(_FIELD_BY_BUCKET.values(), 0)
        points = dict.fromkeys(_FIELD_BY_BUCKET.values(), 0)
        total_points = 0

        for item in items:
            item_points = item.story_points or 0
            total_points += item_points
            bucket = item.bucket
            if bucket is None:
                continue
            field = _FIELD_BY_BUCKET[bucket]
            counts[field] += 1
            points[field] += item_points

        resolved = counts["resolved"]
        return SprintMetrics(
            status_counts=StatusHistogram(total=len(items), **counts),
            story_points_by_status=StatusHistogram(total=total_points, **points),
            completion_rate=round_half_up(resolved / len(items) * 100) if items else 0,
            issues_by_type=self.group_by_type(items),
        )

    def group_by_type(self, items: Sequence[WorkItem]) -> Tuple[TypeBreakdown, ...]:
        groups = OrderedDict()
        for item in items:
            groups.setdefault(item.item_type, []).append(item)
        return tuple(
            TypeBreakdown(
                type=item_type,
                count=len(group),
                story_points=sum(i.story_points or 0 for i in group),
                done_count=sum(1 for i in group if i.is_done),
            )
            for item_type, group in groups.items()
        )

    def velocity(self, committed: float, completed: float) -> VelocityMetrics:
        """Compare completed against committed points; 0 percentages when nothing was committed."""
        return VelocityMetrics(
            committed=committed,
            completed=completed,
            completion_rate=round_half_up(completed / committed * 100) if committed > 0 else 0,
            variance=completed - committed,
            variance_percent=round_half_up((completed - committed) / committed * 100) if committed > 0 else 0,
        )

    def average_velocity(self, velocities: Sequence[VelocityMetrics]) -> float:
        """Mean completed points, one decimal."""
        if not velocities:
            return 0
        mean = sum(v.completed for v in velocities) / len(velocities)
        return round_half_up(mean, 1)

    def velocity_trend(self, velocities: Sequence[VelocityMetrics]) -> str:
        """Classify the last three sprints as increasing, decreasing or stable.

        Only the first and last of the window are compared, with a +/-10%
        threshold. Fewer than three sprints is always stable.
        """
        if len(velocities) < TREND_WINDOW:
            return "stable"
        window = velocities[-TREND_WINDOW:]
        first = window[0].completed
        last = window[-1].completed
        if first == 0:
            return "increasing" if last > 0 else "stable"
        change = (last - first) / first * 100
        if change > TREND_THRESHOLD_PERCENT:
            return "increasing"
        if change < -TREND_THRESHOLD_PERCENT:
            return "decreasing"
        return "stable"

"""KPI service: the operations the HTTP layer calls.

Fetches go through the (cached) repository, numbers come from the pure
calculators. Input problems raise InvalidInputError subclasses; a failing
sub-fetch is logged and counts as zero unless every sub-fetch failed.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from kpi import jql
from kpi.batching import run_batched
from kpi.cache import TimedCache
from kpi.config import Settings
from kpi.entities import SPRINT_STATES, Board, Sprint, TimeEntry, WorkItem
from kpi.errors import InvalidInputError, SourceUnavailableError, UnknownBoardError
from kpi.hierarchy import EpicDetails, EpicProgressResult, HierarchyTotals, ProgressAggregator
from kpi.repository import WORKLOG_BATCH_SIZE, WorklogQuery, board_filter_query, board_or_placeholder
from kpi.resolved_by_day import ResolvedByDay, ResolvedByDayDispatcher
from kpi.sprint_metrics import SprintMetrics, SprintMetricsCalculator, VelocityMetrics
from kpi.support_metrics import SupportMetrics, SupportMetricsCalculator
from kpi.values import DateRange
from kpi.worklog_metrics import WorklogMetrics, WorklogMetricsCalculator

logger = logging.getLogger(__name__)

SPRINT_BATCH_SIZE = 3
MAX_SPRINT_COUNT = 50


@dataclass(frozen=True)
class SprintIssuesView:
    """Issues of a sprint (or date window) with their metrics, backlog and logged time."""

    items: Tuple[WorkItem, ...]
    metrics: SprintMetrics
    total_time_seconds: int = 0
    backlog_count: int = 0
    backlog_story_points: float = 0
    sprints: Tuple[Sprint, ...] = ()

    @classmethod
    def empty(cls) -> "SprintIssuesView":
        return cls((), SprintMetrics.empty())

    def to_dict(self) -> dict:
        return {
            "issues": [item.to_dict() for item in self.items],
            "statusCounts": self.metrics.status_counts.to_dict(),
            "storyPointsByStatus": self.metrics.story_points_by_status.to_dict(),
            "totalStoryPoints": self.metrics.total_story_points,
            "completionRate": self.metrics.completion_rate,
            "totalTimeSeconds": self.total_time_seconds,
            "backlog": {
                "ticketCount": self.backlog_count,
                "storyPoints": self.backlog_story_points,
            },
            "sprints": [sprint.to_dict() for sprint in self.sprints],
        }


@dataclass(frozen=True)
class SprintVelocity:
    sprint: Sprint
    velocity: VelocityMetrics

    def to_dict(self) -> dict:
        return {
            "id": self.sprint.id,
            "name": self.sprint.name,
            "startDate": self.sprint.start.isoformat() if self.sprint.start else None,
            "endDate": self.sprint.end.isoformat() if self.sprint.end else None,
            "committed": self.velocity.committed,
            "completed": self.velocity.completed,
            "completionRate": self.velocity.completion_rate,
        }


@dataclass(frozen=True)
class VelocityHistory:
    board_id: int
    sprints: Tuple[SprintVelocity, ...]
    average_velocity: float
    trend: str

    def to_dict(self) -> dict:
        return {
            "boardId": self.board_id,
            "sprints": [s.to_dict() for s in self.sprints],
            "averageVelocity": self.average_velocity,
            "trend": self.trend,
        }


def _dedupe(items: Sequence[WorkItem]) -> Tuple[WorkItem, ...]:
    seen = set()
    unique = []
    for item in items:
        if item.key not in seen:
            seen.add(item.key)
            unique.append(item)
    return tuple(unique)


def _story_points(items: Sequence[WorkItem]) -> float:
    return sum(item.story_points or 0 for item in items)


class KpiService:
    """Entry point of the engine.

    Args:
        repository: JiraRepository, usually wrapped in CachedJiraRepository
        settings: Engine settings; defaults to the repository's
        cache: Cache behind the repository, cleared on resync
    """

    def __init__(self, repository, settings: Optional[Settings] = None,
                 cache: Optional[TimedCache] = None):
        self.repository = repository
        self.settings = settings or repository.settings
        self.cache = cache
        self.worklog_calculator = WorklogMetricsCalculator()
        self.sprint_calculator = SprintMetricsCalculator()
        self.support_calculator = SupportMetricsCalculator(self.settings.hours_per_day)
        self.progress = ProgressAggregator(repository)
        self.resolved = ResolvedByDayDispatcher(repository, self.settings)

    # Calculators

    def compute_worklog_metrics(self, entries: Sequence[TimeEntry]) -> WorklogMetrics:
        return self.worklog_calculator.calculate(entries)

    def compute_sprint_metrics(self, items: Sequence[WorkItem]) -> SprintMetrics:
        return self.sprint_calculator.calculate(items)

    def compute_velocity(self, committed: float, completed: float) -> VelocityMetrics:
        return self.sprint_calculator.velocity(committed, completed)

    def average_velocity(self, velocities: Sequence[VelocityMetrics]) -> float:
        return self.sprint_calculator.average_velocity(velocities)

    def velocity_trend(self, velocities: Sequence[VelocityMetrics]) -> str:
        return self.sprint_calculator.velocity_trend(velocities)

    # Hierarchy and resolved items

    def aggregate_hierarchy(self, root_key: str) -> HierarchyTotals:
        return self.progress.aggregate_hierarchy(root_key)

    def epic_details(self, root_key: str) -> EpicDetails:
        return self.progress.epic_details(root_key)

    def epic_progress_for_board(self, board_id: int, type_filter: str = "all") -> EpicProgressResult:
        self._require_board(board_id)
        return self.progress.epic_progress_for_board(board_id, type_filter)

    def search_epics(self, board_id: int, query: str = "", type_filter: str = "all") -> List[dict]:
        self._require_board(board_id)
        return self.progress.search_epics(board_id, query, type_filter)

    def compute_resolved_by_day(self, start: str, end: str, item_type: str = "all") -> ResolvedByDay:
        return self.resolved.compute(start, end, item_type)

    # Worklogs

    def search_worklogs(self, query: WorklogQuery) -> Tuple[TimeEntry, ...]:
        query.validate()
        return self.repository.search_worklogs(query)

    def worklog_metrics(self, query: WorklogQuery) -> WorklogMetrics:
        """Metrics over the worklogs matching the query."""
        return self.compute_worklog_metrics(self.search_worklogs(query))

    def _logged_seconds(self, items: Sequence[WorkItem]) -> int:
        """Seconds logged on the items; issues whose worklogs fail count as 0."""
        outcome = run_batched(
            lambda item: sum(e.time_spent.seconds for e in self.repository.fetch_worklogs(item.key)),
            items,
            WORKLOG_BATCH_SIZE,
            default=0,
            label="worklog time"
        )
        return sum(outcome.results)

    # Boards and sprints

    def _require_board(self, board_id: int):
        if self.settings.board_ids and board_id not in self.settings.board_ids:
            raise UnknownBoardError(board_id)

    def configured_boards(self) -> List[Board]:
        """Boards listed in the configuration, placeholders for unreadable ones."""
        return [board_or_placeholder(self.repository, board_id) for board_id in self.settings.board_ids]

    def board_sprints(self, board_id: int, state: Optional[str] = None) -> Tuple[Sprint, ...]:
        if state and state not in SPRINT_STATES:
            raise InvalidInputError(f"Unknown sprint state {state!r}, expected one of {', '.join(SPRINT_STATES)}")
        self._require_board(board_id)
        return self.repository.get_sprints_for_board(board_id, state)

    def _current_sprints(self, board_id: int) -> Tuple[Sprint, ...]:
        """Active sprints of a board, else its last closed sprint."""
        active = self.repository.get_sprints_for_board(board_id, "active")
        if active:
            return tuple(active)
        return tuple(self.repository.find_closed_sprints(board_id, 1))

    def _sprint_items(self, board_id: int, sprint: Sprint) -> Tuple[WorkItem, ...]:
        """Issues of a sprint seen from the board, else the whole sprint."""
        items = self.repository.find_board_sprint_issues(board_id, sprint.id)
        if items:
            return tuple(items)
        logger.info(f"Board filter returned no issues for sprint {sprint.id}, using all sprint issues")
        return tuple(self.repository.find_sprint_issues(sprint.id))

    def active_sprint_range(self) -> Optional[dict]:
        """Date range of the first board's current sprint, None when unknown."""
        if not self.settings.board_ids:
            return None
        board_id = self.settings.board_ids[0]
        for sprint in self._current_sprints(board_id):
            if sprint.start and sprint.end:
                return {
                    "from": sprint.start.date().isoformat(),
                    "to": sprint.end.date().isoformat(),
                    "sprintName": sprint.name,
                    "boardId": board_id,
                }
        return None

    def _with_extras(self, items: Tuple[WorkItem, ...], project_key: Optional[str],
                     sprints: Tuple[Sprint, ...] = ()) -> SprintIssuesView:
        """Build the view, fetching backlog and logged time side by side."""
        def backlog():
            return self.repository.find_backlog_issues(project_key) if project_key else ()

        def logged():
            return self._logged_seconds(items)

        outcome = run_batched(lambda task: task(), [backlog, logged], 2, label="sprint extras")
        backlog_items = outcome.results[0] or ()
        return SprintIssuesView(
            items=items,
            metrics=self.compute_sprint_metrics(items),
            total_time_seconds=outcome.results[1] or 0,
            backlog_count=len(backlog_items),
            backlog_story_points=_story_points(backlog_items),
            sprints=sprints,
        )

    def sprint_issues_for_project(self, project_key: str) -> SprintIssuesView:
        """Open-sprint issues of a project, with its backlog."""
        if not project_key:
            raise InvalidInputError("Project key is required")
        outcome = run_batched(
            lambda task: task(),
            [lambda: self.repository.find_open_sprint_issues(project_key),
             lambda: self.repository.find_backlog_issues(project_key)],
            2,
            label=f"sprint issues of {project_key}"
        )
        if outcome.all_failed:
            raise SourceUnavailableError(f"Could not read sprint issues of project {project_key}")

        items = tuple(outcome.results[0] or ())
        backlog = outcome.results[1] or ()
        return SprintIssuesView(
            items=items,
            metrics=self.compute_sprint_metrics(items),
            backlog_count=len(backlog),
            backlog_story_points=_story_points(backlog),
        )

    def sprint_issues_for_board(self, board_id: int, start: Optional[str] = None,
                                end: Optional[str] = None) -> SprintIssuesView:
        """Issues of a board's current sprint, or updated within a date window.

        Without dates the active sprints are used, falling back to the last
        closed one. With dates the board's saved filter (or its project) is
        searched for issues updated in the window.
        """
        self._require_board(board_id)
        board = board_or_placeholder(self.repository, board_id)

        if start or end:
            if not (start and end):
                raise InvalidInputError("Both from and to dates are required")
            return self._board_issues_in_range(board, DateRange.from_iso(start, end))

        sprints = self._current_sprints(board_id)
        if not sprints:
            logger.info(f"No active or closed sprint found for board {board_id}")
            return SprintIssuesView.empty()

        items = []
        for sprint in sprints:
            items.extend(self._sprint_items(board_id, sprint))
        return self._with_extras(_dedupe(items), board.project_key, sprints)

    def _board_issues_in_range(self, board: Board, date_range: DateRange) -> SprintIssuesView:
        window = (
            f"updated >= {jql.quote(date_range.start_iso)} "
            f"AND updated <= {jql.quote(date_range.end_iso + ' 23:59')}"
        )
        query = ""
        filter_jql = board_filter_query(self.repository, board.id)
        if filter_jql:
            query = jql.extend_filter(filter_jql, window)
        if not query and board.project_key:
            query = f"{jql.project_clause(board.project_key)} AND {window}"
        if not query:
            logger.warning(f"Board {board.id} has neither filter nor project, no issues to report")
            return SprintIssuesView.empty()

        try:
            items = self.repository.search_items(query, self.repository.mapper.issue_fields()).items
        except SourceUnavailableError as e:
            logger.error(f"Failed to fetch issues of board {board.id} in {date_range}: {e}")
            return SprintIssuesView.empty()
        return self._with_extras(_dedupe(items), board.project_key)

    def velocity_history(self, board_id: int, sprint_count: int = 10) -> VelocityHistory:
        """Committed vs completed points over the last closed sprints, oldest first."""
        if sprint_count < 1 or sprint_count > MAX_SPRINT_COUNT:
            raise InvalidInputError(f"sprint_count must be between 1 and {MAX_SPRINT_COUNT}")
        self._require_board(board_id)

        sprints = list(reversed(self.repository.find_closed_sprints(board_id, sprint_count)))

        def velocity_of(sprint: Sprint) -> VelocityMetrics:
            items = self._sprint_items(board_id, sprint)
            committed = _story_points(items)
            completed = _story_points([i for i in items if i.is_done])
            return self.compute_velocity(committed, completed)

        outcome = run_batched(velocity_of, sprints, SPRINT_BATCH_SIZE, label="sprint velocity")
        if outcome.all_failed:
            raise SourceUnavailableError(f"Could not read any closed sprint of board {board_id}")

        rows = tuple(
            SprintVelocity(sprint, velocity or self.compute_velocity(0, 0))
            for sprint, velocity in zip(sprints, outcome.results)
        )
        velocities = [row.velocity for row in rows]
        return VelocityHistory(
            board_id=board_id,
            sprints=rows,
            average_velocity=self.average_velocity(velocities),
            trend=self.velocity_trend(velocities),
        )

    # Support

    def support_kpi(self, start: Optional[str] = None, end: Optional[str] = None,
                    active_sprint: bool = True) -> SupportMetrics:
        """Support board KPIs for the open sprint, or tickets created in a window."""
        project = jql.project_clause(self.settings.support_project_key)
        if active_sprint or not (start and end):
            query = f"{project} AND Sprint in openSprints()"
        else:
            date_range = DateRange.from_iso(start, end)
            query = (
                f"{project} AND created >= {jql.quote(date_range.start_iso)} "
                f"AND created <= {jql.quote(date_range.end_iso + ' 23:59')}"
            )

        logger.info(f"Fetching support issues with JQL: {query}")
        outcome = run_batched(
            lambda task: task(),
            [lambda: self.repository.search_items(query).items,
             lambda: self.repository.find_backlog_issues(self.settings.support_project_key)],
            2,
            label="support issues"
        )
        if outcome.results[0] is None:
            raise SourceUnavailableError("Could not read support issues")
        return self.support_calculator.calculate(outcome.results[0], outcome.results[1] or ())

    # Cache

    def resync(self) -> int:
        """Drop every cached read so the next requests hit Jira."""
        if self.cache is None:
            return 0
        return self.cache.clear()

    def invalidate(self, prefix: str) -> int:
        if not prefix:
            raise InvalidInputError("Cache prefix is required")
        if self.cache is None:
            return 0
        return self.cache.invalidate(prefix)

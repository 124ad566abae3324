"""Daily count of resolved items, split by team board.

Jira board filters usually exclude resolved issues, so the counts cannot come
from the boards themselves. Two modes exist, picked once per call from the
resolution settings:

- resolution mode: one query per project on resolution + resolution date,
  each issue attributed to a board through its team field
- status mode: one query per board on the resolved status + update date,
  through the board's saved filter when it has one
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from kpi import jql
from kpi.batching import run_batched
from kpi.config import Settings
from kpi.entities import Board, WorkItem
from kpi.errors import InvalidInputError, SourceUnavailableError
from kpi.repository import board_filter_query, board_or_placeholder
from kpi.values import DateRange

logger = logging.getLogger(__name__)

BOARD_BATCH_SIZE = 3
UNATTRIBUTED_BOARD_ID = 0
UNATTRIBUTED_NAME = "Autres"
UNATTRIBUTED_COLOR = "#6b7280"
FALLBACK_COLORS = ("#8b5cf6", "#ef4444", "#10b981", "#3b82f6", "#f59e0b", "#ec4899")
ITEM_TYPE_FILTERS = ("all", "story")


@dataclass(frozen=True)
class BoardSeries:
    id: int
    name: str
    color: str

    @property
    def field(self) -> str:
        return f"board_{self.id}"

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "color": self.color}


@dataclass(frozen=True)
class ResolvedByDay:
    """One row per day: {"date": ..., "board_<id>": count, ...}."""

    by_day: Tuple[dict, ...]
    boards: Tuple[BoardSeries, ...]

    @property
    def total(self) -> int:
        return sum(row[b.field] for row in self.by_day for b in self.boards)

    def to_dict(self) -> dict:
        return {
            "byDay": [dict(row) for row in self.by_day],
            "boards": [b.to_dict() for b in self.boards],
        }


def board_series(boards: Iterable[Board]) -> Tuple[BoardSeries, ...]:
    """Chart series for the boards, colors cycling in board order, plus "Autres"."""
    series = [
        BoardSeries(board.id, board.name, FALLBACK_COLORS[i % len(FALLBACK_COLORS)])
        for i, board in enumerate(boards)
    ]
    series.append(BoardSeries(UNATTRIBUTED_BOARD_ID, UNATTRIBUTED_NAME, UNATTRIBUTED_COLOR))
    return tuple(series)


def _normalize(name: Optional[str]) -> str:
    return (name or "").strip().lower()


def resolution_day(item: WorkItem) -> Optional[date]:
    """Day an item counts on: its resolution date, else its last update."""
    moment = item.resolved_at or item.updated
    return moment.date() if moment else None


class DayGrid:
    """Mutable (day, board) counters, only used while a result is built."""

    def __init__(self, date_range: DateRange, series: Tuple[BoardSeries, ...]):
        self.series = series
        self.rows: Dict[date, Dict[str, int]] = OrderedDict(
            (day, {s.field: 0 for s in series}) for day in date_range.days()
        )

    def add(self, item: WorkItem, board_id: int) -> bool:
        day = resolution_day(item)
        if day not in self.rows:
            return False
        self.rows[day][f"board_{board_id}"] += 1
        return True

    def result(self) -> ResolvedByDay:
        rows = tuple(
            dict({"date": day.isoformat()}, **counts)
            for day, counts in self.rows.items()
        )
        return ResolvedByDay(rows, self.series)


class ResolvedByDayDispatcher:
    """Dispatch the resolved-item queries and fold the answers into a day grid.

    Args:
        repository: JiraRepository or CachedJiraRepository
        settings: Boards, resolution and custom field configuration
    """

    def __init__(self, repository, settings: Settings):
        self.repository = repository
        self.settings = settings

    @property
    def uses_resolution(self) -> bool:
        return self.settings.resolution.uses_resolution

    def resolved_clause(self, date_range: DateRange, item_type: str = "all") -> str:
        """JQL predicate selecting items resolved inside the range."""
        resolution = self.settings.resolution
        start = jql.quote(date_range.start_iso)
        end = jql.quote(f"{date_range.end_iso} 23:59")

        if resolution.names:
            clause = (
                f"resolution in ({jql.quote_list(resolution.names)}) "
                f"AND resolutiondate >= {start} AND resolutiondate <= {end}"
            )
        elif resolution.resolution_id:
            clause = (
                f"resolution = {resolution.resolution_id} "
                f"AND resolutiondate >= {start} AND resolutiondate <= {end}"
            )
        else:
            clause = (
                f"status = {jql.quote(resolution.resolved_status)} "
                f"AND updated >= {start} AND updated <= {end}"
            )

        if item_type == "story":
            clause += f" AND issuetype = {jql.quote(resolution.story_type)}"
        return clause

    def _fields(self) -> str:
        return self.repository.mapper.issue_fields(
            "resolutiondate", "updated", self.settings.fields.team
        )

    def _search(self, query: str) -> List[WorkItem]:
        return list(self.repository.search_items(query, self._fields()).items)

    def compute(self, start: str, end: str, item_type: str = "all") -> ResolvedByDay:
        """Resolved items per day and per board between two ISO dates.

        Raises:
            InvalidInputError: bad dates or item type
            SourceUnavailableError: every sub-query failed
        """
        item_type = (item_type or "all").lower()
        if item_type not in ITEM_TYPE_FILTERS:
            raise InvalidInputError(
                f"Unknown item type {item_type!r}, expected one of {', '.join(ITEM_TYPE_FILTERS)}"
            )
        date_range = DateRange.from_iso(start, end)

        if not self.settings.board_ids:
            logger.warning("No board configured, nothing to count")
            return ResolvedByDay((), ())

        boards = [board_or_placeholder(self.repository, board_id) for board_id in self.settings.board_ids]
        grid = DayGrid(date_range, board_series(boards))
        clause = self.resolved_clause(date_range, item_type)

        if self.uses_resolution:
            self._by_project(boards, clause, grid)
        else:
            self._by_board(boards, clause, grid)

        return grid.result()

    def _by_project(self, boards: List[Board], clause: str, grid: DayGrid):
        """One query per project, attributing each issue through its team."""
        board_by_team = {_normalize(board.name): board.id for board in boards}
        projects = list(OrderedDict.fromkeys(b.project_key for b in boards if b.project_key))
        if not projects:
            logger.warning("No configured board has a project, nothing to count")
            return

        outcome = run_batched(
            lambda project: self._search(f"{jql.project_clause(project)} AND {clause}"),
            projects,
            BOARD_BATCH_SIZE,
            label="resolved-by-project query"
        )
        if outcome.all_failed:
            raise SourceUnavailableError("Resolved items query failed for every project")

        seen = set()
        for items in outcome.results:
            for item in items or []:
                if item.key in seen:
                    continue
                seen.add(item.key)
                board_id = board_by_team.get(_normalize(item.team), UNATTRIBUTED_BOARD_ID)
                grid.add(item, board_id)

    def _board_query(self, board: Board, clause: str) -> Optional[str]:
        filter_jql = board_filter_query(self.repository, board.id)
        if not filter_jql:
            return None
        return jql.extend_filter(filter_jql, clause) or None

    def _project_query(self, board: Board, clause: str) -> Optional[str]:
        if not board.project_key:
            return None
        return f"{jql.project_clause(board.project_key)} AND {clause}"

    def _board_items(self, board: Board, clause: str) -> List[WorkItem]:
        """Resolved items of one board, falling back to its project.

        The project query is used when the board has no usable filter, when
        the filter finds nothing, or once as a retry after a failure.
        """
        project_query = self._project_query(board, clause)
        try:
            filter_query = self._board_query(board, clause)
            if filter_query:
                items = self._search(filter_query)
                if items or not project_query:
                    return items
                logger.info(f"Board {board.id} filter found no resolved items, trying project")
            if not project_query:
                logger.warning(f"Board {board.id} has neither filter nor project, skipping")
                return []
            return self._search(project_query)
        except SourceUnavailableError as e:
            if not project_query:
                raise
            logger.warning(f"Resolved items query failed for board {board.id}, retrying on project: {e}")
            return self._search(project_query)

    def _by_board(self, boards: List[Board], clause: str, grid: DayGrid):
        """One query per board; every issue counts for the board that found it."""
        if not boards:
            return

        outcome = run_batched(
            lambda board: self._board_items(board, clause),
            boards,
            BOARD_BATCH_SIZE,
            label="resolved-by-board query"
        )
        if outcome.all_failed:
            raise SourceUnavailableError("Resolved items query failed for every board")

        for board, items in zip(boards, outcome.results):
            seen = set()
            for item in items or []:
                if item.key in seen:
                    continue
                seen.add(item.key)
                grid.add(item, board.id)

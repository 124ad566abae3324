"""Progress roll-up over legend -> epic -> story -> subtask trees.

Each node keeps only its own estimate, time spent and story points. Totals
are always recomputed bottom-up from those values, never taken from Jira's
aggregate fields across levels, so nothing is counted twice.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Tuple

from kpi import jql
from kpi.batching import run_batched
from kpi.entities import WorkItem
from kpi.errors import InvalidInputError, SourceUnavailableError
from kpi.repository import board_or_placeholder
from kpi.values import round_half_up

logger = logging.getLogger(__name__)

EPIC_BATCH_SIZE = 3
SUBTASK_BATCH_SIZE = 50
SEARCH_LIMIT = 20

TYPE_FILTERS = {
    "epic": ("Epic", "Épic"),
    "legend": ("Legend", "Légende"),
    "all": ("Epic", "Épic", "Legend", "Légende", "Feature", "Initiative"),
}


def progress_percent(estimate: float, spent: float) -> int:
    """Spent over estimate as a percentage, capped at 100; 0 without estimate."""
    if estimate <= 0:
        return 0
    return min(100, round_half_up(spent / estimate * 100))


@dataclass(frozen=True)
class Effort:
    estimate: int = 0
    spent: int = 0
    story_points: float = 0

    def __add__(self, other: "Effort") -> "Effort":
        return Effort(
            self.estimate + other.estimate,
            self.spent + other.spent,
            self.story_points + other.story_points,
        )


@dataclass(frozen=True)
class HierarchyTotals:
    estimate: int = 0
    spent: int = 0
    story_points: float = 0

    @classmethod
    def of(cls, effort: Effort) -> "HierarchyTotals":
        return cls(effort.estimate, effort.spent, effort.story_points)

    @property
    def progress_percent(self) -> int:
        return progress_percent(self.estimate, self.spent)

    @property
    def overrun(self) -> bool:
        return self.estimate > 0 and self.spent > self.estimate

    def to_dict(self) -> dict:
        return {
            "estimate": self.estimate,
            "spent": self.spent,
            "storyPoints": self.story_points,
            "progressPercent": self.progress_percent,
            "overrun": self.overrun,
        }


@dataclass(frozen=True)
class HierarchyNode:
    """One issue of the tree with its own, non-aggregated values."""

    key: str
    summary: str
    item_type: str
    status: str
    status_category_key: Optional[str]
    parent_key: Optional[str]
    level: int
    estimate: int = 0
    spent: int = 0
    story_points: Optional[float] = None
    children: Tuple["HierarchyNode", ...] = ()

    @property
    def own(self) -> Effort:
        return Effort(self.estimate, self.spent, self.story_points or 0)

    def total(self) -> Effort:
        """Own values plus the totals of every child."""
        total = self.own
        for child in self.children:
            total = total + child.total()
        return total

    def descendants_total(self) -> Effort:
        total = Effort()
        for child in self.children:
            total = total + child.total()
        return total

    def to_dict(self) -> dict:
        data = {
            "issueKey": self.key,
            "summary": self.summary,
            "issueType": self.item_type,
            "status": self.status,
            "statusCategoryKey": self.status_category_key,
            "originalEstimateSeconds": self.estimate,
            "timeSpentSeconds": self.spent,
            "storyPoints": self.story_points,
            "parentKey": self.parent_key,
            "hierarchyLevel": self.level,
        }
        if self.children:
            data["children"] = [child.to_dict() for child in self.children]
        return data


def _seconds(duration) -> int:
    return duration.seconds if duration else 0


def node_from_item(item: WorkItem, children: Tuple[HierarchyNode, ...], level: int) -> HierarchyNode:
    """Build a node, picking which Jira effort fields count as its own.

    An item with children keeps its direct fields, the children carry the
    rest. A leaf uses Jira's aggregate fields, falling back to its own.
    """
    if children:
        estimate = _seconds(item.original_estimate)
        spent = _seconds(item.time_spent)
    else:
        estimate = _seconds(item.aggregate_estimate) or _seconds(item.original_estimate)
        spent = _seconds(item.aggregate_time_spent) or _seconds(item.time_spent)

    return HierarchyNode(
        key=item.key,
        summary=item.summary,
        item_type=item.item_type,
        status=item.status,
        status_category_key=item.status_category_key,
        parent_key=item.parent_key,
        level=level,
        estimate=estimate,
        spent=spent,
        story_points=item.story_points,
        children=children,
    )


def build_tree(root: WorkItem, rows: Iterable[WorkItem]) -> HierarchyNode:
    """Assemble a tree from flat rows linked by parent_key.

    Rows that do not hang under the root are ignored, and an issue is only
    placed once even if the data contains a cycle.
    """
    by_parent: Dict[str, List[WorkItem]] = OrderedDict()
    for row in rows:
        if row.parent_key:
            by_parent.setdefault(row.parent_key, []).append(row)

    placed = {root.key}

    def build(item: WorkItem, level: int) -> HierarchyNode:
        children = []
        for child in by_parent.get(item.key, []):
            if child.key in placed:
                continue
            placed.add(child.key)
            children.append(build(child, level + 1))
        return node_from_item(item, tuple(children), level)

    return build(root, 0)


def aggregate(root: HierarchyNode) -> HierarchyTotals:
    """Totals of a container: the sum over its descendants."""
    return HierarchyTotals.of(root.descendants_total())


@dataclass(frozen=True)
class EpicDetails:
    root: HierarchyNode
    totals: HierarchyTotals

    def to_dict(self) -> dict:
        return {
            "epicKey": self.root.key,
            "summary": self.root.summary,
            "issueType": self.root.item_type,
            "status": self.root.status,
            "statusCategoryKey": self.root.status_category_key,
            "originalEstimateSeconds": self.totals.estimate,
            "timeSpentSeconds": self.totals.spent,
            "totalStoryPoints": self.totals.story_points,
            "progressPercent": self.totals.progress_percent,
            "isOverrun": self.totals.overrun,
            "children": [child.to_dict() for child in self.root.children],
        }


@dataclass(frozen=True)
class EpicProgressItem:
    epic_key: str
    summary: str
    issue_type: str
    status: str
    status_category_key: Optional[str]
    child_issue_count: int
    totals: HierarchyTotals

    @classmethod
    def from_tree(cls, root: HierarchyNode) -> "EpicProgressItem":
        return cls(root.key, root.summary, root.item_type, root.status,
                   root.status_category_key, len(root.children), aggregate(root))

    @classmethod
    def zero(cls, epic: WorkItem) -> "EpicProgressItem":
        return cls(epic.key, epic.summary, epic.item_type, epic.status,
                   epic.status_category_key, 0, HierarchyTotals())

    def to_dict(self) -> dict:
        return {
            "epicKey": self.epic_key,
            "summary": self.summary,
            "issueType": self.issue_type,
            "status": self.status,
            "statusCategoryKey": self.status_category_key,
            "childIssueCount": self.child_issue_count,
            "originalEstimateSeconds": self.totals.estimate,
            "timeSpentSeconds": self.totals.spent,
            "totalStoryPoints": self.totals.story_points,
            "progressPercent": self.totals.progress_percent,
            "isOverrun": self.totals.overrun,
        }


@dataclass(frozen=True)
class EpicProgressResult:
    board_id: int
    board_name: str
    project_key: Optional[str]
    epics: Tuple[EpicProgressItem, ...] = ()

    @property
    def epic_count(self) -> int:
        return len(self.epics)

    def to_dict(self) -> dict:
        return {
            "boardId": self.board_id,
            "boardName": self.board_name,
            "projectKey": self.project_key,
            "epicCount": self.epic_count,
            "epics": [epic.to_dict() for epic in self.epics],
        }


def _type_names(type_filter: str) -> Tuple[str, ...]:
    try:
        return TYPE_FILTERS[(type_filter or "all").lower()]
    except KeyError:
        raise InvalidInputError(
            f"Unknown type filter {type_filter!r}, expected one of {', '.join(TYPE_FILTERS)}"
        )


class ProgressAggregator:
    """Fetch work-item trees and roll their effort up."""

    def __init__(self, repository):
        self.repository = repository

    def _find(self, key: str) -> WorkItem:
        result = self.repository.search_items(f"key = {jql.quote(key)}")
        if not result.items:
            raise InvalidInputError(f"Issue {key} not found")
        return result.items[0]

    def _children_of(self, parent: WorkItem, query: str) -> List[WorkItem]:
        items = self.repository.search_items(query).items
        return [replace(item, parent_key=parent.key) for item in items if item.key != parent.key]

    def _subtasks_of(self, stories: List[WorkItem]) -> List[WorkItem]:
        parent_of = OrderedDict()
        for story in stories:
            for subtask_key in story.subtask_keys:
                parent_of[subtask_key] = story.key
        if not parent_of:
            return []

        keys = list(parent_of)
        chunks = [keys[i:i + SUBTASK_BATCH_SIZE] for i in range(0, len(keys), SUBTASK_BATCH_SIZE)]
        outcome = run_batched(
            lambda chunk: self.repository.search_items(jql.keys_clause(chunk)).items,
            chunks,
            EPIC_BATCH_SIZE,
            default=(),
            label="subtask fetch"
        )
        if outcome.all_failed:
            raise SourceUnavailableError(f"Could not fetch any of the {len(keys)} subtasks")
        subtasks = []
        for items in outcome.results:
            for item in items:
                if item.key in parent_of:
                    subtasks.append(replace(item, parent_key=parent_of[item.key]))
        return subtasks

    def _epic_rows(self, epic: WorkItem) -> List[WorkItem]:
        """Stories of an epic and their subtasks, as flat rows."""
        stories = self._children_of(epic, jql.children_clause(epic.key))
        return stories + self._subtasks_of(stories)

    def _rows_under(self, root: WorkItem) -> List[WorkItem]:
        if not root.is_legend:
            return self._epic_rows(root)

        epics = self._children_of(root, f"parent = {jql.quote(root.key)}")
        outcome = run_batched(self._epic_rows, epics, EPIC_BATCH_SIZE, default=[],
                              label=f"epic fetch under {root.key}")
        if outcome.all_failed:
            raise SourceUnavailableError(f"Could not fetch the children of any epic under {root.key}")
        rows = list(epics)
        for epic_rows in outcome.results:
            rows.extend(epic_rows)
        return rows

    def fetch_tree(self, root_key: str) -> HierarchyNode:
        root = self._find(root_key)
        return build_tree(root, self._rows_under(root))

    def aggregate_hierarchy(self, root_key: str) -> HierarchyTotals:
        """Estimate, spent, story points, progress and overrun of a container."""
        return aggregate(self.fetch_tree(root_key))

    def epic_details(self, root_key: str) -> EpicDetails:
        tree = self.fetch_tree(root_key)
        return EpicDetails(tree, aggregate(tree))

    def epic_progress_for_board(self, board_id: int, type_filter: str = "all") -> EpicProgressResult:
        """Progress of every started or finished epic/legend of a board's project.

        A board without a project yields an empty result rather than an error.
        """
        type_names = _type_names(type_filter)
        board = board_or_placeholder(self.repository, board_id)
        if not board.project_key:
            logger.warning(f"Board {board_id} has no associated project, cannot fetch epics")
            return EpicProgressResult(board_id, board.name, None)

        query = (
            f"{jql.project_clause(board.project_key)} AND issuetype in ({jql.quote_list(type_names)}) "
            f'AND statusCategory in ("In Progress", "Done") ORDER BY key ASC'
        )
        epics = list(self.repository.search_items(query).items)
        logger.info(f"Found {len(epics)} epics for board {board_id}")

        outcome = run_batched(
            lambda epic: EpicProgressItem.from_tree(build_tree(epic, self._rows_under(epic))),
            epics,
            EPIC_BATCH_SIZE,
            label="epic progress"
        )
        if outcome.all_failed:
            raise SourceUnavailableError(f"Could not compute progress for any epic of board {board_id}")

        items = [
            result if result is not None else EpicProgressItem.zero(epic)
            for epic, result in zip(epics, outcome.results)
        ]
        return EpicProgressResult(board_id, board.name, board.project_key, tuple(items))

    def search_epics(self, board_id: int, query: str = "", type_filter: str = "all") -> List[dict]:
        """Epics and legends whose summary starts with, or key equals, the query."""
        type_names = _type_names(type_filter)
        board = board_or_placeholder(self.repository, board_id)
        if not board.project_key:
            return []

        search = f"{jql.project_clause(board.project_key)} AND issuetype in ({jql.quote_list(type_names)})"
        text = (query or "").strip()
        if text:
            search += f" AND (summary ~ {jql.quote(text + '*')} OR key = {jql.quote(text.upper())})"
        search += " ORDER BY updated DESC"

        items = self.repository.search_items_limited(search, max_results=SEARCH_LIMIT).items
        return [
            {
                "epicKey": item.key,
                "summary": item.summary,
                "issueType": item.item_type,
                "status": item.status,
                "statusCategoryKey": item.status_category_key,
            }
            for item in items
        ]

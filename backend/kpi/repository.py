"""Raw data access: Jira queries returning domain entities.

Everything here hits Jira. CachedJiraRepository in kpi.cache wraps the same
interface with time-bounded caching.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from kpi import jql
from kpi.batching import run_batched
from kpi.config import Settings
from kpi.entities import Board, BoardConfiguration, SearchResult, Sprint, TimeEntry, WorkItem
from kpi.errors import InvalidDateRangeError, SourceUnavailableError
from kpi.jira_client import JiraClient
from kpi.mappers import JiraMapper
from kpi.values import DateRange

logger = logging.getLogger(__name__)

WORKLOG_BATCH_SIZE = 10


@dataclass(frozen=True)
class WorklogQuery:
    """Filters for a worklog search. Dates are ISO "YYYY-MM-DD" strings."""

    start: Optional[str] = None
    end: Optional[str] = None
    project_key: Optional[str] = None
    item_key: Optional[str] = None
    account_id: Optional[str] = None
    team_name: Optional[str] = None
    open_sprints: bool = False

    def date_range(self) -> Optional[DateRange]:
        if self.start and self.end:
            return DateRange.from_iso(self.start, self.end)
        return None

    def validate(self):
        if self.start and self.end and self.start > self.end:
            raise InvalidDateRangeError(f"Start date {self.start} is after end date {self.end}")

    def to_jql(self, team_field: str) -> str:
        parts = []
        if self.project_key:
            parts.append(jql.project_clause(self.project_key))
        if self.item_key:
            parts.append(f"key = {jql.quote(self.item_key)}")
        if self.start:
            parts.append(f"worklogDate >= {jql.quote(self.start)}")
        if self.end:
            parts.append(f"worklogDate <= {jql.quote(self.end)}")
        if self.account_id:
            parts.append(f"worklogAuthor = {jql.quote(self.account_id)}")
        if self.team_name:
            parts.append(f"{jql.quote(team_field)} = {jql.quote(self.team_name)}")
        if self.open_sprints:
            parts.append("Sprint in openSprints()")
        if not self.start and not self.end:
            parts.append("updated >= -30d")
        return " AND ".join(parts)

    def cache_key(self) -> str:
        return ":".join(str(v or "") for v in (
            self.start, self.end, self.project_key, self.item_key,
            self.account_id, self.team_name, self.open_sprints,
        ))


class JiraRepository:
    """Queries Jira and maps the answers to entities."""

    def __init__(self, client: JiraClient, settings: Optional[Settings] = None):
        self.client = client
        self.settings = settings or Settings()
        self.mapper = JiraMapper(self.settings.fields)
        fields = self.settings.fields
        self.default_fields = self.mapper.issue_fields(
            "timespent", "aggregatetimeoriginalestimate", "aggregatetimespent", "subtasks", "parent",
            "created", "updated", "resolutiondate", "assignee", "labels",
            fields.team, fields.ponderation, fields.begin_date, fields.end_date,
        )

    # Issues

    def search_items(self, query: str, fields: Optional[str] = None,
                     page_size: int = 100) -> SearchResult:
        """Every issue matching a JQL query, all pages fetched."""
        raw = self.client.search_issues(query, fields or self.default_fields, page_size)
        return self.mapper.search_result(raw)

    def search_items_limited(self, query: str, fields: Optional[str] = None,
                             max_results: int = 20) -> SearchResult:
        raw = self.client.search_issues_limited(query, fields or self.default_fields, max_results)
        return self.mapper.search_result(raw)

    def find_sprint_issues(self, sprint_id: int) -> Tuple[WorkItem, ...]:
        raws = self.client.get_sprint_issues(sprint_id, self.mapper.issue_fields())
        return tuple(self.mapper.work_items(raws))

    def find_board_sprint_issues(self, board_id: int, sprint_id: int) -> Tuple[WorkItem, ...]:
        raws = self.client.get_board_sprint_issues(board_id, sprint_id, self.mapper.issue_fields())
        return tuple(self.mapper.work_items(raws))

    def find_open_sprint_issues(self, project_key: str) -> Tuple[WorkItem, ...]:
        query = f"{jql.project_clause(project_key)} AND Sprint in openSprints()"
        return self.search_items(query, self.mapper.issue_fields()).items

    def find_backlog_issues(self, project_key: str) -> Tuple[WorkItem, ...]:
        query = (
            f"{jql.project_clause(project_key)} AND Sprint is EMPTY "
            f"AND statusCategory != Done ORDER BY created DESC"
        )
        return self.search_items(query).items

    # Worklogs

    def fetch_worklogs(self, item_key: str) -> Tuple[TimeEntry, ...]:
        """All worklogs of one issue."""
        raws = self.client.get_issue_worklogs(item_key)
        return tuple(self.mapper.time_entries(raws, item_key))

    def search_worklogs(self, query: WorklogQuery) -> Tuple[TimeEntry, ...]:
        """Worklogs of the issues matching the query, filtered by date and author.

        Issues whose worklogs cannot be read are skipped.
        """
        query.validate()
        date_range = query.date_range()
        fields = self.mapper.issue_fields(
            "project", self.settings.fields.ponderation, self.settings.fields.team
        )
        raw = self.client.search_issues(query.to_jql(self.settings.fields.team), fields)

        def fetch(issue):
            raws = self.client.get_issue_worklogs(issue["key"])
            return self.mapper.time_entries(raws, issue["key"], issue.get("fields"))

        outcome = run_batched(fetch, raw.get("issues", []), WORKLOG_BATCH_SIZE,
                              default=[], label="worklog fetch")
        entries = []
        for issue_entries in outcome.results:
            for entry in issue_entries:
                if date_range and not entry.is_within_range(date_range):
                    continue
                if query.account_id and not entry.is_from_author(query.account_id):
                    continue
                entries.append(entry)

        logger.info(f"Found {len(entries)} worklogs matching criteria")
        return tuple(entries)

    # Boards and sprints

    def get_board(self, board_id: int) -> Board:
        return self.mapper.board(self.client.get_board(board_id), board_id)

    def get_board_configuration(self, board_id: int) -> BoardConfiguration:
        return self.mapper.board_configuration(self.client.get_board_configuration(board_id), board_id)

    def get_saved_filter_query(self, filter_id) -> Optional[str]:
        return self.client.get_filter_jql(filter_id)

    def get_sprints_for_board(self, board_id: int, state: Optional[str] = None) -> Tuple[Sprint, ...]:
        raws = self.client.get_board_sprints(board_id, state)
        return tuple(self.mapper.sprint(raw, board_id) for raw in raws)

    def find_closed_sprints(self, board_id: int, limit: int = 10) -> Tuple[Sprint, ...]:
        """Most recently ended closed sprints first."""
        sprints = [s for s in self.get_sprints_for_board(board_id, "closed") if s.end]
        sprints.sort(key=lambda s: s.end, reverse=True)
        return tuple(sprints[:limit])


def board_or_placeholder(repository, board_id: int) -> Board:
    """Board from any repository, or a nameless placeholder when Jira fails.

    Applied outside the cache, so a failed read is retried on the next call.
    """
    try:
        return repository.get_board(board_id)
    except SourceUnavailableError as e:
        logger.warning(f"Could not fetch board {board_id}: {e}")
        return JiraMapper.board(None, board_id)


def board_filter_query(repository, board_id: int) -> Optional[str]:
    """JQL of a board's saved filter, None when it has none or it cannot be read."""
    try:
        config = repository.get_board_configuration(board_id)
        if config.filter_id is None:
            return None
        return repository.get_saved_filter_query(config.filter_id) or None
    except SourceUnavailableError as e:
        logger.warning(f"Could not read the saved filter of board {board_id}: {e}")
        return None

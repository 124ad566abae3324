"""Map raw Jira JSON to domain entities."""

from typing import Iterable, List, Optional

from kpi.classification import classify
from kpi.config import FieldConfig
from kpi.entities import Board, BoardConfiguration, SearchResult, Sprint, TimeEntry, WorkItem
from kpi.values import Author, Duration, parse_datetime

# Fields every issue query asks for; custom fields are appended per query
ISSUE_FIELDS = ["key", "summary", "issuetype", "status", "timeoriginalestimate"]
EFFORT_FIELDS = ["timespent", "aggregatetimeoriginalestimate", "aggregatetimespent", "subtasks", "parent"]


def _duration(value) -> Optional[Duration]:
    if value is None:
        return None
    try:
        return Duration.from_seconds(max(0, float(value)))
    except (TypeError, ValueError):
        return None


def _number(value) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        value = value.get("value")
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _name(value) -> Optional[str]:
    """Name of a select/team/user field, which Jira returns in several shapes."""
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, dict):
        text = value.get("name") or value.get("value") or value.get("displayName") or ""
        return str(text).strip() or None
    return None


def extract_comment_text(comment) -> str:
    """Plain text of an Atlassian Document Format comment, one line per block."""
    if not comment:
        return ""
    if isinstance(comment, str):
        return comment
    blocks = comment.get("content") or []
    lines = []
    for block in blocks:
        parts = block.get("content") or []
        lines.append("".join(part.get("text", "") for part in parts))
    return "\n".join(lines)


class JiraMapper:
    """Turn Jira payloads into entities, reading custom fields from FieldConfig."""

    def __init__(self, fields: Optional[FieldConfig] = None):
        self.fields = fields or FieldConfig()

    def issue_fields(self, *extra: str, effort: bool = False) -> str:
        """Comma separated field list for a search request."""
        names = list(ISSUE_FIELDS)
        if effort:
            names.extend(EFFORT_FIELDS)
        names.extend(self.fields.story_point_fields)
        for name in extra:
            if name not in names:
                names.append(name)
        return ",".join(names)

    def team_name(self, issue_fields: dict) -> Optional[str]:
        return _name(issue_fields.get(self.fields.team))

    def work_item(self, raw: dict, parent_key: Optional[str] = None) -> WorkItem:
        fields = raw.get("fields") or {}
        status = fields.get("status") or {}
        if isinstance(status, str):
            status = {"name": status}
        status_name = status.get("name") or "Unknown"
        category = status.get("statusCategory") or {}
        classification = classify(status_name, category.get("key"), category.get("name"))

        parent = fields.get("parent") or {}
        subtasks = fields.get("subtasks") or []
        assignee = fields.get("assignee") or {}

        return WorkItem(
            key=raw.get("key", ""),
            summary=fields.get("summary") or "",
            item_type=(fields.get("issuetype") or {}).get("name") or "Unknown",
            status=status_name,
            status_category=classification.category,
            status_category_key=classification.category_key,
            story_points=self.fields.story_points_of(fields),
            original_estimate=_duration(fields.get("timeoriginalestimate")),
            parent_key=parent_key or parent.get("key"),
            time_spent=_duration(fields.get("timespent")),
            aggregate_estimate=_duration(fields.get("aggregatetimeoriginalestimate")),
            aggregate_time_spent=_duration(fields.get("aggregatetimespent")),
            subtask_keys=tuple(st["key"] for st in subtasks if st.get("key")),
            team=self.team_name(fields),
            assignee=assignee.get("displayName") if isinstance(assignee, dict) else None,
            ponderation=_number(fields.get(self.fields.ponderation)),
            labels=tuple(fields.get("labels") or ()),
            created=parse_datetime(fields.get("created")),
            updated=parse_datetime(fields.get("updated")),
            resolved_at=parse_datetime(fields.get("resolutiondate")),
            begin_date=parse_datetime(fields.get(self.fields.begin_date)),
            end_date=parse_datetime(fields.get(self.fields.end_date)),
        )

    def work_items(self, raws: Iterable[dict]) -> List[WorkItem]:
        return [self.work_item(raw) for raw in raws]

    def search_result(self, raw: dict) -> SearchResult:
        items = tuple(self.work_items(raw.get("issues", [])))
        return SearchResult(items=items, total=raw.get("total") or len(items))

    def time_entry(self, raw: dict, item_key: str, issue_fields: Optional[dict] = None) -> TimeEntry:
        issue_fields = issue_fields or {}
        raw_author = raw.get("author") or {}
        if raw_author.get("accountId"):
            author = Author(
                raw_author["accountId"],
                raw_author.get("displayName") or "Unknown",
                (raw_author.get("avatarUrls") or {}).get("48x48"),
            )
        else:
            author = Author.unknown()

        return TimeEntry(
            id=str(raw.get("id", "")),
            item_key=item_key,
            author=author,
            time_spent=Duration.from_seconds(max(0, raw.get("timeSpentSeconds") or 0)),
            started=parse_datetime(raw.get("started")),
            note=extract_comment_text(raw.get("comment")),
            billable=True,
            item_summary=issue_fields.get("summary"),
            item_type=(issue_fields.get("issuetype") or {}).get("name"),
            item_status=(issue_fields.get("status") or {}).get("name"),
            story_points=self.fields.story_points_of(issue_fields),
            weight=_number(issue_fields.get(self.fields.ponderation)),
            original_estimate=_duration(issue_fields.get("timeoriginalestimate")),
        )

    def time_entries(self, raws: Iterable[dict], item_key: str,
                     issue_fields: Optional[dict] = None) -> List[TimeEntry]:
        """Map worklogs, skipping any without a start date."""
        return [
            self.time_entry(raw, item_key, issue_fields)
            for raw in raws
            if parse_datetime(raw.get("started")) is not None
        ]

    @staticmethod
    def sprint(raw: dict, board_id: Optional[int] = None) -> Sprint:
        return Sprint(
            id=raw["id"],
            name=raw.get("name", ""),
            state=raw.get("state", ""),
            board_id=board_id if board_id is not None else raw.get("originBoardId"),
            start=parse_datetime(raw.get("startDate")),
            end=parse_datetime(raw.get("endDate")),
            completed=parse_datetime(raw.get("completeDate")),
            goal=raw.get("goal") or None,
        )

    @staticmethod
    def board(raw: Optional[dict], board_id: int) -> Board:
        """Board entity; a board Jira would not return gets a placeholder name."""
        if not raw:
            return Board(id=board_id, name=f"Board {board_id}", project_key=None)
        location = raw.get("location") or {}
        return Board(
            id=raw.get("id", board_id),
            name=raw.get("name") or f"Board {board_id}",
            project_key=location.get("projectKey") or None,
        )

    @staticmethod
    def board_configuration(raw: Optional[dict], board_id: int) -> BoardConfiguration:
        filter_id = ((raw or {}).get("filter") or {}).get("id")
        return BoardConfiguration(board_id=board_id, filter_id=filter_id)

"""Domain entities built from raw Jira records.

Entities are frozen: they are created per fetch, may sit in the cache, and
are only ever replaced, never modified.
"""

import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional, Tuple

from kpi import classification
from kpi.values import Author, DateRange, Duration, round_half_up

SPRINT_STATES = ("future", "active", "closed")


def project_key_of(item_key: str) -> str:
    """Project part of an issue key ("ABC-12" -> "ABC")."""
    return item_key.split("-", 1)[0] if "-" in item_key else item_key


def _days_between(start: datetime, end: datetime) -> int:
    return math.ceil((end - start).total_seconds() / 86400)


@dataclass(frozen=True)
class WorkItem:
    """A Jira issue (story, task, bug, epic, legend, subtask...)."""

    key: str
    summary: str = ""
    item_type: str = "Task"
    status: str = "Unknown"
    status_category: str = classification.UNKNOWN
    status_category_key: str = "undefined"
    story_points: Optional[float] = None
    original_estimate: Optional[Duration] = None
    parent_key: Optional[str] = None
    # Effort fields as returned by Jira, used by the hierarchy roll-up
    time_spent: Optional[Duration] = None
    aggregate_estimate: Optional[Duration] = None
    aggregate_time_spent: Optional[Duration] = None
    subtask_keys: Tuple[str, ...] = ()
    # Support board attributes
    team: Optional[str] = None
    assignee: Optional[str] = None
    ponderation: Optional[float] = None
    labels: Tuple[str, ...] = ()
    created: Optional[datetime] = None
    updated: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    begin_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @property
    def project_key(self) -> str:
        return project_key_of(self.key)

    @property
    def classification(self) -> classification.Classification:
        return classification.Classification(self.status_category, self.status_category_key)

    @property
    def bucket(self) -> Optional[str]:
        """Histogram bucket, None when the status is unknown."""
        return classification.status_bucket(self.classification, self.status)

    @property
    def is_done(self) -> bool:
        return self.status_category == classification.DONE

    @property
    def is_bug(self) -> bool:
        return classification.is_bug_type(self.item_type)

    @property
    def is_legend(self) -> bool:
        return classification.is_legend_type(self.item_type)

    def to_dict(self) -> dict:
        return {
            "issueKey": self.key,
            "summary": self.summary,
            "issueType": self.item_type,
            "status": self.status,
            "statusCategory": self.status_category,
            "statusCategoryKey": self.status_category_key,
            "storyPoints": self.story_points,
            "originalEstimateSeconds": self.original_estimate.seconds if self.original_estimate else None,
        }


@dataclass(frozen=True)
class TimeEntry:
    """A worklog: one block of time logged against an issue."""

    id: str
    item_key: str
    author: Author
    time_spent: Duration
    started: datetime
    note: str = ""
    billable: bool = True
    # Snapshot of the owning issue at fetch time
    item_summary: Optional[str] = None
    item_type: Optional[str] = None
    item_status: Optional[str] = None
    story_points: Optional[float] = None
    weight: Optional[float] = None
    original_estimate: Optional[Duration] = None

    @property
    def project_key(self) -> str:
        return project_key_of(self.item_key)

    @property
    def work_date(self) -> str:
        return self.started.date().isoformat()

    def mark_billable(self) -> "TimeEntry":
        return replace(self, billable=True)

    def mark_non_billable(self) -> "TimeEntry":
        return replace(self, billable=False)

    def is_within_range(self, date_range: DateRange) -> bool:
        return date_range.contains(self.started)

    def is_from_author(self, account_id: str) -> bool:
        return self.author.account_id == account_id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "issueKey": self.item_key,
            "author": {
                "accountId": self.author.account_id,
                "displayName": self.author.display_name,
                "avatarUrl": self.author.avatar_url,
            },
            "timeSpentSeconds": self.time_spent.seconds,
            "timeSpentHours": self.time_spent.hours,
            "workStart": self.started.isoformat(),
            "workDate": self.work_date,
            "description": self.note,
            "billable": self.billable,
            "issueSummary": self.item_summary,
            "issueType": self.item_type,
            "status": self.item_status,
            "storyPoints": self.story_points,
            "weight": self.weight,
            "originalEstimateSeconds": self.original_estimate.seconds if self.original_estimate else None,
        }


@dataclass(frozen=True)
class Sprint:
    """A Jira agile sprint.

    Time-dependent properties take `now` so they can be computed against a
    fixed clock.
    """

    id: int
    name: str
    state: str
    board_id: Optional[int] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    completed: Optional[datetime] = None
    goal: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "state", (self.state or "").lower())

    @property
    def is_active(self) -> bool:
        return self.state == "active"

    @property
    def date_range(self) -> Optional[DateRange]:
        if not self.start or not self.end or self.start > self.end:
            return None
        return DateRange(self.start, self.end)

    @property
    def planned_duration_days(self) -> Optional[int]:
        date_range = self.date_range
        return date_range.duration_days if date_range else None

    @property
    def actual_duration_days(self) -> Optional[int]:
        if not self.start or not self.completed:
            return None
        return _days_between(self.start, self.completed)

    def remaining_days(self, now: Optional[datetime] = None) -> Optional[int]:
        if not self.is_active or not self.end:
            return None
        return max(0, _days_between(now or datetime.now(), self.end))

    def elapsed_days(self, now: Optional[datetime] = None) -> Optional[int]:
        if not self.start:
            return None
        return max(0, _days_between(self.start, now or datetime.now()))

    def progress_percent(self, now: Optional[datetime] = None) -> Optional[int]:
        """Share of the planned duration already elapsed, active sprints only."""
        if not self.is_active:
            return None
        planned = self.planned_duration_days
        elapsed = self.elapsed_days(now)
        if not planned or elapsed is None:
            return None
        return min(100, round_half_up(elapsed / planned * 100))

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        if not self.is_active or not self.end:
            return False
        return (now or datetime.now()) > self.end

    def to_dict(self, now: Optional[datetime] = None) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "state": self.state,
            "startDate": self.start.isoformat() if self.start else None,
            "endDate": self.end.isoformat() if self.end else None,
            "completeDate": self.completed.isoformat() if self.completed else None,
            "goal": self.goal,
            "boardId": self.board_id,
            "isActive": self.is_active,
            "plannedDurationDays": self.planned_duration_days,
            "actualDurationDays": self.actual_duration_days,
            "elapsedDays": self.elapsed_days(now),
            "remainingDays": self.remaining_days(now),
            "progressPercent": self.progress_percent(now),
            "isOverdue": self.is_overdue(now),
        }


@dataclass(frozen=True)
class Board:
    id: int
    name: str
    project_key: Optional[str] = None

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "projectKey": self.project_key}


@dataclass(frozen=True)
class BoardConfiguration:
    board_id: int
    filter_id: Optional[int] = None


@dataclass(frozen=True)
class SearchResult:
    """Issues matching a query, all pages included."""

    items: Tuple[WorkItem, ...] = field(default_factory=tuple)
    total: int = 0

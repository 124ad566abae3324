"""Aggregate worklogs into time-tracking KPIs."""

from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Tuple

from kpi.entities import TimeEntry
from kpi.values import Duration


@dataclass(frozen=True)
class UserMetrics:
    account_id: str
    display_name: str
    total_hours: float
    billable_hours: float
    worklog_count: int
    issue_count: int

    def to_dict(self) -> dict:
        return {
            "accountId": self.account_id,
            "displayName": self.display_name,
            "totalHours": self.total_hours,
            "billableHours": self.billable_hours,
            "worklogCount": self.worklog_count,
            "issueCount": self.issue_count,
        }


@dataclass(frozen=True)
class ProjectMetrics:
    project_key: str
    total_hours: float
    worklog_count: int
    issue_count: int
    user_count: int

    def to_dict(self) -> dict:
        return {
            "projectKey": self.project_key,
            "totalHours": self.total_hours,
            "worklogCount": self.worklog_count,
            "issueCount": self.issue_count,
            "userCount": self.user_count,
        }


@dataclass(frozen=True)
class DayMetrics:
    date: str
    total_hours: float
    worklog_count: int
    user_count: int

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "totalHours": self.total_hours,
            "worklogCount": self.worklog_count,
            "userCount": self.user_count,
        }


@dataclass(frozen=True)
class IssueTypeMetrics:
    issue_type: str
    total_hours: float
    worklog_count: int
    issue_count: int

    def to_dict(self) -> dict:
        return {
            "issueType": self.issue_type,
            "totalHours": self.total_hours,
            "worklogCount": self.worklog_count,
            "issueCount": self.issue_count,
        }


@dataclass(frozen=True)
class WorklogMetrics:
    total_time_spent: Duration
    billable_time: Duration
    worklog_count: int
    unique_users: int
    unique_issues: int
    unique_projects: int
    average_time_per_worklog: Duration
    by_user: Tuple[UserMetrics, ...] = ()
    by_project: Tuple[ProjectMetrics, ...] = ()
    by_day: Tuple[DayMetrics, ...] = ()
    by_issue_type: Tuple[IssueTypeMetrics, ...] = ()

    @classmethod
    def empty(cls) -> "WorklogMetrics":
        return cls(
            total_time_spent=Duration.zero(),
            billable_time=Duration.zero(),
            worklog_count=0,
            unique_users=0,
            unique_issues=0,
            unique_projects=0,
            average_time_per_worklog=Duration.zero(),
        )

    @property
    def total_time_spent_hours(self) -> float:
        return self.total_time_spent.hours

    @property
    def billable_hours(self) -> float:
        return self.billable_time.hours

    @property
    def non_billable_hours(self) -> float:
        return self.total_time_spent.subtract(self.billable_time).hours

    def to_dict(self) -> dict:
        return {
            "totalTimeSpentSeconds": self.total_time_spent.seconds,
            "totalTimeSpentHours": self.total_time_spent_hours,
            "billableHours": self.billable_hours,
            "nonBillableHours": self.non_billable_hours,
            "worklogCount": self.worklog_count,
            "uniqueUsers": self.unique_users,
            "uniqueIssues": self.unique_issues,
            "uniqueProjects": self.unique_projects,
            "averageTimePerWorklogSeconds": self.average_time_per_worklog.seconds,
            "averageTimePerWorklog": self.average_time_per_worklog.format(),
            "byUser": [m.to_dict() for m in self.by_user],
            "byProject": [m.to_dict() for m in self.by_project],
            "byDay": [m.to_dict() for m in self.by_day],
            "byIssueType": [m.to_dict() for m in self.by_issue_type],
        }


def _sum(entries: Iterable[TimeEntry]) -> Duration:
    total = Duration.zero()
    for entry in entries:
        total = total.add(entry.time_spent)
    return total


def _group(entries: Iterable[TimeEntry], key) -> Dict[str, List[TimeEntry]]:
    groups = defaultdict(list)
    for entry in entries:
        groups[key(entry)].append(entry)
    return groups


class WorklogMetricsCalculator:
    """Pure aggregation over a list of worklogs."""

    def calculate(self, entries: Iterable[TimeEntry]) -> WorklogMetrics:
        entries = list(entries)
        if not entries:
            return WorklogMetrics.empty()

        total = _sum(entries)
        return WorklogMetrics(
            total_time_spent=total,
            billable_time=_sum(e for e in entries if e.billable),
            worklog_count=len(entries),
            unique_users=len({e.author.account_id for e in entries}),
            unique_issues=len({e.item_key for e in entries}),
            unique_projects=len({e.project_key for e in entries}),
            average_time_per_worklog=Duration.from_seconds(total.seconds / len(entries)),
            by_user=self.group_by_user(entries),
            by_project=self.group_by_project(entries),
            by_day=self.group_by_day(entries),
            by_issue_type=self.group_by_issue_type(entries),
        )

    def group_by_user(self, entries: List[TimeEntry]) -> Tuple[UserMetrics, ...]:
        rows = []
        for account_id, group in _group(entries, lambda e: e.author.account_id).items():
            rows.append(UserMetrics(
                account_id=account_id,
                display_name=group[0].author.display_name,
                total_hours=_sum(group).hours,
                billable_hours=_sum(e for e in group if e.billable).hours,
                worklog_count=len(group),
                issue_count=len({e.item_key for e in group}),
            ))
        rows.sort(key=lambda r: r.total_hours, reverse=True)
        return tuple(rows)

    def group_by_project(self, entries: List[TimeEntry]) -> Tuple[ProjectMetrics, ...]:
        rows = []
        for project_key, group in _group(entries, lambda e: e.project_key).items():
            rows.append(ProjectMetrics(
                project_key=project_key,
                total_hours=_sum(group).hours,
                worklog_count=len(group),
                issue_count=len({e.item_key for e in group}),
                user_count=len({e.author.account_id for e in group}),
            ))
        rows.sort(key=lambda r: r.total_hours, reverse=True)
        return tuple(rows)

    def group_by_day(self, entries: List[TimeEntry]) -> Tuple[DayMetrics, ...]:
        """One row per work date, oldest first."""
        rows = []
        for day, group in _group(entries, lambda e: e.work_date).items():
            rows.append(DayMetrics(
                date=day,
                total_hours=_sum(group).hours,
                worklog_count=len(group),
                user_count=len({e.author.account_id for e in group}),
            ))
        rows.sort(key=lambda r: r.date)
        return tuple(rows)

    def group_by_issue_type(self, entries: List[TimeEntry]) -> Tuple[IssueTypeMetrics, ...]:
        rows = []
        for issue_type, group in _group(entries, lambda e: e.item_type or "Unknown").items():
            rows.append(IssueTypeMetrics(
                issue_type=issue_type,
                total_hours=_sum(group).hours,
                worklog_count=len(group),
                issue_count=len({e.item_key for e in group}),
            ))
        rows.sort(key=lambda r: r.total_hours, reverse=True)
        return tuple(rows)

"""Support board KPIs: ticket weight (ponderation) breakdowns and resolution times."""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Sequence, Tuple

from kpi.classification import BUCKET_IN_PROGRESS, BUCKET_QA, BUCKET_RESOLVED, BUCKET_TODO, ponderation_level
from kpi.entities import WorkItem
from kpi.sprint_metrics import StatusHistogram
from kpi.values import HOURS_PER_WORKDAY, count_working_days, round_half_up

logger = logging.getLogger(__name__)

UNASSIGNED = "Non assigné"
NO_TEAM = "Sans équipe"
LEVELS = ("low", "medium", "high", "veryHigh")

# (minimum weight, maximum weight or None, resolution deadline in hours)
HIGH_WEIGHT_SLA = (16, 20, 72)
VERY_HIGH_WEIGHT_SLA = (21, None, 24)

_FIELD_BY_BUCKET = {
    BUCKET_TODO: "todo",
    BUCKET_IN_PROGRESS: "in_progress",
    BUCKET_QA: "qa",
    BUCKET_RESOLVED: "resolved",
}


@dataclass(frozen=True)
class WeightGroup:
    name: str
    ponderation: float
    ticket_count: int

    def to_dict(self) -> dict:
        return {"name": self.name, "ponderation": self.ponderation, "ticketCount": self.ticket_count}


@dataclass(frozen=True)
class LevelStats:
    count: int = 0
    total: float = 0

    def to_dict(self) -> dict:
        return {"count": self.count, "total": self.total}


@dataclass(frozen=True)
class ResolutionDetail:
    issue_key: str
    summary: str
    begin_date: str
    end_date: str
    working_days: int
    ponderation: float

    def to_dict(self) -> dict:
        return {
            "issueKey": self.issue_key,
            "summary": self.summary,
            "beginDate": self.begin_date,
            "endDate": self.end_date,
            "workingDays": self.working_days,
            "ponderation": self.ponderation,
        }


@dataclass(frozen=True)
class SupportMetrics:
    status_counts: StatusHistogram
    ponderation_by_status: StatusHistogram
    ponderation_by_type: Tuple[WeightGroup, ...]
    ponderation_by_assignee: Tuple[WeightGroup, ...]
    ponderation_by_level: Tuple[Tuple[str, LevelStats], ...]
    ponderation_by_label: Tuple[WeightGroup, ...]
    ponderation_by_team: Tuple[WeightGroup, ...]
    backlog_count: int
    backlog_ponderation: float
    avg_resolution_time_hours: float
    avg_first_response_time_hours: float
    high_pond_fast_resolution_percent: int
    very_high_pond_fast_resolution_percent: int
    resolution_details: Tuple[ResolutionDetail, ...] = ()

    @property
    def total_ponderation(self) -> float:
        return self.ponderation_by_status.total

    def to_dict(self) -> dict:
        return {
            "statusCounts": self.status_counts.to_dict(),
            "ponderationByStatus": self.ponderation_by_status.to_dict(),
            "ponderationByType": {g.name: g.ponderation for g in self.ponderation_by_type},
            "ponderationByAssignee": [g.to_dict() for g in self.ponderation_by_assignee],
            "ponderationByLevel": {level: stats.to_dict() for level, stats in self.ponderation_by_level},
            "ponderationByLabel": [g.to_dict() for g in self.ponderation_by_label],
            "ponderationByTeam": [g.to_dict() for g in self.ponderation_by_team],
            "backlog": {
                "ticketCount": self.backlog_count,
                "totalPonderation": self.backlog_ponderation,
            },
            "avgResolutionTimeHours": self.avg_resolution_time_hours,
            "avgFirstResponseTimeHours": self.avg_first_response_time_hours,
            "highPondFastResolutionPercent": self.high_pond_fast_resolution_percent,
            "veryHighPondFastResolutionPercent": self.very_high_pond_fast_resolution_percent,
            "totalPonderation": self.total_ponderation,
            "resolutionDetails": [d.to_dict() for d in self.resolution_details],
        }


def _weight(item: WorkItem) -> float:
    return item.ponderation or 0


def _group(items: Iterable[WorkItem], names: Callable[[WorkItem], Sequence[str]]) -> Tuple[WeightGroup, ...]:
    """Sum weights per name, heaviest first. An item may belong to several names."""
    totals: Dict[str, List[float]] = OrderedDict()
    for item in items:
        for name in names(item):
            entry = totals.setdefault(name, [0, 0])
            entry[0] += _weight(item)
            entry[1] += 1
    groups = [WeightGroup(name, weight, count) for name, (weight, count) in totals.items()]
    groups.sort(key=lambda g: g.ponderation, reverse=True)
    return tuple(groups)


def _within_sla(weight: float, hours: float, sla) -> Tuple[bool, bool]:
    """(in the SLA's weight band, resolved within its deadline)."""
    low, high, deadline = sla
    in_band = weight >= low and (high is None or weight <= high)
    return in_band, in_band and hours < deadline


def _percent(part: int, whole: int) -> int:
    return round_half_up(part / whole * 100) if whole else 0


class SupportMetricsCalculator:
    """Pure aggregation over support tickets.

    Args:
        hours_per_day: Length of a working day, used to turn working days
            into hours
    """

    def __init__(self, hours_per_day: float = HOURS_PER_WORKDAY):
        self.hours_per_day = hours_per_day

    def calculate(self, items: Iterable[WorkItem], backlog: Iterable[WorkItem] = ()) -> SupportMetrics:
        """Compute the support KPIs.

        Resolution time counts working days from the ticket's begin date to
        its end date, both included, for done tickets that have both. First
        response time counts working days from creation to begin date.

        Args:
            items: Tickets of the period or the open sprint
            backlog: Open tickets outside any sprint

        Returns:
            SupportMetrics
        """
        items = list(items)
        backlog = list(backlog)
        counts = dict.fromkeys(_FIELD_BY_BUCKET.values(), 0)
        weights = dict.fromkeys(_FIELD_BY_BUCKET.values(), 0)
        levels = OrderedDict((level, [0, 0]) for level in LEVELS)

        for item in items:
            bucket = item.bucket
            if bucket is not None:
                counts[_FIELD_BY_BUCKET[bucket]] += 1
                weights[_FIELD_BY_BUCKET[bucket]] += _weight(item)
            level = ponderation_level(item.ponderation)
            if level is not None:
                levels[level][0] += 1
                levels[level][1] += _weight(item)

        details, sla = self.resolution_details(items)
        resolution_days = [d.working_days for d in details]
        first_response_days = [
            count_working_days(i.created.date(), i.begin_date.date())
            for i in items if i.created and i.begin_date
        ]

        return SupportMetrics(
            status_counts=StatusHistogram(total=len(items), **counts),
            ponderation_by_status=StatusHistogram(total=sum(_weight(i) for i in items), **weights),
            ponderation_by_type=_group(items, lambda i: [i.item_type]),
            ponderation_by_assignee=_group(items, lambda i: [i.assignee or UNASSIGNED]),
            ponderation_by_level=tuple((lvl, LevelStats(c, t)) for lvl, (c, t) in levels.items()),
            ponderation_by_label=_group(items, lambda i: i.labels),
            ponderation_by_team=_group(items, lambda i: [i.team or NO_TEAM]),
            backlog_count=len(backlog),
            backlog_ponderation=sum(_weight(i) for i in backlog),
            avg_resolution_time_hours=self._average_hours(resolution_days),
            avg_first_response_time_hours=self._average_hours(first_response_days),
            high_pond_fast_resolution_percent=_percent(sla["high_fast"], sla["high"]),
            very_high_pond_fast_resolution_percent=_percent(sla["very_high_fast"], sla["very_high"]),
            resolution_details=details,
        )

    def resolution_details(self, items: Sequence[WorkItem]) -> Tuple[Tuple[ResolutionDetail, ...], dict]:
        """Per-ticket resolution times, longest first, with SLA counters."""
        details = []
        sla = {"high": 0, "high_fast": 0, "very_high": 0, "very_high_fast": 0}
        for item in items:
            if not (item.is_done and item.begin_date and item.end_date):
                continue
            days = count_working_days(item.begin_date.date(), item.end_date.date())
            details.append(ResolutionDetail(
                issue_key=item.key,
                summary=item.summary,
                begin_date=item.begin_date.date().isoformat(),
                end_date=item.end_date.date().isoformat(),
                working_days=days,
                ponderation=item.ponderation,
            ))
            hours = days * self.hours_per_day
            in_band, fast = _within_sla(_weight(item), hours, HIGH_WEIGHT_SLA)
            sla["high"] += in_band
            sla["high_fast"] += fast
            in_band, fast = _within_sla(_weight(item), hours, VERY_HIGH_WEIGHT_SLA)
            sla["very_high"] += in_band
            sla["very_high_fast"] += fast

        details.sort(key=lambda d: d.working_days, reverse=True)
        logger.debug(f"Resolution time computed over {len(details)} tickets")
        return tuple(details), sla

    def _average_hours(self, working_days: Sequence[int]) -> float:
        if not working_days:
            return 0
        return sum(working_days) / len(working_days) * self.hours_per_day

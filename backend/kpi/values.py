"""Immutable value types: Duration, DateRange and Author."""

import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterator, Optional, Union

from kpi.errors import InvalidDateRangeError, InvalidInputError

SECONDS_PER_HOUR = 3600
HOURS_PER_WORKDAY = 8

_DATE_FORMATS = [
    "%Y-%m-%dT%H:%M:%S.%f%z",  # Jira: 2024-10-31T12:11:56.289-0400
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d",
]


def round_half_up(value: float, digits: int = 0) -> float:
    """Round with halves going up (2.5 -> 3), unlike the built-in round()."""
    factor = 10 ** digits
    result = math.floor(value * factor + 0.5) / factor
    return int(result) if digits == 0 else result


def parse_datetime(value: Optional[Union[str, datetime, date]]) -> Optional[datetime]:
    """Parse a Jira date string into a naive datetime.

    The wall-clock time reported by Jira is kept and the offset dropped, so
    that day bucketing matches the date part of the raw string.

    Returns:
        datetime, or None when the value is empty or unparseable
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime.combine(value, time.min)

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+0000"

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=None)
        except ValueError:
            continue

    return None


@dataclass(frozen=True, order=True)
class Duration:
    """A non-negative amount of time in whole seconds."""

    seconds: int = 0

    def __post_init__(self):
        if self.seconds < 0:
            raise InvalidInputError("Duration cannot be negative")
        if not isinstance(self.seconds, int):
            object.__setattr__(self, "seconds", round_half_up(self.seconds))

    @classmethod
    def zero(cls) -> "Duration":
        return cls(0)

    @classmethod
    def from_seconds(cls, seconds: float) -> "Duration":
        return cls(round_half_up(seconds))

    @classmethod
    def from_minutes(cls, minutes: float) -> "Duration":
        return cls(round_half_up(minutes * 60))

    @classmethod
    def from_hours(cls, hours: float) -> "Duration":
        return cls(round_half_up(hours * SECONDS_PER_HOUR))

    @property
    def minutes(self) -> float:
        return self.seconds / 60

    @property
    def hours(self) -> float:
        return self.seconds / SECONDS_PER_HOUR

    @property
    def days(self) -> float:
        """Length in 8-hour workdays."""
        return self.seconds / (SECONDS_PER_HOUR * HOURS_PER_WORKDAY)

    def add(self, other: "Duration") -> "Duration":
        return Duration(self.seconds + other.seconds)

    def subtract(self, other: "Duration") -> "Duration":
        """Difference, clamped at zero."""
        return Duration(max(0, self.seconds - other.seconds))

    def scale(self, factor: float) -> "Duration":
        return Duration(round_half_up(self.seconds * factor))

    def is_zero(self) -> bool:
        return self.seconds == 0

    def format(self) -> str:
        """Render as "Xh Ym", dropping a zero component."""
        total_minutes = round_half_up(self.seconds / 60)
        hours, minutes = divmod(total_minutes, 60)
        if hours == 0:
            return f"{minutes}m"
        if minutes == 0:
            return f"{hours}h"
        return f"{hours}h {minutes}m"

    def __add__(self, other: "Duration") -> "Duration":
        return self.add(other)

    def __str__(self) -> str:
        return self.format()


@dataclass(frozen=True)
class DateRange:
    """Inclusive [start, end] pair of instants."""

    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start > self.end:
            raise InvalidDateRangeError("Start date cannot be after end date")

    @classmethod
    def from_iso(cls, start: str, end: str) -> "DateRange":
        """Build a range from ISO strings.

        A date-only end is stretched to the end of that day so the whole day
        is included.
        """
        start_dt = parse_datetime(start)
        end_dt = parse_datetime(end)
        if start_dt is None or end_dt is None:
            raise InvalidDateRangeError(f"Invalid date range: {start!r} - {end!r}")
        if len(end.strip()) == 10:
            end_dt = datetime.combine(end_dt.date(), time.max)
        return cls(start_dt, end_dt)

    @classmethod
    def this_week(cls, now: Optional[datetime] = None) -> "DateRange":
        """Monday 00:00 to end of Sunday of the current week."""
        day = (now or datetime.now()).date()
        monday = day - timedelta(days=day.weekday())
        sunday = monday + timedelta(days=6)
        return cls(datetime.combine(monday, time.min), datetime.combine(sunday, time.max))

    @classmethod
    def this_month(cls, now: Optional[datetime] = None) -> "DateRange":
        day = (now or datetime.now()).date()
        first = day.replace(day=1)
        next_month = (first + timedelta(days=32)).replace(day=1)
        last = next_month - timedelta(days=1)
        return cls(datetime.combine(first, time.min), datetime.combine(last, time.max))

    @classmethod
    def last_n_days(cls, days: int, now: Optional[datetime] = None) -> "DateRange":
        """The last `days` calendar days, today included."""
        if days < 1:
            raise InvalidInputError("days must be at least 1")
        day = (now or datetime.now()).date()
        first = day - timedelta(days=days - 1)
        return cls(datetime.combine(first, time.min), datetime.combine(day, time.max))

    @property
    def start_iso(self) -> str:
        return self.start.date().isoformat()

    @property
    def end_iso(self) -> str:
        return self.end.date().isoformat()

    @property
    def duration_days(self) -> int:
        """Calendar days between the bounds, rounded up."""
        return math.ceil((self.end - self.start).total_seconds() / 86400)

    @property
    def working_days(self) -> int:
        """Weekdays from start to end, both days included."""
        return count_working_days(self.start.date(), self.end.date())

    def days(self) -> Iterator[date]:
        """Every calendar date touched by the range, in order."""
        current = self.start.date()
        last = self.end.date()
        while current <= last:
            yield current
            current += timedelta(days=1)

    def contains(self, moment: Union[datetime, str]) -> bool:
        if isinstance(moment, str):
            moment = parse_datetime(moment)
            if moment is None:
                return False
        return self.start <= moment <= self.end

    def overlaps(self, other: "DateRange") -> bool:
        return self.start <= other.end and self.end >= other.start

    def encompasses(self, other: "DateRange") -> bool:
        return self.start <= other.start and self.end >= other.end

    def __str__(self) -> str:
        return f"{self.start_iso} -> {self.end_iso}"


def count_working_days(start: date, end: date) -> int:
    """Count Monday-Friday dates in [start, end]; 0 when end < start."""
    count = 0
    current = start
    while current <= end:
        if current.weekday() < 5:
            count += 1
        current += timedelta(days=1)
    return count


@dataclass(frozen=True)
class Author:
    """Who logged a piece of work."""

    account_id: str
    display_name: str = "Unknown"
    avatar_url: Optional[str] = None

    def __post_init__(self):
        if not self.account_id:
            raise InvalidInputError("Author account id is required")
        if not self.display_name:
            object.__setattr__(self, "display_name", "Unknown")

    @classmethod
    def unknown(cls) -> "Author":
        return cls("unknown", "Unknown")

    @property
    def initials(self) -> str:
        parts = [p for p in self.display_name.split() if p]
        return "".join(p[0].upper() for p in parts[:2])

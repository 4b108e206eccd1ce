#
# For licensing see accompanying LICENSE file.
# Copyright © 2025 Apple Inc. All Rights Reserved.
#
"""Capacity rules of a side and the recurrence calculus deciding where they apply."""

import datetime
from copy import deepcopy
from enum import StrEnum
from typing import Any, Iterable, Self

from pydantic import BaseModel, field_serializer

from rackplan.capacity.time_utils import (
    DayOfWeek,
    TimeLike,
    format_time,
    is_weekday,
    is_weekend,
    parse_time,
)

ScheduleId = str


class PeriodType(StrEnum):
    """Usage category of a time range."""

    HighHybrid = "High Hybrid"
    LowHybrid = "Low Hybrid"
    Performance = "Performance"
    GeneralUser = "General User"
    Closed = "Closed"


class RecurrenceType(StrEnum):
    Single = "single"
    Weekday = "weekday"
    Weekend = "weekend"
    Weekly = "weekly"
    AllFuture = "all_future"


RECURRING_TYPES = frozenset(
    {
        RecurrenceType.Weekday,
        RecurrenceType.Weekend,
        RecurrenceType.Weekly,
        RecurrenceType.AllFuture,
    }
)
ENUM_FIELDS = ("period_type", "recurrence_type")


class ScheduleRule(BaseModel):
    """A capacity rule, the persisted row of the `capacity_schedules` table.

    Parameters
    ----------
    schedule_id
        Unique ID of the row.
    side_id
        The side (zone) the rule constrains.
    day_of_week
        0 = Sunday ... 6 = Saturday. A rule lives on exactly one day; a weekend
        rule is stored as one row per weekend day.
    start_time, end_time
        Half-open time of day range `[start_time, end_time)`.
    capacity
        Maximum number of concurrent bookings. Always 0 for Closed rules.
    period_type
        Usage category of the range.
    recurrence_type
        How the rule repeats from `start_date`.
    start_date
        Anchor date. The only date of a single rule, the first date of a
        recurring one.
    end_date
        Last date on which a recurring rule applies, inclusive. None for
        open-ended rules.
    excluded_dates
        Dates on which the rule is suppressed.
    platforms
        Racks the rule opens for booking. None means the category default
        platforms, then every rack of the side.
    """

    schedule_id: ScheduleId
    side_id: int
    day_of_week: DayOfWeek
    start_time: datetime.time
    end_time: datetime.time
    capacity: int
    period_type: PeriodType
    recurrence_type: RecurrenceType
    start_date: datetime.date
    end_date: datetime.date | None = None
    excluded_dates: list[datetime.date] = []
    platforms: list[int] | None = None

    @property
    def is_recurring(self) -> bool:
        return self.recurrence_type in RECURRING_TYPES

    @property
    def time_label(self) -> str:
        return f"{format_time(self.start_time)} - {format_time(self.end_time)}"

    @field_serializer(*ENUM_FIELDS)
    def serialise_enums(self, value: StrEnum) -> str:
        return str(value)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        data = deepcopy(data)
        if data.get("excluded_dates") is None:
            data["excluded_dates"] = []
        return cls(**data)

    def __str__(self) -> str:
        return (
            f"{self.period_type} ({self.recurrence_type}) day {self.day_of_week} "
            f"{self.time_label}, capacity {self.capacity}"
        )


def is_date_excluded(rule: ScheduleRule, date: datetime.date) -> bool:
    """Whether `date` is in the exclusion set of `rule`."""
    return date in rule.excluded_dates


def with_excluded_date(rule: ScheduleRule, date: datetime.date) -> ScheduleRule:
    """Return a copy of `rule` whose exclusion set also contains `date`.

    The exclusion set behaves as a set: excluding a date twice is a no-op.
    """
    if is_date_excluded(rule, date):
        return rule
    return rule.model_copy(update={"excluded_dates": [*rule.excluded_dates, date]})


def _kind_matches(
    rule: ScheduleRule, day_of_week: DayOfWeek, date: datetime.date
) -> bool:
    if rule.day_of_week != day_of_week:
        return False
    match rule.recurrence_type:
        case RecurrenceType.Single:
            return rule.start_date == date
        case RecurrenceType.Weekday:
            return is_weekday(day_of_week) and rule.start_date <= date
        case RecurrenceType.Weekend:
            return is_weekend(day_of_week) and rule.start_date <= date
        case RecurrenceType.Weekly | RecurrenceType.AllFuture:
            return rule.start_date <= date
        case _:
            return False


def schedule_applies(
    rule: ScheduleRule,
    day_of_week: DayOfWeek,
    date: datetime.date,
    time: TimeLike,
) -> bool:
    """Decide whether `rule` governs the instant (`date`, `time`).

    Parameters
    ----------
    rule
        Rule to test.
    day_of_week
        Day of week of `date`, 0 = Sunday.
    date
        Calendar date being evaluated.
    time
        Time of day, compared at minute precision.

    Notes
    -----
    1. The time must fall in `[start_time, end_time)`.
    2. Excluded dates and dates past `end_date` never match.
    """
    t = parse_time(time)
    if not (parse_time(rule.start_time) <= t < parse_time(rule.end_time)):
        return False
    if is_date_excluded(rule, date):
        return False
    if rule.end_date is not None and date > rule.end_date:
        return False
    return _kind_matches(rule, day_of_week, date)


def applies_on_date(
    rule: ScheduleRule, day_of_week: DayOfWeek, date: datetime.date
) -> bool:
    """Whether `rule` applies at any time of day on `date`."""
    return schedule_applies(rule, day_of_week, date, rule.start_time)


def find_applicable_schedules(
    rules: Iterable[ScheduleRule],
    day_of_week: DayOfWeek,
    date: datetime.date,
    time: TimeLike,
) -> list[ScheduleRule]:
    """All rules applying at (`date`, `time`), in input order."""
    return [
        rule for rule in rules if schedule_applies(rule, day_of_week, date, time)
    ]

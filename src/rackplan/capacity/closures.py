#
# For licensing see accompanying LICENSE file.
# Copyright © 2025 Apple Inc. All Rights Reserved.
#
"""Queries used when placing a booking on a date: when the side is closed, which
ranges remain open, and which racks the General User periods it crosses open.
"""

import datetime
import logging
from typing import NamedTuple, Sequence

from rackplan.capacity.records import (
    fetch_schedules,
    get_period_type_defaults,
    get_side_racks,
)
from rackplan.capacity.schedule import PeriodType, ScheduleRule, applies_on_date
from rackplan.capacity.time_utils import (
    TimeLike,
    day_of_week,
    from_minutes,
    parse_time,
    time_ranges_overlap,
    to_minutes,
)
from rackplan.settings import get_settings

logger = logging.getLogger(__name__)


class TimeRange(NamedTuple):
    start_time: datetime.time
    end_time: datetime.time

    @property
    def label(self) -> str:
        return f"{self.start_time:%H:%M} - {self.end_time:%H:%M}"


class GeneralUserPeriod(NamedTuple):
    """A General User rule in force on a date, with the racks it opens."""

    start_time: datetime.time
    end_time: datetime.time
    platforms: list[int]


class PlatformAvailability(NamedTuple):
    is_valid: bool
    unavailable_platforms: list[int]
    available_platforms: list[int]


def _rules_on_date(
    side_id: int,
    date: datetime.date,
    period_type: PeriodType,
    rules: Sequence[ScheduleRule] | None,
) -> list[ScheduleRule]:
    if rules is None:
        rules = fetch_schedules(
            side_id, starts_on_or_before=date, ends_on_or_after=date
        )
    dow = day_of_week(date)
    return sorted(
        (
            rule
            for rule in rules
            if rule.period_type == period_type and applies_on_date(rule, dow, date)
        ),
        key=lambda rule: rule.start_time,
    )


def fetch_closed_periods(
    side_id: int, date: datetime.date, rules: Sequence[ScheduleRule] | None = None
) -> list[TimeRange]:
    """Closed ranges of a side on `date`, ordered by start.

    `rules` are the rules of the side, read from the store when omitted.
    """
    periods = [
        TimeRange(rule.start_time, rule.end_time)
        for rule in _rules_on_date(side_id, date, PeriodType.Closed, rules)
    ]
    logger.debug(f"Side {side_id} has {len(periods)} closed period(s) on {date}")
    return periods


def closed_hours(closed_periods: Sequence[TimeRange]) -> set[str]:
    """Labels ("HH:00") of the hours any closed period touches."""
    hours = set()
    for period in closed_periods:
        for hour in range(24):
            if time_ranges_overlap(
                period.start_time,
                period.end_time,
                datetime.time(hour),
                from_minutes(min((hour + 1) * 60, 24 * 60 - 1)),
            ):
                hours.add(f"{hour:02d}:00")
    return hours


def is_time_closed(
    time: TimeLike, closed_periods: Sequence[TimeRange], is_end_time: bool = False
) -> bool:
    """Whether `time` falls in a closed period.

    A booking may end exactly when a closure starts, so with `is_end_time` the
    start of a closed period is not closed.
    """
    t = parse_time(time)
    for period in closed_periods:
        if is_end_time and t == period.start_time:
            continue
        if period.start_time <= t < period.end_time:
            return True
    return False


def is_time_range_closed(
    start: TimeLike, end: TimeLike, closed_periods: Sequence[TimeRange]
) -> bool:
    return any(
        time_ranges_overlap(start, end, period.start_time, period.end_time)
        for period in closed_periods
    )


def get_available_time_ranges(closed_periods: Sequence[TimeRange]) -> list[TimeRange]:
    """Open ranges of a day between its closed periods.

    The day spans the first to the last configured slot start, e.g. 00:00 to
    23:30. A day without closures is one range; a fully closed day has none.
    """
    settings = get_settings()
    day_start = to_minutes(settings.first_slot)
    day_end = to_minutes(settings.last_slot)
    ranges = []
    current = day_start
    for period in sorted(closed_periods):
        start, end = to_minutes(period.start_time), to_minutes(period.end_time)
        if current < min(start, day_end):
            ranges.append(
                TimeRange(from_minutes(current), from_minutes(min(start, day_end)))
            )
        current = max(current, end)
    if current < day_end:
        ranges.append(TimeRange(from_minutes(current), from_minutes(day_end)))
    return ranges


def fetch_general_user_periods(
    side_id: int,
    date: datetime.date,
    rules: Sequence[ScheduleRule] | None = None,
    default_platforms: Sequence[int] | None = None,
    racks: Sequence[int] | None = None,
) -> list[GeneralUserPeriod]:
    """General User rules of a side in force on `date`, ordered by start.

    A rule without platforms opens the default platforms of General User, or every
    rack of the side when no default platforms are set. `default_platforms` and
    `racks` are read from the store when omitted.
    """
    periods = []
    for rule in _rules_on_date(side_id, date, PeriodType.GeneralUser, rules):
        platforms = rule.platforms
        if not platforms:
            if default_platforms is None:
                default = get_period_type_defaults(side_id).get(PeriodType.GeneralUser)
                default_platforms = default.platforms if default is not None else []
            platforms = default_platforms
        if not platforms:
            if racks is None:
                racks = get_side_racks(side_id)
            platforms = racks
        periods.append(
            GeneralUserPeriod(rule.start_time, rule.end_time, sorted(platforms))
        )
    return periods


def overlapping_general_user_periods(
    periods: Sequence[GeneralUserPeriod], start: TimeLike, end: TimeLike
) -> list[GeneralUserPeriod]:
    """Periods the booking [`start`, `end`) overlaps. Touching ranges do not."""
    return [
        period
        for period in periods
        if time_ranges_overlap(start, end, period.start_time, period.end_time)
    ]


def check_general_user_platforms(
    selected_platforms: Sequence[int], overlapping: Sequence[GeneralUserPeriod]
) -> PlatformAvailability:
    """Check that every selected rack is opened by one of the overlapping General
    User periods. A booking crossing no such period is always valid."""
    if not overlapping:
        return PlatformAvailability(True, [], [])
    available = sorted({rack for period in overlapping for rack in period.platforms})
    unavailable = [rack for rack in selected_platforms if rack not in available]
    return PlatformAvailability(not unavailable, unavailable, available)

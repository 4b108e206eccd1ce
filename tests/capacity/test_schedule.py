#
# For licensing see accompanying LICENSE file.
# Copyright © 2025 Apple Inc. All Rights Reserved.
#
import datetime

import pytest

from rackplan.capacity.schedule import (
    PeriodType,
    RecurrenceType,
    ScheduleRule,
    find_applicable_schedules,
    is_date_excluded,
    schedule_applies,
    with_excluded_date,
)
from rackplan.capacity.time_utils import day_of_week
from tests.capacity.capacity_utils import (
    MONDAY,
    SATURDAY,
    SUNDAY,
    TUESDAY,
    make_rule,
    weeks_later,
)


def _applies(rule: ScheduleRule, date: datetime.date, time: str) -> bool:
    return schedule_applies(rule, day_of_week(date), date, time)


def test_single_rule_applies_on_its_date_only():
    rule = make_rule(1, "09:00", "10:00", RecurrenceType.Single)
    assert _applies(rule, MONDAY, "09:30")
    assert not _applies(rule, weeks_later(MONDAY, 1), "09:30")
    assert not _applies(rule, TUESDAY, "09:30")


@pytest.mark.parametrize(
    "time, expected",
    [("08:59", False), ("09:00", True), ("09:59", True), ("10:00", False)],
)
def test_time_range_is_half_open(time: str, expected: bool):
    rule = make_rule(1, "09:00", "10:00", RecurrenceType.Single)
    assert _applies(rule, MONDAY, time) is expected


def test_weekly_rule_applies_from_its_anchor():
    rule = make_rule(1, "09:00", "10:00", start_date=weeks_later(MONDAY, 1))
    assert not _applies(rule, MONDAY, "09:00")
    assert _applies(rule, weeks_later(MONDAY, 1), "09:00")
    assert _applies(rule, weeks_later(MONDAY, 10), "09:00")
    assert not _applies(rule, weeks_later(TUESDAY, 1), "09:00")


def test_weekday_rule_never_applies_on_weekend_rows():
    weekday = make_rule(1, "09:00", "10:00", RecurrenceType.Weekday)
    misplaced = make_rule(6, "09:00", "10:00", RecurrenceType.Weekday)
    assert _applies(weekday, MONDAY, "09:00")
    assert not _applies(misplaced, SATURDAY, "09:00")


def test_weekend_rule_requires_weekend_day():
    saturday = make_rule(6, "09:00", "10:00", RecurrenceType.Weekend)
    sunday = make_rule(0, "09:00", "10:00", RecurrenceType.Weekend)
    misplaced = make_rule(2, "09:00", "10:00", RecurrenceType.Weekend)
    assert _applies(saturday, SATURDAY, "09:00")
    assert _applies(sunday, SUNDAY, "09:00")
    assert not _applies(misplaced, TUESDAY, "09:00")


def test_weekly_and_all_future_match_identically():
    weekly = make_rule(1, "09:00", "10:00", RecurrenceType.Weekly)
    all_future = make_rule(1, "09:00", "10:00", RecurrenceType.AllFuture)
    for weeks in range(-1, 5):
        date = weeks_later(MONDAY, weeks)
        assert _applies(weekly, date, "09:15") == _applies(all_future, date, "09:15")


def test_end_date_is_inclusive():
    end_date = weeks_later(MONDAY, 2)
    rule = make_rule(1, "09:00", "10:00", end_date=end_date)
    assert _applies(rule, end_date, "09:00")
    assert not _applies(rule, weeks_later(MONDAY, 3), "09:00")


def test_excluding_a_date_only_removes_that_date():
    rule = make_rule(1, "09:00", "10:00")
    excluded = with_excluded_date(rule, weeks_later(MONDAY, 1))
    assert is_date_excluded(excluded, weeks_later(MONDAY, 1))
    assert not is_date_excluded(rule, weeks_later(MONDAY, 1))
    for weeks in range(4):
        date = weeks_later(MONDAY, weeks)
        assert _applies(excluded, date, "09:00") is (weeks != 1)


def test_excluding_twice_is_a_no_op():
    rule = with_excluded_date(make_rule(1, "09:00", "10:00"), MONDAY)
    assert with_excluded_date(rule, MONDAY).excluded_dates == [MONDAY]


def test_schedule_applies_is_deterministic():
    rule = make_rule(1, "09:00", "10:00", excluded_dates=[weeks_later(MONDAY, 2)])
    results = {_applies(rule, weeks_later(MONDAY, 2), "09:30") for _ in range(5)}
    assert results == {False}


def test_find_applicable_schedules_keeps_input_order():
    first = make_rule(1, "09:00", "11:00", period_type=PeriodType.Performance)
    second = make_rule(1, "10:00", "12:00", RecurrenceType.AllFuture)
    third = make_rule(2, "10:00", "12:00")
    assert find_applicable_schedules([first, second, third], 1, MONDAY, "10:30") == [
        first,
        second,
    ]
    assert find_applicable_schedules([second, first], 1, MONDAY, "09:30") == [first]


def test_rule_round_trips_through_model_dump():
    rule = make_rule(
        6,
        "07:00",
        "08:30",
        RecurrenceType.Weekend,
        PeriodType.HighHybrid,
        platforms=[1, 3],
        excluded_dates=[SATURDAY],
    )
    dumped = rule.model_dump()
    assert dumped["period_type"] == "High Hybrid"
    assert dumped["recurrence_type"] == "weekend"
    assert ScheduleRule.from_dict(dumped) == rule


def test_from_dict_accepts_null_exclusions():
    dumped = make_rule(1, "09:00", "10:00").model_dump()
    dumped["excluded_dates"] = None
    assert ScheduleRule.from_dict(dumped).excluded_dates == []

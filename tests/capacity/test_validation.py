#
# For licensing see accompanying LICENSE file.
# Copyright © 2025 Apple Inc. All Rights Reserved.
#
import pytest

from rackplan.capacity.records import insert_schedules
from rackplan.capacity.schedule import PeriodType, RecurrenceType
from rackplan.capacity.validation import (
    CONFLICT_FOOTER,
    CONFLICT_HEADER,
    date_ranges_intersect,
    recurrence_label,
    validate_no_overlaps,
)
from tests.capacity.capacity_utils import MONDAY, SATURDAY, make_rule, weeks_later


def test_overlapping_weekly_rules_conflict():
    existing = make_rule(1, "08:00", "09:00")
    candidate = make_rule(1, "08:30", "09:30", period_type=PeriodType.Performance)
    report = validate_no_overlaps(1, [candidate], existing=[existing])
    assert report is not None
    [conflict] = report.conflicts
    assert conflict.day == "Monday"
    assert conflict.time == "08:30 - 09:30"
    assert conflict.existing_period == PeriodType.GeneralUser
    assert conflict.recurrence == "Weekly"
    assert conflict.existing_schedule_id == existing.schedule_id


def test_touching_rules_do_not_conflict():
    existing = make_rule(1, "08:00", "09:00")
    candidate = make_rule(1, "09:00", "10:00")
    assert validate_no_overlaps(1, [candidate], existing=[existing]) is None


def test_other_days_and_sides_are_ignored():
    other_day = make_rule(2, "08:00", "09:00")
    other_side = make_rule(1, "08:00", "09:00", side_id=2)
    candidate = make_rule(1, "08:00", "09:00")
    assert validate_no_overlaps(1, [candidate], existing=[other_day, other_side]) is None


def test_ignored_ids_are_not_checked():
    existing = make_rule(1, "08:00", "09:00")
    candidate = make_rule(1, "08:00", "09:00")
    assert (
        validate_no_overlaps(
            1, [candidate], exclude_ids=[existing.schedule_id], existing=[existing]
        )
        is None
    )


def test_report_lists_every_conflict():
    existing = [
        make_rule(6, "08:00", "09:00", RecurrenceType.Weekend),
        make_rule(0, "08:00", "09:00", RecurrenceType.Weekend, PeriodType.Closed, 0),
    ]
    candidates = [
        make_rule(6, "08:30", "10:00", RecurrenceType.Weekend, start_date=SATURDAY),
        make_rule(0, "08:30", "10:00", RecurrenceType.Weekend, start_date=SATURDAY),
    ]
    report = validate_no_overlaps(1, candidates, existing=existing)
    assert [(c.day, c.existing_period) for c in report.conflicts] == [
        ("Saturday", PeriodType.GeneralUser),
        ("Sunday", PeriodType.Closed),
    ]
    assert report.message == (
        f"{CONFLICT_HEADER}\n"
        '  • Saturday (Weekends) 08:30 - 10:00: Already booked as "General User"\n'
        '  • Sunday (Weekends) 08:30 - 10:00: Already booked as "Closed"\n'
        f"\n{CONFLICT_FOOTER}"
    )


def test_existing_rules_are_read_from_the_store(side_id: int):
    insert_schedules([make_rule(1, "08:00", "09:00", side_id=side_id)])
    candidate = make_rule(1, "08:30", "09:30", side_id=side_id)
    report = validate_no_overlaps(side_id, [candidate])
    assert report is not None and len(report.conflicts) == 1


def test_single_recurrence_label_is_the_date():
    assert recurrence_label(make_rule(1, "08:00", "09:00", RecurrenceType.Single)) == (
        "Jan 5, 2026"
    )
    assert recurrence_label(make_rule(1, "08:00", "09:00", RecurrenceType.AllFuture)) == (
        "All future"
    )


@pytest.mark.parametrize(
    "candidate, existing, expected",
    [
        # single vs single: same date only
        (
            make_rule(1, "08:00", "09:00", RecurrenceType.Single),
            make_rule(1, "08:00", "09:00", RecurrenceType.Single),
            True,
        ),
        (
            make_rule(1, "08:00", "09:00", RecurrenceType.Single),
            make_rule(
                1, "08:00", "09:00", RecurrenceType.Single, start_date=weeks_later(MONDAY, 1)
            ),
            False,
        ),
        # weekday rows always intersect, whatever their dates
        (
            make_rule(1, "08:00", "09:00", RecurrenceType.Weekday),
            make_rule(
                1,
                "08:00",
                "09:00",
                RecurrenceType.Weekday,
                start_date=weeks_later(MONDAY, 5),
                end_date=weeks_later(MONDAY, 6),
            ),
            True,
        ),
        # weekly vs weekly: existing must reach the candidate anchor
        (
            make_rule(1, "08:00", "09:00", start_date=weeks_later(MONDAY, 3)),
            make_rule(1, "08:00", "09:00", end_date=weeks_later(MONDAY, 2)),
            False,
        ),
        (
            make_rule(1, "08:00", "09:00", start_date=weeks_later(MONDAY, 2)),
            make_rule(1, "08:00", "09:00", end_date=weeks_later(MONDAY, 2)),
            True,
        ),
        # single candidate inside a recurring range
        (
            make_rule(1, "08:00", "09:00", RecurrenceType.Single, start_date=weeks_later(MONDAY, 1)),
            make_rule(1, "08:00", "09:00"),
            True,
        ),
        # single candidate before the recurring anchor
        (
            make_rule(1, "08:00", "09:00", RecurrenceType.Single),
            make_rule(1, "08:00", "09:00", start_date=weeks_later(MONDAY, 1)),
            False,
        ),
        # single candidate on a date the recurring rule excludes
        (
            make_rule(1, "08:00", "09:00", RecurrenceType.Single),
            make_rule(1, "08:00", "09:00", excluded_dates=[MONDAY]),
            False,
        ),
        # recurring candidate vs single existing on or after its anchor
        (
            make_rule(1, "08:00", "09:00", RecurrenceType.AllFuture),
            make_rule(1, "08:00", "09:00", RecurrenceType.Single, start_date=weeks_later(MONDAY, 4)),
            True,
        ),
        (
            make_rule(1, "08:00", "09:00", RecurrenceType.AllFuture, start_date=weeks_later(MONDAY, 1)),
            make_rule(1, "08:00", "09:00", RecurrenceType.Single),
            False,
        ),
        # mixed recurring kinds
        (
            make_rule(1, "08:00", "09:00", RecurrenceType.Weekly, start_date=weeks_later(MONDAY, 4)),
            make_rule(1, "08:00", "09:00", RecurrenceType.Weekday, end_date=weeks_later(MONDAY, 3)),
            False,
        ),
        (
            make_rule(1, "08:00", "09:00", RecurrenceType.Weekly, start_date=weeks_later(MONDAY, 4)),
            make_rule(1, "08:00", "09:00", RecurrenceType.AllFuture),
            True,
        ),
    ],
)
def test_date_ranges_intersect(candidate, existing, expected):
    assert date_ranges_intersect(candidate, existing) is expected


@pytest.mark.parametrize(
    "candidate_range, existing_range",
    [
        (("08:00", "09:00"), ("08:59", "10:00")),
        (("08:00", "09:00"), ("09:00", "10:00")),
        (("10:00", "11:00"), ("08:00", "12:00")),
        (("07:00", "07:30"), ("07:30", "08:00")),
    ],
)
def test_conflict_iff_time_ranges_overlap(candidate_range, existing_range):
    existing = make_rule(3, *existing_range)
    candidate = make_rule(3, *candidate_range)
    report = validate_no_overlaps(1, [candidate], existing=[existing])
    overlapping = candidate_range[0] < existing_range[1] and candidate_range[1] > existing_range[0]
    assert (report is not None) is overlapping

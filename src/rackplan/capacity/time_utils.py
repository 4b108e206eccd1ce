#
# For licensing see accompanying LICENSE file.
# Copyright © 2025 Apple Inc. All Rights Reserved.
#
"""A light wrapper around the `datetime` library, containing the time-of-day,
day-of-week and week arithmetic used by the capacity engine.

Notes
-----
    1. Days of week follow the 0 = Sunday ... 6 = Saturday convention throughout
    the engine, which differs from `datetime.date.weekday`.
    2. Weeks start on Monday.
"""

import datetime
from typing import Literal

from dateutil.relativedelta import MO, relativedelta

from rackplan.capacity.exceptions import InvalidTimeRangeError
from rackplan.settings import get_settings

DayOfWeek = int
"""An integer in [0, 6], 0 being Sunday."""

TimeLike = datetime.time | str
"""A time of day, either a `datetime.time` or an "HH:MM" string."""

DAY_NAMES = (
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
)
WEEKDAYS = frozenset({1, 2, 3, 4, 5})
WEEKEND_DAYS = frozenset({0, 6})

weekdays = Literal[
    "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"
]


def parse_time(value: TimeLike) -> datetime.time:
    """Convert an "HH:MM" (or "HH:MM:SS") string to a time, truncated to the minute."""
    if isinstance(value, datetime.time):
        return value.replace(second=0, microsecond=0)
    try:
        parsed = datetime.time.fromisoformat(value.strip())
    except ValueError as e:
        raise InvalidTimeRangeError(f"Could not parse time of day {value!r}") from e
    return parsed.replace(second=0, microsecond=0)


def format_time(value: TimeLike) -> str:
    """Render a time of day as "HH:MM"."""
    return parse_time(value).strftime("%H:%M")


def day_of_week(date: datetime.date) -> DayOfWeek:
    """Day of week of `date`, 0 = Sunday."""
    return (date.weekday() + 1) % 7


def day_name(dow: DayOfWeek) -> weekdays:
    return DAY_NAMES[dow]


def is_weekday(dow: DayOfWeek) -> bool:
    return dow in WEEKDAYS


def is_weekend(dow: DayOfWeek) -> bool:
    return dow in WEEKEND_DAYS


def start_of_week(date: datetime.date) -> datetime.date:
    """The Monday on or before `date`."""
    return date + relativedelta(weekday=MO(-1))


def end_of_week(date: datetime.date) -> datetime.date:
    """The Sunday closing the Monday-based week containing `date`."""
    return start_of_week(date) + relativedelta(days=6)


def date_in_week(start: datetime.date, dow: DayOfWeek) -> datetime.date:
    """Calendar date of `dow` within the week beginning on Monday `start`."""
    # Sunday closes the week
    offset = 6 if dow == 0 else dow - 1
    return start + datetime.timedelta(days=offset)


def this_week_dates(date: datetime.date) -> list[datetime.date]:
    """The dates of the Monday-based week containing `date`, Monday first."""
    start = start_of_week(date)
    return [start + datetime.timedelta(days=i) for i in range(7)]


def generate_time_slots(
    slot_minutes: int | None = None,
    first_slot: TimeLike | None = None,
    last_slot: TimeLike | None = None,
) -> list[str]:
    """Ordered "HH:MM" slot start times covering a day.

    Parameters
    ----------
    slot_minutes
        Slot width, defaults to the engine settings.
    first_slot, last_slot
        First and last slot starts, inclusive. Default to the engine settings.
    """
    settings = get_settings()
    slot_minutes = slot_minutes or settings.slot_minutes
    first = parse_time(first_slot) if first_slot is not None else settings.first_slot
    last = parse_time(last_slot) if last_slot is not None else settings.last_slot
    first_minutes = to_minutes(first)
    last_minutes = to_minutes(last)
    return [
        from_minutes(minutes).strftime("%H:%M")
        for minutes in range(first_minutes, last_minutes + 1, slot_minutes)
    ]


def to_minutes(value: TimeLike) -> int:
    """Minutes since midnight."""
    t = parse_time(value)
    return t.hour * 60 + t.minute


def from_minutes(minutes: int) -> datetime.time:
    if not 0 <= minutes < 24 * 60:
        raise InvalidTimeRangeError(f"{minutes} minutes is outside of a day")
    return datetime.time(minutes // 60, minutes % 60)


def slot_end(slot: TimeLike, slot_minutes: int | None = None) -> datetime.time:
    """End of the slot starting at `slot`. The last slot of the day ends at 23:59."""
    slot_minutes = slot_minutes or get_settings().slot_minutes
    end = to_minutes(slot) + slot_minutes
    return from_minutes(min(end, 24 * 60 - 1))


def time_ranges_overlap(
    start_1: TimeLike, end_1: TimeLike, start_2: TimeLike, end_2: TimeLike
) -> bool:
    """Check whether the half-open ranges [start_1, end_1) and [start_2, end_2)
    intersect. Ranges that only touch do not overlap."""
    return parse_time(start_1) < parse_time(end_2) and parse_time(end_1) > parse_time(
        start_2
    )


def validate_time_range(start: TimeLike, end: TimeLike) -> None:
    """
    Raises
    ------
    InvalidTimeRangeError
        If `end` is not strictly after `start`.
    """
    if parse_time(end) <= parse_time(start):
        raise InvalidTimeRangeError(
            f"End time {format_time(end)} must be after start time {format_time(start)}"
        )


def format_date(date: datetime.date) -> str:
    """Render a date as e.g. "Jan 5, 2026"."""
    return f"{date.strftime('%b')} {date.day}, {date.year}"


def combine(date: datetime.date, time: TimeLike) -> datetime.datetime:
    return datetime.datetime.combine(date, parse_time(time))

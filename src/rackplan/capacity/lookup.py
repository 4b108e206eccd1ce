#
# For licensing see accompanying LICENSE file.
# Copyright © 2025 Apple Inc. All Rights Reserved.
#
"""Read side of the engine: which rule governs each slot of a week, and how a day
of slots renders as contiguous blocks."""

import datetime
import logging
from typing import Iterable, NamedTuple, Sequence

from rackplan.capacity.records import fetch_schedules_for_week
from rackplan.capacity.schedule import (
    PeriodType,
    RecurrenceType,
    ScheduleId,
    ScheduleRule,
    applies_on_date,
    find_applicable_schedules,
)
from rackplan.capacity.time_utils import (
    DayOfWeek,
    TimeLike,
    date_in_week,
    day_of_week,
    format_time,
    generate_time_slots,
    parse_time,
    slot_end,
    start_of_week,
)
from rackplan.settings import get_settings

logger = logging.getLogger(__name__)

SlotKey = str
"""`"{day_of_week}-{HH:MM}"`, e.g. `"1-09:30"` for Monday 09:30."""


class SlotCapacity(NamedTuple):
    """The rule governing one slot."""

    capacity: int
    period_type: PeriodType
    schedule_id: ScheduleId
    start_time: datetime.time
    end_time: datetime.time
    recurrence_type: RecurrenceType
    platforms: list[int] | None

    @classmethod
    def from_rule(cls, rule: ScheduleRule) -> "SlotCapacity":
        return cls(
            capacity=rule.capacity,
            period_type=rule.period_type,
            schedule_id=rule.schedule_id,
            start_time=rule.start_time,
            end_time=rule.end_time,
            recurrence_type=rule.recurrence_type,
            platforms=rule.platforms,
        )


SlotMap = dict[SlotKey, SlotCapacity]


class CapacityBlock(NamedTuple):
    """Consecutive slots of a day sharing category and capacity.

    `start_slot` and `end_slot` are indexes into the day's slots, both inclusive.
    `end_time` is the end of the last slot.
    """

    start_slot: int
    end_slot: int
    row_span: int
    period_type: PeriodType
    capacity: int
    start_time: str
    end_time: str


def slot_key(dow: DayOfWeek, slot: TimeLike) -> SlotKey:
    return f"{dow}-{format_time(slot)}"


def build_slot_map(
    rules: Sequence[ScheduleRule],
    week_start: datetime.date,
    time_slots: Sequence[str] | None = None,
) -> SlotMap:
    """Evaluate every (day, slot) of a week against `rules`.

    Parameters
    ----------
    rules
        Candidate rules. When several apply to a slot, the first one wins.
    week_start
        Any date of the week, normalised to its Monday.
    time_slots
        Slot starts of a day, defaults to the configured slots.

    Returns
    -------
    A mapping from slot key to the governing rule. Slots no rule covers are absent.
    """
    time_slots = time_slots if time_slots is not None else generate_time_slots()
    monday = start_of_week(week_start)
    slot_map: SlotMap = {}
    for dow in range(7):
        date = date_in_week(monday, dow)
        for slot in time_slots:
            matches = find_applicable_schedules(rules, dow, date, slot)
            if not matches:
                continue
            if len(matches) > 1:
                logger.warning(
                    f"{len(matches)} rules apply on {date} at {slot}, using "
                    f"{matches[0].schedule_id}: {[r.schedule_id for r in matches]}"
                )
            slot_map[slot_key(dow, slot)] = SlotCapacity.from_rule(matches[0])
    return slot_map


def evaluate_week(
    side_id: int,
    week_start: datetime.date,
    time_slots: Sequence[str] | None = None,
) -> SlotMap:
    """Slot map of a side for the Monday-based week containing `week_start`."""
    monday = start_of_week(week_start)
    rules = fetch_schedules_for_week(side_id, monday)
    logger.debug(f"Evaluating {len(rules)} rule(s) of side {side_id} for week of {monday}")
    return build_slot_map(rules, monday, time_slots)


def compute_day_blocks(
    slot_map: SlotMap,
    day: DayOfWeek,
    time_slots: Sequence[str] | None = None,
) -> list[CapacityBlock]:
    """Run-length encode the slots of `day` into blocks of identical
    (category, capacity). Slots without a rule close the open block."""
    time_slots = time_slots if time_slots is not None else generate_time_slots()
    slot_minutes = _slot_minutes(time_slots)
    blocks: list[CapacityBlock] = []
    open_start: int | None = None
    open_value: tuple[PeriodType, int] | None = None

    def close(end_index: int) -> None:
        blocks.append(
            CapacityBlock(
                start_slot=open_start,
                end_slot=end_index,
                row_span=end_index - open_start + 1,
                period_type=open_value[0],
                capacity=open_value[1],
                start_time=time_slots[open_start],
                end_time=format_time(slot_end(time_slots[end_index], slot_minutes)),
            )
        )

    for index, slot in enumerate(time_slots):
        entry = slot_map.get(slot_key(day, slot))
        value = (entry.period_type, entry.capacity) if entry is not None else None
        if value == open_value:
            continue
        if open_value is not None:
            close(index - 1)
        open_start, open_value = (index, value) if value is not None else (None, None)
    if open_value is not None:
        close(len(time_slots) - 1)
    return blocks


def expand_blocks(
    blocks: Iterable[CapacityBlock], slot_count: int
) -> list[tuple[PeriodType, int] | None]:
    """Per-slot (category, capacity) described by `blocks`, None where no block."""
    slots: list[tuple[PeriodType, int] | None] = [None] * slot_count
    for block in blocks:
        for index in range(block.start_slot, block.end_slot + 1):
            slots[index] = (block.period_type, block.capacity)
    return slots


def _slot_minutes(time_slots: Sequence[str]) -> int:
    if len(time_slots) < 2:
        return get_settings().slot_minutes
    first, second = (parse_time(t) for t in time_slots[:2])
    return (second.hour * 60 + second.minute) - (first.hour * 60 + first.minute)


def suggest_end_time(
    rules: Iterable[ScheduleRule], date: datetime.date, start_time: TimeLike
) -> datetime.time:
    """End time to propose for a new rule starting at `start_time` on `date`: the
    start of the next rule applying that day, or the end of the day."""
    start = parse_time(start_time)
    dow = day_of_week(date)
    later_starts = [
        rule.start_time
        for rule in rules
        if rule.start_time > start and applies_on_date(rule, dow, date)
    ]
    return min(later_starts, default=get_settings().open_day_end)

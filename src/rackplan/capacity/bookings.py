#
# For licensing see accompanying LICENSE file.
# Copyright © 2025 Apple Inc. All Rights Reserved.
#
"""Cross-references booking instances with the capacity rules of a day.

For every rack of a side this computes where it is occupied, where rules make it
unavailable, and where the side's capacity is used up.
"""

import datetime
import logging
from typing import NamedTuple, Sequence

from pydantic import BaseModel

from rackplan.capacity.exceptions import InvalidTimeRangeError
from rackplan.capacity.lookup import SlotCapacity, SlotMap, evaluate_week, slot_key
from rackplan.capacity.records import (
    BookingInstance,
    fetch_booking_instances,
    fetch_schedules,
    get_period_type_defaults,
    get_side_racks,
)
from rackplan.capacity.schedule import PeriodType, ScheduleRule, find_applicable_schedules
from rackplan.capacity.time_utils import (
    combine,
    day_of_week,
    format_time,
    generate_time_slots,
    slot_end,
    to_minutes,
)
from rackplan.settings import get_settings

logger = logging.getLogger(__name__)

PlatformDefaults = dict[PeriodType, list[int]]


class OccupiedInterval(NamedTuple):
    """A booking instance holding a rack, clipped to the day being viewed.

    `start_slot` is the slot containing `start`, `end_slot` the last slot
    starting before `end`.
    """

    instance_id: str
    booking_id: str
    rack: int
    start: datetime.datetime
    end: datetime.datetime
    start_slot: int
    end_slot: int
    title: str | None
    color: str | None
    is_locked: bool


class UnavailableBlock(NamedTuple):
    rack: int
    start_slot: int
    end_slot: int
    row_span: int
    period_type: PeriodType
    start_time: str
    end_time: str


class BookingViews(NamedTuple):
    """Per rack views of a day.

    Parameters
    ----------
    occupied
        Rack -> booking intervals, ordered by start.
    unavailable
        Rack -> blocks of slots closed or restricted to other racks, net of bookings.
    exhausted
        Slot index -> racks at capacity in that slot. Racks booked in the slot are
        never listed.
    """

    occupied: dict[int, list[OccupiedInterval]]
    unavailable: dict[int, list[UnavailableBlock]]
    exhausted: dict[int, set[int]]


def effective_platforms(
    entry: SlotCapacity, platform_defaults: PlatformDefaults
) -> set[int] | None:
    """Racks a rule opens, None meaning every rack of the side.

    Rule platforms take precedence, then the default platforms of the category.
    Closed rules open nothing.
    """
    if entry.period_type == PeriodType.Closed:
        return set()
    if entry.platforms:
        return set(entry.platforms)
    defaults = platform_defaults.get(entry.period_type)
    if defaults:
        return set(defaults)
    return None


def _day_bounds(day: datetime.date) -> tuple[datetime.datetime, datetime.datetime]:
    start = datetime.datetime.combine(day, datetime.time())
    return start, start + datetime.timedelta(days=1)


def _slot_index_range(
    start: datetime.datetime,
    end: datetime.datetime,
    day: datetime.date,
    time_slots: Sequence[str],
) -> tuple[int, int] | None:
    starts = [combine(day, slot) for slot in time_slots]
    containing = [i for i, s in enumerate(starts) if s <= start]
    first = containing[-1] if containing else 0
    before_end = [i for i, s in enumerate(starts) if s < end]
    if not before_end or before_end[-1] < first:
        return None
    return first, before_end[-1]


def compute_occupied(
    bookings: Sequence[BookingInstance],
    day: datetime.date,
    racks: Sequence[int],
    time_slots: Sequence[str],
) -> dict[int, list[OccupiedInterval]]:
    day_start, day_end = _day_bounds(day)
    occupied: dict[int, list[OccupiedInterval]] = {rack: [] for rack in racks}
    for booking in sorted(bookings, key=lambda b: b.start):
        start, end = max(booking.start, day_start), min(booking.end, day_end)
        if end <= start:
            continue
        slot_range = _slot_index_range(start, end, day, time_slots)
        if slot_range is None:
            continue
        for rack in booking.racks:
            occupied.setdefault(rack, []).append(
                OccupiedInterval(
                    instance_id=booking.instance_id,
                    booking_id=booking.booking_id,
                    rack=rack,
                    start=start,
                    end=end,
                    start_slot=slot_range[0],
                    end_slot=slot_range[1],
                    title=booking.title,
                    color=booking.color,
                    is_locked=booking.is_locked,
                )
            )
    return occupied


def compute_unavailable(
    rack: int,
    entries: Sequence[SlotCapacity | None],
    occupied: Sequence[OccupiedInterval],
    time_slots: Sequence[str],
    platform_defaults: PlatformDefaults,
) -> list[UnavailableBlock]:
    """Blocks of slots where `rack` cannot be booked and is not already booked.

    Consecutive slots merge when they share a category. Closed blocks end at the
    end time of the closing rule, other blocks at the end of their last slot.
    """
    blocks: list[UnavailableBlock] = []
    open_block: dict | None = None

    def close(end_index: int) -> None:
        if open_block["period_type"] == PeriodType.Closed:
            end_time = format_time(open_block["rule_end"])
        else:
            end_time = format_time(slot_end(time_slots[end_index]))
        blocks.append(
            UnavailableBlock(
                rack=rack,
                start_slot=open_block["start_slot"],
                end_slot=end_index,
                row_span=end_index - open_block["start_slot"] + 1,
                period_type=open_block["period_type"],
                start_time=time_slots[open_block["start_slot"]],
                end_time=end_time,
            )
        )

    for index, entry in enumerate(entries):
        allowed = (
            effective_platforms(entry, platform_defaults) if entry is not None else None
        )
        restricted = entry is not None and allowed is not None and rack not in allowed
        booked = any(o.start_slot <= index <= o.end_slot for o in occupied)
        if restricted and not booked:
            if open_block is not None and open_block["period_type"] == entry.period_type:
                open_block["rule_end"] = entry.end_time
                continue
            if open_block is not None:
                close(index - 1)
            open_block = {
                "start_slot": index,
                "period_type": entry.period_type,
                "rule_end": entry.end_time,
            }
        elif open_block is not None:
            close(index - 1)
            open_block = None
    if open_block is not None:
        close(len(entries) - 1)
    return blocks


def _booked_capacity_at(
    bookings: Sequence[BookingInstance], instant: datetime.datetime
) -> int:
    return sum(b.capacity for b in bookings if b.start <= instant < b.end)


def compute_exhausted(
    entries: Sequence[SlotCapacity | None],
    bookings: Sequence[BookingInstance],
    racks: Sequence[int],
    day: datetime.date,
    time_slots: Sequence[str],
) -> dict[int, set[int]]:
    """Slots whose booked capacity meets the rule limit, with the racks that are
    at capacity there, i.e. the racks not booked at that instant."""
    exhausted: dict[int, set[int]] = {}
    for index, (slot, entry) in enumerate(zip(time_slots, entries)):
        if entry is None or entry.period_type == PeriodType.Closed:
            continue
        instant = combine(day, slot)
        used = _booked_capacity_at(bookings, instant)
        if used < entry.capacity:
            continue
        booked_racks = {
            rack for b in bookings if b.start <= instant < b.end for rack in b.racks
        }
        exhausted[index] = {rack for rack in racks if rack not in booked_racks}
        logger.debug(
            f"Capacity exhausted on {day} at {slot}: {used} used of {entry.capacity}"
        )
    return exhausted


def compute_booking_views(
    side_id: int,
    day: datetime.date,
    bookings: Sequence[BookingInstance] | None = None,
    slot_map: SlotMap | None = None,
    racks: Sequence[int] | None = None,
    time_slots: Sequence[str] | None = None,
    platform_defaults: PlatformDefaults | None = None,
) -> BookingViews:
    """Occupied, unavailable and capacity exhausted views of a side for one day.

    Parameters
    ----------
    side_id
        Side being viewed.
    day
        Date being viewed.
    bookings
        Booking instances of the side. Read from the store when omitted.
    slot_map
        Slot map of the week containing `day`, as returned by `evaluate_week`.
        Evaluated when omitted.
    racks
        Racks of the side, read from the store when omitted.
    time_slots
        Slot starts of a day, defaults to the configured slots.
    platform_defaults
        Category -> default platforms, read from the store when omitted.
    """
    time_slots = list(time_slots) if time_slots is not None else generate_time_slots()
    if bookings is None:
        bookings = fetch_booking_instances(side_id, *_day_bounds(day))
    if slot_map is None:
        slot_map = evaluate_week(side_id, day, time_slots)
    if racks is None:
        racks = get_side_racks(side_id)
    if platform_defaults is None:
        platform_defaults = {
            period_type: default.platforms
            for period_type, default in get_period_type_defaults(side_id).items()
        }
    dow = day_of_week(day)
    entries = [slot_map.get(slot_key(dow, slot)) for slot in time_slots]
    occupied = compute_occupied(bookings, day, racks, time_slots)
    unavailable = {
        rack: compute_unavailable(
            rack, entries, occupied.get(rack, []), time_slots, platform_defaults
        )
        for rack in racks
    }
    exhausted = compute_exhausted(entries, bookings, racks, day, time_slots)
    return BookingViews(occupied=occupied, unavailable=unavailable, exhausted=exhausted)


def is_rack_at_capacity(views: BookingViews, slot_index: int, rack: int) -> bool:
    """Whether `rack` cannot be booked in the slot because the side is full.

    A rack booked in that slot is occupied, not at capacity.
    """
    return rack in views.exhausted.get(slot_index, set())


class CapacityViolation(NamedTuple):
    time: datetime.datetime
    used: int
    limit: int
    period_type: PeriodType

    @property
    def time_label(self) -> str:
        return self.time.strftime("%H:%M")


class CapacityCheckResult(BaseModel):
    """Outcome of checking a proposed booking against the capacity rules.

    `max_used` is the highest usage met at any checked instant and `max_limit` the
    limit in force there; None when no rule governed any checked instant.
    """

    violations: list[CapacityViolation] = []
    max_used: int = 0
    max_limit: int | None = None
    max_violation_time: datetime.datetime | None = None

    @property
    def is_valid(self) -> bool:
        return not self.violations


def _governing_rule(
    rules: Sequence[ScheduleRule], instant: datetime.datetime
) -> ScheduleRule | None:
    applicable = find_applicable_schedules(
        rules, day_of_week(instant.date()), instant.date(), instant.time()
    )
    if not applicable:
        return None
    # prefer an open rule over a closure, then the latest starting one
    applicable.sort(
        key=lambda r: (r.period_type == PeriodType.Closed, -to_minutes(r.start_time))
    )
    return applicable[0]


def _check_instants(
    start: datetime.datetime, end: datetime.datetime, step_minutes: int
) -> list[datetime.datetime]:
    step = datetime.timedelta(minutes=step_minutes)
    instants = []
    current = start
    while current < end:
        instants.append(current)
        current += step
    # the last minute of the booking is checked too
    last = end - datetime.timedelta(minutes=1)
    if instants and last > instants[-1]:
        instants.append(last)
    return instants


def check_booking_capacity(
    side_id: int,
    start: datetime.datetime,
    end: datetime.datetime,
    capacity: int | None = None,
    weeks: int = 1,
    rules: Sequence[ScheduleRule] | None = None,
    bookings: Sequence[BookingInstance] | None = None,
) -> CapacityCheckResult:
    """Check whether a proposed booking, repeated weekly, fits within capacity.

    Parameters
    ----------
    side_id
        Side to book.
    start, end
        First occurrence of the booking.
    capacity
        Capacity the booking consumes, defaults to the configured booking capacity.
    weeks
        Number of weekly occurrences, the first included.
    rules, bookings
        Capacity rules and existing booking instances of the side. Read from the
        store when omitted.

    Notes
    -----
    1. Usage is checked at regular instants through each occurrence. An instant
    violates capacity when existing usage plus the proposed capacity exceeds the
    limit of the rule governing it.
    2. Instants no rule governs are unlimited.
    """
    settings = get_settings()
    capacity = capacity if capacity is not None else settings.default_booking_capacity
    if end <= start:
        raise InvalidTimeRangeError(
            f"Booking must end after it starts, got {start} - {end}"
        )
    last_end = end + datetime.timedelta(weeks=weeks - 1)
    if rules is None:
        rules = fetch_schedules(
            side_id, starts_on_or_before=last_end.date(), ends_on_or_after=start.date()
        )
    if bookings is None:
        bookings = fetch_booking_instances(side_id, start, last_end)

    result = CapacityCheckResult()
    for week in range(weeks):
        offset = datetime.timedelta(weeks=week)
        occurrence_start, occurrence_end = start + offset, end + offset
        for instant in _check_instants(
            occurrence_start, occurrence_end, settings.capacity_check_minutes
        ):
            used = _booked_capacity_at(bookings, instant) + capacity
            rule = _governing_rule(rules, instant)
            if rule is None:
                result.max_used = max(result.max_used, used)
                continue
            violated = used > rule.capacity
            if violated:
                result.violations.append(
                    CapacityViolation(
                        time=instant,
                        used=used,
                        limit=rule.capacity,
                        period_type=rule.period_type,
                    )
                )
            if used > result.max_used:
                result.max_used = used
                result.max_limit = rule.capacity
                if violated:
                    result.max_violation_time = instant
            elif result.max_limit is None:
                result.max_limit = rule.capacity
    if result.violations:
        logger.info(
            f"Booking {start} - {end} x{weeks} on side {side_id} exceeds capacity at "
            f"{len(result.violations)} instant(s)"
        )
    return result

#
# For licensing see accompanying LICENSE file.
# Copyright © 2025 Apple Inc. All Rights Reserved.
#
"""Typed read and write helpers over the store tables used by the capacity engine."""

import datetime
import logging
import uuid
from copy import deepcopy
from typing import Any, Iterable, Self

import polars as pl
from polars.exceptions import NoDataError
from pydantic import BaseModel, field_serializer

from rackplan.capacity.exceptions import InvalidTimeRangeError, SideNotFoundError
from rackplan.capacity.schedule import PeriodType, RecurrenceType, ScheduleId, ScheduleRule
from rackplan.settings import get_settings
from rackplan.store.data_store import get_current_store
from rackplan.store.schemas import DatabaseNamespace
from rackplan.store.utils import (
    NOT_GIVEN,
    NotGiven,
    exact_match_filter_dataframe,
    filter_dataframe,
    gt_eq_or_null_filter_dataframe,
    is_sequence_member_filter_dataframe,
    list_overlap_filter_dataframe,
    lt_eq_filter_dataframe,
)

logger = logging.getLogger(__name__)

SideId = int
BookingInstanceId = str
OverrideId = str


class Side(BaseModel):
    side_id: SideId
    side_key: str
    racks: list[int] = []


class CapacityOverride(BaseModel):
    """Capacity of a single-date rule, keyed by (date, period type)."""

    override_id: OverrideId
    date: datetime.date
    period_type: PeriodType
    capacity: int
    notes: str | None = None

    @field_serializer("period_type")
    def serialise_period_type(self, value: PeriodType) -> str:
        return str(value)


class PeriodTypeDefault(BaseModel):
    """Default capacity and platforms of a category on a side."""

    side_id: SideId
    period_type: PeriodType
    default_capacity: int
    platforms: list[int] = []

    @field_serializer("period_type")
    def serialise_period_type(self, value: PeriodType) -> str:
        return str(value)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        data = deepcopy(data)
        if data.get("platforms") is None:
            data["platforms"] = []
        return cls(**data)


class BookingInstance(BaseModel):
    """A concrete occurrence of a booking on a side.

    Parameters
    ----------
    start, end
        Absolute bounds of the occurrence, `end` exclusive.
    racks
        Rack numbers held by the occurrence.
    capacity
        How much of the side capacity the occurrence consumes.
    """

    instance_id: BookingInstanceId
    booking_id: str
    side_id: SideId
    start: datetime.datetime
    end: datetime.datetime
    racks: list[int] = []
    title: str | None = None
    color: str | None = None
    is_locked: bool = False
    capacity: int = 1

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        data = deepcopy(data)
        if data.get("racks") is None:
            data["racks"] = []
        if data.get("capacity") is None:
            data["capacity"] = get_settings().default_booking_capacity
        if data.get("is_locked") is None:
            data["is_locked"] = False
        return cls(**data)


def create_side(side_key: str, racks: Iterable[int], side_id: SideId | None = None) -> SideId:
    """Create a side (zone) in the underlying database."""
    store = get_current_store()
    if side_id is None:
        existing = store.get_database(DatabaseNamespace.SIDES)["side_id"].to_list()
        side_id = max(existing, default=0) + 1
    store.add_to_database(
        namespace=DatabaseNamespace.SIDES,
        rows=[{"side_id": side_id, "side_key": side_key, "racks": sorted(racks)}],
    )
    return side_id


def _side_from_row(row: dict[str, Any]) -> Side:
    return Side(**{**row, "racks": row["racks"] or []})


def get_side(side_id: SideId) -> Side:
    """
    Raises
    ------
    SideNotFoundError
        If no side with `side_id` exists.
    """
    sides = get_current_store().get_database(DatabaseNamespace.SIDES)
    matches = exact_match_filter_dataframe(sides, "side_id", side_id)
    if matches.is_empty():
        raise SideNotFoundError(f"No side with id {side_id}")
    return _side_from_row(matches.row(0, named=True))


def get_side_by_key(side_key: str) -> Side:
    sides = get_current_store().get_database(DatabaseNamespace.SIDES)
    matches = exact_match_filter_dataframe(sides, "side_key", side_key)
    if matches.is_empty():
        raise SideNotFoundError(f"No side named {side_key!r}")
    return _side_from_row(matches.row(0, named=True))


def get_side_racks(side_id: SideId) -> list[int]:
    return get_side(side_id).racks


def fetch_schedules(
    side_id: SideId,
    day_of_week: int | NotGiven = NOT_GIVEN,
    recurrence_type: RecurrenceType | NotGiven = NOT_GIVEN,
    start_time: datetime.time | NotGiven = NOT_GIVEN,
    starts_on_or_before: datetime.date | NotGiven = NOT_GIVEN,
    ends_on_or_after: datetime.date | NotGiven = NOT_GIVEN,
) -> list[ScheduleRule]:
    """Read the rules of a side, in storage order.

    Parameters
    ----------
    side_id
        Side whose rules are read.
    day_of_week, recurrence_type, start_time
        Exact match constraints, ignored when not given.
    starts_on_or_before
        Keep rules anchored on or before this date.
    ends_on_or_after
        Keep open-ended rules and rules ending on or after this date.
    """
    schedules = get_current_store().get_database(DatabaseNamespace.CAPACITY_SCHEDULES)
    filtered = filter_dataframe(
        schedules,
        [
            ("side_id", side_id, exact_match_filter_dataframe),
            ("day_of_week", day_of_week, exact_match_filter_dataframe),
            (
                "recurrence_type",
                recurrence_type if recurrence_type is NOT_GIVEN else str(recurrence_type),
                exact_match_filter_dataframe,
            ),
            ("start_time", start_time, exact_match_filter_dataframe),
            ("start_date", starts_on_or_before, lt_eq_filter_dataframe),
            ("end_date", ends_on_or_after, gt_eq_or_null_filter_dataframe),
        ],
    )
    return [ScheduleRule.from_dict(row) for row in filtered.to_dicts()]


def fetch_schedules_for_week(side_id: SideId, week_start: datetime.date) -> list[ScheduleRule]:
    """Rules that may apply during the Monday-based week starting on `week_start`."""
    return fetch_schedules(
        side_id,
        starts_on_or_before=week_start + datetime.timedelta(days=6),
        ends_on_or_after=week_start,
    )


def insert_schedules(rules: Iterable[ScheduleRule]) -> list[ScheduleId]:
    rows = [rule.model_dump() for rule in rules]
    if not rows:
        return []
    get_current_store().add_to_database(
        namespace=DatabaseNamespace.CAPACITY_SCHEDULES, rows=rows
    )
    return [row["schedule_id"] for row in rows]


def update_schedule(schedule_id: ScheduleId, **values: Any) -> None:
    """Update fields of one stored rule.

    Raises
    ------
    NoDataError
        If no rule with `schedule_id` exists.
    """
    get_current_store().update_database(
        namespace=DatabaseNamespace.CAPACITY_SCHEDULES,
        predicate=pl.col("schedule_id") == schedule_id,
        values=values,
    )


def delete_schedules(schedule_ids: Iterable[ScheduleId]) -> int:
    """Delete rules by id, returning how many were removed."""
    schedule_ids = list(schedule_ids)
    if not schedule_ids:
        return 0
    return get_current_store().remove_from_database(
        namespace=DatabaseNamespace.CAPACITY_SCHEDULES,
        predicate=pl.col("schedule_id").is_in(schedule_ids),
    )


def _override_predicate(date: datetime.date, period_type: PeriodType) -> pl.Expr:
    return (pl.col("date") == date) & (pl.col("period_type") == str(period_type))


def get_capacity_override(
    date: datetime.date, period_type: PeriodType
) -> CapacityOverride | None:
    overrides = get_current_store().get_database(DatabaseNamespace.CAPACITY_OVERRIDES)
    matches = overrides.filter(_override_predicate(date, period_type))
    if matches.is_empty():
        return None
    return CapacityOverride(**matches.row(0, named=True))


def upsert_capacity_override(
    date: datetime.date,
    period_type: PeriodType,
    capacity: int,
    notes: str | None = None,
) -> OverrideId:
    """Create or replace the override keyed by (`date`, `period_type`)."""
    store = get_current_store()
    existing = get_capacity_override(date, period_type)
    if existing is not None:
        store.update_database(
            namespace=DatabaseNamespace.CAPACITY_OVERRIDES,
            predicate=_override_predicate(date, period_type),
            values={"capacity": capacity, "notes": notes},
        )
        return existing.override_id
    override = CapacityOverride(
        override_id=str(uuid.uuid4()),
        date=date,
        period_type=period_type,
        capacity=capacity,
        notes=notes,
    )
    store.add_to_database(
        namespace=DatabaseNamespace.CAPACITY_OVERRIDES, rows=[override.model_dump()]
    )
    return override.override_id


def delete_capacity_override(date: datetime.date, period_type: PeriodType) -> bool:
    """Delete the override keyed by (`date`, `period_type`), if any."""
    try:
        get_current_store().remove_from_database(
            namespace=DatabaseNamespace.CAPACITY_OVERRIDES,
            predicate=_override_predicate(date, period_type),
        )
    except NoDataError:
        logger.debug(f"No capacity override on {date} for {period_type} to delete")
        return False
    return True


def _carries_default(rule: ScheduleRule, default: PeriodTypeDefault) -> bool:
    """Whether a rule still has the capacity and platforms of `default`, i.e. was
    not customised. No platforms and an empty list are the same."""
    return rule.capacity == default.default_capacity and sorted(
        rule.platforms or []
    ) == sorted(default.platforms)


def set_period_type_default(
    side_id: SideId,
    period_type: PeriodType,
    default_capacity: int,
    platforms: Iterable[int] | None = None,
) -> list[ScheduleId]:
    """Create or replace the default capacity and platforms of a category on a side.

    Rules of the category that still carry the previous default are moved to the
    new one. Closed always resolves to capacity 0 and no platforms.

    Returns
    -------
    The ids of the rules moved to the new default.
    """
    if period_type == PeriodType.Closed:
        default_capacity, platforms = 0, []
    default = PeriodTypeDefault(
        side_id=side_id,
        period_type=period_type,
        default_capacity=default_capacity,
        platforms=sorted(platforms or []),
    )
    previous = get_period_type_defaults(side_id).get(period_type)
    store = get_current_store()
    with store.transaction():
        if previous is not None:
            store.remove_from_database(
                namespace=DatabaseNamespace.PERIOD_TYPE_DEFAULTS,
                predicate=(pl.col("side_id") == side_id)
                & (pl.col("period_type") == str(period_type)),
            )
        store.add_to_database(
            namespace=DatabaseNamespace.PERIOD_TYPE_DEFAULTS, rows=[default.model_dump()]
        )
        if previous is None or previous == default:
            return []
        updated = [
            rule.schedule_id
            for rule in fetch_schedules(side_id)
            if rule.period_type == period_type and _carries_default(rule, previous)
        ]
        if updated:
            store.update_database(
                namespace=DatabaseNamespace.CAPACITY_SCHEDULES,
                predicate=pl.col("schedule_id").is_in(updated),
                values={
                    "capacity": default.default_capacity,
                    "platforms": default.platforms or None,
                },
            )
    logger.info(
        f"Moved {len(updated)} {period_type} rule(s) of side {side_id} to the new "
        f"default capacity {default.default_capacity}"
    )
    return updated


def get_period_type_defaults(side_id: SideId) -> dict[PeriodType, PeriodTypeDefault]:
    defaults = get_current_store().get_database(DatabaseNamespace.PERIOD_TYPE_DEFAULTS)
    rows = exact_match_filter_dataframe(defaults, "side_id", side_id).to_dicts()
    return {
        default.period_type: default
        for default in (PeriodTypeDefault.from_dict(row) for row in rows)
    }


def create_booking_instance(
    side_id: SideId,
    start: datetime.datetime,
    end: datetime.datetime,
    racks: Iterable[int],
    booking_id: str | None = None,
    title: str | None = None,
    color: str | None = None,
    is_locked: bool = False,
    capacity: int | None = None,
) -> BookingInstanceId:
    """Create a booking instance for an existing side.

    Parameters
    ----------
    side_id
        The side booked.
    start, end
        Start and end of the occurrence.
    racks
        The racks held.
    booking_id
        Parent booking. A new id is generated when omitted.
    capacity
        Consumed capacity, defaults to the configured booking capacity.
    """
    if end <= start:
        raise InvalidTimeRangeError(
            f"Booking must end after it starts, got {start} - {end}"
        )
    instance = BookingInstance(
        instance_id=str(uuid.uuid4()),
        booking_id=booking_id or str(uuid.uuid4()),
        side_id=side_id,
        start=start,
        end=end,
        racks=sorted(racks),
        title=title,
        color=color,
        is_locked=is_locked,
        capacity=capacity if capacity is not None else get_settings().default_booking_capacity,
    )
    get_current_store().add_to_database(
        namespace=DatabaseNamespace.BOOKING_INSTANCES, rows=[instance.model_dump()]
    )
    return instance.instance_id


def fetch_booking_instances(
    side_id: SideId,
    start: datetime.datetime,
    end: datetime.datetime,
    booking_ids: Iterable[str] | NotGiven = NOT_GIVEN,
    racks: Iterable[int] | NotGiven = NOT_GIVEN,
) -> list[BookingInstance]:
    """Booking instances of a side overlapping the half-open range [`start`, `end`),
    ordered by start. When `racks` is given, only instances holding one of them
    are kept."""
    instances = get_current_store().get_database(DatabaseNamespace.BOOKING_INSTANCES)
    filtered = filter_dataframe(
        instances,
        [
            ("side_id", side_id, exact_match_filter_dataframe),
            (
                "booking_id",
                booking_ids if booking_ids is NOT_GIVEN else list(booking_ids),
                is_sequence_member_filter_dataframe,
            ),
            (
                "racks",
                racks if racks is NOT_GIVEN else list(racks),
                list_overlap_filter_dataframe,
            ),
        ],
    )
    filtered = filtered.filter((pl.col("start") < end) & (pl.col("end") > start))
    return [
        BookingInstance.from_dict(row) for row in filtered.sort("start").to_dicts()
    ]

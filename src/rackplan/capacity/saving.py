#
# For licensing see accompanying LICENSE file.
# Copyright © 2025 Apple Inc. All Rights Reserved.
#
"""Saving capacity rules.

A proposal authored against a reference date is expanded into concrete rule rows,
validated against the rules already defined for the side and committed in one
store transaction, replacing the rows it supersedes.
"""

import datetime
import logging
import uuid
from typing import Iterable

from pydantic import BaseModel

from rackplan.capacity.exceptions import (
    InvalidScheduleError,
    ScheduleConflictError,
)
from rackplan.capacity.records import (
    delete_capacity_override,
    delete_schedules,
    fetch_schedules,
    get_period_type_defaults,
    insert_schedules,
    update_schedule,
    upsert_capacity_override,
)
from rackplan.capacity.schedule import (
    PeriodType,
    RecurrenceType,
    ScheduleId,
    ScheduleRule,
    applies_on_date,
    with_excluded_date,
)
from rackplan.capacity.time_utils import (
    day_name,
    day_of_week,
    is_weekday,
    parse_time,
    validate_time_range,
)
from rackplan.capacity.validation import validate_no_overlaps
from rackplan.store.data_store import get_current_store

logger = logging.getLogger(__name__)

WEEKEND_ROW_DAYS = (6, 0)


class RuleProposal(BaseModel):
    """A rule definition as authored by an operator.

    Parameters
    ----------
    period_type
        Usage category of the range.
    recurrence_type
        How the rule repeats from the reference date.
    start_time, end_time
        Half-open time of day range.
    capacity
        Concurrent booking limit. When omitted, the category default of the side
        is used. Forced to 0 for Closed proposals.
    platforms
        Racks the rule opens. Ignored for Closed proposals.
    """

    period_type: PeriodType
    recurrence_type: RecurrenceType
    start_time: datetime.time
    end_time: datetime.time
    capacity: int | None = None
    platforms: list[int] | None = None


def _resolve_capacity(side_id: int, proposal: RuleProposal) -> tuple[int, list[int] | None]:
    if proposal.period_type == PeriodType.Closed:
        return 0, None
    capacity = proposal.capacity
    if capacity is None:
        default = get_period_type_defaults(side_id).get(proposal.period_type)
        if default is None:
            raise InvalidScheduleError(
                f"No default capacity set for {proposal.period_type}. "
                f"Set a default capacity first."
            )
        capacity = default.default_capacity
    if capacity < 0:
        raise InvalidScheduleError("Capacity cannot be negative")
    return capacity, proposal.platforms


def expand_proposal(
    side_id: int, proposal: RuleProposal, reference_date: datetime.date
) -> list[ScheduleRule]:
    """Expand a proposal into the rule rows to insert.

    Weekend proposals yield a Saturday and a Sunday row, every other kind a single
    row on the day of week of `reference_date`. All rows are anchored at
    `reference_date`.

    Raises
    ------
    InvalidTimeRangeError
        If the proposal does not end after it starts.
    InvalidScheduleError
        If a weekday proposal is authored on a weekend date, or the capacity is
        invalid.
    """
    validate_time_range(proposal.start_time, proposal.end_time)
    dow = day_of_week(reference_date)
    if proposal.recurrence_type == RecurrenceType.Weekday and not is_weekday(dow):
        raise InvalidScheduleError(
            f"A weekday rule cannot be authored on a {day_name(dow)}"
        )
    capacity, platforms = _resolve_capacity(side_id, proposal)
    if proposal.recurrence_type == RecurrenceType.Weekend:
        days = WEEKEND_ROW_DAYS
    else:
        days = (dow,)
    return [
        ScheduleRule(
            schedule_id=str(uuid.uuid4()),
            side_id=side_id,
            day_of_week=day,
            start_time=parse_time(proposal.start_time),
            end_time=parse_time(proposal.end_time),
            capacity=capacity,
            period_type=proposal.period_type,
            recurrence_type=proposal.recurrence_type,
            start_date=reference_date,
            platforms=platforms,
        )
        for day in days
    ]


def _same_slot_and_kind(existing: ScheduleRule, new: ScheduleRule) -> bool:
    """Rows a new row supersedes: same day, start time and kind, whatever their
    anchor date."""
    return (
        existing.day_of_week == new.day_of_week
        and existing.start_time == new.start_time
        and existing.recurrence_type == new.recurrence_type
    )


def _same_series(existing: ScheduleRule, replaced: ScheduleRule) -> bool:
    """Rows saved together with `replaced`, i.e. itself or the other day of a
    weekend rule. Single rows only belong to the series of their own date."""
    if (
        replaced.recurrence_type == RecurrenceType.Single
        and existing.start_date != replaced.start_date
    ):
        return False
    same_day = existing.day_of_week == replaced.day_of_week or (
        replaced.recurrence_type == RecurrenceType.Weekend
        and existing.start_date == replaced.start_date
    )
    return (
        same_day
        and existing.start_time == replaced.start_time
        and existing.end_time == replaced.end_time
        and existing.period_type == replaced.period_type
        and existing.recurrence_type == replaced.recurrence_type
    )


def _overridden_recurring_rows(
    existing: Iterable[ScheduleRule], new_rows: Iterable[ScheduleRule]
) -> list[ScheduleRule]:
    """Recurring rows a single row overrides on its date: same day and time range,
    and applying on the anchor date."""
    overridden = []
    for new in new_rows:
        if new.recurrence_type != RecurrenceType.Single:
            continue
        for rule in existing:
            if (
                rule.is_recurring
                and rule.day_of_week == new.day_of_week
                and rule.start_time == new.start_time
                and rule.end_time == new.end_time
                and applies_on_date(rule, new.day_of_week, new.start_date)
            ):
                overridden.append(rule)
    return overridden


def save_rule(
    side_id: int,
    proposal: RuleProposal,
    reference_date: datetime.date,
    replacing_ids: Iterable[ScheduleId] = (),
) -> list[ScheduleId]:
    """Save a capacity rule for a side.

    Parameters
    ----------
    side_id
        The side the rule constrains.
    proposal
        The rule definition.
    reference_date
        The date the proposal was authored against. It anchors the new rows and
        determines their day of week.
    replacing_ids
        When editing, the ids of the rows being replaced. Rows of the same series
        (same day, time range, category and kind, on the same date for single
        rows) are replaced with them.

    Returns
    -------
    The ids of the inserted rows.

    Raises
    ------
    ScheduleConflictError
        If a new row overlaps an existing rule. Nothing is written.
    InvalidTimeRangeError, InvalidScheduleError
        If the proposal is malformed.

    Notes
    -----
    1. A single-date rule whose time range equals that of a recurring rule applying
    on the same date does not replace it: the date is added to the recurring rule
    exclusions instead.
    2. For single-date rules the capacity override of (date, category) is upserted.
    """
    new_rows = expand_proposal(side_id, proposal, reference_date)
    replacing_ids = set(replacing_ids)
    store = get_current_store()
    with store.transaction():
        existing = fetch_schedules(side_id)
        replaced = [rule for rule in existing if rule.schedule_id in replacing_ids]
        superseded = [
            rule
            for rule in existing
            if rule.schedule_id in replacing_ids
            or any(_same_series(rule, r) for r in replaced)
            or any(_same_slot_and_kind(rule, new) for new in new_rows)
        ]
        superseded_ids = {rule.schedule_id for rule in superseded}
        overridden = [
            rule
            for rule in _overridden_recurring_rows(existing, new_rows)
            if rule.schedule_id not in superseded_ids
        ]
        report = validate_no_overlaps(
            side_id,
            new_rows,
            exclude_ids=superseded_ids | {rule.schedule_id for rule in overridden},
            existing=existing,
        )
        if report is not None:
            raise ScheduleConflictError(report)

        for rule in overridden:
            excluded = with_excluded_date(rule, reference_date)
            update_schedule(rule.schedule_id, excluded_dates=excluded.excluded_dates)
            logger.debug(f"Excluded {reference_date} from rule {rule.schedule_id}")
        deleted = delete_schedules(superseded_ids)
        for rule in superseded:
            if rule.recurrence_type == RecurrenceType.Single:
                delete_capacity_override(rule.start_date, rule.period_type)
        inserted = insert_schedules(new_rows)
        if proposal.recurrence_type == RecurrenceType.Single:
            upsert_capacity_override(
                reference_date, new_rows[0].period_type, new_rows[0].capacity
            )
    logger.info(
        f"Saved {proposal.recurrence_type} {proposal.period_type} rule on side {side_id}: "
        f"{len(inserted)} inserted, {deleted} replaced, {len(overridden)} excluded"
    )
    return inserted

#
# For licensing see accompanying LICENSE file.
# Copyright © 2025 Apple Inc. All Rights Reserved.
#
"""Rejects rule definitions that would overlap existing rules of the same side and day."""

import logging
from typing import Iterable, NamedTuple, Sequence

from pydantic import BaseModel

from rackplan.capacity.records import fetch_schedules
from rackplan.capacity.schedule import (
    PeriodType,
    RecurrenceType,
    ScheduleId,
    ScheduleRule,
    is_date_excluded,
)
from rackplan.capacity.time_utils import (
    day_name,
    format_date,
    is_weekday,
    is_weekend,
    time_ranges_overlap,
)

logger = logging.getLogger(__name__)

CONFLICT_HEADER = "Schedule conflicts detected:"
CONFLICT_FOOTER = "Please select a different time or remove the existing schedule first."

RECURRENCE_LABELS = {
    RecurrenceType.Weekday: "Weekdays",
    RecurrenceType.Weekend: "Weekends",
    RecurrenceType.Weekly: "Weekly",
    RecurrenceType.AllFuture: "All future",
}


class ScheduleConflict(NamedTuple):
    """A candidate rule overlapping an existing one.

    `day`, `time` and `recurrence` describe the candidate, `existing_period`
    the category of the rule it collides with.
    """

    day: str
    time: str
    existing_period: PeriodType
    recurrence: str
    existing_schedule_id: ScheduleId

    def __str__(self) -> str:
        return (
            f'  • {self.day} ({self.recurrence}) {self.time}: '
            f'Already booked as "{self.existing_period}"'
        )


class ConflictReport(BaseModel):
    conflicts: list[ScheduleConflict]

    @property
    def message(self) -> str:
        lines = "\n".join(str(conflict) for conflict in self.conflicts)
        return f"{CONFLICT_HEADER}\n{lines}\n\n{CONFLICT_FOOTER}"

    def __bool__(self) -> bool:
        return bool(self.conflicts)


def recurrence_label(rule: ScheduleRule) -> str:
    """Human readable recurrence, e.g. "Weekdays" or "Jan 5, 2026" for single rules."""
    if rule.recurrence_type == RecurrenceType.Single:
        return format_date(rule.start_date)
    return RECURRENCE_LABELS[rule.recurrence_type]


def date_ranges_intersect(candidate: ScheduleRule, existing: ScheduleRule) -> bool:
    """Decide whether two rules on the same day of week could apply on a common date.

    Notes
    -----
    1. Rules of the same weekday or weekend kind always intersect when the candidate
    day belongs to the kind, regardless of their dates.
    2. A recurring candidate intersects a single existing rule only if the
    existing date is on or after the candidate anchor.
    3. A single candidate never intersects a recurring rule that excludes its date.
    """
    c_kind, e_kind = candidate.recurrence_type, existing.recurrence_type
    open_or_reaches = existing.end_date is None or candidate.start_date <= existing.end_date
    if c_kind == e_kind:
        match c_kind:
            case RecurrenceType.Single:
                return candidate.start_date == existing.start_date
            case RecurrenceType.Weekday:
                return is_weekday(candidate.day_of_week)
            case RecurrenceType.Weekend:
                return is_weekend(candidate.day_of_week)
            case _:
                return open_or_reaches
    if c_kind == RecurrenceType.Single:
        return (
            existing.start_date <= candidate.start_date
            and open_or_reaches
            and not is_date_excluded(existing, candidate.start_date)
        )
    if e_kind == RecurrenceType.Single:
        return existing.start_date >= candidate.start_date
    return open_or_reaches


def find_conflicts(
    candidates: Iterable[ScheduleRule],
    existing: Iterable[ScheduleRule],
    exclude_ids: Iterable[ScheduleId] = (),
) -> list[ScheduleConflict]:
    """Pairwise check of every candidate against every non ignored existing rule."""
    ignored = set(exclude_ids)
    existing = [rule for rule in existing if rule.schedule_id not in ignored]
    conflicts = []
    for candidate in candidates:
        for rule in existing:
            if rule.day_of_week != candidate.day_of_week:
                continue
            if not date_ranges_intersect(candidate, rule):
                continue
            if not time_ranges_overlap(
                candidate.start_time, candidate.end_time, rule.start_time, rule.end_time
            ):
                continue
            logger.debug(f"Rule {candidate} overlaps existing rule {rule.schedule_id}")
            conflicts.append(
                ScheduleConflict(
                    day=day_name(candidate.day_of_week),
                    time=candidate.time_label,
                    existing_period=rule.period_type,
                    recurrence=recurrence_label(candidate),
                    existing_schedule_id=rule.schedule_id,
                )
            )
    return conflicts


def validate_no_overlaps(
    side_id: int,
    candidates: Sequence[ScheduleRule],
    exclude_ids: Iterable[ScheduleId] = (),
    existing: Sequence[ScheduleRule] | None = None,
) -> ConflictReport | None:
    """Check candidate rules against the rules already defined for a side.

    Parameters
    ----------
    side_id
        Side the candidates belong to.
    candidates
        Rules about to be written.
    exclude_ids
        Existing rules to ignore, typically the ones the candidates replace.
    existing
        Existing rules of the side. Read from the store when omitted.

    Returns
    -------
    A report listing every conflict, or None when the candidates can be saved.
    """
    if existing is None:
        existing = fetch_schedules(side_id)
    existing = [rule for rule in existing if rule.side_id == side_id]
    conflicts = find_conflicts(candidates, existing, exclude_ids)
    if not conflicts:
        return None
    logger.info(
        f"Rejected {len(candidates)} rule(s) on side {side_id}: "
        f"{len(conflicts)} conflict(s)"
    )
    return ConflictReport(conflicts=conflicts)

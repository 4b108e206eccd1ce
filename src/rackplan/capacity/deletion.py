#
# For licensing see accompanying LICENSE file.
# Copyright © 2025 Apple Inc. All Rights Reserved.
#
"""Removing capacity rules for one occurrence, an occurrence and the ones after it,
or a whole series."""

import datetime
import logging
from enum import StrEnum, auto

from pydantic import BaseModel

from rackplan.capacity.exceptions import NoMatchingScheduleError
from rackplan.capacity.records import (
    delete_capacity_override,
    delete_schedules,
    fetch_schedules,
    update_schedule,
)
from rackplan.capacity.schedule import (
    PeriodType,
    RecurrenceType,
    ScheduleId,
    ScheduleRule,
    is_date_excluded,
    with_excluded_date,
)
from rackplan.capacity.time_utils import day_of_week, format_time, is_weekday, parse_time
from rackplan.store.data_store import get_current_store

logger = logging.getLogger(__name__)


class DeleteMode(StrEnum):
    single = auto()
    future = auto()
    all = auto()


class RuleSignature(BaseModel):
    """Identifies a rule series independently of its day of week and dates."""

    start_time: datetime.time
    end_time: datetime.time
    period_type: PeriodType
    recurrence_type: RecurrenceType

    def matches(self, rule: ScheduleRule) -> bool:
        return (
            rule.start_time == parse_time(self.start_time)
            and rule.end_time == parse_time(self.end_time)
            and rule.period_type == self.period_type
            and rule.recurrence_type == self.recurrence_type
        )

    def __str__(self) -> str:
        return (
            f"{self.recurrence_type}, {format_time(self.start_time)}-"
            f"{format_time(self.end_time)}, {self.period_type}"
        )


class DeletionOutcome(BaseModel):
    deleted_ids: list[ScheduleId] = []
    truncated_ids: list[ScheduleId] = []
    excluded_ids: list[ScheduleId] = []


def _delete_rows(rows: list[ScheduleRule]) -> None:
    delete_schedules(rule.schedule_id for rule in rows)
    for rule in rows:
        if rule.recurrence_type == RecurrenceType.Single:
            delete_capacity_override(rule.start_date, rule.period_type)


def _delete_single_occurrence(
    rules: list[ScheduleRule], target_date: datetime.date, signature: RuleSignature
) -> DeletionOutcome:
    target_dow = day_of_week(target_date)
    match = next(
        (
            rule
            for rule in rules
            if rule.day_of_week == target_dow
            and signature.matches(rule)
            and (
                rule.recurrence_type != RecurrenceType.Single
                or rule.start_date == target_date
            )
        ),
        None,
    )
    if match is None:
        raise NoMatchingScheduleError(
            f"No matching schedule found on {target_date} for {signature}"
        )
    if match.recurrence_type == RecurrenceType.Single:
        _delete_rows([match])
        return DeletionOutcome(deleted_ids=[match.schedule_id])
    if is_date_excluded(match, target_date):
        logger.warning(
            f"{target_date} is already excluded from rule {match.schedule_id}, nothing to delete"
        )
        return DeletionOutcome()
    excluded = with_excluded_date(match, target_date)
    update_schedule(match.schedule_id, excluded_dates=excluded.excluded_dates)
    return DeletionOutcome(excluded_ids=[match.schedule_id])


def _starts_at_or_after_target(
    rule: ScheduleRule, target_date: datetime.date
) -> bool:
    """Whether a recurring row is dropped entirely by a "future" deletion at
    `target_date`, rather than truncated."""
    target_dow = day_of_week(target_date)
    match rule.recurrence_type:
        case RecurrenceType.Weekday:
            return rule.day_of_week >= target_dow and is_weekday(rule.day_of_week)
        case RecurrenceType.Weekend:
            # Saturday carries the following Sunday, Sunday only itself
            if target_dow == 6:
                return rule.day_of_week in (6, 0)
            if target_dow == 0:
                return rule.day_of_week == 0
            return False
        case RecurrenceType.Weekly:
            return rule.start_date >= target_date
        case RecurrenceType.AllFuture:
            if rule.day_of_week == target_dow:
                return (
                    rule.start_date >= target_date
                    or rule.end_date is None
                    or rule.end_date >= target_date
                )
            return rule.start_date >= target_date
        case _:
            return False


def _delete_future_occurrences(
    rules: list[ScheduleRule], target_date: datetime.date, signature: RuleSignature
) -> DeletionOutcome:
    matching = [rule for rule in rules if signature.matches(rule)]
    if not matching:
        raise NoMatchingScheduleError(
            f"No schedules found matching the pattern. Looking for: {signature}"
        )
    to_delete: list[ScheduleRule] = []
    to_truncate: list[ScheduleRule] = []
    for rule in matching:
        if rule.recurrence_type == RecurrenceType.Single:
            if rule.start_date == target_date:
                to_delete.append(rule)
        elif _starts_at_or_after_target(rule, target_date):
            to_delete.append(rule)
        elif rule.end_date is None or rule.end_date >= target_date:
            to_truncate.append(rule)

    # keep the occurrences strictly before the target date
    new_end_date = target_date - datetime.timedelta(days=1)
    for rule in to_truncate:
        update_schedule(rule.schedule_id, end_date=new_end_date)
        logger.debug(f"Rule {rule.schedule_id} now ends on {new_end_date}")
    _delete_rows(to_delete)
    return DeletionOutcome(
        deleted_ids=[rule.schedule_id for rule in to_delete],
        truncated_ids=[rule.schedule_id for rule in to_truncate],
    )


def _delete_series(
    rules: list[ScheduleRule], signature: RuleSignature
) -> DeletionOutcome:
    matching = [rule for rule in rules if signature.matches(rule)]
    if not matching:
        raise NoMatchingScheduleError(
            f"No schedules found matching the pattern. Looking for: {signature}"
        )
    _delete_rows(matching)
    return DeletionOutcome(deleted_ids=[rule.schedule_id for rule in matching])


def delete_rule(
    side_id: int,
    mode: DeleteMode,
    target_date: datetime.date,
    signature: RuleSignature,
) -> DeletionOutcome:
    """Delete a capacity rule of a side.

    Parameters
    ----------
    side_id
        Side owning the rule.
    mode
        `single` removes the occurrence on `target_date` only: single-date rows are
        deleted, recurring rows get `target_date` excluded. `future` removes the
        occurrence on `target_date` and every later one, deleting the rows that
        start on or after it and truncating the others so that they end the day
        before. `all` deletes every row of the series.
    target_date
        The occurrence the operator selected.
    signature
        Time range, category and kind of the series.

    Raises
    ------
    NoMatchingScheduleError
        If no row matches the signature (on the target day of week for `single`).
    """
    store = get_current_store()
    with store.transaction():
        rules = fetch_schedules(side_id)
        match DeleteMode(mode):
            case DeleteMode.single:
                outcome = _delete_single_occurrence(rules, target_date, signature)
            case DeleteMode.future:
                outcome = _delete_future_occurrences(rules, target_date, signature)
            case DeleteMode.all:
                outcome = _delete_series(rules, signature)
    logger.info(
        f"Deleted {mode} occurrences of [{signature}] on side {side_id} from {target_date}: "
        f"{len(outcome.deleted_ids)} deleted, {len(outcome.truncated_ids)} truncated, "
        f"{len(outcome.excluded_ids)} excluded"
    )
    return outcome

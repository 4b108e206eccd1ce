#
# For licensing see accompanying LICENSE file.
# Copyright © 2025 Apple Inc. All Rights Reserved.
#
"""Column filters applied to the store tables by the record helpers."""

from typing import Any, Callable, Literal, Sequence

import polars as pl


class NotGiven:
    """Marks a filter argument the caller left out, so that None can still mean
    "match nulls" (e.g. open-ended rules)."""

    def __bool__(self) -> Literal[False]:
        return False

    def __repr__(self) -> str:
        return "NOT_GIVEN"


NOT_GIVEN = NotGiven()

ColumnFilter = Callable[[pl.DataFrame, str, Any], pl.DataFrame]


def exact_match_filter_dataframe(
    dataframe: pl.DataFrame, column_name: str, value: Any
) -> pl.DataFrame:
    """Rows whose `column_name` equals `value`, or is null when `value` is None."""
    if value is None:
        return dataframe.filter(pl.col(column_name).is_null())
    return dataframe.filter(pl.col(column_name) == value)


def lt_eq_filter_dataframe(
    dataframe: pl.DataFrame, column_name: str, value: Any
) -> pl.DataFrame:
    """Rows anchored on or before `value`."""
    return dataframe.filter(pl.col(column_name) <= value)


def gt_eq_or_null_filter_dataframe(
    dataframe: pl.DataFrame, column_name: str, value: Any
) -> pl.DataFrame:
    """Rows that are open-ended (null `column_name`) or end on or after `value`."""
    return dataframe.filter(
        pl.col(column_name).is_null() | (pl.col(column_name) >= value)
    )


def is_sequence_member_filter_dataframe(
    dataframe: pl.DataFrame, column_name: str, value: Sequence
) -> pl.DataFrame:
    return dataframe.filter(pl.col(column_name).is_in(list(value)))


def list_overlap_filter_dataframe(
    dataframe: pl.DataFrame, column_name: str, value: Sequence
) -> pl.DataFrame:
    """Rows whose list column shares at least one element with `value`. Null and
    empty lists never match."""
    wanted = set(value)
    mask = [
        bool(items) and not wanted.isdisjoint(items)
        for items in dataframe.get_column(column_name).to_list()
    ]
    return dataframe.filter(pl.Series(mask, dtype=pl.Boolean))


def filter_dataframe(
    dataframe: pl.DataFrame,
    filter_criteria: list[tuple[str, Any, ColumnFilter]],
) -> pl.DataFrame:
    """Apply each `(column_name, value, column_filter)` criterion in turn.

    Criteria whose value is `NOT_GIVEN` are skipped.
    """
    for column_name, value, column_filter in filter_criteria:
        if value is not NOT_GIVEN:
            dataframe = column_filter(dataframe, column_name, value)
    return dataframe

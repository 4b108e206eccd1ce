#
# For licensing see accompanying LICENSE file.
# Copyright © 2025 Apple Inc. All Rights Reserved.
#
import datetime

import polars as pl
import pytest
from polars.exceptions import NoDataError

from rackplan.capacity.exceptions import PersistenceError
from rackplan.capacity.records import create_side, get_side
from rackplan.readers import load_store
from rackplan.store.data_store import DataStore, get_current_store, new_store
from rackplan.store.schemas import DatabaseNamespace
from rackplan.store.utils import (
    NOT_GIVEN,
    exact_match_filter_dataframe,
    filter_dataframe,
    list_overlap_filter_dataframe,
)
from rackplan.writers import save_store

OVERRIDE = DatabaseNamespace.CAPACITY_OVERRIDES


def override_row(day: int, capacity: int, period_type: str = "General User") -> dict:
    return {
        "override_id": f"override-{day}",
        "date": datetime.date(2026, 1, day),
        "period_type": period_type,
        "capacity": capacity,
    }


def test_new_store_has_every_table_empty(store: DataStore):
    for namespace in DatabaseNamespace:
        assert store.get_database(namespace).is_empty()


def test_add_update_and_remove(store: DataStore):
    store.add_to_database(OVERRIDE, [override_row(5, 3), override_row(6, 4)])
    assert store.get_database(OVERRIDE).height == 2

    updated = store.update_database(
        OVERRIDE, pl.col("override_id") == "override-6", {"capacity": 8}
    )
    assert updated == 1
    assert store.get_database(OVERRIDE)["capacity"].to_list() == [3, 8]

    removed = store.remove_from_database(OVERRIDE, pl.col("capacity") > 5)
    assert removed == 1
    assert store.get_database(OVERRIDE)["override_id"].to_list() == ["override-5"]


def test_missing_columns_are_null(store: DataStore):
    store.add_to_database(OVERRIDE, [override_row(5, 3)])
    assert store.get_database(OVERRIDE)["notes"].to_list() == [None]


def test_unknown_columns_are_rejected(store: DataStore):
    with pytest.raises(PersistenceError):
        store.add_to_database(OVERRIDE, [{**override_row(5, 3), "colour": "red"}])
    with pytest.raises(PersistenceError):
        store.update_database(OVERRIDE, pl.col("capacity") > 0, {"colour": "red"})


def test_all_null_rows_are_rejected(store: DataStore):
    with pytest.raises(PersistenceError):
        store.add_to_database(OVERRIDE, [{"override_id": None, "notes": None}])


def test_unmatched_predicates_raise(store: DataStore):
    store.add_to_database(OVERRIDE, [override_row(5, 3)])
    with pytest.raises(NoDataError):
        store.update_database(OVERRIDE, pl.col("capacity") > 5, {"capacity": 1})
    with pytest.raises(NoDataError):
        store.remove_from_database(OVERRIDE, pl.col("capacity") > 5)


def test_null_values_never_match(store: DataStore):
    store.add_to_database(OVERRIDE, [override_row(5, 3), {**override_row(6, 4), "notes": "x"}])
    removed = store.remove_from_database(OVERRIDE, pl.col("notes") == "x")
    assert removed == 1
    assert store.get_database(OVERRIDE)["override_id"].to_list() == ["override-5"]


def test_transaction_restores_tables_on_failure(store: DataStore):
    store.add_to_database(OVERRIDE, [override_row(5, 3)])
    with pytest.raises(PersistenceError):
        with store.transaction():
            store.update_database(OVERRIDE, pl.col("capacity") == 3, {"capacity": 9})
            store.add_to_database(OVERRIDE, [override_row(6, 4)])
            store.add_to_database(OVERRIDE, [{"unknown": 1}])
    assert store.get_database(OVERRIDE).to_dicts() == [
        {**override_row(5, 3), "notes": None}
    ]


def test_transaction_commits_on_success(store: DataStore):
    with store.transaction():
        store.add_to_database(OVERRIDE, [override_row(5, 3)])
        store.add_to_database(OVERRIDE, [override_row(6, 4)])
    assert store.get_database(OVERRIDE).height == 2


def test_serialization_round_trip(store: DataStore):
    side_id = create_side("Power", [3, 1, 2])
    store.add_to_database(OVERRIDE, [override_row(5, 3)])
    store.add_to_database(
        DatabaseNamespace.CAPACITY_SCHEDULES,
        [
            {
                "schedule_id": "rule",
                "side_id": side_id,
                "day_of_week": 1,
                "start_time": datetime.time(9),
                "end_time": datetime.time(10, 30),
                "capacity": 4,
                "period_type": "Performance",
                "recurrence_type": "weekly",
                "start_date": datetime.date(2026, 1, 5),
                "end_date": None,
                "excluded_dates": [datetime.date(2026, 1, 12)],
                "platforms": [1, 2],
            }
        ],
    )
    serialized = store.to_dict()
    assert serialized["_dbs"]["capacity_schedules"][0]["excluded_dates"] == ["2026-01-12"]

    restored = DataStore.from_dict(serialized)
    for namespace in DatabaseNamespace:
        assert restored.get_database(namespace).equals(store.get_database(namespace))


def test_store_can_be_saved_and_loaded(store: DataStore, tmp_path):
    side_id = create_side("Power", [1, 2])
    path = tmp_path / "store.json"
    save_store(store, path)
    with new_store(load_store(path)):
        assert get_side(side_id).racks == [1, 2]


def test_new_store_restores_the_previous_store(store: DataStore):
    other = DataStore()
    with new_store(other):
        assert get_current_store() is other
    assert get_current_store() is store


def test_filter_dataframe_skips_criteria_not_given(store: DataStore):
    store.add_to_database(OVERRIDE, [override_row(5, 4), override_row(6, 2)])
    filtered = filter_dataframe(
        store.get_database(OVERRIDE),
        [
            ("capacity", NOT_GIVEN, exact_match_filter_dataframe),
            ("period_type", "General User", exact_match_filter_dataframe),
        ],
    )
    assert filtered.height == 2
    filtered = filter_dataframe(
        filtered, [("capacity", 2, exact_match_filter_dataframe)]
    )
    assert filtered["override_id"].to_list() == ["override-6"]


def test_list_overlap_filter():
    dataframe = pl.DataFrame(
        {"racks": [[1, 2], [3], [], None]}, schema={"racks": pl.List(pl.Int32)}
    )
    filtered = list_overlap_filter_dataframe(dataframe, "racks", [2, 3])
    assert filtered["racks"].to_list() == [[1, 2], [3]]

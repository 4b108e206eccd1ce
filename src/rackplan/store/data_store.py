#
# For licensing see accompanying LICENSE file.
# Copyright © 2025 Apple Inc. All Rights Reserved.
#
import contextlib
import copy
import datetime
import logging
import threading
from typing import Any, Iterator, Self, cast

import polars as pl
from polars.exceptions import NoDataError

from rackplan.capacity.exceptions import PersistenceError
from rackplan.store.schemas import DATABASE_SCHEMAS, DatabaseNamespace

logger = logging.getLogger(__name__)

_MATCH_COLUMN = "__match__"


class DataStore:
    """Process-local store for the rule, override, side and booking tables.

    Each DataStore object is a full encapsulation of the persisted state, which

    1. Contains one polars DataFrame per namespace, each with a fixed schema.
    2. Supports insert, single-field update and delete-by-predicate, which is all
    the capacity engine needs from its persistence collaborator.

    Multi-step mutations should be wrapped in `transaction`, which serialises
    writers and restores every table if any step raises.

    One should install a store as the current store (see `new_store`) so that
    the engine functions can reach it without taking it as an argument.
    """

    # Declared as class attributes so that they are available prior to init
    dbs_schemas: dict[DatabaseNamespace, dict[str, Any]] = DATABASE_SCHEMAS

    def __init__(self):
        self._dbs: dict[DatabaseNamespace, pl.DataFrame] = {
            namespace: pl.DataFrame(schema=self.dbs_schemas[namespace])
            for namespace in self.dbs_schemas
        }
        self._lock = threading.RLock()

    def to_dict(self) -> dict[str, Any]:
        """Serializes to a dictionary

        We aim to make this serialization reversible, while still somewhat readable.

        Returns:
            A serialized dict.
        """

        def convert_temporal(value: Any) -> Any:
            if isinstance(value, (datetime.date, datetime.datetime, datetime.time)):
                return value.isoformat()
            if isinstance(value, list):
                return [convert_temporal(v) for v in value]
            return value

        return {
            "_dbs": {
                str(namespace): [
                    {k: convert_temporal(v) for k, v in record.items()}
                    for record in database.to_dicts()
                ]
                for namespace, database in self._dbs.items()
            },
        }

    @classmethod
    def from_dict(cls, serialized_dict: dict[str, Any]) -> Self:
        """Load a serialized dict produced by to_dict.

        Args:
            serialized_dict:    Serialized dict object.

        Returns:
            DataStore object.
        """

        def parse_scalar(value: Any, dtype: Any) -> Any:
            if value is None:
                return None
            if dtype == pl.Datetime:
                return datetime.datetime.fromisoformat(value)
            if dtype == pl.Date:
                return datetime.date.fromisoformat(value)
            if dtype == pl.Time:
                return datetime.time.fromisoformat(value)
            return value

        def convert_temporal(value: Any, schema: dict[str, Any], key: str) -> Any:
            dtype = schema[key]
            if isinstance(dtype, pl.List):
                if value is None:
                    return None
                return [parse_scalar(v, dtype.inner) for v in value]
            return parse_scalar(value, dtype)

        store = cls()
        for namespace_name, records in serialized_dict["_dbs"].items():
            namespace = DatabaseNamespace(namespace_name)
            schema = cls.dbs_schemas[namespace]
            rows = [
                {k: convert_temporal(v, schema, k) for k, v in record.items()}
                for record in records
            ]
            store._dbs[namespace] = pl.DataFrame(rows, schema=schema)
        return store

    def _schema_rows(
        self, namespace: DatabaseNamespace, rows: list[dict[str, Any]]
    ) -> pl.DataFrame:
        schema = self.dbs_schemas[namespace]
        return pl.DataFrame(
            [{column: row.get(column) for column in schema} for row in rows],
            schema=schema,
        )

    @staticmethod
    def _match_mask(dataframe: pl.DataFrame, predicate: pl.Expr) -> list[bool]:
        """Evaluate `predicate` row-wise, treating nulls as non-matches."""
        return (
            dataframe.with_columns(predicate.fill_null(False).alias(_MATCH_COLUMN))
            .get_column(_MATCH_COLUMN)
            .to_list()
        )

    def get_database(self, namespace: DatabaseNamespace) -> pl.DataFrame:
        """Get a table given the namespace

        Note that polars frames are immutable from the store's point of view:
        use the add / update / remove methods to modify the table.

        Parameters
        ----------
        namespace:
            Table namespace

        Returns
        -------
            Requested table
        """
        return self._dbs[namespace]

    def add_to_database(
        self,
        namespace: DatabaseNamespace,
        rows: list[dict[str, Any]],
    ) -> None:
        """Add multiple rows to a table.

        Parameters
        ----------
        namespace
            Table namespace
        rows
            List of rows to be added, each item should be a Dict of column and value

        Raises
        ------
        PersistenceError:   When provided column names in rows do not match the
                            schema or a row holds only None values.
        """
        rows_column_names = {x for row in rows for x in row.keys()}
        schema_column_names = set(self.dbs_schemas[namespace].keys())
        if rows_column_names - schema_column_names:
            raise PersistenceError(
                f"Only column names {schema_column_names} are allowed for namespace {namespace}. "
                f"Found unknown column name {rows_column_names - schema_column_names}"
            )
        for row in rows:
            if all(value is None for value in row.values()):
                raise PersistenceError("Cannot add row with all None values.")
        rows = copy.deepcopy(rows)
        with self._lock:
            self._dbs[namespace] = self._dbs[namespace].vstack(
                self._schema_rows(namespace, rows)
            )
        logger.debug(f"Added {len(rows)} row(s) to {namespace}")

    def update_database(
        self,
        namespace: DatabaseNamespace,
        predicate: pl.Expr,
        values: dict[str, Any],
    ) -> int:
        """Set `values` on every row matching `predicate`.

        Parameters
        ----------
        namespace
            Table namespace
        predicate
            A polars predicate that evaluates to boolean, used to identify the rows to update
        values
            Mapping of column name to the new value. Row order is preserved.

        Returns
        -------
        The number of rows updated.

        Raises
        ------
        NoDataError: If no matching rows were found
        PersistenceError: When a column in `values` is not in the schema
        """
        unknown = set(values) - set(self.dbs_schemas[namespace])
        if unknown:
            raise PersistenceError(
                f"Cannot update unknown column(s) {unknown} in namespace {namespace}"
            )
        with self._lock:
            dataframe = self._dbs[namespace]
            mask = self._match_mask(dataframe, predicate)
            if not any(mask):
                raise NoDataError(f"No db entry matching {predicate=} found")
            rows = dataframe.to_dicts()
            for row, matched in zip(rows, mask):
                if matched:
                    row.update(copy.deepcopy(values))
            self._dbs[namespace] = self._schema_rows(namespace, rows)
        return sum(mask)

    def remove_from_database(
        self,
        namespace: DatabaseNamespace,
        predicate: pl.Expr,
    ) -> int:
        """Remove multiple rows from a table.

        Parameters
        ----------
        namespace
            Table namespace
        predicate
            A polars predicate that evaluates to boolean, used to identify the rows to remove

        Returns
        -------
        The number of rows removed.

        Raises
        ------
        NoDataError: If no matching rows were found
        """
        with self._lock:
            dataframe = self._dbs[namespace]
            mask = self._match_mask(dataframe, predicate)
            if not any(mask):
                raise NoDataError(f"No db entry matching {predicate=} found")
            self._dbs[namespace] = dataframe.filter(
                pl.Series(_MATCH_COLUMN, [not m for m in mask], dtype=pl.Boolean)
            )
        return sum(mask)

    @contextlib.contextmanager
    def transaction(self) -> Iterator[Self]:
        """Run a multi-step mutation atomically.

        The store lock is held for the duration of the block so concurrent
        writers are serialised. If the block raises, every table is restored
        to its state on entry and the exception is propagated.
        """
        with self._lock:
            snapshot = dict(self._dbs)
            try:
                yield self
            except BaseException:
                self._dbs = snapshot
                logger.warning("Transaction failed, store restored to its prior state")
                raise


def _create_global_store() -> DataStore:
    """Set up the global store lazily, on first access."""
    store = DataStore()
    globals()["_global_store"] = store
    return store


def get_current_store() -> DataStore:
    """Getter for the global store

    Returns
        global store object

    """
    # `global _global_store` breaks under pytest-xdist workers, so look the
    # variable up explicitly and create it when missing.
    global_store = globals().get("_global_store")
    if global_store is None:
        return _create_global_store()

    return cast(DataStore, global_store)


def set_current_store(store: DataStore) -> None:
    """Setter for the global store

    Args:
        store: new store to be installed globally

    """
    globals()["_global_store"] = store


@contextlib.contextmanager
def new_store(store: DataStore) -> Iterator[DataStore]:
    """Handy context manager which installs `store` as the current store,
    and reverts after exit

    Parameters
    ----------
    store
        Store to install

    """
    original_store = get_current_store()
    try:
        set_current_store(store)
        yield store
    # Release resource even when exceptions are raised
    finally:
        set_current_store(original_store)

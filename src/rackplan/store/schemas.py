#
# For licensing see accompanying LICENSE file.
# Copyright © 2025 Apple Inc. All Rights Reserved.
#
from enum import StrEnum, auto

import polars as pl


class DatabaseNamespace(StrEnum):
    """Namespace for each table held by the store"""

    SIDES = auto()
    CAPACITY_SCHEDULES = auto()
    CAPACITY_OVERRIDES = auto()
    PERIOD_TYPE_DEFAULTS = auto()
    BOOKING_INSTANCES = auto()


CAPACITY_SCHEDULE_SCHEMA = {
    "schedule_id": pl.String,
    "side_id": pl.Int64,
    "day_of_week": pl.Int8,
    "start_time": pl.Time,
    "end_time": pl.Time,
    "capacity": pl.Int32,
    "period_type": pl.String,
    "recurrence_type": pl.String,
    "start_date": pl.Date,
    "end_date": pl.Date,
    "excluded_dates": pl.List(pl.Date),
    "platforms": pl.List(pl.Int32),
}

DATABASE_SCHEMAS = {
    DatabaseNamespace.SIDES: {
        "side_id": pl.Int64,
        "side_key": pl.String,
        "racks": pl.List(pl.Int32),
    },
    DatabaseNamespace.CAPACITY_SCHEDULES: CAPACITY_SCHEDULE_SCHEMA,
    # denormalised copy of single-date capacities, keyed by (date, period_type)
    DatabaseNamespace.CAPACITY_OVERRIDES: {
        "override_id": pl.String,
        "date": pl.Date,
        "period_type": pl.String,
        "capacity": pl.Int32,
        "notes": pl.String,
    },
    DatabaseNamespace.PERIOD_TYPE_DEFAULTS: {
        "side_id": pl.Int64,
        "period_type": pl.String,
        "default_capacity": pl.Int32,
        "platforms": pl.List(pl.Int32),
    },
    DatabaseNamespace.BOOKING_INSTANCES: {
        "instance_id": pl.String,
        "booking_id": pl.String,
        "side_id": pl.Int64,
        "start": pl.Datetime,
        "end": pl.Datetime,
        "racks": pl.List(pl.Int32),
        "title": pl.String,
        "color": pl.String,
        "is_locked": pl.Boolean,
        "capacity": pl.Int32,
    },
}

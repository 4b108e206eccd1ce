#
# For licensing see accompanying LICENSE file.
# Copyright © 2025 Apple Inc. All Rights Reserved.
#
import datetime
from pathlib import Path

import pytest
from omegaconf import DictConfig, OmegaConf
from rich.console import Console

from rackplan.capacity.lookup import build_slot_map, compute_day_blocks
from rackplan.capacity.records import create_booking_instance, create_side, insert_schedules
from rackplan.capacity.schedule import PeriodType, RecurrenceType
from rackplan.display import display_day_blocks
from rackplan.endpoints.render_week import render
from rackplan.store.data_store import DataStore
from rackplan.writers import save_store
from tests.capacity.capacity_utils import MONDAY, SUNDAY, WEDNESDAY, make_rule


@pytest.fixture
def store_path(store: DataStore, tmp_path: Path) -> Path:
    side_id = create_side("Power", [1, 2])
    insert_schedules(
        [
            make_rule(1, "08:00", "10:00", side_id=side_id),
            make_rule(
                0, "12:00", "13:00", RecurrenceType.Weekend, PeriodType.Closed, 0,
                start_date=SUNDAY, side_id=side_id,
            ),
        ]
    )
    create_booking_instance(
        side_id,
        datetime.datetime.combine(MONDAY, datetime.time(8)),
        datetime.datetime.combine(MONDAY, datetime.time(9)),
        [1],
        title="Calibration",
    )
    path = tmp_path / "store.json"
    save_store(store, path)
    return path


def render_config(store_path: Path, **overrides) -> DictConfig:
    return OmegaConf.create(
        {
            "store_path": str(store_path),
            "side_id": 1,
            "side_key": None,
            "week_of": WEDNESDAY.isoformat(),
            "day": None,
            "show_bookings": False,
            "debug": False,
            "output_path": None,
            **overrides,
        }
    )


def test_render_returns_blocks_for_every_day(store_path: Path):
    blocks = render(render_config(store_path))
    assert list(blocks) == [
        (MONDAY + datetime.timedelta(days=i)).isoformat() for i in range(7)
    ]
    [monday] = blocks[MONDAY.isoformat()]
    assert (monday["start_time"], monday["end_time"]) == ("08:00", "10:00")
    assert monday["period_type"] == PeriodType.GeneralUser
    [sunday] = blocks[SUNDAY.isoformat()]
    assert sunday["period_type"] == PeriodType.Closed
    assert blocks[WEDNESDAY.isoformat()] == []


def test_render_single_day_with_bookings(store_path: Path):
    blocks = render(render_config(store_path, day=1, show_bookings=True))
    assert list(blocks) == [MONDAY.isoformat()]


def test_display_day_blocks_lists_categories():
    slot_map = build_slot_map(
        [make_rule(1, "08:00", "10:00", period_type=PeriodType.HighHybrid, capacity=3)],
        MONDAY,
    )
    console = Console(record=True, width=120)
    display_day_blocks({MONDAY: compute_day_blocks(slot_map, 1)}, console=console)
    output = console.export_text()
    assert "High Hybrid" in output
    assert "08:00 - 10:00" in output


def test_render_by_side_key(store_path: Path):
    blocks = render(render_config(store_path, side_id=None, side_key="Power", day=0))
    [sunday] = blocks[SUNDAY.isoformat()]
    assert (sunday["start_time"], sunday["end_time"]) == ("12:00", "13:00")


def test_render_requires_a_side(store_path: Path):
    with pytest.raises(ValueError):
        render(render_config(store_path, side_id=None))

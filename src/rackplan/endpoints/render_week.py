#
# For licensing see accompanying LICENSE file.
# Copyright © 2025 Apple Inc. All Rights Reserved.
#
import datetime
import logging
from pathlib import Path

import hydra
from omegaconf import DictConfig, OmegaConf

from rackplan.capacity.bookings import compute_booking_views
from rackplan.capacity.lookup import compute_day_blocks, evaluate_week
from rackplan.capacity.records import get_side_by_key
from rackplan.capacity.time_utils import (
    day_of_week,
    generate_time_slots,
    start_of_week,
    this_week_dates,
)
from rackplan.display import display_booking_views, display_day_blocks
from rackplan.readers import load_store
from rackplan.store.data_store import new_store
from rackplan.writers import save_json

logger = logging.getLogger(__name__)


def _parse_date(value: str | datetime.date) -> datetime.date:
    if isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(str(value))


def _resolve_side_id(cfg: DictConfig) -> int:
    if cfg.side_id is not None:
        return int(cfg.side_id)
    if cfg.side_key is None:
        raise ValueError("Either side_id or side_key must be set")
    return get_side_by_key(cfg.side_key).side_id


def render(cfg: DictConfig) -> dict[str, list[dict]]:
    """Print the capacity blocks of a side for one week and return them keyed by date."""
    week_of = _parse_date(cfg.week_of)
    time_slots = generate_time_slots()
    with new_store(load_store(cfg.store_path)):
        side_id = _resolve_side_id(cfg)
        slot_map = evaluate_week(side_id, week_of, time_slots)
        dates = this_week_dates(week_of)
        if cfg.day is not None:
            dates = [d for d in dates if day_of_week(d) == int(cfg.day)]
        blocks_by_date = {
            date: compute_day_blocks(slot_map, day_of_week(date), time_slots)
            for date in dates
        }
        logger.info(
            f"Side {side_id}, week of {start_of_week(week_of)}: "
            f"{len(slot_map)} governed slot(s)"
        )
        display_day_blocks(blocks_by_date)
        if cfg.show_bookings:
            for date in dates:
                views = compute_booking_views(
                    side_id, date, slot_map=slot_map, time_slots=time_slots
                )
                display_booking_views(views, time_slots)
    return {
        date.isoformat(): [block._asdict() for block in blocks]
        for date, blocks in blocks_by_date.items()
    }


@hydra.main(
    config_name="render_week",
    config_path="pkg://rackplan.configs.endpoints",
)
def main(cfg: DictConfig):
    if cfg.debug:
        logger.info(OmegaConf.to_yaml(cfg, resolve=True))
    blocks = render(cfg)
    if cfg.output_path:
        output_path = Path(cfg.output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        save_json(blocks, output_path)
        logger.info(f"Saved blocks to {output_path}")


if __name__ == "__main__":
    main()
